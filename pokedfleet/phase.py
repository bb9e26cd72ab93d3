"""
Phase classification: where a team stands relative to its race schedule.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pokedfleet.models import Phase, Team

DAY_MINUTES = 24 * 60


@dataclass(frozen=True)
class PhaseInfo:
    phase:                 Phase
    minutes_to_next_race:  Optional[int] = None
    minutes_since_race:    Optional[int] = None
    next_race_hour:        Optional[int] = None
    final_window:          bool = False

    @property
    def label(self) -> str:
        name = self.phase.name + (" (final)" if self.final_window else "")
        if self.minutes_to_next_race is None:
            return name
        return f"{name}, next race {self.next_race_hour:02d}:00 UTC in {self.minutes_to_next_race} min"


def minutes_of_day(now: datetime) -> int:
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.hour * 60 + now.minute


def race_distances(now: datetime, race_hours: list) -> tuple:
    """
    Returns (minutes_to_next, next_hour, minutes_since_last). A race at
    exactly ``now`` counts as just run, not as upcoming.
    """
    current = minutes_of_day(now)
    best_next, next_hour = None, None
    best_since = None
    for hour in race_hours:
        race = hour * 60
        until = (race - current) % DAY_MINUTES or DAY_MINUTES
        since = (current - race) % DAY_MINUTES
        if best_next is None or until < best_next:
            best_next, next_hour = until, hour
        if best_since is None or since < best_since:
            best_since = since
    return best_next, next_hour, best_since


def classify(now: datetime, race_hours: list, profile) -> PhaseInfo:
    """
    POST_RACE right after a race, PRE_RACE in the run-up to the next one,
    DRAIN inside the profile's drain window, NORMAL otherwise. A team with
    no schedule is always NORMAL.
    """
    if not race_hours:
        return PhaseInfo(Phase.NORMAL)

    until, hour, since = race_distances(now, race_hours)

    if since < profile.post_race_minutes:
        phase = Phase.POST_RACE
    elif until <= profile.pre_race_minutes:
        phase = Phase.PRE_RACE
    elif (profile.drain_start_minutes is not None
          and profile.drain_end_minutes <= until <= profile.drain_start_minutes):
        phase = Phase.DRAIN
    else:
        phase = Phase.NORMAL

    final = (phase is Phase.PRE_RACE and profile.paid_final_window
             and until <= profile.final_window_minutes)
    return PhaseInfo(phase, until, since, hour, final)


def priority_order(teams: list, phases: dict) -> list:
    """
    Teams sorted by who races soonest; unscheduled teams go last.
    Equal distances keep declaration order, so the team declared first
    wins the tie.
    """
    def key(team: Team):
        until = phases[team.name].minutes_to_next_race
        return (until is None, until if until is not None else 0, team.order)
    return sorted(teams, key=key)


def race_priority_team(ordered: list, phases: dict) -> Optional[Team]:
    """The team entitled to pre-empt RepairBay slots this cycle, if any."""
    if not ordered:
        return None
    first = ordered[0]
    if phases[first.name].phase is Phase.PRE_RACE and first.profile.preemption:
        return first
    return None
