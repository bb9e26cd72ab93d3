"""
One fleet cycle: fetch → classify → arbitrate → plan → execute → report.

Stages run strictly in sequence; inside a stage, independent per-bot calls
fan out concurrently and are joined before the next stage starts.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pokedfleet.arbiter import ResourceArbiter, occupants
from pokedfleet.client import RemoteAPIError, RemoteAPIUnavailable
from pokedfleet.config import FleetConfig, get_profile
from pokedfleet.executor import ActionExecutor
from pokedfleet.models import Action, ActionKind, Phase, Team, Zone
from pokedfleet.phase import PhaseInfo, classify, priority_order, race_priority_team
from pokedfleet.planner import ActionPlanner, RaceContext, plan_team
from pokedfleet.report import CycleReport

log = logging.getLogger("PokedFleet.runner")

REPAIR = Zone.REPAIR.value


class CycleRunner:

    def __init__(self, api, fleet: FleetConfig, executor: ActionExecutor,
                 concurrency: int = 8):
        self.api         = api
        self.fleet       = fleet
        self.executor    = executor
        self.concurrency = max(1, concurrency)

    async def run(self, now: Optional[datetime] = None, dry_run: bool = False) -> CycleReport:
        now = now or datetime.now(timezone.utc)
        report = CycleReport(started_at=now, dry_run=dry_run)
        log.info(f"[CYCLE] ── {now:%Y-%m-%d %H:%M} UTC ──────────────────────────────")

        # 1. Snapshots
        bot_ids = self.fleet.all_bots
        report.bots_total = len(bot_ids)
        states = await self.fetch_snapshots(bot_ids)
        report.observed = len(states)
        report.no_data = [b for b in bot_ids if b not in states]
        snapshots = {t.name: [states[b] for b in t.bots if b in states] for t in self.fleet.teams}

        # 2. Phases
        phases = {t.name: classify(now, t.race_hours, t.profile) for t in self.fleet.teams}
        ordered = priority_order(self.fleet.teams, phases)
        for team in ordered:
            report.phases[team.name] = phases[team.name].label
            log.info(f"[PHASE] {team.name}: {phases[team.name].label}")

        races = await self.race_contexts(ordered, phases, now)

        # 3. Arbitration
        arbiter = ResourceArbiter.from_snapshots(self.fleet.capacity, list(states.values()))
        evictions = self.preempt(ordered, phases, snapshots, arbiter)
        evicted = frozenset(a.bot_id for a in evictions)
        report.evicted = sorted(evicted)

        # 4. Plans
        actions = []
        for team in ordered:
            planner = ActionPlanner(team.profile)
            log.info(f"[PLAN] ── {team.name} ({team.profile.name}) ──")
            actions.extend(plan_team(planner, snapshots[team.name], phases[team.name],
                                     arbiter, races.get(team.name), skip=evicted))
        report.planned = sum(1 for a in evictions + actions if not a.is_noop)

        # 5. Execution
        if dry_run:
            log.info(f"[CYCLE] Dry run: {report.planned} action(s) planned, nothing executed")
        else:
            report.record(await self.executor.run_batch(evictions))
            report.record(await self.executor.run_batch(actions))

        report.log_summary()
        return report

    # ── Fetch ─────────────────────────────────────────────────

    async def fetch_snapshots(self, bot_ids: list) -> dict:
        """bot id → BotState for every bot that returned usable data."""
        sem = asyncio.Semaphore(self.concurrency)
        transport_errors = []

        async def one(bot_id: int):
            async with sem:
                try:
                    return await self.api.get_status(bot_id)
                except RemoteAPIError as e:
                    transport_errors.append(e)
                    log.warning(f"[STATUS] #{bot_id}: {e}")
                except Exception as e:
                    log.error(f"[STATUS] #{bot_id} unexpected error: {e}", exc_info=True)
                return None

        log.info(f"[STATUS] Fetching {len(bot_ids)} bot(s)...")
        results = await asyncio.gather(*(one(b) for b in bot_ids))
        if bot_ids and len(transport_errors) == len(bot_ids):
            raise RemoteAPIUnavailable(
                f"all {len(bot_ids)} status fetches failed, last error: {transport_errors[-1]}")
        states = {b: s for b, s in zip(bot_ids, results) if s is not None}
        missing = len(bot_ids) - len(states)
        if missing:
            log.warning(f"[STATUS] {missing} bot(s) returned no data and are skipped this cycle")
        return states

    # ── Races ─────────────────────────────────────────────────

    async def race_contexts(self, teams: list, phases: dict, now: datetime) -> dict:
        """team name → RaceContext for every team that may register this cycle."""
        wanted = [t for t in teams
                  if phases[t.name].phase is Phase.PRE_RACE and t.profile.register_for_race]
        if not wanted:
            return {}
        try:
            events = await self.api.list_upcoming_races()
            registrations = await self.api.get_my_registrations()
        except RemoteAPIError as e:
            log.warning(f"[RACE] Cannot read events/registrations, skipping registration: {e}")
            return {}
        except Exception as e:
            log.error(f"[RACE] Unexpected event listing error, skipping registration: {e}",
                      exc_info=True)
            return {}

        contexts = {}
        for team in wanted:
            event = pick_event(events, phases[team.name], now, team.profile.event_filter)
            if event is None:
                log.warning(f"[RACE] {team.name}: no event found for "
                            f"{phases[team.name].next_race_hour:02d}:00 UTC")
                continue
            registered = frozenset(r.bot_id for r in registrations if r.event_id == event.event_id)
            log.info(f"[RACE] {team.name}: event #{event.event_id} {event.name} "
                     f"at {event.start_time:%H:%M} UTC ({len(registered)} already registered)")
            contexts[team.name] = RaceContext(event.event_id, registered)
        return contexts

    # ── Pre-emption ───────────────────────────────────────────

    def preempt(self, ordered: list, phases: dict, snapshots: dict,
                arbiter: ResourceArbiter) -> list:
        """
        Frees RepairBay slots for the team racing soonest when it is in
        PRE_RACE and its profile allows it. Returns STOP actions for the
        evicted bots of the other teams.
        """
        team = race_priority_team(ordered, phases)
        if team is None or phases[team.name].final_window:
            return []
        floor = team.profile.pre_race_condition_floor
        demand = [b for b in snapshots[team.name] if b.condition < floor and b.zone != REPAIR]
        if not demand:
            return []
        others = [b for t in ordered if t.name != team.name for b in snapshots[t.name]]
        victims = arbiter.preempt(REPAIR, len(demand), occupants(others, REPAIR))
        return [Action(v.bot_id, ActionKind.STOP, f"pre-empted by {team.name}") for v in victims]


def pick_event(events: list, phase: PhaseInfo, now: datetime, event_filter: str = ""):
    """Earliest event starting at the team's next race hour within 24 h."""
    if phase.next_race_hour is None:
        return None
    horizon = now + timedelta(hours=24)
    candidates = [e for e in events
                  if e.start_time.astimezone(timezone.utc).hour == phase.next_race_hour
                  and now <= e.start_time <= horizon
                  and e.matches(event_filter)]
    return min(candidates, key=lambda e: e.start_time, default=None)


async def adopt_owned_bots(api, fleet: FleetConfig, profile: str = "scavenge") -> FleetConfig:
    """
    Adds every owned bot that no team lists (and that is not excluded) to
    an unscheduled team running ``profile``.
    """
    owned = await api.list_my_bots()
    known = set(fleet.all_bots) | set(fleet.excluded)
    extra = [b for b in owned if b not in known]
    if not extra:
        return fleet
    log.info(f"[CYCLE] Adopting {len(extra)} unassigned bot(s) into '{profile}'")
    team = Team(name="Unassigned", bots=extra, race_hours=[],
                profile=get_profile(profile), order=len(fleet.teams))
    return FleetConfig(teams=fleet.teams + [team], capacity=fleet.capacity,
                       excluded=fleet.excluded)
