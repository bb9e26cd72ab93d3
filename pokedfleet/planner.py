"""
Action planning: pure policy, zero API calls.

``ActionPlanner.decide`` maps one bot snapshot to one Action given the
team's phase and the free facility slots. It only reads the arbiter, so
calling it twice on the same inputs gives the same answer; slots are
committed afterwards by ``plan_team``.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from pokedfleet.arbiter import ResourceArbiter
from pokedfleet.models import Action, ActionKind, BotState, Phase, Zone
from pokedfleet.phase import PhaseInfo

log = logging.getLogger("PokedFleet.planner")

REPAIR   = Zone.REPAIR.value
CHARGING = Zone.CHARGING.value
FULL     = 100

ZONE_ICONS = {REPAIR: "🔧", CHARGING: "🔌", None: "💤"}


@dataclass(frozen=True)
class RaceContext:
    """The event a team should enter this cycle and who is already in it."""
    event_id:   Optional[int] = None
    registered: frozenset = frozenset()


class ActionPlanner:
    """
    Decision table, per phase:

      POST_RACE  recovery: repair below repair_target, charge below
                 charge_target, then scavenge
      NORMAL     repair below repair_floor, charge below charge_floor,
                 leave facilities at their targets, otherwise scavenge
      DRAIN      scavenge until a hard floor, then idle (never recharge)
      PRE_RACE   repair below the pre-race floor, optionally charge to
                 100, otherwise idle and register at 100 % battery
      final      stop → paid recharge → paid repair → register
    """

    def __init__(self, profile):
        self.profile = profile

    def decide(self, bot: BotState, phase: PhaseInfo, arbiter: ResourceArbiter,
               race: Optional[RaceContext] = None) -> Action:
        if phase.phase is Phase.PRE_RACE:
            if phase.final_window:
                return self._final_window(bot, race)
            return self._pre_race(bot, arbiter, race)
        if phase.phase is Phase.DRAIN:
            return self._drain(bot)
        return self._maintain(bot, arbiter, recovery=phase.phase is Phase.POST_RACE)

    # ── NORMAL / POST_RACE ────────────────────────────────────

    def _maintain(self, bot: BotState, arbiter: ResourceArbiter, recovery: bool) -> Action:
        p = self.profile
        repair_below = p.repair_target if recovery else p.repair_floor
        charge_below = p.charge_target if recovery else p.charge_floor

        if bot.zone == REPAIR:
            if bot.condition < p.repair_target:
                return _stay(bot, f"repairing (Cond {bot.condition}%)")
            return self._after_repair(bot, arbiter)

        if bot.condition < repair_below:
            if arbiter.has_slot(REPAIR):
                return _move(bot, REPAIR, f"Cond {bot.condition}% < {repair_below}%")
            return self._wait_for_repair(bot, arbiter)

        if bot.zone == CHARGING:
            leave_at = p.charge_target if (p.charge_hold or recovery) else p.charge_floor
            if bot.battery < leave_at:
                return _stay(bot, f"charging (Bat {bot.battery}%)")
            return self._to_scavenge(bot, f"charged (Bat {bot.battery}% ≥ {leave_at}%)")

        if bot.battery < charge_below:
            if arbiter.has_slot(CHARGING):
                return _move(bot, CHARGING, f"Bat {bot.battery}% < {charge_below}%")
            if bot.is_active and not self._critical(bot):
                return _stay(bot, "waiting for ChargingStation")
            return _stop(bot, "waiting for ChargingStation")

        return self._to_scavenge(bot, "battery and condition OK")

    def _after_repair(self, bot: BotState, arbiter: ResourceArbiter) -> Action:
        p = self.profile
        if bot.battery >= p.charge_target:
            return self._to_scavenge(bot, f"repaired (Cond {bot.condition}%)")
        if arbiter.has_slot(CHARGING):
            return _move(bot, CHARGING, f"repaired, need charge (Bat {bot.battery}%)")
        if bot.battery >= p.charge_floor:
            return self._to_scavenge(bot, "repaired, ChargingStation full")
        return _stop(bot, "repaired, ChargingStation full")

    def _wait_for_repair(self, bot: BotState, arbiter: ResourceArbiter) -> Action:
        reason = f"waiting for RepairBay (Cond {bot.condition}%)"
        if bot.is_active:
            if self._critical(bot):
                return _stop(bot, f"critical, {reason}")
            return _stay(bot, reason)
        if bot.battery < self.profile.charge_target and arbiter.has_slot(CHARGING):
            return _move(bot, CHARGING, reason)
        return _stay(bot, reason)

    def _to_scavenge(self, bot: BotState, reason: str) -> Action:
        zone = self.profile.scavenge_zone
        if bot.zone == zone:
            return _stay(bot, f"scavenging (Bat {bot.battery}%)")
        return _move(bot, zone, reason)

    def _critical(self, bot: BotState) -> bool:
        return (bot.battery < self.profile.drain_min_battery
                or bot.condition < self.profile.drain_min_condition)

    # ── DRAIN ─────────────────────────────────────────────────

    def _drain(self, bot: BotState) -> Action:
        if self._critical(bot):
            return _stop(bot, f"critical (Bat {bot.battery}%, Cond {bot.condition}%)")
        if bot.zone == self.profile.scavenge_zone:
            return _stay(bot, f"draining (Bat {bot.battery}%)")
        return _move(bot, self.profile.scavenge_zone, "drain battery")

    # ── PRE_RACE ──────────────────────────────────────────────

    def _pre_race(self, bot: BotState, arbiter: ResourceArbiter,
                  race: Optional[RaceContext]) -> Action:
        p = self.profile
        if bot.condition < p.pre_race_condition_floor:
            if bot.zone == REPAIR:
                return _stay(bot, f"repairing for race (Cond {bot.condition}%)")
            if arbiter.has_slot(REPAIR):
                return _move(bot, REPAIR, f"pre-race Cond {bot.condition}% < {p.pre_race_condition_floor}%")
            return _stop(bot, f"waiting for RepairBay (Cond {bot.condition}%)")

        if p.pre_race_charge and bot.battery < FULL:
            if bot.zone == CHARGING:
                return _stay(bot, f"charging to 100% (Bat {bot.battery}%)")
            if arbiter.has_slot(CHARGING):
                return _move(bot, CHARGING, f"pre-race charge (Bat {bot.battery}%)")

        register = self._register_step(bot, race) if bot.battery >= FULL else None
        reason = f"ready (Cond {bot.condition}%)"
        if bot.is_active:
            return Action(bot.bot_id, ActionKind.STOP, reason,
                          then=(register,) if register else ())
        if register:
            return register
        return _stay(bot, reason)

    def _final_window(self, bot: BotState, race: Optional[RaceContext]) -> Action:
        steps = []
        if bot.is_active:
            steps.append(Action(bot.bot_id, ActionKind.STOP, "recall for race"))
        if bot.battery < FULL:
            steps.append(Action(bot.bot_id, ActionKind.PAID_RECHARGE, f"Bat {bot.battery}% → 100%",
                                cost=self.profile.recharge_cost))
        if bot.condition < FULL:
            steps.append(Action(bot.bot_id, ActionKind.PAID_REPAIR,
                                f"Cond {bot.condition}% → 100% (Perfect Tune)",
                                cost=self.profile.repair_cost))
        register = self._register_step(bot, race)
        if register:
            steps.append(register)
        if not steps:
            return _stay(bot, "ready to race")
        return replace(steps[0], then=tuple(steps[1:]))

    def _register_step(self, bot: BotState, race: Optional[RaceContext]) -> Optional[Action]:
        if not self.profile.register_for_race or race is None or race.event_id is None:
            return None
        if bot.bot_id in race.registered:
            return None
        return Action(bot.bot_id, ActionKind.REGISTER, f"enter event #{race.event_id}",
                      event_id=race.event_id)


# ═══════════════════════════════════════════════════════════════
#  PLANNING PASS
# ═══════════════════════════════════════════════════════════════

def planning_order(bots: list, order_by: str = "battery") -> list:
    """World-buff bots first, then lowest battery (or condition) first."""
    def key(b: BotState):
        level = b.condition if order_by == "condition" else b.battery
        return (not b.world_buff, level, b.bot_id)
    return sorted(bots, key=key)


def plan_team(planner: ActionPlanner, bots: list, phase: PhaseInfo,
              arbiter: ResourceArbiter, race: Optional[RaceContext] = None,
              skip: frozenset = frozenset()) -> list:
    """
    Plans every bot of one team in priority order, reserving a facility
    slot for each admitted move. Bots in ``skip`` get no plan.
    """
    actions = []
    for bot in planning_order(bots, planner.profile.order_by):
        if bot.bot_id in skip:
            continue
        action = planner.decide(bot, phase, arbiter, race)
        if action.kind is ActionKind.MOVE and not arbiter.try_reserve(action.zone):
            action = _stay(bot, f"{action.zone} full")
        actions.append(action)
        _log_plan(bot, action)
    return actions


def _log_plan(bot: BotState, action: Action):
    icon = ZONE_ICONS.get(bot.zone, "⛏️")
    buff = "🌟" if bot.world_buff else "  "
    arrow = "" if action.is_noop else f" → {action.describe()}"
    log.info(f"[PLAN] {buff}{icon} {bot.label}: Bat={bot.battery}%, Cond={bot.condition}% "
             f"({action.reason}){arrow}")


# ── Action constructors ───────────────────────────────────────

def _move(bot: BotState, zone: str, reason: str) -> Action:
    return Action(bot.bot_id, ActionKind.MOVE, reason, zone=zone, stop_first=bot.is_active)


def _stop(bot: BotState, reason: str) -> Action:
    if bot.is_active:
        return Action(bot.bot_id, ActionKind.STOP, reason)
    return _stay(bot, reason)


def _stay(bot: BotState, reason: str) -> Action:
    return Action(bot.bot_id, ActionKind.NONE, reason)
