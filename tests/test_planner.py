"""
Unit tests for the action planner and the per-team planning pass.
"""

import pytest

from pokedfleet.arbiter import ResourceArbiter
from pokedfleet.config import PROFILES
from pokedfleet.models import ActionKind, BotState, Phase
from pokedfleet.phase import PhaseInfo
from pokedfleet.planner import ActionPlanner, RaceContext, plan_team, planning_order

NORMAL = PhaseInfo(Phase.NORMAL)
POST   = PhaseInfo(Phase.POST_RACE, 660, 10, 0)
DRAIN  = PhaseInfo(Phase.DRAIN, 600, 240, 0)
PRE    = PhaseInfo(Phase.PRE_RACE, 40, 680, 12)
FINAL  = PhaseInfo(Phase.PRE_RACE, 10, 710, 12, final_window=True)

RACE = RaceContext(event_id=77)


def arbiter(repair=4, charging=5):
    return ResourceArbiter({"RepairBay": repair, "ChargingStation": charging})


def full_arbiter():
    arb = arbiter()
    for _ in range(4):
        arb.try_reserve("RepairBay")
    return arb


@pytest.fixture
def planner():
    return ActionPlanner(PROFILES["team-daily"])


class TestRepairRouting:
    """Test routing bots to and from the RepairBay."""

    @pytest.mark.parametrize("zone", [None, "ScrapHeaps", "ChargingStation"])
    def test_low_condition_moves_to_repair(self, planner, zone):
        bot = BotState(1, battery=90, condition=60, zone=zone)
        action = planner.decide(bot, NORMAL, arbiter())
        assert action.kind is ActionKind.MOVE
        assert action.zone == "RepairBay"
        assert action.stop_first is (zone is not None)

    def test_repairing_bot_stays_until_target(self, planner):
        bot = BotState(1, battery=90, condition=80, zone="RepairBay")
        assert planner.decide(bot, NORMAL, arbiter()).kind is ActionKind.NONE

    def test_repaired_bot_with_full_battery_scavenges(self, planner):
        bot = BotState(1, battery=96, condition=95, zone="RepairBay")
        action = planner.decide(bot, NORMAL, arbiter())
        assert action.kind is ActionKind.MOVE
        assert action.zone == "ScrapHeaps"
        assert action.stop_first is True

    def test_repaired_bot_with_low_battery_charges(self, planner):
        bot = BotState(1, battery=50, condition=97, zone="RepairBay")
        action = planner.decide(bot, NORMAL, arbiter())
        assert action.kind is ActionKind.MOVE
        assert action.zone == "ChargingStation"

    def test_repaired_bot_charging_full_scavenges_above_floor(self, planner):
        bot = BotState(1, battery=85, condition=97, zone="RepairBay")
        action = planner.decide(bot, NORMAL, arbiter(charging=0))
        assert action.zone == "ScrapHeaps"

    def test_repaired_bot_charging_full_low_battery_stops(self, planner):
        bot = BotState(1, battery=50, condition=97, zone="RepairBay")
        assert planner.decide(bot, NORMAL, arbiter(charging=0)).kind is ActionKind.STOP

    def test_repair_full_idle_bot_waits(self, planner):
        bot = BotState(1, battery=100, condition=50)
        action = planner.decide(bot, NORMAL, full_arbiter())
        assert action.kind is ActionKind.NONE
        assert "waiting for RepairBay" in action.reason

    def test_repair_full_idle_bot_charges_meanwhile(self, planner):
        bot = BotState(1, battery=40, condition=50)
        action = planner.decide(bot, NORMAL, full_arbiter())
        assert action.zone == "ChargingStation"

    def test_repair_full_scavenger_keeps_scavenging(self, planner):
        bot = BotState(1, battery=60, condition=50, zone="ScrapHeaps")
        assert planner.decide(bot, NORMAL, full_arbiter()).kind is ActionKind.NONE

    def test_repair_full_critical_scavenger_stops(self, planner):
        bot = BotState(1, battery=60, condition=5, zone="ScrapHeaps")
        assert planner.decide(bot, NORMAL, full_arbiter()).kind is ActionKind.STOP


class TestChargingRouting:
    """Test charging hysteresis."""

    def test_charged_bot_leaves_station(self, planner):
        bot = BotState(1, battery=96, condition=95, zone="ChargingStation")
        action = planner.decide(bot, NORMAL, arbiter())
        assert action.kind is ActionKind.MOVE
        assert action.zone == "ScrapHeaps"
        assert action.stop_first is True

    def test_hold_keeps_bot_charging_above_floor(self, planner):
        bot = BotState(1, battery=85, condition=95, zone="ChargingStation")
        assert planner.decide(bot, NORMAL, arbiter()).kind is ActionKind.NONE

    def test_without_hold_leaves_at_floor(self):
        planner = ActionPlanner(PROFILES["special-prep"])
        bot = BotState(1, battery=60, condition=95, zone="ChargingStation")
        action = planner.decide(bot, NORMAL, arbiter())
        assert action.kind is ActionKind.MOVE
        assert action.zone == "ScrapHeaps"

    def test_low_battery_moves_to_charging(self, planner):
        bot = BotState(1, battery=70, condition=90, zone="ScrapHeaps")
        action = planner.decide(bot, NORMAL, arbiter())
        assert action.zone == "ChargingStation"
        assert action.stop_first is True

    def test_charging_full_scavenger_continues(self, planner):
        bot = BotState(1, battery=70, condition=90, zone="ScrapHeaps")
        assert planner.decide(bot, NORMAL, arbiter(charging=0)).kind is ActionKind.NONE

    def test_healthy_idle_bot_scavenges(self, planner):
        bot = BotState(1, battery=90, condition=90)
        action = planner.decide(bot, NORMAL, arbiter())
        assert action.zone == "ScrapHeaps"
        assert action.stop_first is False

    def test_healthy_scavenger_stays(self, planner):
        bot = BotState(1, battery=90, condition=90, zone="ScrapHeaps")
        assert planner.decide(bot, NORMAL, arbiter()).is_noop


class TestPostRace:
    """Test recovery thresholds after a race."""

    def test_repairs_below_target(self, planner):
        bot = BotState(1, battery=96, condition=80)
        assert planner.decide(bot, POST, arbiter()).zone == "RepairBay"
        assert planner.decide(bot, NORMAL, arbiter()).zone == "ScrapHeaps"

    def test_charges_below_target(self, planner):
        bot = BotState(1, battery=85, condition=96)
        assert planner.decide(bot, POST, arbiter()).zone == "ChargingStation"


class TestDrain:
    """Test the drain phase of the race-drain profile."""

    @pytest.fixture
    def drain(self):
        return ActionPlanner(PROFILES["race-drain"])

    def test_critical_battery_stops(self, drain):
        bot = BotState(1, battery=4, condition=50, zone="ScrapHeaps")
        assert drain.decide(bot, DRAIN, arbiter()).kind is ActionKind.STOP

    def test_critical_condition_stops(self, drain):
        bot = BotState(1, battery=50, condition=9, zone="ScrapHeaps")
        assert drain.decide(bot, DRAIN, arbiter()).kind is ActionKind.STOP

    def test_idle_bot_sent_to_scavenge(self, drain):
        bot = BotState(1, battery=50, condition=50, zone="ChargingStation")
        action = drain.decide(bot, DRAIN, arbiter())
        assert action.zone == "ScrapHeaps"

    def test_never_recharges(self, drain):
        bot = BotState(1, battery=20, condition=50, zone="ScrapHeaps")
        assert drain.decide(bot, DRAIN, arbiter()).kind is ActionKind.NONE


class TestPreRace:
    """Test preparation before the final window."""

    def test_low_condition_moves_to_repair(self, planner):
        bot = BotState(1, battery=100, condition=60, zone="ScrapHeaps")
        action = planner.decide(bot, PRE, arbiter())
        assert action.zone == "RepairBay"
        assert action.stop_first is True

    def test_low_condition_without_slot_stops(self, planner):
        bot = BotState(1, battery=100, condition=60, zone="ScrapHeaps")
        assert planner.decide(bot, PRE, full_arbiter()).kind is ActionKind.STOP

    def test_charges_to_full(self, planner):
        bot = BotState(1, battery=90, condition=80, zone="ScrapHeaps")
        assert planner.decide(bot, PRE, arbiter()).zone == "ChargingStation"

    def test_full_scavenger_stops_then_registers(self, planner):
        bot = BotState(1, battery=100, condition=80, zone="ScrapHeaps")
        action = planner.decide(bot, PRE, arbiter(), RACE)
        kinds = [s.kind for s in action.steps()]
        assert kinds == [ActionKind.STOP, ActionKind.REGISTER]
        assert action.steps()[1].event_id == 77

    def test_already_registered_just_idles(self, planner):
        bot = BotState(1, battery=100, condition=80)
        race = RaceContext(event_id=77, registered=frozenset({1}))
        assert planner.decide(bot, PRE, arbiter(), race).is_noop

    def test_no_charge_profile_idles_below_full(self):
        planner = ActionPlanner(PROFILES["team-daily"].override(pre_race_charge=False))
        bot = BotState(1, battery=90, condition=80)
        assert planner.decide(bot, PRE, arbiter(), RACE).is_noop


class TestFinalWindow:
    """Test the paid preparation chain right before the race."""

    def test_full_bot_only_registers(self, planner):
        bot = BotState(1, battery=100, condition=100)
        action = planner.decide(bot, FINAL, arbiter(), RACE)
        assert action.kind is ActionKind.REGISTER
        assert action.event_id == 77
        assert [s.kind for s in action.steps()] == [ActionKind.REGISTER]

    def test_full_chain_in_order(self, planner):
        bot = BotState(1, battery=80, condition=90, zone="ScrapHeaps")
        action = planner.decide(bot, FINAL, arbiter(), RACE)
        assert [s.kind for s in action.steps()] == [
            ActionKind.STOP, ActionKind.PAID_RECHARGE, ActionKind.PAID_REPAIR, ActionKind.REGISTER,
        ]

    def test_paid_steps_ignore_capacity(self, planner):
        bot = BotState(1, battery=80, condition=60)
        action = planner.decide(bot, FINAL, full_arbiter(), RACE)
        assert ActionKind.PAID_REPAIR in [s.kind for s in action.steps()]

    def test_paid_steps_carry_profile_costs(self):
        profile = PROFILES["team-daily"].override(recharge_cost=0.3, repair_cost=0.2)
        bot = BotState(1, battery=50, condition=50)
        action = ActionPlanner(profile).decide(bot, FINAL, arbiter(), RACE)
        assert [(s.kind, s.cost) for s in action.steps()] == [
            (ActionKind.PAID_RECHARGE, 0.3), (ActionKind.PAID_REPAIR, 0.2), (ActionKind.REGISTER, 0.0),
        ]

    def test_ready_and_registered_is_noop(self, planner):
        bot = BotState(1, battery=100, condition=100)
        race = RaceContext(event_id=77, registered=frozenset({1}))
        assert planner.decide(bot, FINAL, arbiter(), race).is_noop

    def test_no_event_skips_registration(self, planner):
        bot = BotState(1, battery=99, condition=100)
        action = planner.decide(bot, FINAL, arbiter(), None)
        assert [s.kind for s in action.steps()] == [ActionKind.PAID_RECHARGE]


class TestIdempotence:
    """Test that deciding never mutates the arbiter."""

    @pytest.mark.parametrize("phase", [NORMAL, POST, DRAIN, PRE, FINAL])
    def test_same_input_same_action(self, planner, phase):
        arb = arbiter()
        bot = BotState(1, battery=40, condition=50, zone="ScrapHeaps")
        first = planner.decide(bot, phase, arb, RACE)
        second = planner.decide(bot, phase, arb, RACE)
        assert first == second
        assert (arb.used("RepairBay"), arb.used("ChargingStation")) == (0, 0)


class TestPlanningPass:
    """Test slot reservation across a whole team."""

    def test_five_bots_four_slots(self, planner):
        bots = [BotState(i, battery=101 - i, condition=50) for i in range(1, 6)]
        arb = arbiter()
        actions = {a.bot_id: a for a in plan_team(planner, bots, NORMAL, arb)}

        admitted = [b for b, a in actions.items() if a.zone == "RepairBay"]
        assert sorted(admitted) == [2, 3, 4, 5]
        assert actions[1].kind is ActionKind.NONE
        assert arb.used("RepairBay") == 4

    def test_never_exceeds_cap(self, planner):
        bots = [BotState(i, battery=10, condition=20) for i in range(1, 12)]
        arb = arbiter(repair=4, charging=5)
        actions = plan_team(planner, bots, NORMAL, arb)
        assert sum(a.zone == "RepairBay" for a in actions) == 4
        assert sum(a.zone == "ChargingStation" for a in actions) == 5
        assert arb.used("RepairBay") == 4
        assert arb.used("ChargingStation") == 5

    def test_world_buff_first(self):
        bots = [BotState(1, battery=10, condition=50),
                BotState(2, battery=90, condition=50, world_buff=True),
                BotState(3, battery=50, condition=50)]
        assert [b.bot_id for b in planning_order(bots)] == [2, 1, 3]

    def test_order_by_condition(self):
        bots = [BotState(1, battery=10, condition=80), BotState(2, battery=90, condition=20)]
        assert [b.bot_id for b in planning_order(bots, "condition")] == [2, 1]

    def test_skip_excludes_bots(self, planner):
        bots = [BotState(1, battery=90, condition=90), BotState(2, battery=90, condition=90)]
        actions = plan_team(planner, bots, NORMAL, arbiter(), skip=frozenset({1}))
        assert [a.bot_id for a in actions] == [2]
