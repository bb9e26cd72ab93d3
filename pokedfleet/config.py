"""
Runtime settings, policy profiles and the fleet file loader.

Settings come from environment variables (edit here or export them).
Policy thresholds live in ``PolicyProfile`` presets; a team picks one by
name in the fleet file and may override individual fields.
"""

import json
import os
from dataclasses import dataclass, fields, replace
from typing import Optional

from pokedfleet.models import Team, Zone

# ═══════════════════════════════════════════════════════════════
#  CONFIGURATION  (edit here or use environment variables)
# ═══════════════════════════════════════════════════════════════

SERVER_URL       = os.getenv("MCP_SERVER_URL",  "https://p6nop-vyaaa-aaaai-q4djq-cai.icp0.io/mcp")
API_KEY          = os.getenv("MCP_API_KEY",     "")
LOG_LEVEL        = os.getenv("LOG_LEVEL",       "INFO")
FLEET_CONFIG     = os.getenv("FLEET_CONFIG",    "fleet.json")
CALL_TIMEOUT     = float(os.getenv("CALL_TIMEOUT",     "20"))    # seconds per RPC call
SETTLE_DELAY     = float(os.getenv("SETTLE_DELAY",     "0.3"))   # stop → start pacing
RETRY_DELAY      = float(os.getenv("RETRY_DELAY",      "0.5"))   # pause before a retry round
MAX_RETRY_ROUNDS = min(5, int(os.getenv("MAX_RETRY_ROUNDS", "3")))
FETCH_CONCURRENCY = int(os.getenv("FETCH_CONCURRENCY", "8"))
LOOP_INTERVAL    = float(os.getenv("LOOP_INTERVAL",    "900"))   # 15 min between cycles
LEASE_PATH       = os.getenv("FLEET_LEASE_PATH", "")
LEASE_TTL        = float(os.getenv("LEASE_TTL",        "1800"))

DEFAULT_CAPACITY = {Zone.REPAIR.value: 4}


class FleetConfigError(ValueError):
    pass


# ═══════════════════════════════════════════════════════════════
#  POLICY PROFILES
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PolicyProfile:
    name: str = "custom"

    # Maintenance hysteresis (NORMAL / POST_RACE)
    repair_floor:  int = 70    # condition below → RepairBay
    repair_target: int = 95    # condition at/above → leave RepairBay
    charge_floor:  int = 80    # battery below → ChargingStation
    charge_target: int = 95    # battery at/above → leave ChargingStation
    charge_hold:   bool = True # stay charging until charge_target (else leave at charge_floor)
    scavenge_zone: str = "ScrapHeaps"

    # DRAIN
    drain_min_battery:   int = 5
    drain_min_condition: int = 10
    drain_start_minutes: Optional[int] = None  # minutes-to-race upper bound (None = disabled)
    drain_end_minutes:   int = 0               # minutes-to-race lower bound

    # Phase windows (minutes)
    post_race_minutes: int = 60
    pre_race_minutes:  int = 60
    final_window_minutes: int = 15

    # PRE_RACE
    pre_race_condition_floor: int = 70
    pre_race_charge: bool = False   # charge to 100 at the station before the final window
    paid_final_window: bool = True
    register_for_race: bool = True
    preemption: bool = False
    event_filter: str = ""

    # Planning order: "battery" or "condition" (ascending), world-buff bots first
    order_by: str = "battery"

    # Paid action costs (game currency)
    recharge_cost: float = 0.1
    repair_cost:   float = 0.05

    def override(self, **changes) -> "PolicyProfile":
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise FleetConfigError(f"unknown profile fields: {', '.join(sorted(unknown))}")
        return replace(self, **changes)


PROFILES = {
    "team-daily": PolicyProfile(
        name="team-daily",
        pre_race_charge=True,
        preemption=True,
        event_filter="DailySprint",
    ),
    "race-drain": PolicyProfile(
        name="race-drain",
        drain_start_minutes=24 * 60,
        drain_end_minutes=180,
        pre_race_minutes=180,
        post_race_minutes=0,
        paid_final_window=False,
        register_for_race=False,
        order_by="condition",
    ),
    "scavenge": PolicyProfile(
        name="scavenge",
        paid_final_window=False,
        register_for_race=False,
    ),
    "special-prep": PolicyProfile(
        name="special-prep",
        repair_floor=75,
        charge_floor=50,
        charge_hold=False,
        post_race_minutes=0,
        pre_race_minutes=30,
        pre_race_charge=True,
    ),
}


def get_profile(name: str, overrides: Optional[dict] = None) -> PolicyProfile:
    try:
        profile = PROFILES[name]
    except KeyError:
        raise FleetConfigError(f"unknown policy profile '{name}' (known: {', '.join(PROFILES)})")
    return profile.override(**overrides) if overrides else profile


# ═══════════════════════════════════════════════════════════════
#  FLEET FILE
# ═══════════════════════════════════════════════════════════════

@dataclass
class FleetConfig:
    teams:    list
    capacity: dict
    excluded: frozenset = frozenset()

    @property
    def all_bots(self) -> list:
        return [b for t in self.teams for b in t.bots]


def parse_fleet(raw: dict) -> FleetConfig:
    if not isinstance(raw, dict):
        raise FleetConfigError("fleet config must be a JSON object")

    capacity = dict(DEFAULT_CAPACITY)
    for zone, cap in (raw.get("capacity") or {}).items():
        if not isinstance(cap, int) or cap < 0:
            raise FleetConfigError(f"capacity for {zone} must be a non-negative integer")
        capacity[zone] = cap

    excluded = frozenset(_bot_ids(raw.get("excluded_bots") or [], "excluded_bots"))

    teams = []
    seen = {}
    for idx, entry in enumerate(raw.get("teams") or []):
        name = entry.get("name") or f"Team {idx + 1}"
        hours = entry.get("race_hours") or []
        for h in hours:
            if not isinstance(h, int) or not 0 <= h < 24:
                raise FleetConfigError(f"{name}: race hour {h!r} outside 0-23")
        profile = get_profile(entry.get("profile", "team-daily"), entry.get("overrides"))

        bots = []
        for bot_id in _bot_ids(entry.get("bots") or [], name):
            if bot_id in seen:
                raise FleetConfigError(f"bot #{bot_id} listed in both {seen[bot_id]} and {name}")
            seen[bot_id] = name
            if bot_id not in excluded:
                bots.append(bot_id)

        teams.append(Team(name=name, bots=bots, race_hours=sorted(hours),
                          profile=profile, order=idx))

    if not teams:
        raise FleetConfigError("fleet config declares no teams")
    return FleetConfig(teams=teams, capacity=capacity, excluded=excluded)


def load_fleet(path: str = FLEET_CONFIG) -> FleetConfig:
    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except FileNotFoundError:
        raise FleetConfigError(f"fleet config not found: {path}")
    except json.JSONDecodeError as e:
        raise FleetConfigError(f"fleet config {path} is not valid JSON: {e}")
    return parse_fleet(raw)


def _bot_ids(values: list, where: str) -> list:
    ids = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, int):
            raise FleetConfigError(f"{where}: bot id {v!r} is not an integer")
        ids.append(v)
    return ids
