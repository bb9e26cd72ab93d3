"""
Capacity arbitration for shared facility zones.

Counters start from the occupancy observed at the beginning of the cycle
and only live for one planning pass. Nothing is locked on the server side:
two overlapping cycles can double-book a zone (see pokedfleet.lease).
"""

import logging
from typing import Optional

from pokedfleet.models import Zone

log = logging.getLogger("PokedFleet.arbiter")


class ResourceArbiter:

    def __init__(self, capacity: dict):
        self.capacity: dict = dict(capacity)   # zone → cap (zones absent = unlimited)
        self._used:    dict = {z: 0 for z in self.capacity}

    @classmethod
    def from_snapshots(cls, capacity: dict, snapshots: list) -> "ResourceArbiter":
        arb = cls(capacity)
        for bot in snapshots:
            if bot.zone in arb._used:
                arb._used[bot.zone] += 1
        for zone, used in arb._used.items():
            log.info(f"[ARB] {zone}: {used}/{arb.capacity[zone]} occupied")
        return arb

    def used(self, zone: str) -> int:
        return self._used.get(zone, 0)

    def available(self, zone: str) -> Optional[int]:
        """Free slots, or None when the zone has no cap."""
        if zone not in self.capacity:
            return None
        return max(0, self.capacity[zone] - self._used[zone])

    def has_slot(self, zone: str) -> bool:
        free = self.available(zone)
        return free is None or free > 0

    def try_reserve(self, zone: str) -> bool:
        if zone not in self.capacity:
            return True
        if self._used[zone] >= self.capacity[zone]:
            return False
        self._used[zone] += 1
        return True

    def release(self, zone: str):
        if zone in self._used and self._used[zone] > 0:
            self._used[zone] -= 1

    def preempt(self, zone: str, needed: int, occupants: list) -> list:
        """
        Frees slots for a priority team by evicting occupants of other teams.

        ``needed`` is how many slots the priority team wants; ``occupants``
        are the other teams' bots currently in ``zone``. Evicts exactly
        ``needed - free`` of them (never more than are available), those
        with the highest condition first, and releases their slots.
        """
        free = self.available(zone)
        if free is None or needed <= free:
            return []
        shortfall = needed - free
        victims = sorted(occupants, key=lambda b: (-b.condition, b.bot_id))[:shortfall]
        for bot in victims:
            self.release(zone)
        if victims:
            log.warning(
                f"[ARB] Pre-empting {len(victims)} {zone} slot(s): "
                f"{', '.join(f'#{b.bot_id}' for b in victims)}"
            )
        return victims


def occupants(snapshots: list, zone: str = Zone.REPAIR.value) -> list:
    return [b for b in snapshots if b.zone == zone]
