"""
Data models shared by every stage of a fleet cycle.

Everything here is a plain value: snapshots are re-read from the garage
each cycle and actions are recomputed each cycle, nothing is persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Zone(Enum):
    CHARGING = "ChargingStation"
    REPAIR   = "RepairBay"


class Phase(Enum):
    POST_RACE = "post_race"
    NORMAL    = "normal"
    DRAIN     = "drain"
    PRE_RACE  = "pre_race"


class ActionKind(Enum):
    NONE          = "none"
    MOVE          = "move"
    STOP          = "stop"
    PAID_RECHARGE = "paid_recharge"
    PAID_REPAIR   = "paid_repair"
    REGISTER      = "register"


@dataclass(frozen=True)
class BotState:
    """Point-in-time view of one bot as reported by the garage."""
    bot_id:      int
    battery:     int
    condition:   int
    zone:        Optional[str] = None   # None = idle
    name:        str  = ""
    world_buff:  bool = False

    @property
    def is_active(self) -> bool:
        return self.zone is not None

    @property
    def label(self) -> str:
        return f"#{self.bot_id} {self.name}".rstrip()


@dataclass(frozen=True)
class Action:
    """
    One planned transition for one bot.

    ``then`` holds follow-on steps that run only after this one succeeds
    (used by the final pre-race window: stop → recharge → repair → register).
    """
    bot_id:     int
    kind:       ActionKind
    reason:     str = ""
    zone:       Optional[str] = None
    event_id:   Optional[int] = None
    stop_first: bool = False
    then:       tuple = ()
    cost:       float = 0.0             # paid steps only, from the team profile

    @property
    def is_noop(self) -> bool:
        return self.kind is ActionKind.NONE and not self.then

    def steps(self) -> list:
        """Flatten into the ordered list of executable steps."""
        head = [] if self.kind is ActionKind.NONE else [self]
        for nxt in self.then:
            head.extend(nxt.steps())
        return head

    def describe(self) -> str:
        parts = []
        for step in self.steps():
            if step.kind is ActionKind.MOVE:
                parts.append(f"{'stop→' if step.stop_first else ''}{step.zone}")
            elif step.kind is ActionKind.REGISTER:
                parts.append(f"register(event #{step.event_id})")
            else:
                parts.append(step.kind.value)
        return " → ".join(parts) if parts else "none"


@dataclass
class Team:
    """A cohort of bots sharing one race schedule and one policy profile."""
    name:       str
    bots:       list
    race_hours: list = field(default_factory=list)   # UTC hours of day
    profile:    object = None                         # PolicyProfile
    order:      int = 0                               # declaration order, used as tie-break


@dataclass(frozen=True)
class RaceEvent:
    event_id:   int
    name:       str
    start_time: datetime
    event_type: str = ""

    def matches(self, text: str) -> bool:
        if not text:
            return True
        needle = text.lower().replace(" ", "")
        return (needle in self.name.lower().replace(" ", "")
                or needle in self.event_type.lower().replace(" ", ""))


@dataclass(frozen=True)
class Registration:
    event_id: int
    bot_id:   int
