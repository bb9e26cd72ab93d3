"""
Tool-result parsers: raw garage responses → models.

The garage answers most tools with a JSON document in the first text
block, but some tools (and older deployments) answer with human-readable
text. Each parser prefers the JSON shape and falls back to the text
adapter only when the payload does not decode.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from pokedfleet.models import BotState, RaceEvent, Registration

log = logging.getLogger("PokedFleet.parser")


# ═══════════════════════════════════════════════════════════════
#  BOT STATUS
# ═══════════════════════════════════════════════════════════════

class JsonStatusAdapter:

    @staticmethod
    def parse(bot_id: int, data: dict) -> Optional[BotState]:
        cond = data.get("condition")
        if not isinstance(cond, dict) or ("battery" not in cond and "condition" not in cond):
            return None

        zone = None
        scav = data.get("active_scavenging")
        if isinstance(scav, dict):
            status = scav.get("status")
            if isinstance(status, str) and "Active" in status:
                zone = scav.get("zone") or None

        buff = cond.get("world_buff")
        return BotState(
            bot_id     = bot_id,
            battery    = _pct(cond.get("battery")),
            condition  = _pct(cond.get("condition")),
            zone       = zone,
            name       = data.get("name") or f"Bot #{bot_id}",
            world_buff = isinstance(buff, dict) and buff.get("active") is True,
        )


class TextStatusAdapter:
    """Regex fallback for free-text status replies."""

    BATTERY   = re.compile(r"Battery:\s*(\d+)%")
    CONDITION = re.compile(r"Condition:\s*(\d+)%")
    ZONE      = re.compile(r"(?:Zone:|Scavenging in)\s*([A-Za-z]+)")
    NAME      = re.compile(r'PokedBot #\d+\s+"([^"]+)"')

    @classmethod
    def parse(cls, bot_id: int, text: str) -> Optional[BotState]:
        bat  = cls.BATTERY.search(text)
        cond = cls.CONDITION.search(text)
        if not bat and not cond:
            return None
        zone = cls.ZONE.search(text)
        zone_name = zone.group(1) if zone else None
        if zone_name in ("None", "Idle"):
            zone_name = None
        name = cls.NAME.search(text)
        return BotState(
            bot_id    = bot_id,
            battery   = _pct(bat.group(1) if bat else 0),
            condition = _pct(cond.group(1) if cond else 0),
            zone      = zone_name,
            name      = name.group(1) if name else f"Bot #{bot_id}",
        )


class StatusParser:
    """
    Converts a ``garage_get_robot_details`` result into a BotState.
    Returns None when the payload carries no usable vitals.
    """

    def __init__(self, allow_text: bool = True):
        self.allow_text = allow_text

    def parse(self, bot_id: int, result) -> Optional[BotState]:
        if isinstance(result.data, dict):
            state = JsonStatusAdapter.parse(bot_id, result.data)
        elif self.allow_text and result.text:
            log.debug(f"[STATUS] #{bot_id}: non-JSON reply, using text adapter")
            state = TextStatusAdapter.parse(bot_id, result.text)
        else:
            state = None
        if state is None:
            log.warning(f"[STATUS] #{bot_id}: no usable data in reply: {result.text[:120]!r}")
        return state


def _pct(value) -> int:
    try:
        return max(0, min(100, int(float(value))))
    except (TypeError, ValueError):
        return 0


def _int(value) -> Optional[int]:
    """Integer id, or None for missing and non-numeric values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ═══════════════════════════════════════════════════════════════
#  EVENTS / REGISTRATIONS / BOT LIST
# ═══════════════════════════════════════════════════════════════

EVENT_HEADER = re.compile(r"\*\*Event #(\d+)\*\*:\s*([^\n]+)")
EVENT_START  = re.compile(r"Start:\s*(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z)")
REG_ENTRY    = re.compile(r"\*\*Event #(\d+)\*\*:[^\n]*\n[^\n]*Bot: #(\d+)")
BOT_ENTRY    = re.compile(r"PokedBot #(\d+)")


def parse_time(value) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def parse_events(result) -> list:
    events = []
    data = result.data
    if isinstance(data, dict):
        data = data.get("events") or data.get("data") or []
    if isinstance(data, list):
        for e in data:
            if not isinstance(e, dict):
                continue
            start    = parse_time(e.get("start_time_utc") or e.get("start_time"))
            event_id = _int(e.get("event_id"))
            if start is None or event_id is None:
                log.debug(f"[EVENTS] skipping malformed event: {str(e)[:120]}")
                continue
            events.append(RaceEvent(
                event_id   = event_id,
                name       = str(e.get("name") or e.get("event_name") or ""),
                start_time = start,
                event_type = str(e.get("event_type") or ""),
            ))
        return events

    for block in result.text.split("---"):
        header = EVENT_HEADER.search(block)
        start  = EVENT_START.search(block)
        start_time = parse_time(start.group(1)) if start else None
        if not header or start_time is None:
            continue
        events.append(RaceEvent(
            event_id   = int(header.group(1)),
            name       = header.group(2).strip(),
            start_time = start_time,
        ))
    return events


def parse_registrations(result) -> list:
    data = result.data
    if isinstance(data, dict):
        data = data.get("registrations") or []
    if isinstance(data, list):
        regs = []
        for r in data:
            if not isinstance(r, dict):
                continue
            event_id = _int(r.get("event_id"))
            bot_id   = _int(r.get("token_index", r.get("bot_id")))
            if event_id is None or bot_id is None:
                log.debug(f"[REGS] skipping malformed registration: {str(r)[:120]}")
                continue
            regs.append(Registration(event_id=event_id, bot_id=bot_id))
        return regs
    return [Registration(event_id=int(e), bot_id=int(b))
            for e, b in REG_ENTRY.findall(result.text)]


def parse_bot_list(result) -> list:
    data = result.data
    if isinstance(data, dict):
        data = data.get("bots") or []
    if isinstance(data, list):
        bots = []
        for b in data:
            bot_id = _int(b.get("token_index")) if isinstance(b, dict) else None
            if bot_id is None:
                log.debug(f"[BOTS] skipping malformed bot entry: {str(b)[:120]}")
                continue
            bots.append(bot_id)
        return bots
    seen = []
    for m in BOT_ENTRY.findall(result.text):
        if int(m) not in seen:
            seen.append(int(m))
    return seen
