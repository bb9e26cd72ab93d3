"""
Shared fixtures: an in-memory garage that records every call.
"""

import pytest

from pokedfleet.client import ToolResult
from pokedfleet.executor import ActionExecutor

OK = ToolResult(is_error=False, text="ok")


class FakeGarage:
    """
    Stands in for GarageAPI.

    ``failures`` maps (operation, bot_id) to a list of outcomes consumed one
    per call: a string becomes an ``isError`` tool result with that text, an
    exception instance is raised. Once the list is empty the call succeeds.
    """

    def __init__(self, statuses=None, events=None, registrations=None, owned=None):
        self.statuses      = dict(statuses or {})
        self.events        = list(events or [])
        self.registrations = list(registrations or [])
        self.owned         = list(owned or [])
        self.failures      = {}
        self.calls         = []

    def fail(self, op: str, bot_id: int, *outcomes):
        self.failures.setdefault((op, bot_id), []).extend(outcomes)
        return self

    def ops(self, bot_id=None) -> list:
        return [c[0] for c in self.calls if bot_id is None or c[1] == bot_id]

    def _reply(self, op: str, bot_id: int, *extra) -> ToolResult:
        self.calls.append((op, bot_id) + extra)
        pending = self.failures.get((op, bot_id))
        if pending:
            outcome = pending.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return ToolResult(is_error=True, text=outcome)
        return OK

    async def get_status(self, bot_id):
        self.calls.append(("get_status", bot_id))
        state = self.statuses.get(bot_id)
        if isinstance(state, BaseException):
            raise state
        return state

    async def stop_activity(self, bot_id):
        return self._reply("stop", bot_id)

    async def start_activity(self, bot_id, zone):
        return self._reply("start", bot_id, zone)

    async def paid_recharge(self, bot_id):
        return self._reply("recharge", bot_id)

    async def paid_repair(self, bot_id):
        return self._reply("repair", bot_id)

    async def register_for_race(self, event_id, bot_id):
        return self._reply("register", bot_id, event_id)

    async def list_upcoming_races(self):
        if isinstance(self.events, BaseException):
            raise self.events
        return self.events

    async def get_my_registrations(self):
        return self.registrations

    async def list_my_bots(self):
        return self.owned


@pytest.fixture
def garage():
    return FakeGarage()


@pytest.fixture
def executor_for():
    """Build an executor with no pacing delays."""
    def build(api, retry_rounds=3, **kwargs):
        return ActionExecutor(api, settle_delay=0, retry_delay=0,
                              retry_rounds=retry_rounds, **kwargs)
    return build

