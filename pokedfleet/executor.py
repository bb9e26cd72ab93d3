"""
Action execution against the garage.

Every bot runs in isolation: an exception or a rejected tool call for one
bot is recorded on that bot's outcome and never reaches the others. Paid
steps that succeeded are final; a retry resumes at the step that failed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from pokedfleet.client import RemoteAPIError
from pokedfleet.models import Action, ActionKind

log = logging.getLogger("PokedFleet.executor")

# Error texts that mean the bot is already where we want it.
TOLERATED = {
    ActionKind.STOP:  ("no active mission",),
    ActionKind.MOVE:  ("already on a scavenging mission", "already on a mission"),
}

# Error texts that can never succeed on retry.
REJECTIONS = (
    "already registered",
    "already entered",
    "not eligible",
    "insufficient",
    "race is full",
    "event is full",
    "registration closed",
)


class Status(Enum):
    OK       = "ok"
    FAILED   = "failed"
    REJECTED = "rejected"


@dataclass
class Outcome:
    action:    Action
    status:    Status = Status.OK
    done:      list = field(default_factory=list)   # ActionKinds that succeeded
    cost:      float = 0.0
    error:     str = ""
    attempts:  int = 0
    next_step: int = 0                                # index of the next step to run

    @property
    def bot_id(self) -> int:
        return self.action.bot_id


class StepFailed(Exception):

    def __init__(self, message: str, rejected: bool = False):
        super().__init__(message)
        self.rejected = rejected


class ActionExecutor:

    def __init__(self, api, settle_delay: float = 0.3, retry_rounds: int = 3,
                 retry_delay: float = 0.5, concurrency: int = 8):
        self.api          = api
        self.settle_delay = settle_delay
        self.retry_rounds = max(0, min(5, retry_rounds))
        self.retry_delay  = retry_delay
        self.concurrency  = max(1, concurrency)

    # ── Batch ─────────────────────────────────────────────────

    async def run_batch(self, actions: list) -> list:
        """
        Executes all actions concurrently, then retries the failures one
        bot at a time for up to ``retry_rounds`` rounds.
        """
        outcomes = [Outcome(a) for a in actions if not a.is_noop]
        if not outcomes:
            return []

        log.info(f"[EXEC] ⚡ Executing {len(outcomes)} action(s) in parallel...")
        sem = asyncio.Semaphore(self.concurrency)

        async def guarded(o: Outcome):
            async with sem:
                await self.execute(o)

        await asyncio.gather(*(guarded(o) for o in outcomes))

        for round_no in range(1, self.retry_rounds + 1):
            failed = [o for o in outcomes if o.status is Status.FAILED]
            if not failed:
                break
            log.warning(f"[EXEC] ⚠ {len(failed)} failed, retry round {round_no}/{self.retry_rounds} (sequential)")
            await asyncio.sleep(self.retry_delay)
            for o in failed:
                await self.execute(o)

        for o in outcomes:
            if o.status is Status.FAILED:
                log.error(f"[EXEC] ❌ #{o.bot_id} {o.action.describe()} gave up after "
                          f"{o.attempts} attempt(s): {o.error}")
        return outcomes

    # ── Single bot ────────────────────────────────────────────

    async def execute(self, outcome: Outcome) -> Outcome:
        steps = outcome.action.steps()
        outcome.attempts += 1
        outcome.status = Status.OK
        outcome.error = ""
        try:
            while outcome.next_step < len(steps):
                step = steps[outcome.next_step]
                await self._run_step(step)
                outcome.done.append(step.kind)
                outcome.cost += step.cost
                outcome.next_step += 1
        except (KeyboardInterrupt, asyncio.CancelledError):
            raise
        except StepFailed as e:
            outcome.error = str(e)
            if e.rejected:
                outcome.status = Status.REJECTED
                log.info(f"[EXEC] ⛔ #{outcome.bot_id} rejected: {e}")
            else:
                outcome.status = Status.FAILED
                log.warning(f"[EXEC] ✗ #{outcome.bot_id}: {e}")
        except RemoteAPIError as e:
            outcome.error = str(e)
            outcome.status = Status.FAILED if e.retryable else Status.REJECTED
            log.warning(f"[EXEC] ✗ #{outcome.bot_id}: {e}")
        except Exception as e:
            outcome.error = f"{type(e).__name__}: {e}"
            outcome.status = Status.FAILED
            log.error(f"[EXEC] ✗ #{outcome.bot_id} unexpected error: {e}", exc_info=True)
        else:
            log.info(f"[EXEC] ✅ #{outcome.bot_id} → {outcome.action.describe()}")
        return outcome

    async def _run_step(self, step: Action):
        bot = step.bot_id
        kind = step.kind
        if kind is ActionKind.MOVE:
            if step.stop_first:
                self._check(ActionKind.STOP, await self.api.stop_activity(bot), bot)
                await asyncio.sleep(self.settle_delay)
            self._check(kind, await self.api.start_activity(bot, step.zone), bot)
        elif kind is ActionKind.STOP:
            self._check(kind, await self.api.stop_activity(bot), bot)
        elif kind is ActionKind.PAID_RECHARGE:
            self._check(kind, await self.api.paid_recharge(bot), bot)
        elif kind is ActionKind.PAID_REPAIR:
            self._check(kind, await self.api.paid_repair(bot), bot)
        elif kind is ActionKind.REGISTER:
            self._check(kind, await self.api.register_for_race(step.event_id, bot), bot)
        else:
            raise StepFailed(f"cannot execute {kind.value}")

    @staticmethod
    def _check(kind: ActionKind, result, bot: int):
        if not result.is_error:
            return
        text = result.text or "Unknown error"
        lowered = text.lower()
        if any(t in lowered for t in TOLERATED.get(kind, ())):
            log.debug(f"[EXEC] #{bot} {kind.value}: tolerated '{text[:80]}'")
            return
        if any(r in lowered for r in REJECTIONS):
            raise StepFailed(f"{kind.value}: {text[:200]}", rejected=True)
        raise StepFailed(f"{kind.value}: {text[:200]}")

