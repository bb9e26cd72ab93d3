"""
Per-cycle report: what was seen, what was done, what failed, what it cost.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pokedfleet.executor import Outcome, Status

log = logging.getLogger("PokedFleet.report")


@dataclass
class CycleReport:
    started_at:  datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    bots_total:  int = 0
    observed:    int = 0
    no_data:     list = field(default_factory=list)   # bot ids with no usable status
    phases:      dict = field(default_factory=dict)   # team name → phase label
    planned:     int = 0
    evicted:     list = field(default_factory=list)
    actions:     Counter = field(default_factory=Counter)  # ActionKind.value → successful steps
    succeeded:   list = field(default_factory=list)
    failed:      dict = field(default_factory=dict)   # bot id → last error
    rejected:    dict = field(default_factory=dict)   # bot id → rejection text
    cost:        float = 0.0
    dry_run:     bool = False

    def record(self, outcomes: list):
        for o in outcomes:
            self._record_one(o)

    def _record_one(self, o: Outcome):
        for kind in o.done:
            self.actions[kind.value] += 1
        self.cost += o.cost
        if o.status is Status.OK:
            self.succeeded.append(o.bot_id)
        elif o.status is Status.REJECTED:
            self.rejected[o.bot_id] = o.error
        else:
            self.failed[o.bot_id] = o.error

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "bots_total": self.bots_total,
            "observed":   self.observed,
            "no_data":    sorted(self.no_data),
            "phases":     dict(self.phases),
            "planned":    self.planned,
            "evicted":    sorted(self.evicted),
            "actions":    dict(self.actions),
            "succeeded":  len(self.succeeded),
            "failed":     {str(k): v for k, v in sorted(self.failed.items())},
            "rejected":   {str(k): v for k, v in sorted(self.rejected.items())},
            "cost":       round(self.cost, 4),
            "dry_run":    self.dry_run,
        }

    def log_summary(self):
        log.info("=" * 60)
        log.info("  📊  CYCLE SUMMARY" + ("  (dry run)" if self.dry_run else ""))
        for team, phase in self.phases.items():
            log.info(f"  {team:<14}: {phase}")
        log.info(f"  Bots observed  : {self.observed}/{self.bots_total}")
        if self.no_data:
            log.info(f"  No data        : {', '.join(f'#{b}' for b in sorted(self.no_data))}")
        log.info(f"  Actions planned: {self.planned}")
        if self.evicted:
            log.info(f"  Pre-empted     : {', '.join(f'#{b}' for b in sorted(self.evicted))}")
        if self.actions:
            done = ", ".join(f"{k}={v}" for k, v in sorted(self.actions.items()))
            log.info(f"  Steps done     : {done}")
        log.info(f"  Succeeded      : {len(self.succeeded)}")
        if self.rejected:
            log.info(f"  Rejected       : {', '.join(f'#{b}' for b in sorted(self.rejected))}")
        if self.failed:
            log.warning(f"  Failed         : {', '.join(f'#{b}' for b in sorted(self.failed))}")
        log.info(f"  Paid cost      : {self.cost:.2f} ICP (+ fees)")
        log.info("=" * 60)
