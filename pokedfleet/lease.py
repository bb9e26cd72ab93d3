"""
File lease that keeps two fleet cycles from overlapping.

Facility slot counters are process-local, so two concurrent cycles could
each admit a bot into the last RepairBay slot. The lease is a file created
atomically; a lease older than ``ttl`` belongs to a crashed run and is
broken.
"""

import json
import logging
import os
import time

log = logging.getLogger("PokedFleet.lease")


class LeaseHeld(RuntimeError):
    pass


class FleetLease:

    def __init__(self, path: str, ttl: float = 1800.0):
        self.path = path
        self.ttl  = ttl
        self._held = False

    def acquire(self):
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if not self._break_if_stale():
                    raise LeaseHeld(f"lease {self.path} held by another cycle ({self._owner()})")
                continue
            with os.fdopen(fd, "w") as fh:
                json.dump({"pid": os.getpid(), "acquired": time.time()}, fh)
            self._held = True
            log.debug(f"[LEASE] acquired {self.path}")
            return
        raise LeaseHeld(f"lease {self.path} re-acquired by another cycle")

    def release(self):
        if not self._held:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            log.warning(f"[LEASE] {self.path} vanished before release")
        self._held = False
        log.debug(f"[LEASE] released {self.path}")

    def _break_if_stale(self) -> bool:
        try:
            age = time.time() - os.path.getmtime(self.path)
        except FileNotFoundError:
            return True
        if age < self.ttl:
            return False
        log.warning(f"[LEASE] breaking stale lease {self.path} ({age:.0f}s old, {self._owner()})")
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        return True

    def _owner(self) -> str:
        try:
            with open(self.path, encoding="utf-8") as fh:
                return f"pid {json.load(fh).get('pid', '?')}"
        except (OSError, ValueError):
            return "unknown owner"

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *exc):
        self.release()
        return False
