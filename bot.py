#!/usr/bin/env python3
"""
╔══════════════════════════════════════════════════════════════════╗
║          POKEDFLEET · GARAGE AUTOMATION  v1.0                    ║
║          Maintenance, scavenging & race prep for PokedBots       ║
║                                                                  ║
║  One cycle:                                                      ║
║    1. FETCH    → read every bot's battery / condition / zone     ║
║    2. PHASE    → post-race, normal, drain or pre-race per team   ║
║    3. ARBITER  → RepairBay / ChargingStation slots, pre-emption  ║
║    4. PLAN     → one action per bot from the team's profile      ║
║    5. EXECUTE  → parallel calls, sequential retries, report      ║
╚══════════════════════════════════════════════════════════════════╝

Run once per scheduler tick:   python bot.py --config fleet.json
Run continuously:              python bot.py --loop
"""

import argparse
import asyncio
import logging
import os
import sys
from contextlib import nullcontext
from typing import Optional

import aiohttp

from pokedfleet import __version__
from pokedfleet.client import GarageAPI, MCPClient, RemoteAPIUnavailable
from pokedfleet.config import (
    API_KEY, CALL_TIMEOUT, FETCH_CONCURRENCY, FLEET_CONFIG, LEASE_PATH,
    LEASE_TTL, LOG_LEVEL, LOOP_INTERVAL, MAX_RETRY_ROUNDS, RETRY_DELAY,
    SERVER_URL, SETTLE_DELAY, FleetConfigError, load_fleet,
)
from pokedfleet.executor import ActionExecutor
from pokedfleet.lease import FleetLease, LeaseHeld
from pokedfleet.runner import CycleRunner, adopt_owned_bots

log = logging.getLogger("PokedFleet")

EXIT_OK          = 0
EXIT_UNAVAILABLE = 1
EXIT_CONFIG      = 2
EXIT_LEASE_HELD  = 3


# ═══════════════════════════════════════════════════════════════
#  LOGGING
# ═══════════════════════════════════════════════════════════════

def setup_logging(level: str = LOG_LEVEL):
    os.makedirs("logs", exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s  [%(levelname)-8s]  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("logs/fleet.log"),
        ],
    )


# ═══════════════════════════════════════════════════════════════
#  FLEET BOT
# ═══════════════════════════════════════════════════════════════

class FleetBot:

    def __init__(self, args: argparse.Namespace):
        self.args     = args
        self.fleet    = load_fleet(args.config)
        self.session: Optional[aiohttp.ClientSession] = None
        self.api:     Optional[GarageAPI] = None
        self.err_streak: int = 0
        self.stat_cycles = 0
        self.stat_cost   = 0.0

    # ── Startup ───────────────────────────────────────────────

    async def start(self) -> int:
        log.info("=" * 60)
        log.info(f"  🤖  POKEDFLEET v{__version__}  |  Teams: "
                 f"{', '.join(t.name for t in self.fleet.teams)}")
        log.info(f"  🌐  MCP: {SERVER_URL}")
        log.info(f"  🔢  Bots: {len(self.fleet.all_bots)}  |  Capacity: {self.fleet.capacity}")
        log.info("=" * 60)

        connector    = aiohttp.TCPConnector(limit=FETCH_CONCURRENCY + 2, enable_cleanup_closed=True)
        self.session = aiohttp.ClientSession(connector=connector)
        try:
            client = MCPClient(SERVER_URL, API_KEY, self.session, timeout=CALL_TIMEOUT)
            await client.connect()
            self.api = GarageAPI(client)

            if self.args.all_owned:
                self.fleet = await adopt_owned_bots(self.api, self.fleet)

            if self.args.loop:
                await self._run()
            else:
                await self._cycle()
            return EXIT_OK
        finally:
            log.info("[BOT] Cleaning up...")
            if not self.session.closed:
                await self.session.close()
            if self.stat_cycles > 1:
                self._print_summary()

    # ── Cycles ────────────────────────────────────────────────

    def _lease(self):
        if not LEASE_PATH:
            return nullcontext()
        return FleetLease(LEASE_PATH, ttl=LEASE_TTL)

    async def _cycle(self):
        executor = ActionExecutor(
            self.api,
            settle_delay = SETTLE_DELAY,
            retry_rounds = MAX_RETRY_ROUNDS,
            retry_delay  = RETRY_DELAY,
            concurrency  = FETCH_CONCURRENCY,
        )
        runner = CycleRunner(self.api, self.fleet, executor, concurrency=FETCH_CONCURRENCY)
        with self._lease():
            report = await runner.run(dry_run=self.args.dry_run)
        self.stat_cycles += 1
        self.stat_cost   += report.cost
        return report

    async def _run(self):
        while True:
            try:
                await self._cycle()
                self.err_streak = 0
                wait = LOOP_INTERVAL
            except (KeyboardInterrupt, asyncio.CancelledError):
                raise
            except LeaseHeld as e:
                log.warning(f"[LEASE] {e}, skipping this cycle")
                wait = LOOP_INTERVAL
            except Exception as e:
                self.err_streak += 1
                log.error(f"[LOOP] Error #{self.err_streak}: {e}", exc_info=True)
                wait = min(300, self.err_streak * 30)
            log.info(f"[LOOP] 💤 Next cycle in {wait:.0f}s")
            await asyncio.sleep(wait)

    def _print_summary(self):
        log.info("=" * 60)
        log.info("  📊  SESSION SUMMARY")
        log.info(f"  Cycles run     : {self.stat_cycles}")
        log.info(f"  Paid cost      : {self.stat_cost:.2f} ICP (+ fees)")
        log.info("=" * 60)


# ═══════════════════════════════════════════════════════════════
#  ENTRY POINT
# ═══════════════════════════════════════════════════════════════

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PokedBots fleet maintenance and race prep")
    parser.add_argument("--config", default=FLEET_CONFIG,
                        help=f"fleet file (default: {FLEET_CONFIG})")
    parser.add_argument("--dry-run", action="store_true",
                        help="fetch and plan, execute nothing")
    parser.add_argument("--loop", action="store_true",
                        help=f"repeat every {LOOP_INTERVAL:.0f}s until interrupted")
    parser.add_argument("--all-owned", action="store_true",
                        help="also manage owned bots that no team lists (scavenge profile)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()

    if not API_KEY:
        log.warning("⚠  API key not set! Use: export MCP_API_KEY=your_key")

    try:
        return asyncio.run(FleetBot(args).start())
    except KeyboardInterrupt:
        log.info("[BOT] 👋 Stopped. Goodbye!")
        return EXIT_OK
    except FleetConfigError as e:
        log.critical(f"[BOT] Fleet config error: {e}")
        return EXIT_CONFIG
    except LeaseHeld as e:
        log.warning(f"[LEASE] {e}, nothing executed")
        return EXIT_LEASE_HELD
    except RemoteAPIUnavailable as e:
        log.critical(f"[BOT] Cannot reach garage: {e}", exc_info=True)
        return EXIT_UNAVAILABLE
    except Exception as e:
        log.critical(f"[BOT] Crashed: {e}", exc_info=True)
        return EXIT_UNAVAILABLE


if __name__ == "__main__":
    sys.exit(main())
