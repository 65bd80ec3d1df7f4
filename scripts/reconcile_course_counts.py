#!/usr/bin/env python3
"""
Reconcile course student counts and refund cascades.

Usage:
  python scripts/reconcile_course_counts.py          # one pass
  python scripts/reconcile_course_counts.py --loop   # every RECONCILIATION_INTERVAL_MINUTES
  # Requires DATABASE_URL and SECRET_KEY in .env (or export)

Exits non-zero when a single pass raises the drift alert, so cron and
CI schedulers surface it.
"""
import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv

_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(_root, ".env"))

# Add project root to path
sys.path.insert(0, _root)

from app.config import Settings, get_settings
from app.core.logging import get_logger, setup_logging
from app.database import close_db, create_engine, create_session_factory
from app.schemas.reconciliation import ReconciliationReport
from app.services.reconciliation_service import ReconciliationService

logger = get_logger("reconcile_course_counts")


async def run_once(session_factory, settings: Settings) -> ReconciliationReport:
    async with session_factory() as db:
        return await ReconciliationService.run(db, settings)


async def run(loop: bool) -> int:
    settings = get_settings()
    setup_logging(settings)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    interval = settings.RECONCILIATION_INTERVAL_MINUTES * 60

    try:
        while True:
            try:
                report = await run_once(session_factory, settings)
            except Exception:
                if not loop:
                    raise
                # Keep the schedule; the next pass retries
                logger.exception("Reconciliation pass failed")
            else:
                if not loop:
                    return 1 if report.alert_raised else 0
            await asyncio.sleep(interval)
    finally:
        await close_db(engine)


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--loop",
        action="store_true",
        help="keep running, one pass every RECONCILIATION_INTERVAL_MINUTES",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.loop)))


if __name__ == "__main__":
    main()
