# scheduler/scheduler.py
import asyncio
import os
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv
from store.db import get_db
from store.stats import recompute_all_ratings
from scheduler.reporter import generate_rating_report

load_dotenv()
RECONCILE_INTERVAL_MINUTES = int(os.getenv("RECONCILE_INTERVAL_MINUTES", "60"))

logger = logging.getLogger("scheduler")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
logger.addHandler(handler)


async def scheduled_reconcile(db=None):
    """
    Recompute every book's rating and write a ratings report.

    Repairs ratings left stale by review writes that bypassed the API (for
    example manual database edits). Recompute is idempotent, so running this
    alongside live traffic is safe.

    Args:
        db: Database handle. Defaults to get_db().

    Returns:
        int: Number of books reconciled

    Logs:
        - Info message when reconciliation starts
        - Info message with the book count when it completes
    """
    db = db if db is not None else get_db()
    logger.info("Starting rating reconciliation")
    count = await recompute_all_ratings(db)
    logger.info(f"Rating reconciliation finished, {count} books recomputed")
    await generate_rating_report(db)
    return count


async def async_main():
    """
    Initialize and run the asynchronous scheduler for periodic reconciliation.

    Configuration:
        - Job: scheduled_reconcile
        - Trigger: interval-based (every RECONCILE_INTERVAL_MINUTES)
        - Job ID: "rating_reconcile"

    Note:
        Uses asyncio.Event().wait() to keep the event loop running indefinitely.
    """
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        scheduled_reconcile,
        "interval",
        minutes=RECONCILE_INTERVAL_MINUTES,
        id="rating_reconcile",
    )

    scheduler.start()
    logger.info(f"Scheduler started (every {RECONCILE_INTERVAL_MINUTES} min)")
    # Keep program running forever
    await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(async_main())
