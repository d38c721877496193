"""APScheduler setup for the auction status sweep."""

from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from models.operations.auctions import AuctionEngine
from utils import log

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None

TICK_JOB_ID = "auction_status_sweep"


async def auction_tick_job(engine: AuctionEngine):
    """Apply due preview->live and live->ended/sold transitions."""
    try:
        await engine.tick(datetime.now(timezone.utc))
    except Exception as e:
        logger.error(f"Auction sweep failed: {e}", exc_info=True)


def init_scheduler(engine: AuctionEngine, interval_seconds: float = 1.0) -> AsyncIOScheduler:
    """Start the APScheduler with the auction sweep job."""
    global _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        auction_tick_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[engine],
        id=TICK_JOB_ID,
        name="Auction Status Sweep",
        replace_existing=True,
        max_instances=1,  # prevent overlap
        coalesce=True,
    )
    _scheduler.start()
    logger.info(f"APScheduler started: auction sweep every {interval_seconds}s")
    return _scheduler


def shutdown_scheduler():
    """Stop scheduling further sweeps.

    A sweep already running finishes its current auction commits; each one
    is a single store write, so nothing is left half applied.
    """
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")
