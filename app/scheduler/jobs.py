"""PULSE: Scheduler Jobs.

APScheduler cron job that runs the analytics sync at the configured UTC hours,
then rebuilds the cached 30-day snapshots from the fresh data.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.config import settings
from app.database import engine
from app.services.cache_warmer import warm_caches
from app.sync.engine import run_sync
from app.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def scheduled_sync_job():
    """Run one sync pass over every company, then warm the caches."""
    logger.info("Scheduled analytics sync starting...")
    try:
        report = await run_sync(engine)
        perf = report.performance
        logger.info(
            f"Scheduled sync complete: {perf.success_count} ok, {perf.error_count} failed",
            extra={"duration_ms": perf.duration},
        )
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}")
        return

    if not settings.cache_warm_after_sync:
        return
    try:
        await warm_caches(engine)
    except Exception as e:
        logger.error(f"Post-sync cache warm failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    hours = ",".join(str(h) for h in settings.sync_hour_list)
    scheduler.add_job(
        scheduled_sync_job,
        "cron",
        hour=hours,
        minute=0,
        id="analytics_sync",
        replace_existing=True,
        misfire_grace_time=3600,
        max_instances=1,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Analytics sync at {hours}:00 UTC")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
