"""Background scheduling for trust score recomputation and OTP cleanup.

Uses APScheduler's asyncio scheduler so jobs run on the app's event loop.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

WEEKLY_JOB_ID = "weekly_trustscore"
PURGE_JOB_ID = "otp_purge"


async def weekly_trustscore_job() -> dict[str, int]:
    """Recompute every account for the current ISO week."""
    from passport_engine.deps import get_db, get_trustscore_service

    logger.info("Running scheduled trust score recomputation")
    return await get_trustscore_service().run_weekly(get_db())


async def otp_purge_job() -> dict[str, int]:
    """Delete expired one-time codes and request windows."""
    from passport_engine.deps import get_db, get_otp_service

    async with get_db().get_session() as session:
        return await get_otp_service().purge_expired(session)


def create_scheduler() -> AsyncIOScheduler:
    """
    Build (but do not start) the scheduler.

    Schedules:
    - Trust score recomputation: Sundays 00:00 UTC
    - OTP cleanup: daily 03:00 UTC
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        weekly_trustscore_job,
        CronTrigger(day_of_week="sun", hour=0, minute=0, timezone="UTC"),
        id=WEEKLY_JOB_ID,
        name="Weekly Trust Score Recomputation",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    scheduler.add_job(
        otp_purge_job,
        CronTrigger(hour=3, minute=0, timezone="UTC"),
        id=PURGE_JOB_ID,
        name="OTP Cleanup",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def scheduler_status(scheduler: AsyncIOScheduler | None) -> dict:
    """Current scheduler state for monitoring."""
    if scheduler is None:
        return {"running": False, "jobs": []}
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": _iso(getattr(job, "next_run_time", None)),
            }
            for job in scheduler.get_jobs()
        ],
    }


def _iso(moment) -> str | None:
    return moment.isoformat() if moment else None
