"""Background jobs: revision-lock sweeping and scheduled workflow dispatch."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..core.config import settings
from ..dependencies import build_runner
from ..storage import store


logger = logging.getLogger(__name__)


# Global scheduler instance
scheduler = AsyncIOScheduler()


@scheduler.scheduled_job('interval', minutes=5, id='release_stale_revision_locks')
async def release_stale_revision_locks():
    """
    Release revision locks nobody will release any more.

    Covers direct-mode holders older than REVISION_LOCK_TTL_MINUTES and
    workflows that already reached a terminal state. Runs every 5 minutes.
    """
    try:
        count = await store.release_stale_locks(settings.REVISION_LOCK_TTL_MINUTES)
        if count > 0:
            logger.info(f"Released {count} stale revision locks")
        else:
            logger.debug("No stale revision locks")

    except Exception as e:
        logger.error(f"Error in release_stale_revision_locks job: {e}", exc_info=True)


@scheduler.scheduled_job('interval', minutes=1, id='dispatch_due_workflows')
async def dispatch_due_workflows():
    """
    Start queued workflows whose scheduled time has come.

    Also picks up workflows left queued by a previous process. Runs every minute.
    """
    try:
        count = await build_runner().dispatch_due()
        if count > 0:
            logger.info(f"Dispatched {count} due workflows")

    except Exception as e:
        logger.error(f"Error in dispatch_due_workflows job: {e}", exc_info=True)


def start_background_jobs():
    """Start all background jobs."""
    logger.info("Starting background jobs scheduler...")
    scheduler.start()
    logger.info(f"Background jobs started: {[job.id for job in scheduler.get_jobs()]}")


def stop_background_jobs():
    """Stop all background jobs."""
    if not scheduler.running:
        return
    logger.info("Stopping background jobs scheduler...")
    scheduler.shutdown(wait=False)
    logger.info("Background jobs stopped")


def get_job_status():
    """Get status of all background jobs."""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            "trigger": str(job.trigger)
        })
    return jobs
