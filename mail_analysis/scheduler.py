"""
APScheduler job runner for periodic retries of failed analyses.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mail_analysis.config import settings
from mail_analysis.core.logging import get_logger
from mail_analysis.jobs.retry import RetryFailedAnalysesJob

log = get_logger(__name__)

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def retry_failed_analyses_job(job: RetryFailedAnalysesJob):
    """Scheduled job to re-analyze emails whose analysis failed."""
    log.info("scheduled_job_starting", job="retry_failed_analyses")
    try:
        result = await job.run()
        log.info(
            "scheduled_job_complete",
            job="retry_failed_analyses",
            success=result.success,
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
        )
    except Exception as e:
        log.error("scheduled_job_error", job="retry_failed_analyses", error=str(e))


def start_scheduler(job: RetryFailedAnalysesJob, interval_minutes: int | None = None) -> AsyncIOScheduler:
    """
    Start the retry scheduler on the running event loop.

    Args:
        job: Retry job to run
        interval_minutes: How often to run it (default: settings.retry_interval_minutes)

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        log.warning("scheduler_already_running")
        return _scheduler

    interval = interval_minutes or settings.retry_interval_minutes

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        retry_failed_analyses_job,
        trigger=IntervalTrigger(minutes=interval),
        args=[job],
        id="retry_failed_analyses",
        name="Retry failed email analyses",
        replace_existing=True,
        max_instances=1,
    )

    _scheduler.start()
    log.info("scheduler_started", interval_minutes=interval)

    return _scheduler


def stop_scheduler():
    """Stop the scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("scheduler_stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler
