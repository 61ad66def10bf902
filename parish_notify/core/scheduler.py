"""
APScheduler integration for FastAPI.

Runs the greeting dispatcher in-process every 15 minutes. Each parish decides
on its own whether the current tick falls in its local send window, so one
schedule serves every timezone.
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from parish_notify.config import get_settings
from parish_notify.core.database import AsyncSessionLocal
from parish_notify.core.logging import get_logger

logger = get_logger(__name__)

GREETINGS_SCHEDULE_ID = "greetings_dispatch"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def greetings_job() -> None:
    """Greeting dispatcher tick."""
    from parish_notify.jobs.greetings import run_greetings_job

    logger.debug("scheduled_greetings_job_started")
    async with AsyncSessionLocal() as db:
        try:
            summary = await run_greetings_job(db)
            if summary.matched_parishes:
                logger.bind(
                    run_id=summary.run_id,
                    sent=summary.sent,
                    failed=summary.failed,
                ).info("scheduled_greetings_job_completed")
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_greetings_job_failed")
            raise  # Re-raise so APScheduler records the failure


async def _on_job_released(event: Any) -> None:
    if isinstance(event, JobReleased) and event.outcome == JobOutcome.error:
        exception = getattr(event, "exception", None)
        logger.bind(
            schedule_id=event.schedule_id or "unknown",
            error=str(exception) if exception else None,
        ).warning("scheduled_job_errored")


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler with in-memory schedules."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    # Run history lives in greeting_run_logs, so schedules need no persistence
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()
    scheduler.subscribe(_on_job_released)

    await scheduler.add_schedule(
        greetings_job,
        CronTrigger(minute="*/15"),
        id=GREETINGS_SCHEDULE_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.start_in_background()

    logger.bind(jobs=[GREETINGS_SCHEDULE_ID]).info("scheduler_started")
    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
