"""Cron trigger endpoints for external schedulers."""

from fastapi import APIRouter, Header

from parish_notify.dependencies import CronAuthorized, DBSession
from parish_notify.jobs.greetings import run_greetings_job
from parish_notify.schemas.greetings import RunSummary

router = APIRouter()


@router.post("/cron/greetings", response_model=RunSummary)
async def trigger_greetings(
    db: DBSession,
    _: CronAuthorized,
    x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
) -> RunSummary:
    """
    Run the greeting dispatcher once.

    Safe to call more often than every 15 minutes: parishes outside their send
    window are skipped, and already-sent greetings are never resent.
    """
    return await run_greetings_job(db, request_id=x_request_id)
