"""Greeting dispatcher run history."""

from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel
from sqlalchemy import select

from parish_notify.dependencies import CronAuthorized, DBSession
from parish_notify.models.greeting import GreetingRunLog, RunStatus

router = APIRouter()


class GreetingRunResponse(BaseModel):
    """Response model for a greeting run."""

    id: str
    request_id: str
    status: str
    started_at: datetime
    finished_at: datetime | None
    planned_count: int
    sent_count: int
    failed_count: int
    skipped_count: int
    missing_env: list[str] | None
    reason_counts: dict | None
    error_summary: str | None


@router.get("/greetings/runs", response_model=list[GreetingRunResponse])
async def list_greeting_runs(
    db: DBSession,
    _: CronAuthorized,
    status: RunStatus | None = Query(default=None, description="Filter by run status"),
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[GreetingRunResponse]:
    """List recent dispatcher runs, newest first."""
    query = select(GreetingRunLog).order_by(GreetingRunLog.started_at.desc())

    if status:
        query = query.where(GreetingRunLog.status == status)

    query = query.offset(offset).limit(limit)
    result = await db.execute(query)
    runs = result.scalars().all()

    return [
        GreetingRunResponse(
            id=run.id,
            request_id=run.request_id,
            status=run.status.value,
            started_at=run.started_at,
            finished_at=run.finished_at,
            planned_count=run.planned_count,
            sent_count=run.sent_count,
            failed_count=run.failed_count,
            skipped_count=run.skipped_count,
            missing_env=run.missing_env,
            reason_counts=run.reason_counts,
            error_summary=run.error_summary,
        )
        for run in runs
    ]
