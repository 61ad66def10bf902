"""Delivery observability endpoints."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel
from sqlalchemy import select

from parish_notify.dependencies import CronAuthorized, DBSession
from parish_notify.models.delivery import AttemptStatus, DeliveryAttempt

router = APIRouter()


class FailedDeliveryResponse(BaseModel):
    """Response model for a failed delivery attempt. Targets are masked."""

    id: uuid.UUID
    channel: str
    parish_id: uuid.UUID | None
    user_id: uuid.UUID | None
    target: str
    template: str
    error_message: str | None
    created_at: datetime


@router.get("/deliveries/failed", response_model=list[FailedDeliveryResponse])
async def list_failed_deliveries(
    db: DBSession,
    _: CronAuthorized,
    parish_id: uuid.UUID | None = Query(default=None, description="Filter by parish"),
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[FailedDeliveryResponse]:
    """List recent failed delivery attempts, newest first."""
    query = (
        select(DeliveryAttempt)
        .where(DeliveryAttempt.status == AttemptStatus.FAILURE)
        .order_by(DeliveryAttempt.created_at.desc())
    )

    if parish_id:
        query = query.where(DeliveryAttempt.parish_id == parish_id)

    query = query.offset(offset).limit(limit)
    result = await db.execute(query)
    attempts = result.scalars().all()

    return [
        FailedDeliveryResponse(
            id=attempt.id,
            channel=attempt.channel.value,
            parish_id=attempt.parish_id,
            user_id=attempt.user_id,
            target=attempt.target,
            template=attempt.template,
            error_message=attempt.error_message,
            created_at=attempt.created_at,
        )
        for attempt in attempts
    ]
