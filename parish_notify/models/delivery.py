"""Delivery ledger and delivery observability models."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from parish_notify.core.datetime_utils import utc_now
from parish_notify.models.base import Base, enum_column


class DeliveryChannel(str, enum.Enum):
    EMAIL = "EMAIL"
    PUSH = "PUSH"


class DeliveryStatus(str, enum.Enum):
    """Ledger row status.

    PENDING marks a claimed dedupe key whose transport call is in flight.
    """

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class AttemptStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    SKIPPED = "SKIPPED"


class DeliveryRecord(Base):
    """One logical send, kept as a single row across any number of retries.

    The unique index on dedupe_key is what serializes concurrent attempts:
    only one insert per key can succeed.
    """

    __tablename__ = "delivery_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel: Mapped[DeliveryChannel] = mapped_column(
        enum_column(DeliveryChannel, "deliverychannel")
    )
    dedupe_key: Mapped[str | None] = mapped_column(String(512), unique=True, default=None)
    type: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[DeliveryStatus] = mapped_column(
        enum_column(DeliveryStatus, "deliverystatus"), index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), default=None, index=True
    )
    parish_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("parishes.id", ondelete="SET NULL"), default=None, index=True
    )
    target: Mapped[str] = mapped_column(String(1024))
    template: Mapped[str] = mapped_column(String(128))
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    sent_at: Mapped[datetime | None] = mapped_column(default=None)
    error: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now)

    def __repr__(self) -> str:
        return f"<DeliveryRecord {self.channel.value} {self.status.value} key={self.dedupe_key}>"


class DeliveryAttempt(Base):
    """Best-effort operational log of every delivery outcome."""

    __tablename__ = "delivery_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel: Mapped[DeliveryChannel] = mapped_column(
        enum_column(DeliveryChannel, "deliverychannel")
    )
    status: Mapped[AttemptStatus] = mapped_column(enum_column(AttemptStatus, "attemptstatus"))
    parish_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None, index=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None)
    target: Mapped[str] = mapped_column(String(512))
    template: Mapped[str] = mapped_column(String(128))
    context_json: Mapped[dict | None] = mapped_column(JSON, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, index=True)
