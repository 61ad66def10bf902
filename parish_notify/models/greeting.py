"""Greeting idempotency log and dispatcher run history."""

import enum
import uuid
from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from parish_notify.models.base import Base, enum_column


class GreetingType(str, enum.Enum):
    BIRTHDAY = "BIRTHDAY"
    ANNIVERSARY = "ANNIVERSARY"


class RunStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class GreetingLogEntry(Base):
    """Proof that a greeting went out for a parish-local calendar day.

    Written only after a successful send; its existence short-circuits every
    later run on the same date_key.
    """

    __tablename__ = "greeting_log_entries"
    __table_args__ = (
        UniqueConstraint(
            "parish_id", "user_id", "type", "date_key", name="uq_greeting_parish_user_type_date"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    parish_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parishes.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    type: Mapped[GreetingType] = mapped_column(enum_column(GreetingType, "greetingtype"))
    date_key: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD, parish-local
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<GreetingLogEntry {self.type.value} user={self.user_id} date={self.date_key}>"


class GreetingRunLog(Base):
    """Records each execution of the greeting dispatcher."""

    __tablename__ = "greeting_run_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    request_id: Mapped[str] = mapped_column(String(100), index=True)
    started_at: Mapped[datetime]
    finished_at: Mapped[datetime | None] = mapped_column(default=None)
    status: Mapped[RunStatus] = mapped_column(
        enum_column(RunStatus, "runstatus"), default=RunStatus.RUNNING
    )
    planned_count: Mapped[int] = mapped_column(Integer, default=0)
    sent_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0)
    missing_env: Mapped[list[str] | None] = mapped_column(JSON, default=None)
    reason_counts: Mapped[dict | None] = mapped_column(JSON, default=None)
    error_summary: Mapped[str | None] = mapped_column(Text, default=None)
