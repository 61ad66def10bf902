import uuid
from datetime import datetime

from sqlalchemy import JSON, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from parish_notify.models.base import Base, TimestampMixin


class Announcement(Base, TimestampMixin):
    """Parish announcement, optionally targeted at explicit user ids."""

    __tablename__ = "announcements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    parish_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parishes.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(String(255))
    # List of user id strings; empty or null means the whole parish
    audience_user_ids: Mapped[list[str] | None] = mapped_column(JSON, default=None)
    published_at: Mapped[datetime | None] = mapped_column(default=None)
