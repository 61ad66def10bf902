import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from parish_notify.models.base import Base, TimestampMixin


class Parish(Base, TimestampMixin):
    """A parish (tenant). Greeting settings columns arrived in schema v3."""

    __tablename__ = "parishes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))
    timezone: Mapped[str | None] = mapped_column(String(64), default=None)
    logo_url: Mapped[str | None] = mapped_column(String(512), default=None)
    deactivated_at: Mapped[datetime | None] = mapped_column(default=None)

    # Per-parish sender identity (falls back to EMAIL_FROM / EMAIL_FROM_DEFAULT)
    email_from: Mapped[str | None] = mapped_column(String(255), default=None)
    email_reply_to: Mapped[str | None] = mapped_column(String(255), default=None)

    # Greetings
    birthday_greeting_template: Mapped[str | None] = mapped_column(Text, default=None)
    anniversary_greeting_template: Mapped[str | None] = mapped_column(Text, default=None)
    greetings_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    greetings_send_hour_local: Mapped[int] = mapped_column(Integer, default=9)
    greetings_send_minute_local: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<Parish {self.name}>"
