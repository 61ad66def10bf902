import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from parish_notify.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """Portal user with greeting dates and notification preferences."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), default=None)
    deleted_at: Mapped[datetime | None] = mapped_column(default=None)

    # Greeting dates (month/day only, year is never stored)
    birthday_month: Mapped[int | None] = mapped_column(Integer, default=None)
    birthday_day: Mapped[int | None] = mapped_column(Integer, default=None)
    anniversary_month: Mapped[int | None] = mapped_column(Integer, default=None)
    anniversary_day: Mapped[int | None] = mapped_column(Integer, default=None)
    # User-level opt-in, used before membership-level opt-in existed (schema v1)
    greetings_opt_in: Mapped[bool] = mapped_column(Boolean, default=False)

    # In-app notification preferences
    notify_message_in_app: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_task_in_app: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_announcement_in_app: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_event_in_app: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_request_in_app: Mapped[bool] = mapped_column(Boolean, default=True)

    # Email preferences
    notify_email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    weekly_digest_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<User {self.email}>"
