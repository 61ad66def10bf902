"""Chat channels, explicit channel membership, messages and read state."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from parish_notify.models.base import Base, enum_column


class ChannelType(str, enum.Enum):
    PARISH_ANNOUNCEMENT = "PARISH_ANNOUNCEMENT"
    GROUP = "GROUP"
    DIRECT = "DIRECT"


class AudienceMode(str, enum.Enum):
    """How a channel's audience is decided.

    INFERRED keeps the row-count rule: zero explicit membership rows means
    open to the whole parish, one or more rows means closed to those rows.
    """

    INFERRED = "INFERRED"
    OPEN = "OPEN"
    MEMBERS = "MEMBERS"
    GROUP = "GROUP"


class ChatChannel(Base):
    __tablename__ = "chat_channels"
    __table_args__ = (
        CheckConstraint(
            "type != 'GROUP' OR group_id IS NOT NULL",
            name="ck_chat_channel_group_has_group_id",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    parish_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parishes.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[ChannelType] = mapped_column(enum_column(ChannelType, "channeltype"))
    group_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), default=None, index=True
    )
    # Schema v3+
    audience_mode: Mapped[AudienceMode] = mapped_column(
        enum_column(AudienceMode, "audiencemode"), default=AudienceMode.INFERRED
    )

    def __repr__(self) -> str:
        return f"<ChatChannel {self.type.value}:{self.name}>"


class ChatChannelMembership(Base):
    """Explicit channel membership; created_at is the join time."""

    __tablename__ = "chat_channel_memberships"
    __table_args__ = (UniqueConstraint("channel_id", "user_id", name="uq_channel_membership"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chat_channels.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(default=func.now())


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chat_channels.id", ondelete="CASCADE"), index=True
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    body: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=func.now(), index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(default=None)


class ChatReadState(Base):
    """Last time a user viewed a channel. One row per (channel, user)."""

    __tablename__ = "chat_read_states"

    channel_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chat_channels.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    last_read_at: Mapped[datetime] = mapped_column()
