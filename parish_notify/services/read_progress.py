"""Per-message read progress derived from last-read timestamps.

Read state is one row per (channel, user) holding the last time that user
viewed the channel. A message counts as read by a user when their last read
is at or after the message's creation time, so no per-message receipts are
stored.
"""

import uuid
from bisect import bisect_left
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parish_notify.core.datetime_utils import to_naive_utc
from parish_notify.core.logging import get_logger
from parish_notify.models.chat import ChatMessage, ChatReadState
from parish_notify.schemas.read_progress import ChannelReadSnapshot, ReadProgress, ReadState
from parish_notify.services.audience import resolve_chat_audience

logger = get_logger(__name__)


def message_read_progress(
    message_created_at: datetime,
    read_timestamps: Sequence[datetime],
    recipient_count: int,
    presorted: bool = False,
) -> ReadProgress:
    """
    Classify a message as unread, some_read or all_read.

    Args:
        message_created_at: When the message was posted
        read_timestamps: Last-read times of the current recipients
        recipient_count: Size of the current recipient set
        presorted: Whether read_timestamps is already sorted ascending

    Returns:
        ReadProgress with the state and the counts it was derived from

    Raises:
        ValueError: If recipient_count is negative
    """
    if recipient_count < 0:
        raise ValueError("recipient_count must be >= 0")
    if recipient_count == 0:
        return ReadProgress(state=ReadState.UNREAD, readers_count=0, recipient_count=0)

    ordered = read_timestamps if presorted else sorted(read_timestamps)
    # Everything at or after creation counts; equality is the room-open case
    readers = len(ordered) - bisect_left(ordered, message_created_at)

    if readers == 0:
        state = ReadState.UNREAD
    elif readers >= recipient_count:
        state = ReadState.ALL_READ
    else:
        state = ReadState.SOME_READ

    return ReadProgress(state=state, readers_count=readers, recipient_count=recipient_count)


async def mark_channel_read(
    db: AsyncSession,
    channel_id: uuid.UUID,
    user_id: uuid.UUID,
    read_at: datetime,
) -> datetime:
    """Advance a user's read marker for a channel. Never moves it backwards.

    Commits the session.

    Returns:
        The stored last-read time after the write
    """
    read_at = to_naive_utc(read_at)

    result = await db.execute(
        update(ChatReadState)
        .where(
            ChatReadState.channel_id == channel_id,
            ChatReadState.user_id == user_id,
            ChatReadState.last_read_at < read_at,
        )
        .values(last_read_at=read_at)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        existing = await db.execute(
            select(ChatReadState.last_read_at).where(
                ChatReadState.channel_id == channel_id,
                ChatReadState.user_id == user_id,
            )
        )
        current = existing.scalar_one_or_none()
        if current is not None:
            return current

        db.add(ChatReadState(channel_id=channel_id, user_id=user_id, last_read_at=read_at))
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent first view inserted the row; advance it instead
            await db.rollback()
            return await mark_channel_read(db, channel_id, user_id, read_at)
    else:
        await db.commit()

    logger.bind(channel_id=str(channel_id), user_id=str(user_id)).debug("channel_marked_read")
    return read_at


async def get_channel_read_snapshot(
    db: AsyncSession,
    channel_id: uuid.UUID,
    viewer_id: uuid.UUID,
) -> ChannelReadSnapshot:
    """Current recipients of a channel, excluding the viewer, with their read times.

    Recipients are resolved now, so membership changes since a message was
    sent are reflected on the next render.
    """
    recipients = await resolve_chat_audience(db, channel_id, actor_id=viewer_id)
    recipient_ids = [r.user_id for r in recipients]
    if not recipient_ids:
        return ChannelReadSnapshot(channel_id=channel_id)

    result = await db.execute(
        select(ChatReadState.last_read_at).where(
            ChatReadState.channel_id == channel_id,
            ChatReadState.user_id.in_(recipient_ids),
        )
    )
    timestamps = sorted(result.scalars().all())
    return ChannelReadSnapshot(
        channel_id=channel_id,
        recipient_ids=recipient_ids,
        read_timestamps=timestamps,
    )


def snapshot_progress(snapshot: ChannelReadSnapshot, message_created_at: datetime) -> ReadProgress:
    return message_read_progress(
        message_created_at,
        snapshot.read_timestamps,
        snapshot.recipient_count,
        presorted=True,
    )


async def unread_counts_for_channels(
    db: AsyncSession,
    channel_ids: Sequence[uuid.UUID],
    user_id: uuid.UUID,
) -> dict[uuid.UUID, int]:
    """Count messages by others, not deleted, posted after the user's last read.

    Channels the user never opened count every such message.
    """
    if not channel_ids:
        return {}

    query = (
        select(ChatMessage.channel_id, func.count(ChatMessage.id))
        .outerjoin(
            ChatReadState,
            (ChatReadState.channel_id == ChatMessage.channel_id)
            & (ChatReadState.user_id == user_id),
        )
        .where(
            ChatMessage.channel_id.in_(channel_ids),
            ChatMessage.author_id != user_id,
            ChatMessage.deleted_at.is_(None),
            (ChatReadState.last_read_at.is_(None))
            | (ChatMessage.created_at > ChatReadState.last_read_at),
        )
        .group_by(ChatMessage.channel_id)
    )
    result = await db.execute(query)
    counts = {channel_id: 0 for channel_id in channel_ids}
    for channel_id, count in result.all():
        counts[channel_id] = count
    return counts
