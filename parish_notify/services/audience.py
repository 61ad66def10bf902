"""Audience resolution: who receives a notification for a domain event.

Every resolver is read-only. Results are deduplicated by user id (the first
reason encountered wins) and the acting user is removed last. A missing or
deleted entity resolves to an empty audience instead of raising.
"""

import enum
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from parish_notify.core.logging import get_logger
from parish_notify.core.schema import get_schema_capabilities
from parish_notify.models.chat import AudienceMode, ChannelType, ChatChannel, ChatChannelMembership
from parish_notify.models.event import Event, EventRsvp, EventVisibility
from parish_notify.models.membership import (
    Group,
    GroupMembership,
    GroupMembershipStatus,
    Membership,
    MembershipRole,
)
from parish_notify.models.task import Task, TaskVolunteer
from parish_notify.schemas.audience import (
    AnnouncementAudienceFacts,
    AudienceFacts,
    AudienceKind,
    ChatAudienceFacts,
    EligibleChannel,
    EventAudienceFacts,
    EventCandidatesFacts,
    ParishAudienceFacts,
    ParishLeadersFacts,
    Recipient,
    RecipientReason,
    TaskWatchersFacts,
)

logger = get_logger(__name__)

LEADER_ROLES = (MembershipRole.ADMIN, MembershipRole.SHEPHERD)


class AudienceSource(str, enum.Enum):
    """Where a chat channel's recipients come from."""

    PARISH = "parish"
    EXPLICIT = "explicit"
    EXPLICIT_IN_GROUP = "explicit_in_group"
    GROUP = "group"


def dedupe_recipients(
    recipients: Iterable[Recipient],
    actor_id: uuid.UUID | None = None,
) -> list[Recipient]:
    """Keep the first recipient per user id, then drop the actor."""
    by_user: dict[uuid.UUID, Recipient] = {}
    for recipient in recipients:
        if recipient.user_id not in by_user:
            by_user[recipient.user_id] = recipient

    if actor_id is not None:
        by_user.pop(actor_id, None)
    return list(by_user.values())


def _tag(user_ids: Iterable[uuid.UUID], reason: RecipientReason) -> list[Recipient]:
    return [Recipient(user_id=user_id, reason=reason) for user_id in user_ids]


def channel_audience_source(
    mode: AudienceMode,
    channel_type: ChannelType,
    has_explicit_members: bool,
) -> AudienceSource:
    """Decide where a channel's audience comes from.

    Under INFERRED mode the number of explicit membership rows is the only
    switch: zero rows opens the channel to the parish for every channel type,
    one or more rows closes it to those rows. A closed GROUP channel keeps
    only rows whose users are active group members.
    """
    if mode == AudienceMode.OPEN:
        return AudienceSource.PARISH
    if mode == AudienceMode.MEMBERS:
        return AudienceSource.EXPLICIT
    if mode == AudienceMode.GROUP:
        return AudienceSource.GROUP

    if not has_explicit_members:
        return AudienceSource.PARISH
    if channel_type == ChannelType.GROUP:
        return AudienceSource.EXPLICIT_IN_GROUP
    return AudienceSource.EXPLICIT


async def _parish_member_ids(
    db: AsyncSession,
    parish_id: uuid.UUID,
    at_time: datetime | None = None,
) -> list[uuid.UUID]:
    query = (
        select(Membership.user_id)
        .where(Membership.parish_id == parish_id, Membership.is_active == True)  # noqa: E712
        .order_by(Membership.created_at, Membership.user_id)
    )
    if at_time is not None:
        query = query.where(Membership.created_at <= at_time)

    result = await db.execute(query)
    return list(result.scalars().all())


async def _active_group_member_ids(
    db: AsyncSession,
    group_id: uuid.UUID,
    at_time: datetime | None = None,
) -> list[uuid.UUID]:
    query = (
        select(GroupMembership.user_id)
        .where(
            GroupMembership.group_id == group_id,
            GroupMembership.status == GroupMembershipStatus.ACTIVE,
        )
        .order_by(GroupMembership.created_at, GroupMembership.user_id)
    )
    if at_time is not None:
        query = query.where(GroupMembership.created_at <= at_time)

    result = await db.execute(query)
    return list(result.scalars().all())


async def _channel_member_ids(
    db: AsyncSession,
    channel_id: uuid.UUID,
    at_time: datetime | None = None,
) -> list[uuid.UUID]:
    query = (
        select(ChatChannelMembership.user_id)
        .where(ChatChannelMembership.channel_id == channel_id)
        .order_by(ChatChannelMembership.created_at, ChatChannelMembership.user_id)
    )
    if at_time is not None:
        query = query.where(ChatChannelMembership.created_at <= at_time)

    result = await db.execute(query)
    return list(result.scalars().all())


async def _count_channel_members(
    db: AsyncSession,
    channel_id: uuid.UUID,
    at_time: datetime | None = None,
) -> int:
    query = select(func.count(ChatChannelMembership.id)).where(
        ChatChannelMembership.channel_id == channel_id
    )
    if at_time is not None:
        query = query.where(ChatChannelMembership.created_at <= at_time)

    result = await db.execute(query)
    return result.scalar() or 0


def _channel_columns() -> list:
    """Columns to read from chat_channels for the deployed schema."""
    columns = [ChatChannel.id, ChatChannel.parish_id, ChatChannel.type, ChatChannel.group_id]
    if get_schema_capabilities().channel_audience_mode:
        columns.append(ChatChannel.audience_mode)
    return columns


def _row_audience_mode(row) -> AudienceMode:
    return getattr(row, "audience_mode", None) or AudienceMode.INFERRED


async def resolve_parish_audience(
    db: AsyncSession,
    parish_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> list[Recipient]:
    """All active members of a parish."""
    member_ids = await _parish_member_ids(db, parish_id)
    return dedupe_recipients(_tag(member_ids, RecipientReason.PARISH_MEMBER), actor_id)


async def resolve_parish_leaders_audience(
    db: AsyncSession,
    parish_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> list[Recipient]:
    """Active ADMIN and SHEPHERD members, for reports and requests."""
    result = await db.execute(
        select(Membership.user_id)
        .where(
            Membership.parish_id == parish_id,
            Membership.is_active == True,  # noqa: E712
            Membership.role.in_(LEADER_ROLES),
        )
        .order_by(Membership.created_at, Membership.user_id)
    )
    leader_ids = result.scalars().all()
    return dedupe_recipients(_tag(leader_ids, RecipientReason.PARISH_LEADER), actor_id)


async def resolve_chat_audience(
    db: AsyncSession,
    channel_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    at_time: datetime | None = None,
) -> list[Recipient]:
    """Recipients of a message posted in a chat channel.

    Args:
        db: Database session
        channel_id: Channel the message was posted in
        actor_id: Author of the message, excluded from the result
        at_time: If given, only memberships created at or before this instant
            count (audience of a historical message)

    Returns:
        Deduplicated recipients, empty if the channel does not exist
    """
    result = await db.execute(select(*_channel_columns()).where(ChatChannel.id == channel_id))
    channel = result.one_or_none()
    if channel is None:
        return []

    mode = _row_audience_mode(channel)
    # A channel that was open at at_time stays open for that message
    has_explicit = await _count_channel_members(db, channel_id, at_time) > 0
    source = channel_audience_source(mode, channel.type, has_explicit)

    if source == AudienceSource.PARISH:
        member_ids = await _parish_member_ids(db, channel.parish_id, at_time)
        recipients = _tag(member_ids, RecipientReason.PARISH_MEMBER)

    elif source == AudienceSource.GROUP:
        if channel.group_id is None:
            return []
        group_ids = await _active_group_member_ids(db, channel.group_id, at_time)
        recipients = _tag(group_ids, RecipientReason.GROUP_MEMBER)

    else:
        explicit_ids = await _channel_member_ids(db, channel_id, at_time)
        if source == AudienceSource.EXPLICIT_IN_GROUP:
            if channel.group_id is None:
                return []
            allowed = set(await _active_group_member_ids(db, channel.group_id))
        else:
            allowed = set(await _parish_member_ids(db, channel.parish_id))
        recipients = _tag(
            [user_id for user_id in explicit_ids if user_id in allowed],
            RecipientReason.CHANNEL_MEMBER,
        )

    logger.bind(
        channel_id=str(channel_id),
        source=source.value,
        recipients=len(recipients),
    ).debug("chat_audience_resolved")
    return dedupe_recipients(recipients, actor_id)


async def resolve_announcement_audience(
    db: AsyncSession,
    parish_id: uuid.UUID,
    audience_user_ids: Iterable[uuid.UUID | str] | None = None,
    actor_id: uuid.UUID | None = None,
) -> list[Recipient]:
    """Explicit audience ids limited to actual parish members, else the parish."""
    requested: list[uuid.UUID] = []
    for raw in audience_user_ids or []:
        if not raw:
            continue
        try:
            requested.append(raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw)))
        except ValueError:
            # Stale or foreign ids are dropped, same as ids outside the parish
            continue

    if not requested:
        return await resolve_parish_audience(db, parish_id, actor_id)

    member_ids = set(await _parish_member_ids(db, parish_id))
    recipients = _tag(
        [user_id for user_id in requested if user_id in member_ids],
        RecipientReason.ANNOUNCEMENT_AUDIENCE,
    )
    return dedupe_recipients(recipients, actor_id)


async def resolve_event_audience(
    db: AsyncSession,
    event_id: uuid.UUID,
    parish_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> list[Recipient]:
    """PUBLIC events reach the parish, GROUP events the active group, PRIVATE the RSVPs."""
    result = await db.execute(
        select(Event.id, Event.visibility, Event.group_id).where(
            Event.id == event_id,
            Event.parish_id == parish_id,
            Event.deleted_at.is_(None),
        )
    )
    event = result.one_or_none()
    if event is None:
        return []

    recipients: list[Recipient] = []
    if event.visibility == EventVisibility.PUBLIC:
        recipients = _tag(await _parish_member_ids(db, parish_id), RecipientReason.PARISH_MEMBER)
    elif event.visibility == EventVisibility.GROUP and event.group_id is not None:
        recipients = _tag(
            await _active_group_member_ids(db, event.group_id),
            RecipientReason.GROUP_MEMBER,
        )
    elif event.visibility == EventVisibility.PRIVATE:
        rsvp_result = await db.execute(
            select(EventRsvp.user_id)
            .where(EventRsvp.event_id == event.id)
            .order_by(EventRsvp.created_at, EventRsvp.user_id)
        )
        recipients = _tag(rsvp_result.scalars().all(), RecipientReason.EVENT_PARTICIPANT)

    return dedupe_recipients(recipients, actor_id)


async def filter_event_audience_for_candidates(
    db: AsyncSession,
    event_id: uuid.UUID,
    parish_id: uuid.UUID,
    candidate_user_ids: Iterable[uuid.UUID],
    actor_id: uuid.UUID | None = None,
) -> list[Recipient]:
    """Narrow an externally computed candidate list to the event's true audience.

    Never widens: a candidate outside the event audience is dropped.
    """
    candidates = set(candidate_user_ids)
    if not candidates:
        return []

    audience = await resolve_event_audience(db, event_id, parish_id, actor_id)
    return [recipient for recipient in audience if recipient.user_id in candidates]


async def resolve_task_watcher_audience(
    db: AsyncSession,
    task_id: uuid.UUID,
    parish_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> list[Recipient]:
    """Creator, current owner and every volunteer of a task."""
    result = await db.execute(
        select(Task.created_by_id, Task.owner_id).where(
            Task.id == task_id, Task.parish_id == parish_id
        )
    )
    task = result.one_or_none()
    if task is None:
        return []

    volunteer_result = await db.execute(
        select(TaskVolunteer.user_id)
        .where(TaskVolunteer.task_id == task_id)
        .order_by(TaskVolunteer.created_at, TaskVolunteer.user_id)
    )

    recipients = [Recipient(user_id=task.created_by_id, reason=RecipientReason.TASK_CREATOR)]
    if task.owner_id is not None:
        recipients.append(Recipient(user_id=task.owner_id, reason=RecipientReason.TASK_ASSIGNEE))
    recipients.extend(_tag(volunteer_result.scalars().all(), RecipientReason.TASK_VOLUNTEER))
    return dedupe_recipients(recipients, actor_id)


async def list_eligible_channels_for_user(
    db: AsyncSession,
    parish_id: uuid.UUID,
    user_id: uuid.UUID,
) -> list[EligibleChannel]:
    """Chat channels a user can read, using the same rules as resolve_chat_audience.

    The join time is the explicit channel membership time, the group
    membership time, or the parish membership time, whichever grants access.
    """
    membership_result = await db.execute(
        select(Membership.created_at).where(
            Membership.parish_id == parish_id,
            Membership.user_id == user_id,
            Membership.is_active == True,  # noqa: E712
        )
    )
    parish_joined_at = membership_result.scalar_one_or_none()
    if parish_joined_at is None:
        return []

    channel_result = await db.execute(
        select(*_channel_columns(), ChatChannel.name, Group.visibility)
        .outerjoin(Group, Group.id == ChatChannel.group_id)
        .where(ChatChannel.parish_id == parish_id)
        .order_by(ChatChannel.name)
    )
    channels = channel_result.all()
    if not channels:
        return []

    channel_ids = [c.id for c in channels]
    own_rows = await db.execute(
        select(ChatChannelMembership.channel_id, ChatChannelMembership.created_at).where(
            ChatChannelMembership.user_id == user_id,
            ChatChannelMembership.channel_id.in_(channel_ids),
        )
    )
    explicit_joined = {row.channel_id: row.created_at for row in own_rows}

    counted = await db.execute(
        select(ChatChannelMembership.channel_id)
        .where(ChatChannelMembership.channel_id.in_(channel_ids))
        .group_by(ChatChannelMembership.channel_id)
    )
    channels_with_rows = set(counted.scalars().all())

    group_rows = await db.execute(
        select(GroupMembership.group_id, GroupMembership.created_at).where(
            GroupMembership.user_id == user_id,
            GroupMembership.status == GroupMembershipStatus.ACTIVE,
        )
    )
    group_joined = {row.group_id: row.created_at for row in group_rows}

    eligible: list[EligibleChannel] = []
    for channel in channels:
        source = channel_audience_source(
            _row_audience_mode(channel), channel.type, channel.id in channels_with_rows
        )
        joined_at: datetime | None
        if source == AudienceSource.PARISH:
            joined_at = parish_joined_at
        elif source == AudienceSource.GROUP:
            joined_at = group_joined.get(channel.group_id) if channel.group_id else None
        elif source == AudienceSource.EXPLICIT_IN_GROUP:
            in_group = channel.group_id is not None and channel.group_id in group_joined
            joined_at = explicit_joined.get(channel.id) if in_group else None
        else:
            joined_at = explicit_joined.get(channel.id)

        if joined_at is None:
            continue
        eligible.append(
            EligibleChannel(
                channel_id=channel.id,
                channel_name=channel.name,
                channel_type=channel.type,
                group_visibility=channel.visibility if channel.type == ChannelType.GROUP else None,
                joined_at=joined_at,
            )
        )

    return eligible


_FACTS_BY_KIND: dict[AudienceKind, type] = {
    AudienceKind.PARISH: ParishAudienceFacts,
    AudienceKind.CHAT: ChatAudienceFacts,
    AudienceKind.ANNOUNCEMENT: AnnouncementAudienceFacts,
    AudienceKind.EVENT: EventAudienceFacts,
    AudienceKind.EVENT_CANDIDATES: EventCandidatesFacts,
    AudienceKind.TASK_WATCHERS: TaskWatchersFacts,
    AudienceKind.PARISH_LEADERS: ParishLeadersFacts,
}


async def resolve_audience(
    db: AsyncSession,
    kind: AudienceKind,
    facts: AudienceFacts,
) -> list[Recipient]:
    """Single entry point for every audience kind.

    Raises:
        ValueError: If the facts model does not belong to the audience kind
    """
    expected = _FACTS_BY_KIND.get(kind)
    if expected is None:
        raise ValueError(f"Unknown audience kind: {kind!r}")
    if not isinstance(facts, expected):
        raise ValueError(
            f"{kind.value} audience expects {expected.__name__}, got {type(facts).__name__}"
        )

    if isinstance(facts, ParishAudienceFacts):
        return await resolve_parish_audience(db, facts.parish_id, facts.actor_id)
    if isinstance(facts, ChatAudienceFacts):
        return await resolve_chat_audience(db, facts.channel_id, facts.actor_id, facts.at_time)
    if isinstance(facts, AnnouncementAudienceFacts):
        return await resolve_announcement_audience(
            db, facts.parish_id, facts.audience_user_ids, facts.actor_id
        )
    if isinstance(facts, EventAudienceFacts):
        return await resolve_event_audience(db, facts.event_id, facts.parish_id, facts.actor_id)
    if isinstance(facts, EventCandidatesFacts):
        return await filter_event_audience_for_candidates(
            db, facts.event_id, facts.parish_id, facts.candidate_user_ids, facts.actor_id
        )
    if isinstance(facts, TaskWatchersFacts):
        return await resolve_task_watcher_audience(
            db, facts.task_id, facts.parish_id, facts.actor_id
        )
    return await resolve_parish_leaders_audience(db, facts.parish_id, facts.actor_id)
