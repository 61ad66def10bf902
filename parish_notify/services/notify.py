"""In-app notifications and push fan-out for domain events.

Each ``notify_*`` function resolves the event's audience, keeps the members
whose in-app preference for that notification type is on, inserts one
``Notification`` row per member and then pushes to their registered
browsers through the delivery ledger.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from parish_notify.config import get_settings
from parish_notify.core.logging import get_logger
from parish_notify.models.announcement import Announcement
from parish_notify.models.chat import ChannelType, ChatChannel
from parish_notify.models.delivery import DeliveryChannel
from parish_notify.models.event import Event
from parish_notify.models.membership import Group, GroupVisibility
from parish_notify.models.notification import Notification, NotificationType, PushSubscription
from parish_notify.models.user import User
from parish_notify.schemas.audience import Recipient, RecipientReason
from parish_notify.schemas.delivery import DedupeKey, DeliveryRequest, PushTarget
from parish_notify.services.audience import (
    filter_event_audience_for_candidates,
    resolve_announcement_audience,
    resolve_chat_audience,
    resolve_event_audience,
    resolve_parish_leaders_audience,
    resolve_task_watcher_audience,
)
from parish_notify.services.delivery_ledger import attempt_delivery
from parish_notify.services.transports import GONE_STATUS_CODES

logger = get_logger(__name__)

PREFERENCE_FIELD_BY_TYPE: dict[NotificationType, str] = {
    NotificationType.MESSAGE: "notify_message_in_app",
    NotificationType.TASK: "notify_task_in_app",
    NotificationType.ANNOUNCEMENT: "notify_announcement_in_app",
    NotificationType.EVENT: "notify_event_in_app",
    NotificationType.REQUEST: "notify_request_in_app",
    NotificationType.MENTION: "notify_message_in_app",
}

SNIPPET_LENGTH = 100


@dataclass(frozen=True)
class NotificationContent:
    type: NotificationType
    title: str
    href: str
    description: str | None = None


def truncate(text: str, limit: int = SNIPPET_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."


def chat_notification_copy(
    channel_name: str,
    channel_type: ChannelType,
    group_visibility: GroupVisibility | None,
    author_name: str,
    body: str,
) -> tuple[str, str]:
    """Title and description for a chat message notification.

    Private group channels never reveal the channel name or the message body.
    Other group channels name the channel but keep the body out.
    """
    if channel_type == ChannelType.GROUP and group_visibility == GroupVisibility.PRIVATE:
        return "New message", "You have a new message"
    if channel_type == ChannelType.GROUP:
        return f"{author_name} in {channel_name}", f"New message in {channel_name}"
    return f"{author_name} in {channel_name}", truncate(body)


def is_push_configured() -> bool:
    settings = get_settings()
    return bool(settings.vapid_public_key and settings.vapid_private_key)


async def create_notifications_for_users(
    db: AsyncSession,
    parish_id: uuid.UUID,
    user_ids: Iterable[uuid.UUID],
    content: NotificationContent,
) -> list[uuid.UUID]:
    """Insert in-app notifications for users who allow this type. Commits.

    Returns:
        Ids of the users that received a notification row
    """
    unique_ids = list(dict.fromkeys(user_ids))
    if not unique_ids:
        return []

    preference = getattr(User, PREFERENCE_FIELD_BY_TYPE[content.type])
    result = await db.execute(
        select(User.id).where(
            User.id.in_(unique_ids),
            User.deleted_at.is_(None),
            preference == True,  # noqa: E712
        )
    )
    allowed = set(result.scalars().all())
    notified = [user_id for user_id in unique_ids if user_id in allowed]
    if not notified:
        return []

    db.add_all(
        [
            Notification(
                user_id=user_id,
                parish_id=parish_id,
                type=content.type,
                title=content.title,
                description=content.description,
                href=content.href,
            )
            for user_id in notified
        ]
    )
    await db.commit()
    return notified


async def send_push_to_users(
    db: AsyncSession,
    parish_id: uuid.UUID,
    user_ids: Iterable[uuid.UUID],
    content: NotificationContent,
    reference_id: str,
) -> int:
    """Push to every subscription of the given users in this parish.

    Each (user, reference, endpoint) is one dedupe key, so re-running a
    fan-out never pushes the same event to the same browser twice.
    Subscriptions the push service reports as gone are deleted.

    Returns:
        Number of pushes sent
    """
    ids = list(dict.fromkeys(user_ids))
    if not ids or not is_push_configured():
        return 0

    result = await db.execute(
        select(
            PushSubscription.id,
            PushSubscription.user_id,
            PushSubscription.endpoint,
            PushSubscription.p256dh,
            PushSubscription.auth,
        ).where(PushSubscription.parish_id == parish_id, PushSubscription.user_id.in_(ids))
    )
    subscriptions = result.all()
    if not subscriptions:
        return 0

    payload = {
        "title": content.title,
        "body": content.description or "",
        "url": content.href,
        "tag": reference_id,
    }

    sent = 0
    stale_ids: list[uuid.UUID] = []
    for sub in subscriptions:
        request = DeliveryRequest(
            channel=DeliveryChannel.PUSH,
            type=f"PUSH_{content.type.value}",
            template=f"push_{content.type.value.lower()}",
            dedupe=DedupeKey(
                type=f"PUSH_{content.type.value}",
                parish_id=parish_id,
                user_id=sub.user_id,
                endpoint=sub.endpoint,
                reference_id=reference_id,
            ),
            user_id=sub.user_id,
            parish_id=parish_id,
            push=PushTarget(endpoint=sub.endpoint, p256dh=sub.p256dh, auth=sub.auth),
            payload=payload,
        )
        outcome = await attempt_delivery(db, request)
        if outcome.status == "SENT":
            sent += 1
        elif outcome.status_code in GONE_STATUS_CODES:
            stale_ids.append(sub.id)

    if stale_ids:
        try:
            await db.execute(delete(PushSubscription).where(PushSubscription.id.in_(stale_ids)))
            await db.commit()
            logger.bind(count=len(stale_ids)).info("stale_push_subscriptions_removed")
        except Exception as e:
            await db.rollback()
            logger.bind(error=str(e)).warning("stale_push_cleanup_failed")

    return sent


async def _notify(
    db: AsyncSession,
    parish_id: uuid.UUID,
    recipients: list[Recipient],
    content: NotificationContent,
    reference_id: str,
) -> int:
    notified = await create_notifications_for_users(
        db, parish_id, (r.user_id for r in recipients), content
    )
    if notified:
        await send_push_to_users(db, parish_id, notified, content, reference_id)

    logger.bind(
        type=content.type.value,
        parish_id=str(parish_id),
        reference_id=reference_id,
        audience=len(recipients),
        notified=len(notified),
    ).info("notifications_created")
    return len(notified)


async def notify_chat_message(
    db: AsyncSession,
    channel_id: uuid.UUID,
    message_id: uuid.UUID,
    author_id: uuid.UUID,
    author_name: str,
    body: str,
) -> int:
    """Notify the channel audience (minus the author) of a new message."""
    result = await db.execute(
        select(ChatChannel.parish_id, ChatChannel.name, ChatChannel.type, Group.visibility)
        .outerjoin(Group, Group.id == ChatChannel.group_id)
        .where(ChatChannel.id == channel_id)
    )
    channel = result.one_or_none()
    if channel is None:
        return 0

    recipients = await resolve_chat_audience(db, channel_id, actor_id=author_id)
    if not recipients:
        return 0

    title, description = chat_notification_copy(
        channel.name, channel.type, channel.visibility, author_name, body
    )
    content = NotificationContent(
        type=NotificationType.MESSAGE,
        title=title,
        description=description,
        href=f"/community/chat?channel={channel_id}",
    )
    return await _notify(db, channel.parish_id, recipients, content, f"message:{message_id}")


async def notify_announcement_published(
    db: AsyncSession,
    announcement_id: uuid.UUID,
    parish_id: uuid.UUID,
    publisher_id: uuid.UUID,
) -> int:
    result = await db.execute(
        select(Announcement.title, Announcement.audience_user_ids).where(
            Announcement.id == announcement_id, Announcement.parish_id == parish_id
        )
    )
    announcement = result.one_or_none()
    if announcement is None:
        return 0

    recipients = await resolve_announcement_audience(
        db, parish_id, announcement.audience_user_ids, actor_id=publisher_id
    )
    content = NotificationContent(
        type=NotificationType.ANNOUNCEMENT,
        title="New announcement",
        description=announcement.title,
        href="/announcements",
    )
    return await _notify(db, parish_id, recipients, content, f"announcement:{announcement_id}")


async def notify_event_created(
    db: AsyncSession,
    event_id: uuid.UUID,
    parish_id: uuid.UUID,
    creator_id: uuid.UUID,
) -> int:
    result = await db.execute(
        select(Event.title).where(Event.id == event_id, Event.deleted_at.is_(None))
    )
    title = result.scalar_one_or_none()
    if title is None:
        return 0

    recipients = await resolve_event_audience(db, event_id, parish_id, actor_id=creator_id)
    content = NotificationContent(
        type=NotificationType.EVENT,
        title="New event",
        description=title,
        href="/calendar",
    )
    return await _notify(db, parish_id, recipients, content, f"event:{event_id}")


async def notify_event_reminder(
    db: AsyncSession,
    event_id: uuid.UUID,
    parish_id: uuid.UUID,
    candidate_user_ids: Iterable[uuid.UUID],
    starts_at: datetime,
    starts_at_label: str,
) -> int:
    """Remind candidates about one occurrence of an event, limited to its audience."""
    result = await db.execute(
        select(Event.title).where(Event.id == event_id, Event.deleted_at.is_(None))
    )
    title = result.scalar_one_or_none()
    if title is None:
        return 0

    recipients = await filter_event_audience_for_candidates(
        db, event_id, parish_id, candidate_user_ids
    )
    content = NotificationContent(
        type=NotificationType.EVENT,
        title="Event reminder",
        description=f"{title} • {starts_at_label}",
        href="/calendar",
    )
    reference = f"event_reminder:{event_id}:{starts_at.isoformat()}"
    return await _notify(db, parish_id, recipients, content, reference)


async def notify_task_assigned(
    db: AsyncSession,
    task_id: uuid.UUID,
    task_title: str,
    parish_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_name: str,
    owner_id: uuid.UUID,
) -> int:
    if owner_id == actor_id:
        return 0

    content = NotificationContent(
        type=NotificationType.TASK,
        title="Task assigned to you",
        description=f"{actor_name} assigned you: {task_title}",
        href=f"/tasks?taskId={task_id}",
    )
    recipients = [Recipient(user_id=owner_id, reason=RecipientReason.TASK_ASSIGNEE)]
    return await _notify(db, parish_id, recipients, content, f"task_assigned:{task_id}:{owner_id}")


async def notify_task_comment(
    db: AsyncSession,
    task_id: uuid.UUID,
    comment_id: uuid.UUID,
    parish_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_name: str,
    body: str,
) -> int:
    recipients = await resolve_task_watcher_audience(db, task_id, parish_id, actor_id=actor_id)
    if not recipients:
        return 0

    content = NotificationContent(
        type=NotificationType.TASK,
        title=f"{actor_name} commented on a serve card",
        description=truncate(body),
        href=f"/tasks?taskId={task_id}",
    )
    return await _notify(db, parish_id, recipients, content, f"task_comment:{comment_id}")


async def notify_task_status_changed(
    db: AsyncSession,
    task_id: uuid.UUID,
    parish_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_name: str,
    task_title: str,
    status_label: str,
    changed_at: datetime,
) -> int:
    recipients = await resolve_task_watcher_audience(db, task_id, parish_id, actor_id=actor_id)
    if not recipients:
        return 0

    content = NotificationContent(
        type=NotificationType.TASK,
        title=f"{actor_name} updated a serve card",
        description=f"{task_title} is now {status_label}",
        href=f"/tasks?taskId={task_id}",
    )
    # Keyed by the change itself, so reverting to an earlier status notifies again
    reference = f"task_status:{task_id}:{changed_at.isoformat()}"
    return await _notify(db, parish_id, recipients, content, reference)


async def notify_content_report_submitted(
    db: AsyncSession,
    report_id: uuid.UUID,
    parish_id: uuid.UUID,
    reporter_id: uuid.UUID,
    title: str,
    href: str,
) -> int:
    """Tell parish leaders about a new content report or request."""
    recipients = await resolve_parish_leaders_audience(db, parish_id, actor_id=reporter_id)
    content = NotificationContent(
        type=NotificationType.REQUEST,
        title="New content report submitted",
        description=title,
        href=href,
    )
    return await _notify(db, parish_id, recipients, content, f"report:{report_id}")
