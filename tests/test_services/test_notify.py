"""Tests for in-app notifications and push fan-out."""

import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from parish_notify.core.errors import PushSubscriptionGone
from parish_notify.models import ChannelType, EventVisibility, GroupVisibility, MembershipRole
from parish_notify.models.notification import Notification, NotificationType, PushSubscription
from parish_notify.services.notify import (
    NotificationContent,
    chat_notification_copy,
    notify_announcement_published,
    notify_chat_message,
    notify_content_report_submitted,
    notify_event_created,
    notify_event_reminder,
    notify_task_assigned,
    notify_task_comment,
    notify_task_status_changed,
    send_push_to_users,
    truncate,
)

pytestmark = pytest.mark.asyncio

SEND_PUSH = "parish_notify.services.delivery_ledger.send_web_push"
SUNDAY_MASS = datetime(2026, 3, 15, 10, 0)


async def _notified_user_ids(db_session) -> set[uuid.UUID]:
    result = await db_session.execute(select(Notification.user_id))
    return set(result.scalars().all())


@pytest.fixture
def push_enabled(test_env):
    test_env(VAPID_PUBLIC_KEY="public-key", VAPID_PRIVATE_KEY="private-key")


class TestChatNotificationCopy:
    """Tests for chat_notification_copy."""

    def test_private_group_hides_everything(self):
        """A private group channel should reveal neither name nor body."""
        title, description = chat_notification_copy(
            "Prayer Team", ChannelType.GROUP, GroupVisibility.PRIVATE, "Ann", "secret"
        )

        assert title == "New message"
        assert "Prayer Team" not in description
        assert "secret" not in description

    def test_public_group_hides_body(self):
        """A public group channel should name the channel but not show the body."""
        title, description = chat_notification_copy(
            "Choir", ChannelType.GROUP, GroupVisibility.PUBLIC, "Ann", "rehearsal moved"
        )

        assert title == "Ann in Choir"
        assert "rehearsal moved" not in description

    def test_parish_channel_shows_snippet(self):
        """Parish channels should show a truncated body."""
        body = "x" * 150
        _, description = chat_notification_copy(
            "General", ChannelType.PARISH_ANNOUNCEMENT, None, "Ann", body
        )

        assert description == truncate(body)
        assert len(description) == 100
        assert description.endswith("...")


class TestNotifyChatMessage:
    """Tests for notify_chat_message."""

    async def test_notifies_audience_except_author(
        self, db_session, parish_factory, member_factory, channel_factory
    ):
        """Every recipient except the author should get one notification."""
        parish = await parish_factory()
        author = await member_factory(parish)
        alice = await member_factory(parish)
        bob = await member_factory(parish)
        channel = await channel_factory(parish)

        count = await notify_chat_message(
            db_session, channel.id, uuid.uuid4(), author.id, "Author", "Hello all"
        )

        assert count == 2
        assert await _notified_user_ids(db_session) == {alice.id, bob.id}

    async def test_respects_in_app_preference(
        self, db_session, parish_factory, member_factory, channel_factory
    ):
        """Members who turned message notifications off should be skipped."""
        parish = await parish_factory()
        author = await member_factory(parish)
        muted = await member_factory(parish, notify_message_in_app=False)
        listening = await member_factory(parish)
        channel = await channel_factory(parish)

        await notify_chat_message(db_session, channel.id, uuid.uuid4(), author.id, "A", "Hi")

        ids = await _notified_user_ids(db_session)
        assert muted.id not in ids
        assert ids == {listening.id}

    async def test_unknown_channel(self, db_session):
        """An unknown channel should notify nobody."""
        count = await notify_chat_message(
            db_session, uuid.uuid4(), uuid.uuid4(), uuid.uuid4(), "A", "Hi"
        )
        assert count == 0


class TestNotifyOthers:
    """Tests for announcement, task and report notifications."""

    async def test_announcement_targets_explicit_audience(
        self, db_session, parish_factory, member_factory, announcement_factory
    ):
        """An announcement with explicit ids should reach only those members."""
        parish = await parish_factory()
        publisher = await member_factory(parish, role=MembershipRole.ADMIN)
        target = await member_factory(parish)
        await member_factory(parish)
        announcement = await announcement_factory(parish, audience_user_ids=[str(target.id)])

        count = await notify_announcement_published(
            db_session, announcement.id, parish.id, publisher.id
        )

        assert count == 1
        assert await _notified_user_ids(db_session) == {target.id}

    async def test_self_assignment_is_silent(self, db_session):
        """Assigning a task to yourself should notify nobody."""
        actor = uuid.uuid4()

        count = await notify_task_assigned(
            db_session, uuid.uuid4(), "Chairs", uuid.uuid4(), actor, "Ann", actor
        )

        assert count == 0

    async def test_task_comment_reaches_watchers(
        self, db_session, parish_factory, member_factory, task_factory
    ):
        """A comment should reach creator and volunteers except the commenter."""
        parish = await parish_factory()
        creator = await member_factory(parish)
        volunteer = await member_factory(parish)
        task = await task_factory(parish, creator, volunteers=[volunteer])

        count = await notify_task_comment(
            db_session, task.id, uuid.uuid4(), parish.id, volunteer.id, "Vol", "On my way"
        )

        assert count == 1
        assert await _notified_user_ids(db_session) == {creator.id}

    async def test_report_reaches_leaders(self, db_session, parish_factory, member_factory):
        """A content report should reach admins and shepherds."""
        parish = await parish_factory()
        reporter = await member_factory(parish)
        admin = await member_factory(parish, role=MembershipRole.ADMIN)
        await member_factory(parish)

        count = await notify_content_report_submitted(
            db_session, uuid.uuid4(), parish.id, reporter.id, "Spam", "/admin/reports"
        )

        assert count == 1
        assert await _notified_user_ids(db_session) == {admin.id}

    async def test_event_created_reaches_group_only(
        self, db_session, parish_factory, member_factory, group_factory, event_factory
    ):
        """A group event should notify active group members except the creator."""
        parish = await parish_factory()
        creator = await member_factory(parish)
        member = await member_factory(parish)
        await member_factory(parish)
        group = await group_factory(parish, members=[creator, member])
        event = await event_factory(parish, visibility=EventVisibility.GROUP, group=group)

        count = await notify_event_created(db_session, event.id, parish.id, creator.id)

        assert count == 1
        assert await _notified_user_ids(db_session) == {member.id}

    async def test_event_reminder_never_widens_candidates(
        self, db_session, parish_factory, member_factory, event_factory
    ):
        """Only candidates who are in the event audience should be reminded."""
        parish = await parish_factory()
        other_parish = await parish_factory()
        member = await member_factory(parish)
        outsider = await member_factory(other_parish)
        event = await event_factory(parish)

        count = await notify_event_reminder(
            db_session, event.id, parish.id, [member.id, outsider.id], SUNDAY_MASS, "Sun 10:00"
        )

        assert count == 1
        assert await _notified_user_ids(db_session) == {member.id}

    async def test_deleted_event_is_silent(
        self, db_session, parish_factory, member_factory, event_factory
    ):
        """A deleted event should produce no reminders."""
        parish = await parish_factory()
        member = await member_factory(parish)
        event = await event_factory(parish, deleted=True)

        count = await notify_event_reminder(
            db_session, event.id, parish.id, [member.id], SUNDAY_MASS, "Sun 10:00"
        )

        assert count == 0

    async def test_task_status_reaches_owner_and_volunteers(
        self, db_session, parish_factory, member_factory, task_factory
    ):
        """A status change should reach every watcher except the actor."""
        parish = await parish_factory()
        creator = await member_factory(parish)
        owner = await member_factory(parish)
        volunteer = await member_factory(parish)
        task = await task_factory(parish, creator, owner=owner, volunteers=[volunteer])

        count = await notify_task_status_changed(
            db_session,
            task.id,
            parish.id,
            creator.id,
            "Ann",
            task.title,
            "Done",
            datetime(2026, 3, 1, 10, 0),
        )

        assert count == 2
        assert await _notified_user_ids(db_session) == {owner.id, volunteer.id}


class TestSendPushToUsers:
    """Tests for push fan-out through the ledger."""

    CONTENT = NotificationContent(type=NotificationType.MESSAGE, title="Hi", href="/chat")

    async def test_push_not_configured(
        self, db_session, parish_factory, member_factory, push_subscription_factory
    ):
        """Without VAPID keys no push should be attempted."""
        parish = await parish_factory()
        user = await member_factory(parish)
        await push_subscription_factory(parish, user)

        with patch(SEND_PUSH, new_callable=AsyncMock) as mock_push:
            sent = await send_push_to_users(db_session, parish.id, [user.id], self.CONTENT, "m:1")

        assert sent == 0
        mock_push.assert_not_called()

    async def test_each_browser_pushed_once(
        self, db_session, push_enabled, parish_factory, member_factory, push_subscription_factory
    ):
        """Re-running the same fan-out should not push to a browser twice."""
        parish = await parish_factory()
        user = await member_factory(parish)
        await push_subscription_factory(parish, user)
        await push_subscription_factory(parish, user)

        with patch(SEND_PUSH, new_callable=AsyncMock) as mock_push:
            first = await send_push_to_users(db_session, parish.id, [user.id], self.CONTENT, "m:1")
            second = await send_push_to_users(
                db_session, parish.id, [user.id], self.CONTENT, "m:1"
            )

        assert (first, second) == (2, 0)
        assert mock_push.await_count == 2

    async def test_gone_subscription_removed(
        self, db_session, push_enabled, parish_factory, member_factory, push_subscription_factory
    ):
        """A 410 from the push service should delete the subscription."""
        parish = await parish_factory()
        user = await member_factory(parish)
        subscription = await push_subscription_factory(parish, user)
        endpoint = subscription.endpoint

        with patch(
            SEND_PUSH,
            new_callable=AsyncMock,
            side_effect=PushSubscriptionGone(endpoint, 410),
        ):
            sent = await send_push_to_users(db_session, parish.id, [user.id], self.CONTENT, "m:1")

        assert sent == 0
        remaining = await db_session.execute(
            select(func.count(PushSubscription.id)).where(PushSubscription.endpoint == endpoint)
        )
        assert remaining.scalar() == 0

    async def test_notification_triggers_push(
        self, db_session, push_enabled, parish_factory, member_factory,
        channel_factory, push_subscription_factory,
    ):
        """A chat message should push to recipients' browsers with the message tag."""
        parish = await parish_factory()
        author = await member_factory(parish)
        reader = await member_factory(parish)
        await push_subscription_factory(parish, reader)
        channel = await channel_factory(parish)
        message_id = uuid.uuid4()

        with patch(SEND_PUSH, new_callable=AsyncMock) as mock_push:
            await notify_chat_message(db_session, channel.id, message_id, author.id, "A", "Hi")

        mock_push.assert_awaited_once()
        payload = mock_push.await_args.args[1]
        assert payload["tag"] == f"message:{message_id}"
        assert payload["url"] == f"/community/chat?channel={channel.id}"

    async def test_status_toggle_pushes_every_change(
        self, db_session, push_enabled, parish_factory, member_factory,
        task_factory, push_subscription_factory,
    ):
        """Done, Open, then Done again should push three times."""
        parish = await parish_factory()
        creator = await member_factory(parish)
        owner = await member_factory(parish)
        await push_subscription_factory(parish, owner)
        task = await task_factory(parish, creator, owner=owner)
        changed_at = datetime(2026, 3, 1, 10, 0)

        with patch(SEND_PUSH, new_callable=AsyncMock) as mock_push:
            for minutes, label in enumerate(["Done", "Open", "Done"]):
                await notify_task_status_changed(
                    db_session,
                    task.id,
                    parish.id,
                    creator.id,
                    "Ann",
                    task.title,
                    label,
                    changed_at + timedelta(minutes=minutes),
                )

        assert mock_push.await_count == 3

    async def test_reminder_pushed_once_per_occurrence(
        self, db_session, push_enabled, parish_factory, member_factory,
        event_factory, push_subscription_factory,
    ):
        """Each occurrence gets one reminder push, repeats of it get none."""
        parish = await parish_factory()
        member = await member_factory(parish)
        await push_subscription_factory(parish, member)
        event = await event_factory(parish)
        next_week = SUNDAY_MASS + timedelta(days=7)

        with patch(SEND_PUSH, new_callable=AsyncMock) as mock_push:
            for starts_at in (SUNDAY_MASS, SUNDAY_MASS, next_week):
                await notify_event_reminder(
                    db_session, event.id, parish.id, [member.id], starts_at, "Sun 10:00"
                )

        assert mock_push.await_count == 2
