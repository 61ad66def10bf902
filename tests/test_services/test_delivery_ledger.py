"""Tests for the delivery ledger."""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, insert, select, update

from parish_notify.core.datetime_utils import utc_now
from parish_notify.core.errors import DeliveryError
from parish_notify.models.delivery import (
    AttemptStatus,
    DeliveryAttempt,
    DeliveryChannel,
    DeliveryRecord,
    DeliveryStatus,
)
from parish_notify.schemas.delivery import DedupeKey, DeliveryRequest, PushTarget
from parish_notify.services.delivery_ledger import (
    EmailCategory,
    EmailPreferences,
    attempt_delivery,
    mask_target,
    send_email_if_allowed,
    should_send_email,
)

pytestmark = pytest.mark.asyncio

SEND_EMAIL = "parish_notify.services.delivery_ledger.send_resend_email"
SEND_PUSH = "parish_notify.services.delivery_ledger.send_web_push"


def _email_request(key_type: str = "welcome", to: str = "alice@example.com", **dedupe):
    return DeliveryRequest(
        channel=DeliveryChannel.EMAIL,
        type=key_type,
        template="welcome",
        dedupe=DedupeKey(type=key_type, to_email=to, **dedupe),
        to_email=to,
        subject="Welcome",
        html="<p>Welcome</p>",
    )


async def _record_state(db_session, key: str):
    result = await db_session.execute(
        select(DeliveryRecord.status, DeliveryRecord.attempts, DeliveryRecord.error).where(
            DeliveryRecord.dedupe_key == key
        )
    )
    return result.one()


async def _attempt_count(db_session) -> int:
    result = await db_session.execute(select(func.count(DeliveryAttempt.id)))
    return result.scalar()


class TestDedupeKey:
    """Tests for DedupeKey rendering."""

    def test_canonical_field_order(self):
        """Should render set fields in canonical order regardless of input order."""
        user_id = uuid.uuid4()
        key = DedupeKey(reference_id="r1", user_id=user_id, type="message", date_key="2026-03-14")

        assert key.as_key() == f"type=message|date_key=2026-03-14|user_id={user_id}|reference_id=r1"

    def test_email_normalized(self):
        """Email casing and surrounding whitespace should not change the key."""
        a = DedupeKey(type="welcome", to_email=" Alice@Example.com ")
        b = DedupeKey(type="welcome", to_email="alice@example.com")

        assert a.as_key() == b.as_key()


class TestMaskTarget:
    """Tests for mask_target."""

    def test_masks_email_local_part(self):
        """Should keep only the first character and the domain."""
        assert mask_target(DeliveryChannel.EMAIL, "alice@example.com") == "a***@example.com"

    def test_masks_push_path(self):
        """Should keep only the push service host."""
        masked = mask_target(DeliveryChannel.PUSH, "https://fcm.googleapis.com/fcm/send/abc123")
        assert masked == "https://fcm.googleapis.com/***"

    def test_unparseable(self):
        """Should fully mask values it cannot parse."""
        assert mask_target(DeliveryChannel.EMAIL, "not-an-email") == "***"
        assert mask_target(DeliveryChannel.PUSH, "garbage") == "***"


class TestEmailPreferences:
    """Tests for should_send_email."""

    def test_transactional_ignores_opt_out(self):
        """Transactional mail should always be sent."""
        prefs = EmailPreferences(notify_email_enabled=False, weekly_digest_enabled=False)
        assert should_send_email(EmailCategory.TRANSACTIONAL, prefs) is True

    def test_notification_and_digest_honour_prefs(self):
        """Notification and digest mail should follow their own switch."""
        prefs = EmailPreferences(notify_email_enabled=False, weekly_digest_enabled=True)

        assert should_send_email(EmailCategory.NOTIFICATION, prefs) is False
        assert should_send_email(EmailCategory.DIGEST, prefs) is True

    async def test_opted_out_skips_without_ledger_row(self, db_session):
        """An opted-out member should be skipped before any claim is made."""
        request = _email_request()
        prefs = EmailPreferences(notify_email_enabled=False)

        with patch(SEND_EMAIL, new_callable=AsyncMock) as mock_send:
            result = await send_email_if_allowed(
                db_session, request, EmailCategory.NOTIFICATION, prefs
            )

        assert result.status == "SKIPPED"
        assert result.error == "opted_out"
        mock_send.assert_not_called()
        count = await db_session.execute(select(func.count(DeliveryRecord.id)))
        assert count.scalar() == 0


class TestAttemptDelivery:
    """Tests for attempt_delivery."""

    async def test_sends_once_then_skips(self, db_session):
        """A second attempt with the same key should skip without calling transport."""
        request = _email_request()
        key = request.dedupe.as_key()

        with patch(SEND_EMAIL, new_callable=AsyncMock, return_value="msg_1") as mock_send:
            first = await attempt_delivery(db_session, request)
            second = await attempt_delivery(db_session, request)

        assert first.status == "SENT"
        assert first.provider_message_id == "msg_1"
        assert second.status == "SKIPPED"
        assert second.error == "already_sent"
        assert mock_send.await_count == 1

        state = await _record_state(db_session, key)
        assert state.status == DeliveryStatus.SENT
        assert state.attempts == 1
        # Skips write no observability entry
        assert await _attempt_count(db_session) == 1

    async def test_failure_records_and_allows_retry(self, db_session):
        """A failed send should leave a FAILED row that the next attempt re-claims."""
        request = _email_request()
        key = request.dedupe.as_key()

        with patch(
            SEND_EMAIL,
            new_callable=AsyncMock,
            side_effect=DeliveryError("Resend rejected email (422)", status_code=422),
        ):
            failed = await attempt_delivery(db_session, request)

        assert failed.status == "FAILED"
        assert failed.status_code == 422
        state = await _record_state(db_session, key)
        assert state.status == DeliveryStatus.FAILED
        assert "422" in state.error

        with patch(SEND_EMAIL, new_callable=AsyncMock, return_value="msg_2") as mock_send:
            retried = await attempt_delivery(db_session, request)

        assert retried.status == "SENT"
        assert retried.record_id == failed.record_id
        mock_send.assert_awaited_once()
        state = await _record_state(db_session, key)
        assert state.status == DeliveryStatus.SENT
        assert state.attempts == 2
        assert state.error is None

        statuses = await db_session.execute(
            select(DeliveryAttempt.status).order_by(DeliveryAttempt.created_at)
        )
        assert set(statuses.scalars().all()) == {AttemptStatus.FAILURE, AttemptStatus.SUCCESS}

    async def test_fresh_pending_claim_is_in_flight(self, db_session):
        """A live PENDING claim should make concurrent attempts skip."""
        request = _email_request()
        key = request.dedupe.as_key()
        await db_session.execute(
            insert(DeliveryRecord).values(
                id=uuid.uuid4(),
                channel=DeliveryChannel.EMAIL,
                dedupe_key=key,
                type="welcome",
                status=DeliveryStatus.PENDING,
                target="alice@example.com",
                template="welcome",
                attempts=1,
                updated_at=utc_now(),
            )
        )
        await db_session.commit()

        with patch(SEND_EMAIL, new_callable=AsyncMock) as mock_send:
            result = await attempt_delivery(db_session, request)

        assert result.status == "SKIPPED"
        assert result.error == "in_flight"
        mock_send.assert_not_called()

    async def test_stale_pending_claim_is_reclaimed(self, db_session):
        """A PENDING claim older than the TTL should be taken over."""
        request = _email_request()
        key = request.dedupe.as_key()
        await db_session.execute(
            insert(DeliveryRecord).values(
                id=uuid.uuid4(),
                channel=DeliveryChannel.EMAIL,
                dedupe_key=key,
                type="welcome",
                status=DeliveryStatus.PENDING,
                target="alice@example.com",
                template="welcome",
                attempts=1,
                updated_at=utc_now() - timedelta(hours=1),
            )
        )
        await db_session.commit()

        with patch(SEND_EMAIL, new_callable=AsyncMock, return_value=None):
            result = await attempt_delivery(db_session, request)

        assert result.status == "SENT"
        state = await _record_state(db_session, key)
        assert state.attempts == 2

    async def test_insert_race_lost_to_concurrent_worker(self, db_session):
        """A key inserted by another worker after the lookup should skip the attempt."""
        request = _email_request()
        key = request.dedupe.as_key()
        real_execute = db_session.execute
        raced = []

        async def racing_execute(statement, *args, **kwargs):
            result = await real_execute(statement, *args, **kwargs)
            if not raced:
                # The other worker inserts right after our lookup found nothing
                raced.append(True)
                await real_execute(
                    insert(DeliveryRecord).values(
                        id=uuid.uuid4(),
                        channel=DeliveryChannel.EMAIL,
                        dedupe_key=key,
                        type="welcome",
                        status=DeliveryStatus.PENDING,
                        target="alice@example.com",
                        template="welcome",
                        attempts=1,
                        updated_at=utc_now(),
                    )
                )
                await db_session.commit()
            return result

        with (
            patch.object(db_session, "execute", new=racing_execute),
            patch(SEND_EMAIL, new_callable=AsyncMock) as mock_send,
        ):
            result = await attempt_delivery(db_session, request)

        assert result.status == "SKIPPED"
        assert result.error == "claim_lost"
        mock_send.assert_not_called()
        count = await db_session.execute(
            select(func.count(DeliveryRecord.id)).where(DeliveryRecord.dedupe_key == key)
        )
        assert count.scalar() == 1

    async def test_reclaim_race_lost_to_concurrent_worker(self, db_session):
        """Only one worker should win the compare-and-set on a FAILED row."""
        request = _email_request()
        key = request.dedupe.as_key()
        await db_session.execute(
            insert(DeliveryRecord).values(
                id=uuid.uuid4(),
                channel=DeliveryChannel.EMAIL,
                dedupe_key=key,
                type="welcome",
                status=DeliveryStatus.FAILED,
                target="alice@example.com",
                template="welcome",
                attempts=1,
                updated_at=utc_now(),
            )
        )
        await db_session.commit()
        real_execute = db_session.execute
        raced = []

        async def racing_execute(statement, *args, **kwargs):
            result = await real_execute(statement, *args, **kwargs)
            if not raced:
                # The other worker re-claims the row right after our lookup
                raced.append(True)
                await real_execute(
                    update(DeliveryRecord)
                    .where(DeliveryRecord.dedupe_key == key)
                    .values(status=DeliveryStatus.PENDING, attempts=2)
                )
                await db_session.commit()
            return result

        with (
            patch.object(db_session, "execute", new=racing_execute),
            patch(SEND_EMAIL, new_callable=AsyncMock) as mock_send,
        ):
            result = await attempt_delivery(db_session, request)

        assert result.status == "SKIPPED"
        assert result.error == "claim_lost"
        mock_send.assert_not_called()
        state = await _record_state(db_session, key)
        assert (state.status, state.attempts) == (DeliveryStatus.PENDING, 2)

    async def test_unvalidated_request_fails_without_transport(self, db_session):
        """A push request built without a target should fail instead of raising."""
        request = DeliveryRequest.model_construct(
            channel=DeliveryChannel.PUSH, type="push_message", template="push_message"
        )

        with patch(SEND_PUSH, new_callable=AsyncMock) as mock_push:
            result = await attempt_delivery(db_session, request)

        assert result.status == "FAILED"
        assert "push target" in result.error
        mock_push.assert_not_called()

    async def test_distinct_keys_send_independently(self, db_session):
        """Different dedupe attributes should be separate deliveries."""
        with patch(SEND_EMAIL, new_callable=AsyncMock, return_value=None) as mock_send:
            a = await attempt_delivery(db_session, _email_request(date_key="2026-03-14"))
            b = await attempt_delivery(db_session, _email_request(date_key="2026-03-15"))

        assert (a.status, b.status) == ("SENT", "SENT")
        assert mock_send.await_count == 2

    async def test_no_dedupe_key_always_sends(self, db_session):
        """Requests without a dedupe key should never be skipped."""
        request = _email_request().model_copy(update={"dedupe": None})

        with patch(SEND_EMAIL, new_callable=AsyncMock, return_value=None) as mock_send:
            await attempt_delivery(db_session, request)
            await attempt_delivery(db_session, request)

        assert mock_send.await_count == 2

    async def test_missing_sender_fails_without_transport(self, db_session, test_env):
        """Missing EMAIL_FROM and EMAIL_FROM_DEFAULT should fail before the transport."""
        test_env(EMAIL_FROM="", EMAIL_FROM_DEFAULT="")
        request = _email_request()

        with patch(SEND_EMAIL, new_callable=AsyncMock) as mock_send:
            result = await attempt_delivery(db_session, request)

        assert result.status == "FAILED"
        assert "EMAIL_FROM" in result.error
        mock_send.assert_not_called()
        state = await _record_state(db_session, request.dedupe.as_key())
        assert state.status == DeliveryStatus.FAILED

    async def test_missing_api_key_fails_without_transport(self, db_session, test_env):
        """Missing RESEND_API_KEY should fail before the transport."""
        test_env(RESEND_API_KEY="")

        with patch(SEND_EMAIL, new_callable=AsyncMock) as mock_send:
            result = await attempt_delivery(db_session, _email_request())

        assert result.status == "FAILED"
        assert "RESEND_API_KEY" in result.error
        mock_send.assert_not_called()

    async def test_parish_sender_override(self, db_session, parish_factory):
        """A parish's own From and Reply-To should win over the environment."""
        parish = await parish_factory(
            email_from="St. Mary <office@stmary.test>", email_reply_to="priest@stmary.test"
        )
        request = _email_request().model_copy(update={"parish_id": parish.id})

        with patch(SEND_EMAIL, new_callable=AsyncMock, return_value=None) as mock_send:
            await attempt_delivery(db_session, request)

        sender = mock_send.await_args.kwargs["sender"]
        assert sender.from_address == "St. Mary <office@stmary.test>"
        assert sender.reply_to == "priest@stmary.test"

    async def test_push_delivery(self, db_session):
        """Push requests should go through the push transport with their payload."""
        target = PushTarget(endpoint="https://push.example.com/abc", p256dh="k", auth="a")
        request = DeliveryRequest(
            channel=DeliveryChannel.PUSH,
            type="message",
            template="push",
            dedupe=DedupeKey(type="message", endpoint=target.endpoint, reference_id="m1"),
            push=target,
            payload={"title": "New message"},
        )

        with patch(SEND_PUSH, new_callable=AsyncMock) as mock_push:
            result = await attempt_delivery(db_session, request)

        assert result.status == "SENT"
        mock_push.assert_awaited_once_with(target, {"title": "New message"})

    async def test_observability_entry_is_masked(self, db_session):
        """The attempt log should store a masked target, never the raw address."""
        with patch(SEND_EMAIL, new_callable=AsyncMock, return_value=None):
            await attempt_delivery(db_session, _email_request(to="alice@example.com"))

        result = await db_session.execute(select(DeliveryAttempt.target, DeliveryAttempt.status))
        row = result.one()
        assert row.target == "a***@example.com"
        assert row.status == AttemptStatus.SUCCESS

    async def test_observability_failure_does_not_change_outcome(self, db_session):
        """A failing attempt log write should not turn a SENT delivery into an error."""
        with (
            patch(SEND_EMAIL, new_callable=AsyncMock, return_value="msg_1"),
            patch(
                "parish_notify.services.delivery_ledger.mask_target",
                side_effect=RuntimeError("log store down"),
            ),
        ):
            result = await attempt_delivery(db_session, _email_request())

        assert result.status == "SENT"


class TestDeliveryRequest:
    """Tests for DeliveryRequest validation."""

    def test_email_requires_address(self):
        """Email requests without to_email should be rejected."""
        with pytest.raises(ValueError):
            DeliveryRequest(channel=DeliveryChannel.EMAIL, type="x", template="x")

    def test_push_requires_target(self):
        """Push requests without a subscription should be rejected."""
        with pytest.raises(ValueError):
            DeliveryRequest(channel=DeliveryChannel.PUSH, type="x", template="x")
