"""Delivery ledger: at-most-one effective send per dedupe key.

A dedupe key is claimed before any transport call by inserting a PENDING
row. The unique index on ``delivery_records.dedupe_key`` turns a race
between two workers into exactly one successful insert. FAILED rows, and
PENDING rows abandoned by a crashed worker, are re-claimed with a
compare-and-set UPDATE on the attempt counter so retries converge on the
same row instead of inserting a second one.

Delivery conditions never raise out of ``attempt_delivery``; callers get a
``DeliveryResult`` with status SENT, SKIPPED or FAILED.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parish_notify.config import get_config, get_settings
from parish_notify.core.datetime_utils import utc_now
from parish_notify.core.errors import ConfigurationError, DeliveryError
from parish_notify.core.logging import get_logger
from parish_notify.models.delivery import (
    AttemptStatus,
    DeliveryAttempt,
    DeliveryChannel,
    DeliveryRecord,
    DeliveryStatus,
)
from parish_notify.models.parish import Parish
from parish_notify.models.user import User
from parish_notify.schemas.delivery import DeliveryRequest, DeliveryResult
from parish_notify.services.transports import (
    MISSING_SENDER_ERROR,
    resolve_email_sender,
    send_resend_email,
    send_web_push,
)

logger = get_logger(__name__)

# Reasons carried in DeliveryResult.error for SKIPPED results
SKIP_ALREADY_SENT = "already_sent"
SKIP_IN_FLIGHT = "in_flight"
SKIP_CLAIM_LOST = "claim_lost"
# Another worker holds the key; the message may still go out
CONCURRENT_SKIP_REASONS = frozenset({SKIP_IN_FLIGHT, SKIP_CLAIM_LOST})


class EmailCategory(str, enum.Enum):
    TRANSACTIONAL = "TRANSACTIONAL"
    NOTIFICATION = "NOTIFICATION"
    DIGEST = "DIGEST"


@dataclass(frozen=True)
class EmailPreferences:
    notify_email_enabled: bool = True
    weekly_digest_enabled: bool = True

    @classmethod
    def from_user(cls, user: User) -> "EmailPreferences":
        return cls(
            notify_email_enabled=user.notify_email_enabled,
            weekly_digest_enabled=user.weekly_digest_enabled,
        )


@dataclass(frozen=True)
class _Claim:
    record_id: uuid.UUID
    attempts: int


def should_send_email(category: EmailCategory, prefs: EmailPreferences | None) -> bool:
    """Transactional mail always goes out; other classes honour the member's opt-out."""
    if category == EmailCategory.TRANSACTIONAL or prefs is None:
        return True
    if category == EmailCategory.DIGEST:
        return prefs.weekly_digest_enabled
    return prefs.notify_email_enabled


def mask_target(channel: DeliveryChannel, target: str) -> str:
    """Mask an email local part or a push endpoint path for operational logs."""
    if channel == DeliveryChannel.EMAIL:
        local, sep, domain = target.partition("@")
        if not sep:
            return "***"
        return f"{local[:1]}***@{domain}"

    parsed = urlparse(target)
    if not parsed.netloc:
        return "***"
    return f"{parsed.scheme}://{parsed.netloc}/***"


async def record_delivery_attempt(
    db: AsyncSession,
    channel: DeliveryChannel,
    status: AttemptStatus,
    target: str,
    template: str,
    parish_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    context: dict[str, Any] | None = None,
    error_message: str | None = None,
) -> None:
    """Write a best-effort observability entry. Failures are logged, never raised."""
    try:
        db.add(
            DeliveryAttempt(
                channel=channel,
                status=status,
                parish_id=parish_id,
                user_id=user_id,
                target=mask_target(channel, target),
                template=template,
                context_json=context,
                error_message=error_message[:2000] if error_message else None,
            )
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.bind(
            channel=channel.value,
            template=template,
            error=str(e),
        ).warning("delivery_attempt_log_failed")


async def _claim(db: AsyncSession, request: DeliveryRequest, key: str | None) -> _Claim | str:
    """Claim the dedupe key for this attempt.

    Returns the claim, or the reason the request must be skipped.
    """
    now = utc_now()

    if key is not None:
        result = await db.execute(
            select(
                DeliveryRecord.id,
                DeliveryRecord.status,
                DeliveryRecord.attempts,
                DeliveryRecord.updated_at,
            ).where(DeliveryRecord.dedupe_key == key)
        )
        existing = result.one_or_none()

        if existing is not None:
            if existing.status == DeliveryStatus.SENT:
                return SKIP_ALREADY_SENT

            ttl = timedelta(seconds=get_config().ledger.claim_ttl_seconds)
            if existing.status == DeliveryStatus.PENDING and existing.updated_at > now - ttl:
                return SKIP_IN_FLIGHT

            # Compare-and-set on the attempt counter; only one worker can win
            cas = await db.execute(
                update(DeliveryRecord)
                .where(
                    DeliveryRecord.id == existing.id,
                    DeliveryRecord.status == existing.status,
                    DeliveryRecord.attempts == existing.attempts,
                )
                .values(
                    status=DeliveryStatus.PENDING,
                    attempts=existing.attempts + 1,
                    updated_at=now,
                    error=None,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if cas.rowcount != 1:
                return SKIP_CLAIM_LOST
            return _Claim(record_id=existing.id, attempts=existing.attempts + 1)

    record_id = uuid.uuid4()
    try:
        await db.execute(
            insert(DeliveryRecord).values(
                id=record_id,
                channel=request.channel,
                dedupe_key=key,
                type=request.type,
                status=DeliveryStatus.PENDING,
                user_id=request.user_id,
                parish_id=request.parish_id,
                target=request.target,
                template=request.template,
                attempts=1,
                created_at=now,
                updated_at=now,
            )
        )
        await db.commit()
    except IntegrityError:
        # Another worker inserted the same key first
        await db.rollback()
        return SKIP_CLAIM_LOST
    return _Claim(record_id=record_id, attempts=1)


async def _finalize(
    db: AsyncSession,
    claim: _Claim,
    status: DeliveryStatus,
    error: str | None = None,
) -> None:
    now = utc_now()
    await db.execute(
        update(DeliveryRecord)
        .where(DeliveryRecord.id == claim.record_id)
        .values(
            status=status,
            sent_at=now if status == DeliveryStatus.SENT else None,
            error=error[:2000] if error else None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _send(db: AsyncSession, request: DeliveryRequest) -> str | None:
    """Run the transport for a claimed request. Returns the provider message id."""
    if request.channel == DeliveryChannel.PUSH:
        if request.push is None:
            raise ValueError("push delivery requires a push target")
        await send_web_push(request.push, request.payload or {})
        return None

    parish_from = parish_reply_to = None
    if request.parish_id is not None:
        result = await db.execute(
            select(Parish.email_from, Parish.email_reply_to).where(Parish.id == request.parish_id)
        )
        row = result.one_or_none()
        if row is not None:
            parish_from, parish_reply_to = row.email_from, row.email_reply_to

    sender = resolve_email_sender(parish_from, parish_reply_to)
    if sender is None:
        raise ConfigurationError(MISSING_SENDER_ERROR)
    if not get_settings().resend_api_key:
        raise ConfigurationError("Missing RESEND_API_KEY")

    if not request.to_email:
        raise ValueError("email delivery requires to_email")
    return await send_resend_email(
        sender=sender,
        to=request.to_email,
        subject=request.subject or "",
        html=request.html or "",
        text=request.text,
    )


async def attempt_delivery(db: AsyncSession, request: DeliveryRequest) -> DeliveryResult:
    """
    Deliver a message at most once per dedupe key.

    1. A key already SENT, or claimed by a live worker, is SKIPPED without
       calling transport or writing any log.
    2. Otherwise the key is claimed (insert, or compare-and-set on a FAILED
       or abandoned row).
    3. Missing sender configuration fails the claim without a transport call.
    4. The transport outcome is written back to the claimed row.
    5. An observability entry is written with its own failure boundary.

    The session is committed by this function; callers must not hold
    uncommitted changes they want to keep when calling it.

    Args:
        db: Database session
        request: Message, recipient and dedupe key

    Returns:
        DeliveryResult with status SENT, SKIPPED or FAILED
    """
    key = request.dedupe.as_key() if request.dedupe else None
    log = logger.bind(
        channel=request.channel.value,
        type=request.type,
        template=request.template,
        dedupe_key=key,
    )

    claim = await _claim(db, request, key)
    if not isinstance(claim, _Claim):
        log.bind(reason=claim).info("delivery_skipped")
        return DeliveryResult(status="SKIPPED", error=claim)

    context = {"type": request.type, **(request.context or {})}

    try:
        provider_id = await _send(db, request)
    except Exception as e:
        error = str(e) or type(e).__name__
        status_code = e.status_code if isinstance(e, DeliveryError) else None
        await _finalize(db, claim, DeliveryStatus.FAILED, error)
        log.bind(
            record_id=str(claim.record_id),
            attempts=claim.attempts,
            status_code=status_code,
            error=error,
        ).warning("delivery_failed")
        await record_delivery_attempt(
            db,
            channel=request.channel,
            status=AttemptStatus.FAILURE,
            target=request.target,
            template=request.template,
            parish_id=request.parish_id,
            user_id=request.user_id,
            context=context,
            error_message=error,
        )
        return DeliveryResult(
            status="FAILED",
            record_id=claim.record_id,
            error=error,
            status_code=status_code,
        )

    await _finalize(db, claim, DeliveryStatus.SENT)
    log.bind(record_id=str(claim.record_id), attempts=claim.attempts).info("delivery_sent")
    await record_delivery_attempt(
        db,
        channel=request.channel,
        status=AttemptStatus.SUCCESS,
        target=request.target,
        template=request.template,
        parish_id=request.parish_id,
        user_id=request.user_id,
        context=context,
    )
    return DeliveryResult(
        status="SENT",
        record_id=claim.record_id,
        provider_message_id=provider_id,
    )


async def send_email_if_allowed(
    db: AsyncSession,
    request: DeliveryRequest,
    category: EmailCategory,
    prefs: EmailPreferences | None = None,
) -> DeliveryResult:
    """Skip the send when the member opted out of this email category."""
    if not should_send_email(category, prefs):
        logger.bind(
            type=request.type,
            category=category.value,
            user_id=str(request.user_id) if request.user_id else None,
        ).debug("email_opted_out")
        return DeliveryResult(status="SKIPPED", error="opted_out")
    return await attempt_delivery(db, request)
