"""Outbound transports for email (Resend REST API) and web push (VAPID).

Each transport performs one logical send wrapped in ``send_with_retry`` and
raises on a terminal failure. Deduplication and outcome recording belong to
the delivery ledger, not here.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx
from pywebpush import WebPushException, webpush

from parish_notify.config import Settings, get_config, get_settings
from parish_notify.core.errors import ConfigurationError, DeliveryError, PushSubscriptionGone
from parish_notify.core.logging import get_logger
from parish_notify.core.retry import RetryConfig, send_with_retry
from parish_notify.schemas.delivery import PushTarget

logger = get_logger(__name__)

MISSING_SENDER_ERROR = "Missing EMAIL_FROM or EMAIL_FROM_DEFAULT"
GONE_STATUS_CODES = (404, 410)


@dataclass(frozen=True)
class EmailSender:
    from_address: str
    reply_to: str | None = None


@dataclass
class PushResponse:
    """Status-only view of a push service response, for retry classification."""

    status_code: int
    reason: str = ""


def get_missing_email_env(settings: Settings | None = None) -> list[str]:
    """Names of the environment variables email delivery still needs."""
    settings = settings or get_settings()
    missing: list[str] = []
    if not settings.resend_api_key:
        missing.append("RESEND_API_KEY")
    if not (settings.email_from or settings.email_from_default):
        missing.append("EMAIL_FROM/EMAIL_FROM_DEFAULT")
    return missing


def resolve_email_sender(
    parish_email_from: str | None = None,
    parish_reply_to: str | None = None,
    settings: Settings | None = None,
) -> EmailSender | None:
    """Pick the sender identity: parish override, then EMAIL_FROM, then EMAIL_FROM_DEFAULT."""
    settings = settings or get_settings()
    from_address = parish_email_from or settings.email_from or settings.email_from_default
    if not from_address:
        return None
    reply_to = parish_reply_to or settings.email_reply_to or None
    return EmailSender(from_address=from_address, reply_to=reply_to)


def _retry_config() -> RetryConfig:
    transport = get_config().transport
    return RetryConfig(
        max_attempts=transport.max_attempts,
        base_delay_ms=transport.base_delay_ms,
        retryable_exceptions=(httpx.TransportError,),
    )


async def send_resend_email(
    sender: EmailSender,
    to: str,
    subject: str,
    html: str,
    text: str | None = None,
    reply_to: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """
    Send one email through the Resend REST API.

    Args:
        sender: Resolved sender identity
        to: Recipient address
        subject: Subject line
        html: HTML body
        text: Optional plain-text body
        reply_to: Overrides the sender's reply-to address
        client: Optional preconfigured client (tests pass a MockTransport)

    Returns:
        The provider message id, if the API returned one

    Raises:
        ConfigurationError: If RESEND_API_KEY is not set
        DeliveryError: On a 4xx response or a 5xx after retries
    """
    settings = get_settings()
    if not settings.resend_api_key:
        raise ConfigurationError("Missing RESEND_API_KEY")

    payload: dict[str, Any] = {
        "from": sender.from_address,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text
    if reply_to or sender.reply_to:
        payload["reply_to"] = reply_to or sender.reply_to

    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
    timeout = get_config().transport.timeout_seconds

    async def _post(http: httpx.AsyncClient) -> httpx.Response:
        return await send_with_retry(
            lambda: http.post(
                f"{settings.resend_api_url.rstrip('/')}/emails",
                json=payload,
                headers=headers,
                timeout=timeout,
            ),
            config=_retry_config(),
            operation_name="resend_email",
        )

    if client is not None:
        response = await _post(client)
    else:
        async with httpx.AsyncClient() as http:
            response = await _post(http)

    if response.status_code >= 400:
        raise DeliveryError(
            f"Resend rejected email ({response.status_code}): {response.text[:200]}",
            status_code=response.status_code,
        )

    try:
        body = response.json()
    except ValueError:
        body = {}
    return body.get("id") if isinstance(body, dict) else None


def _webpush_once(target: PushTarget, data: str, ttl: int) -> PushResponse:
    settings = get_settings()
    try:
        response = webpush(
            subscription_info={
                "endpoint": target.endpoint,
                "keys": {"p256dh": target.p256dh, "auth": target.auth},
            },
            data=data,
            vapid_private_key=settings.vapid_private_key,
            vapid_claims={"sub": settings.vapid_subject},
            ttl=ttl,
        )
    except WebPushException as e:
        # Surface the push service status so the retry loop can classify it
        if e.response is not None:
            return PushResponse(status_code=e.response.status_code, reason=str(e))
        raise
    return PushResponse(status_code=getattr(response, "status_code", 201))


async def send_web_push(target: PushTarget, payload: dict[str, Any]) -> None:
    """
    Send one web push message.

    pywebpush is synchronous, so each attempt runs in a worker thread.

    Raises:
        ConfigurationError: If VAPID keys are not configured
        PushSubscriptionGone: If the push service answered 404 or 410
        DeliveryError: On any other terminal failure
    """
    settings = get_settings()
    if not (settings.vapid_public_key and settings.vapid_private_key):
        raise ConfigurationError("Missing VAPID_PUBLIC_KEY or VAPID_PRIVATE_KEY")

    data = json.dumps(payload)
    ttl = get_config().push.ttl_seconds

    config = _retry_config()
    config.retryable_exceptions = (WebPushException, OSError)
    response = await send_with_retry(
        lambda: asyncio.to_thread(_webpush_once, target, data, ttl),
        config=config,
        operation_name="web_push",
    )

    if response.status_code in GONE_STATUS_CODES:
        raise PushSubscriptionGone(target.endpoint, response.status_code)
    if response.status_code >= 400:
        raise DeliveryError(
            f"Push service rejected message ({response.status_code})",
            status_code=response.status_code,
        )
