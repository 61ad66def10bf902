"""Exception types raised by transports and configuration checks.

Delivery conditions (duplicate, failed send, missing config) never escape
the ledger as exceptions; these types exist so transports can describe a
failure precisely and the ledger can record it.
"""


class NotifyError(Exception):
    """Base class for notification engine errors."""


class ConfigurationError(NotifyError):
    """Required sender identity or credentials are not configured."""


class DeliveryError(NotifyError):
    """A provider rejected the message or retries were exhausted."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PushSubscriptionGone(DeliveryError):
    """The push service reported the subscription as expired (404/410)."""

    def __init__(self, endpoint: str, status_code: int) -> None:
        super().__init__(f"Push subscription gone ({status_code})", status_code=status_code)
        self.endpoint = endpoint
