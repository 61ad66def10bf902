"""Notification fan-out and delivery-idempotency engine for the parish portal."""

__version__ = "0.1.0"
