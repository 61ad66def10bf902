import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from parish_notify.models.delivery import DeliveryChannel

# Field order is the canonical rendering order of a dedupe key.
DEDUPE_KEY_FIELDS = (
    "type",
    "join_request_id",
    "parish_id",
    "week_id",
    "date_key",
    "user_id",
    "to_email",
    "endpoint",
    "reference_id",
)


class DedupeKey(BaseModel):
    """The subset of attributes that identifies one logical delivery.

    Callers supply only the fields that disambiguate their message class;
    unset fields are left out of the rendered key.
    """

    type: str = Field(min_length=1, max_length=64)
    join_request_id: str | None = None
    parish_id: str | None = None
    week_id: str | None = None
    date_key: str | None = None
    user_id: str | None = None
    to_email: str | None = None
    endpoint: str | None = None
    reference_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def stringify_ids(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: str(v) if isinstance(v, uuid.UUID) else v for k, v in data.items()
            }
        return data

    def as_key(self) -> str:
        parts = []
        for name in DEDUPE_KEY_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "to_email":
                value = value.strip().lower()
            parts.append(f"{name}={value}")
        return "|".join(parts)


class PushTarget(BaseModel):
    """A browser push subscription (endpoint plus its encryption keys)."""

    endpoint: str
    p256dh: str
    auth: str


class DeliveryRequest(BaseModel):
    """One message to one recipient through one channel."""

    channel: DeliveryChannel
    type: str
    template: str
    dedupe: DedupeKey | None = None
    user_id: uuid.UUID | None = None
    parish_id: uuid.UUID | None = None

    # Email
    to_email: str | None = None
    subject: str | None = None
    html: str | None = None
    text: str | None = None

    # Push
    push: PushTarget | None = None
    payload: dict[str, Any] | None = None

    # Extra fields written to the observability log
    context: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_channel_target(self) -> "DeliveryRequest":
        if self.channel == DeliveryChannel.EMAIL and not self.to_email:
            raise ValueError("email delivery requires to_email")
        if self.channel == DeliveryChannel.PUSH and self.push is None:
            raise ValueError("push delivery requires a push target")
        return self

    @property
    def target(self) -> str:
        if self.channel == DeliveryChannel.EMAIL:
            return self.to_email or ""
        return self.push.endpoint if self.push else ""


class DeliveryResult(BaseModel):
    status: Literal["SENT", "SKIPPED", "FAILED"]
    record_id: uuid.UUID | None = None
    error: str | None = None
    # Provider status code of a terminal failure, if one was returned
    status_code: int | None = None
    provider_message_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "SENT"
