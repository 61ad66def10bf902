from parish_notify.schemas.audience import (
    AudienceKind,
    EligibleChannel,
    Recipient,
    RecipientReason,
)
from parish_notify.schemas.delivery import DedupeKey, DeliveryRequest, DeliveryResult, PushTarget
from parish_notify.schemas.greetings import ReasonCounts, RunSummary
from parish_notify.schemas.read_progress import ChannelReadSnapshot, ReadProgress, ReadState

__all__ = [
    "AudienceKind",
    "EligibleChannel",
    "Recipient",
    "RecipientReason",
    "DedupeKey",
    "DeliveryRequest",
    "DeliveryResult",
    "PushTarget",
    "ReasonCounts",
    "RunSummary",
    "ChannelReadSnapshot",
    "ReadProgress",
    "ReadState",
]
