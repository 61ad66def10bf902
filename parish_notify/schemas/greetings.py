from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ReasonCounts(BaseModel):
    """Why parishes or candidates did not produce a sent greeting.

    Serialized with camelCase keys to match the stored run log.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    disabled: int = 0
    missing_timezone: int = 0
    invalid_timezone: int = 0
    not_send_window: int = 0
    no_candidates: int = 0
    already_sent: int = 0
    # Claimed by a concurrent run; may still be sent by that run
    in_flight: int = 0
    parish_errors: int = 0
    missing_email_config: int = 0
    missing_email_memberships: int = 0


class RunSummary(BaseModel):
    """Outcome of one greeting dispatcher run."""

    run_id: str
    request_id: str
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    emails_attempted: int = 0
    matched_parishes: int = 0
    missing_env: list[str] = Field(default_factory=list)
    reason_counts: ReasonCounts = Field(default_factory=ReasonCounts)
    started_at: datetime
    finished_at: datetime | None = None
