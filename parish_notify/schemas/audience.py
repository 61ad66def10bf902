import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from parish_notify.models.chat import ChannelType
from parish_notify.models.membership import GroupVisibility


class AudienceKind(str, enum.Enum):
    PARISH = "PARISH"
    CHAT = "CHAT"
    ANNOUNCEMENT = "ANNOUNCEMENT"
    EVENT = "EVENT"
    EVENT_CANDIDATES = "EVENT_CANDIDATES"
    TASK_WATCHERS = "TASK_WATCHERS"
    PARISH_LEADERS = "PARISH_LEADERS"


class RecipientReason(str, enum.Enum):
    """Why a user is in an audience. Informational only, never part of identity."""

    PARISH_MEMBER = "parish_member"
    PARISH_LEADER = "parish_leader"
    CHANNEL_MEMBER = "channel_member"
    GROUP_MEMBER = "group_member"
    EVENT_PARTICIPANT = "event_participant"
    ANNOUNCEMENT_AUDIENCE = "announcement_audience"
    TASK_CREATOR = "task_creator"
    TASK_ASSIGNEE = "task_assignee"
    TASK_VOLUNTEER = "task_volunteer"


class Recipient(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    reason: RecipientReason


class EligibleChannel(BaseModel):
    """A chat channel a user can read, with the join time used as read baseline."""

    channel_id: uuid.UUID
    channel_name: str
    channel_type: ChannelType
    group_visibility: GroupVisibility | None = None
    joined_at: datetime


# Facts accepted by resolve_audience, one model per AudienceKind


class ParishAudienceFacts(BaseModel):
    parish_id: uuid.UUID
    actor_id: uuid.UUID | None = None


class ChatAudienceFacts(BaseModel):
    channel_id: uuid.UUID
    actor_id: uuid.UUID | None = None
    at_time: datetime | None = None


class AnnouncementAudienceFacts(BaseModel):
    parish_id: uuid.UUID
    audience_user_ids: list[uuid.UUID] | None = None
    actor_id: uuid.UUID | None = None


class EventAudienceFacts(BaseModel):
    event_id: uuid.UUID
    parish_id: uuid.UUID
    actor_id: uuid.UUID | None = None


class EventCandidatesFacts(BaseModel):
    event_id: uuid.UUID
    parish_id: uuid.UUID
    candidate_user_ids: list[uuid.UUID] = Field(default_factory=list)
    actor_id: uuid.UUID | None = None


class TaskWatchersFacts(BaseModel):
    task_id: uuid.UUID
    parish_id: uuid.UUID
    actor_id: uuid.UUID | None = None


class ParishLeadersFacts(BaseModel):
    parish_id: uuid.UUID
    actor_id: uuid.UUID | None = None


AudienceFacts = (
    ParishAudienceFacts
    | ChatAudienceFacts
    | AnnouncementAudienceFacts
    | EventAudienceFacts
    | EventCandidatesFacts
    | TaskWatchersFacts
    | ParishLeadersFacts
)
