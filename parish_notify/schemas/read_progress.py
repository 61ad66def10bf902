import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class ReadState(str, enum.Enum):
    UNREAD = "unread"
    SOME_READ = "some_read"
    ALL_READ = "all_read"


class ReadProgress(BaseModel):
    state: ReadState
    readers_count: int = Field(ge=0)
    recipient_count: int = Field(ge=0)


class ChannelReadSnapshot(BaseModel):
    """Current recipients of a channel (viewer excluded) and their read times."""

    channel_id: uuid.UUID
    recipient_ids: list[uuid.UUID] = Field(default_factory=list)
    # Sorted ascending so message progress can bisect
    read_timestamps: list[datetime] = Field(default_factory=list)

    @property
    def recipient_count(self) -> int:
        return len(self.recipient_ids)
