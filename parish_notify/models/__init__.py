from parish_notify.models.announcement import Announcement
from parish_notify.models.base import Base
from parish_notify.models.chat import (
    AudienceMode,
    ChannelType,
    ChatChannel,
    ChatChannelMembership,
    ChatMessage,
    ChatReadState,
)
from parish_notify.models.delivery import (
    AttemptStatus,
    DeliveryAttempt,
    DeliveryChannel,
    DeliveryRecord,
    DeliveryStatus,
)
from parish_notify.models.event import Event, EventRsvp, EventVisibility
from parish_notify.models.greeting import GreetingLogEntry, GreetingRunLog, GreetingType, RunStatus
from parish_notify.models.membership import (
    Group,
    GroupMembership,
    GroupMembershipStatus,
    GroupVisibility,
    Membership,
    MembershipRole,
)
from parish_notify.models.notification import Notification, NotificationType, PushSubscription
from parish_notify.models.parish import Parish
from parish_notify.models.task import Task, TaskVolunteer
from parish_notify.models.user import User

__all__ = [
    "Base",
    "Parish",
    "User",
    "Membership",
    "MembershipRole",
    "Group",
    "GroupMembership",
    "GroupMembershipStatus",
    "GroupVisibility",
    "ChatChannel",
    "ChatChannelMembership",
    "ChatMessage",
    "ChatReadState",
    "ChannelType",
    "AudienceMode",
    "Event",
    "EventRsvp",
    "EventVisibility",
    "Task",
    "TaskVolunteer",
    "Announcement",
    "Notification",
    "NotificationType",
    "PushSubscription",
    "DeliveryRecord",
    "DeliveryAttempt",
    "DeliveryChannel",
    "DeliveryStatus",
    "AttemptStatus",
    "GreetingLogEntry",
    "GreetingRunLog",
    "GreetingType",
    "RunStatus",
]
