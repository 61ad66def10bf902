"""Parish and group membership facts consumed by the audience resolver."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from parish_notify.models.base import Base, enum_column


class MembershipRole(str, enum.Enum):
    ADMIN = "ADMIN"
    SHEPHERD = "SHEPHERD"
    MEMBER = "MEMBER"


class GroupVisibility(str, enum.Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class GroupMembershipStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INVITED = "INVITED"


class Membership(Base):
    """A user's membership in a parish."""

    __tablename__ = "memberships"
    __table_args__ = (UniqueConstraint("parish_id", "user_id", name="uq_membership_parish_user"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    parish_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parishes.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    role: Mapped[MembershipRole] = mapped_column(
        enum_column(MembershipRole, "membershiprole"), default=MembershipRole.MEMBER
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Schema v2+: per-parish greeting opt-in
    allow_parish_greetings: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<Membership parish={self.parish_id} user={self.user_id}>"


class Group(Base):
    """A ministry group inside a parish."""

    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    parish_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parishes.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    visibility: Mapped[GroupVisibility] = mapped_column(
        enum_column(GroupVisibility, "groupvisibility"), default=GroupVisibility.PUBLIC
    )


class GroupMembership(Base):
    """A user's membership in a group; only ACTIVE rows count for audiences."""

    __tablename__ = "group_memberships"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_membership"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[GroupMembershipStatus] = mapped_column(
        enum_column(GroupMembershipStatus, "groupmembershipstatus"),
        default=GroupMembershipStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(default=func.now())
