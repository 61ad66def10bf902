"""
Pytest configuration and fixtures for parish-notify tests.

Provides:
- Test environment (settings from env vars, config from config.test.yml)
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for creating parishes, members, channels, events and tasks
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from parish_notify.config import get_config, get_settings
from parish_notify.core.database import get_db
from parish_notify.core.datetime_utils import utc_now
from parish_notify.main import app
from parish_notify.models import (
    Announcement,
    Base,
    ChannelType,
    ChatChannel,
    ChatChannelMembership,
    ChatMessage,
    Event,
    EventRsvp,
    EventVisibility,
    Group,
    GroupMembership,
    GroupMembershipStatus,
    GroupVisibility,
    Membership,
    MembershipRole,
    Parish,
    PushSubscription,
    Task,
    TaskVolunteer,
    User,
)
from parish_notify.models.chat import AudienceMode

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_CONFIG_PATH = Path(__file__).parent / "config.test.yml"
CRON_SECRET = "test-cron-secret"

TEST_ENV = {
    "DATABASE_URL": TEST_DATABASE_URL,
    "CONFIG_PATH": str(TEST_CONFIG_PATH),
    "RESEND_API_KEY": "re_test_key",
    "RESEND_API_URL": "https://resend.test",
    "EMAIL_FROM": "Parish <hello@parish.test>",
    "EMAIL_FROM_DEFAULT": "",
    "EMAIL_REPLY_TO": "",
    "VAPID_PUBLIC_KEY": "",
    "VAPID_PRIVATE_KEY": "",
    "CRON_SECRET": CRON_SECRET,
    "SCHEDULER_ENABLED": "false",
    "SCHEMA_VERSION": "3",
    "APP_URL": "https://portal.parish.test",
}


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_config.cache_clear()


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Point settings and config at test values for every test.

    Returns a setter so a test can change individual variables, e.g.
    ``test_env(RESEND_API_KEY="")``.
    """
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    _clear_caches()

    def _set(**overrides: str) -> None:
        for key, value in overrides.items():
            monkeypatch.setenv(key, value)
        _clear_caches()

    yield _set
    _clear_caches()


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers() -> dict[str, str]:
    """Headers carrying the configured cron secret."""
    return {"X-Cron-Secret": CRON_SECRET}


# ============================================================================
# Factory Fixtures
# ============================================================================

# Fixed base time; factories space created_at values one minute apart so
# ordering by created_at is deterministic.
BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)


class _Clock:
    def __init__(self) -> None:
        self.current = BASE_TIME

    def tick(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest_asyncio.fixture
async def parish_factory(db_session: AsyncSession):
    """Factory for creating test parishes."""

    async def _create_parish(
        name: str = None,
        timezone: str | None = "UTC",
        greetings_enabled: bool = True,
        send_hour: int = 9,
        send_minute: int = 0,
        **fields,
    ) -> Parish:
        parish = Parish(
            name=name or f"St. Test {uuid.uuid4().hex[:6]}",
            timezone=timezone,
            greetings_enabled=greetings_enabled,
            greetings_send_hour_local=send_hour,
            greetings_send_minute_local=send_minute,
            created_at=utc_now(),
            **fields,
        )
        db_session.add(parish)
        await db_session.flush()
        return parish

    return _create_parish


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating test users."""

    async def _create_user(email: str = None, name: str | None = "Test Member", **fields) -> User:
        if email is None:
            email = f"member-{uuid.uuid4().hex[:8]}@example.com"

        user = User(email=email, name=name, created_at=utc_now(), **fields)
        db_session.add(user)
        await db_session.flush()
        return user

    return _create_user


@pytest_asyncio.fixture
async def membership_factory(db_session: AsyncSession, clock: _Clock):
    """Factory for creating parish memberships."""

    async def _create_membership(
        parish: Parish,
        user: User,
        role: MembershipRole = MembershipRole.MEMBER,
        is_active: bool = True,
        allow_parish_greetings: bool = False,
        created_at: datetime | None = None,
    ) -> Membership:
        membership = Membership(
            parish_id=parish.id,
            user_id=user.id,
            role=role,
            is_active=is_active,
            allow_parish_greetings=allow_parish_greetings,
            created_at=created_at or clock.tick(),
        )
        db_session.add(membership)
        await db_session.flush()
        return membership

    return _create_membership


@pytest_asyncio.fixture
async def member_factory(user_factory, membership_factory):
    """Factory for a user who is an active member of a parish."""

    async def _create_member(
        parish: Parish, role: MembershipRole = MembershipRole.MEMBER, **user_fields
    ) -> User:
        allow_greetings = user_fields.pop("allow_parish_greetings", False)
        user = await user_factory(**user_fields)
        await membership_factory(
            parish, user, role=role, allow_parish_greetings=allow_greetings
        )
        return user

    return _create_member


@pytest_asyncio.fixture
async def group_factory(db_session: AsyncSession, clock: _Clock):
    """Factory for groups with active members."""

    async def _create_group(
        parish: Parish,
        members: list[User] = (),
        visibility: GroupVisibility = GroupVisibility.PUBLIC,
        invited: list[User] = (),
    ) -> Group:
        group = Group(
            parish_id=parish.id, name=f"Group {uuid.uuid4().hex[:6]}", visibility=visibility
        )
        db_session.add(group)
        await db_session.flush()

        for user in members:
            db_session.add(
                GroupMembership(
                    group_id=group.id,
                    user_id=user.id,
                    status=GroupMembershipStatus.ACTIVE,
                    created_at=clock.tick(),
                )
            )
        for user in invited:
            db_session.add(
                GroupMembership(
                    group_id=group.id,
                    user_id=user.id,
                    status=GroupMembershipStatus.INVITED,
                    created_at=clock.tick(),
                )
            )
        await db_session.flush()
        return group

    return _create_group


@pytest_asyncio.fixture
async def channel_factory(db_session: AsyncSession, clock: _Clock):
    """Factory for chat channels with optional explicit membership rows."""

    async def _create_channel(
        parish: Parish,
        channel_type: ChannelType = ChannelType.PARISH_ANNOUNCEMENT,
        group: Group | None = None,
        members: list[User] = (),
        audience_mode: AudienceMode = AudienceMode.INFERRED,
        name: str = "General",
    ) -> ChatChannel:
        channel = ChatChannel(
            parish_id=parish.id,
            name=name,
            type=channel_type,
            group_id=group.id if group else None,
            audience_mode=audience_mode,
        )
        db_session.add(channel)
        await db_session.flush()

        for user in members:
            db_session.add(
                ChatChannelMembership(
                    channel_id=channel.id, user_id=user.id, created_at=clock.tick()
                )
            )
        await db_session.flush()
        return channel

    return _create_channel


@pytest_asyncio.fixture
async def message_factory(db_session: AsyncSession):
    """Factory for chat messages."""

    async def _create_message(
        channel: ChatChannel,
        author: User,
        created_at: datetime,
        body: str = "Hello",
        deleted: bool = False,
    ) -> ChatMessage:
        message = ChatMessage(
            channel_id=channel.id,
            author_id=author.id,
            body=body,
            created_at=created_at,
            deleted_at=created_at if deleted else None,
        )
        db_session.add(message)
        await db_session.flush()
        return message

    return _create_message


@pytest_asyncio.fixture
async def event_factory(db_session: AsyncSession):
    """Factory for events, with optional RSVPs."""

    async def _create_event(
        parish: Parish,
        visibility: EventVisibility = EventVisibility.PUBLIC,
        group: Group | None = None,
        rsvps: list[User] = (),
        deleted: bool = False,
        title: str = "Parish Picnic",
    ) -> Event:
        event = Event(
            parish_id=parish.id,
            title=title,
            visibility=visibility,
            group_id=group.id if group else None,
            deleted_at=utc_now() if deleted else None,
            created_at=utc_now(),
        )
        db_session.add(event)
        await db_session.flush()

        for user in rsvps:
            db_session.add(EventRsvp(event_id=event.id, user_id=user.id, created_at=utc_now()))
        await db_session.flush()
        return event

    return _create_event


@pytest_asyncio.fixture
async def task_factory(db_session: AsyncSession, clock: _Clock):
    """Factory for serve-board tasks with volunteers."""

    async def _create_task(
        parish: Parish,
        creator: User,
        owner: User | None = None,
        volunteers: list[User] = (),
        title: str = "Set up chairs",
    ) -> Task:
        task = Task(
            parish_id=parish.id,
            title=title,
            created_by_id=creator.id,
            owner_id=owner.id if owner else None,
            created_at=utc_now(),
        )
        db_session.add(task)
        await db_session.flush()

        for user in volunteers:
            db_session.add(TaskVolunteer(task_id=task.id, user_id=user.id, created_at=clock.tick()))
        await db_session.flush()
        return task

    return _create_task


@pytest_asyncio.fixture
async def announcement_factory(db_session: AsyncSession):
    """Factory for announcements."""

    async def _create_announcement(
        parish: Parish,
        audience_user_ids: list[str] | None = None,
        title: str = "Mass times change",
    ) -> Announcement:
        announcement = Announcement(
            parish_id=parish.id,
            title=title,
            audience_user_ids=audience_user_ids,
            published_at=utc_now(),
            created_at=utc_now(),
        )
        db_session.add(announcement)
        await db_session.flush()
        return announcement

    return _create_announcement


@pytest_asyncio.fixture
async def push_subscription_factory(db_session: AsyncSession):
    """Factory for browser push subscriptions."""

    async def _create_subscription(
        parish: Parish, user: User, endpoint: str = None
    ) -> PushSubscription:
        subscription = PushSubscription(
            parish_id=parish.id,
            user_id=user.id,
            endpoint=endpoint or f"https://push.example.com/send/{uuid.uuid4().hex}",
            p256dh="BPUBLICKEY",
            auth="AUTHSECRET",
            created_at=utc_now(),
        )
        db_session.add(subscription)
        await db_session.flush()
        return subscription

    return _create_subscription
