import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from parish_notify.config import get_settings
from parish_notify.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


def _fix_asyncpg_url(url: str) -> tuple[str, dict]:
    """
    Normalize a Postgres connection URL for asyncpg.

    Hosted providers append params like sslmode and channel_binding that
    asyncpg doesn't accept. We strip them and handle SSL via connect_args.
    Local hosts and non-Postgres URLs (SQLite) get no SSL context.
    """
    parsed = urlparse(url)
    if not parsed.scheme.startswith("postgresql"):
        return url, {}

    params = parse_qs(parsed.query)
    requires_ssl = params.get("sslmode", [""])[0] in ("require", "verify-full", "verify-ca")

    for param in ["sslmode", "channel_binding", "options"]:
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    is_local = hostname in ("localhost", "127.0.0.1", "db")

    if is_local and not requires_ssl:
        return clean_url, {}
    return clean_url, {"ssl": ssl.create_default_context()}


clean_url, connect_args = _fix_asyncpg_url(settings.database_url)


engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_recycle=280,
    connect_args=connect_args,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise
