import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from parish_notify.config import Settings, get_settings
from parish_notify.core.database import get_db

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def require_cron_secret(
    settings: AppSettings,
    x_cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
) -> None:
    """Reject cron calls without the shared secret, raise 401 if missing or wrong."""
    expected = settings.cron_secret
    if not expected or not x_cron_secret or not secrets.compare_digest(x_cron_secret, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )


CronAuthorized = Annotated[None, Depends(require_cron_secret)]
