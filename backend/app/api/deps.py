from typing import Annotated
import logging

from fastapi import Cookie, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.notifications import DatabaseNotificationDispatcher, NotificationDispatcher
from app.core.security import decode_access_token
from app.db.session import get_db
from app.services.draw import DrawLifecycleManager


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]
logger = logging.getLogger("giftgroup.auth")

_default_dispatcher = DatabaseNotificationDispatcher()


def _extract_token(request: Request, access_token: str | None) -> str | None:
    if access_token:
        return access_token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip() or None
    return None


async def get_current_user_id(
    request: Request,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> str:
    token = _extract_token(request, access_token)
    if not token:
        logger.info(
            "Auth token missing path=%s ip=%s",
            request.url.path,
            request.client.host if request.client else None,
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_access_token(token)
    subject = payload.get("sub") if payload else None
    if not isinstance(subject, str) or not subject.strip():
        logger.info("Auth token invalid path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return subject.strip()


def get_notification_dispatcher() -> NotificationDispatcher:
    return _default_dispatcher


CurrentUserIdDep = Annotated[str, Depends(get_current_user_id)]


async def get_draw_manager(
    db: DbSessionDep,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
) -> DrawLifecycleManager:
    return DrawLifecycleManager(db, dispatcher=dispatcher)


DrawManagerDep = Annotated[DrawLifecycleManager, Depends(get_draw_manager)]
