"""
Fan-out hook fired after a successful draw.

The lifecycle manager only knows the ``NotificationDispatcher`` protocol; the
default implementation writes one ``notifications`` row per member through its
own session, so a failing insert can never touch the draw's transaction.
"""
from collections.abc import Sequence
import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.db.session import session_scope
from app.models.models import Notification, NotificationTypeEnum

logger = logging.getLogger("giftgroup.notifications")


class NotificationDispatcher(Protocol):
    async def notify_draw_performed(
        self,
        group_id: str,
        member_ids: Sequence[str],
        actor_id: str | None = None,
    ) -> None: ...


class DatabaseNotificationDispatcher:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def notify_draw_performed(
        self,
        group_id: str,
        member_ids: Sequence[str],
        actor_id: str | None = None,
    ) -> None:
        if not settings.notifications_enabled:
            logger.debug("Notifications disabled, skipping draw fan-out group=%s", group_id)
            return
        rows = [
            Notification(
                user_id=member_id,
                actor_id=actor_id,
                group_id=group_id,
                type=NotificationTypeEnum.DRAW_PERFORMED.value,
            )
            for member_id in dict.fromkeys(member_ids)
        ]
        if not rows:
            return
        async with session_scope(self._session_factory) as session:
            session.add_all(rows)
        logger.info("Draw notifications queued group=%s recipients=%s", group_id, len(rows))

