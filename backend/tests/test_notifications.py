import pytest

from app.core.config import settings
from app.core.notifications import DatabaseNotificationDispatcher
from app.models.models import NotificationTypeEnum
from app.services.draw import DrawLifecycleManager

pytestmark = pytest.mark.anyio


async def test_one_notification_per_member(session_factory, db):
    group_id = db.seed_group(["A", "B", "C"])
    dispatcher = DatabaseNotificationDispatcher(session_factory)

    await dispatcher.notify_draw_performed(group_id, ["A", "B", "C", "B"], actor_id="A")

    rows = db.notifications(group_id)
    assert sorted(row.user_id for row in rows) == ["A", "B", "C"]
    assert {row.type for row in rows} == {NotificationTypeEnum.DRAW_PERFORMED.value}
    assert {row.actor_id for row in rows} == {"A"}
    assert not any(row.is_read for row in rows)


async def test_disabled_notifications_write_nothing(session_factory, db, monkeypatch):
    monkeypatch.setattr(settings, "notifications_enabled", False)
    group_id = db.seed_group(["A", "B"])

    await DatabaseNotificationDispatcher(session_factory).notify_draw_performed(group_id, ["A", "B"])

    assert db.notifications(group_id) == []


async def test_draw_fans_out_through_database_dispatcher(session, session_factory, db):
    group_id = db.seed_group(["A", "B", "C", "D"])
    manager = DrawLifecycleManager(session, dispatcher=DatabaseNotificationDispatcher(session_factory))

    await manager.perform_draw(group_id, "A")

    assert sorted(row.user_id for row in db.notifications(group_id)) == ["A", "B", "C", "D"]
