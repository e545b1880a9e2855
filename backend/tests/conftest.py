import os
import random
import warnings

# Set environment variables BEFORE importing app modules
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite:///file:giftgroup_tests?mode=memory&cache=shared&uri=true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["LOG_LEVEL"] = "INFO"

warnings.filterwarnings("ignore", category=DeprecationWarning)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from app.api.deps import get_notification_dispatcher
from app.core.draw_metrics import DrawMetrics
from app.core.security import create_access_token
from app.db.session import Base, get_db
from app.main import app
from app.models.models import (
    DrawAssignment,
    DrawExclusion,
    Group,
    GroupMember,
    MemberRoleEnum,
    Notification,
)
from app.services.draw import DrawLifecycleManager


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)


class RecordingDispatcher:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, list[str], str | None]] = []
        self.fail = fail

    async def notify_draw_performed(self, group_id, member_ids, actor_id=None) -> None:
        self.calls.append((group_id, list(member_ids), actor_id))
        if self.fail:
            raise RuntimeError("notification backend down")


class SyncDb:
    """Direct access to the test database for seeding and assertions."""

    def __init__(self, path) -> None:
        self.engine = create_engine(f"sqlite:///{path}")

    def seed_group(
        self,
        members: list[str],
        *,
        admins: list[str] | None = None,
        exclusions: list[tuple[str, str]] = (),
        name: str = "Family",
    ) -> str:
        admin_ids = set(members[:1] if admins is None else admins)
        with Session(self.engine) as session:
            group = Group(name=name)
            session.add(group)
            session.flush()
            for user_id in members:
                role = MemberRoleEnum.ADMIN if user_id in admin_ids else MemberRoleEnum.MEMBER
                session.add(GroupMember(group_id=group.id, user_id=user_id, role=role.value))
            for a, b in exclusions:
                low, high = sorted((a, b))
                session.add(DrawExclusion(group_id=group.id, user_a_id=low, user_b_id=high))
            session.commit()
            return group.id

    def assignments(self, group_id: str) -> dict[str, str]:
        with Session(self.engine) as session:
            rows = session.execute(
                select(DrawAssignment.giver_id, DrawAssignment.receiver_id).where(
                    DrawAssignment.group_id == group_id
                )
            ).all()
        return {giver: receiver for giver, receiver in rows}

    def revealed_flags(self, group_id: str) -> list[bool]:
        with Session(self.engine) as session:
            return list(
                session.execute(
                    select(DrawAssignment.is_revealed).where(DrawAssignment.group_id == group_id)
                ).scalars()
            )

    def group_state(self, group_id: str) -> tuple[bool, int]:
        with Session(self.engine) as session:
            group = session.get(Group, group_id)
            return bool(group.is_draw_active), int(group.draw_version)

    def exclusion_count(self, group_id: str) -> int:
        with Session(self.engine) as session:
            return len(
                session.execute(select(DrawExclusion.id).where(DrawExclusion.group_id == group_id)).all()
            )

    def notifications(self, group_id: str) -> list[Notification]:
        with Session(self.engine, expire_on_commit=False) as session:
            return list(
                session.execute(select(Notification).where(Notification.group_id == group_id)).scalars()
            )

    def insert_assignment(self, group_id: str, giver_id: str, receiver_id: str) -> str:
        with Session(self.engine, expire_on_commit=False) as session:
            row = DrawAssignment(group_id=group_id, giver_id=giver_id, receiver_id=receiver_id)
            session.add(row)
            session.commit()
            return row.id

    def bump_version(self, group_id: str) -> None:
        with Session(self.engine) as session:
            session.execute(
                update(Group).where(Group.id == group_id).values(draw_version=Group.draw_version + 1)
            )
            session.commit()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "draw-test.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture
def db(db_path):
    sync_db = SyncDb(db_path)
    yield sync_db
    sync_db.engine.dispose()


@pytest.fixture
def session_factory(db_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    yield async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    engine.sync_engine.dispose()


@pytest.fixture
async def session(session_factory, anyio_backend):
    async with session_factory() as async_session:
        yield async_session


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher():
    return RecordingDispatcher(fail=True)


@pytest.fixture
def metrics():
    return DrawMetrics()


@pytest.fixture
def manager(session, dispatcher, metrics):
    return DrawLifecycleManager(session, dispatcher=dispatcher, rng=random.Random(1224), metrics=metrics)


@pytest.fixture
def client(session_factory, dispatcher):
    async def override_get_db():
        async with session_factory() as async_session:
            yield async_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
