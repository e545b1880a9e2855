"""SQLAlchemy-backed stores consumed by the draw lifecycle manager.

Every store works on the caller's ``AsyncSession`` and never commits on its
own; ``transaction()`` is the only place a unit of work is committed, so the
assignment replace and the flag update land together or not at all.
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConcurrencyConflict, PersistenceFailure
from app.core.exclusions import ExclusionPair
from app.models.models import DrawAssignment, DrawExclusion, Group, GroupMember, MemberRoleEnum

logger = logging.getLogger("giftgroup.stores")


@dataclass(frozen=True)
class DrawState:
    group_id: str
    is_draw_active: bool
    version: int


def _persistence_failure(action: str, exc: SQLAlchemyError) -> PersistenceFailure:
    logger.error("Store %s failed: %s", action, exc.__class__.__name__, exc_info=exc)
    return PersistenceFailure(details={"action": action})


class MembershipStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_role(self, group_id: str, user_id: str) -> MemberRoleEnum | None:
        try:
            result = await self.session.execute(
                select(GroupMember.role).where(
                    GroupMember.group_id == group_id,
                    GroupMember.user_id == user_id,
                )
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("get_role", exc) from exc
        role = result.scalar_one_or_none()
        if role is None:
            return None
        try:
            return MemberRoleEnum(role)
        except ValueError:
            logger.warning("Unknown member role=%s group=%s user=%s", role, group_id, user_id)
            return None

    async def list_members(self, group_id: str) -> list[str]:
        try:
            result = await self.session.execute(
                select(GroupMember.user_id)
                .where(GroupMember.group_id == group_id)
                .order_by(GroupMember.joined_at, GroupMember.user_id)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("list_members", exc) from exc
        return list(dict.fromkeys(result.scalars().all()))


class ExclusionStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_group(self, group_id: str) -> list[DrawExclusion]:
        try:
            result = await self.session.execute(
                select(DrawExclusion)
                .where(DrawExclusion.group_id == group_id)
                .order_by(DrawExclusion.created_at, DrawExclusion.id)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("list_exclusions", exc) from exc
        return list(result.scalars().all())

    async def get(self, exclusion_id: str) -> DrawExclusion | None:
        try:
            return await self.session.get(DrawExclusion, exclusion_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise _persistence_failure("get_exclusion", exc) from exc

    async def find(self, group_id: str, pair: ExclusionPair) -> DrawExclusion | None:
        try:
            result = await self.session.execute(
                select(DrawExclusion).where(
                    DrawExclusion.group_id == group_id,
                    DrawExclusion.user_a_id == pair.user_a_id,
                    DrawExclusion.user_b_id == pair.user_b_id,
                )
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("find_exclusion", exc) from exc
        return result.scalar_one_or_none()

    async def add(self, group_id: str, pair: ExclusionPair) -> DrawExclusion:
        """Insert a normalized pair, returning the existing row on a duplicate."""
        existing = await self.find(group_id, pair)
        if existing is not None:
            return existing
        row = DrawExclusion(group_id=group_id, user_a_id=pair.user_a_id, user_b_id=pair.user_b_id)
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError:
            # Lost a race with an identical insert; the unique index kept one row.
            await self.session.rollback()
            logger.info("Duplicate exclusion insert group=%s pair=%s", group_id, pair)
            existing = await self.find(group_id, pair)
            if existing is not None:
                return existing
            raise PersistenceFailure(details={"action": "add_exclusion"}) from None
        except SQLAlchemyError as exc:
            raise _persistence_failure("add_exclusion", exc) from exc
        return row

    async def remove(self, exclusion_id: str) -> bool:
        try:
            result = await self.session.execute(delete(DrawExclusion).where(DrawExclusion.id == exclusion_id))
        except SQLAlchemyError as exc:
            raise _persistence_failure("remove_exclusion", exc) from exc
        return (result.rowcount or 0) > 0


class GroupStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_draw_state(self, group_id: str) -> DrawState | None:
        try:
            result = await self.session.execute(
                select(Group.is_draw_active, Group.draw_version).where(Group.id == group_id)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("get_draw_state", exc) from exc
        row = result.one_or_none()
        if row is None:
            return None
        return DrawState(group_id=group_id, is_draw_active=bool(row[0]), version=int(row[1] or 0))

    async def is_draw_active(self, group_id: str) -> bool:
        state = await self.get_draw_state(group_id)
        return bool(state and state.is_draw_active)

    async def claim(self, group_id: str, expected_version: int) -> int:
        """Compare-and-bump the group's draw version.

        Raises ``ConcurrencyConflict`` when another writer bumped it after
        ``expected_version`` was read. On row-locking databases the UPDATE
        also holds the group row until the surrounding transaction ends.
        """
        try:
            result = await self.session.execute(
                update(Group)
                .where(Group.id == group_id, Group.draw_version == expected_version)
                .values(draw_version=Group.draw_version + 1)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("claim_group", exc) from exc
        if (result.rowcount or 0) != 1:
            raise ConcurrencyConflict(details={"group_id": group_id, "expected_version": expected_version})
        return expected_version + 1

    async def set_draw_active(self, group_id: str, active: bool) -> None:
        try:
            await self.session.execute(
                update(Group)
                .where(Group.id == group_id)
                .values(is_draw_active=active)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("set_draw_active", exc) from exc


class AssignmentStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def replace_all(self, group_id: str, permutation: Mapping[str, str]) -> list[DrawAssignment]:
        """Swap the group's assignments for ``permutation``, all unrevealed."""
        await self.delete_all(group_id)
        rows = [
            DrawAssignment(group_id=group_id, giver_id=giver, receiver_id=receiver, is_revealed=False)
            for giver, receiver in permutation.items()
        ]
        try:
            self.session.add_all(rows)
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise _persistence_failure("insert_assignments", exc) from exc
        return rows

    async def delete_all(self, group_id: str) -> int:
        try:
            result = await self.session.execute(
                delete(DrawAssignment)
                .where(DrawAssignment.group_id == group_id)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("delete_assignments", exc) from exc
        return result.rowcount or 0

    async def get(self, giver_id: str, group_id: str) -> DrawAssignment | None:
        try:
            result = await self.session.execute(
                select(DrawAssignment).where(
                    DrawAssignment.giver_id == giver_id,
                    DrawAssignment.group_id == group_id,
                )
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("get_assignment", exc) from exc
        return result.scalar_one_or_none()

    async def get_active(self, giver_id: str, group_id: str) -> tuple[DrawAssignment, str] | None:
        """Like ``get`` but only while the group's draw is active, with the group name."""
        try:
            result = await self.session.execute(
                select(DrawAssignment, Group.name)
                .join(Group, Group.id == DrawAssignment.group_id)
                .where(
                    DrawAssignment.giver_id == giver_id,
                    DrawAssignment.group_id == group_id,
                    Group.is_draw_active.is_(True),
                )
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("get_active_assignment", exc) from exc
        row = result.one_or_none()
        if row is None:
            return None
        return row[0], row[1]

    async def get_by_id(self, assignment_id: str) -> DrawAssignment | None:
        try:
            return await self.session.get(DrawAssignment, assignment_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise _persistence_failure("get_assignment", exc) from exc

    async def list_active_for_user(self, user_id: str) -> list[tuple[DrawAssignment, str]]:
        """Assignments where ``user_id`` gives, limited to groups with an active draw."""
        try:
            result = await self.session.execute(
                select(DrawAssignment, Group.name)
                .join(Group, Group.id == DrawAssignment.group_id)
                .where(DrawAssignment.giver_id == user_id, Group.is_draw_active.is_(True))
                .order_by(Group.name, DrawAssignment.group_id)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("list_active_assignments", exc) from exc
        return [(row[0], row[1]) for row in result.all()]

    async def mark_revealed(self, assignment_id: str) -> None:
        try:
            await self.session.execute(
                update(DrawAssignment)
                .where(DrawAssignment.id == assignment_id)
                .values(is_revealed=True)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise _persistence_failure("mark_revealed", exc) from exc


class DrawStores:
    """All draw stores bound to one session, plus its transaction boundary."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.members = MembershipStore(session)
        self.exclusions = ExclusionStore(session)
        self.groups = GroupStore(session)
        self.assignments = AssignmentStore(session)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise _persistence_failure("commit", exc) from exc
        except BaseException:
            # BaseException so a cancelled deadline still rolls back.
            await self.session.rollback()
            raise
