"""Draw lifecycle: authorize, solve, persist atomically, notify.

The manager is the only writer of a group's assignments and its
``is_draw_active`` flag; both change inside one transaction guarded by the
group's ``draw_version`` so a group has assignments exactly while its draw is
active.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field, replace
import logging
import random
import time
from time import perf_counter
from typing import Any, TypeVar
import weakref

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.draw_metrics import DrawMetrics, draw_metrics
from app.core.draw_solver import DrawInfeasible, solve
from app.core.errors import (
    AppError,
    ConcurrencyConflict,
    InsufficientMembers,
    InvalidExclusion,
    NoValidAssignment,
    NotAuthorized,
    NotFound,
    PersistenceFailure,
)
from app.core.exclusions import normalize_pair
from app.core.notifications import DatabaseNotificationDispatcher, NotificationDispatcher
from app.db.stores import DrawStores
from app.models.models import DrawAssignment, DrawExclusion, MemberRoleEnum

logger = logging.getLogger("giftgroup.draw")

T = TypeVar("T")

MIN_DRAW_MEMBERS = 2

# One lock per group id, dropped once no coroutine holds it.
_group_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _group_lock(group_id: str) -> asyncio.Lock:
    lock = _group_locks.get(group_id)
    if lock is None:
        lock = asyncio.Lock()
        _group_locks[group_id] = lock
    return lock


@dataclass(frozen=True)
class DrawOutcome:
    group_id: str
    is_draw_active: bool
    assignments: dict[str, str] = field(default_factory=dict)
    member_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class DrawStatus:
    group_id: str
    is_draw_active: bool
    member_count: int
    exclusion_count: int


@dataclass(frozen=True)
class AssignmentView:
    id: str
    group_id: str
    group_name: str
    giver_id: str
    receiver_id: str
    is_revealed: bool

    @classmethod
    def from_row(cls, row: DrawAssignment, group_name: str) -> AssignmentView:
        return cls(
            id=row.id,
            group_id=row.group_id,
            group_name=group_name,
            giver_id=row.giver_id,
            receiver_id=row.receiver_id,
            is_revealed=bool(row.is_revealed),
        )


class DrawLifecycleManager:
    def __init__(
        self,
        session: AsyncSession,
        *,
        dispatcher: NotificationDispatcher | None = None,
        rng: random.Random | None = None,
        config: Settings | None = None,
        metrics: DrawMetrics | None = None,
    ) -> None:
        self.stores = DrawStores(session)
        self.dispatcher = dispatcher or DatabaseNotificationDispatcher()
        self.rng = rng or random.Random()
        self.config = config or settings
        self.metrics = metrics or draw_metrics

    # -- authorization -----------------------------------------------------

    async def _require_admin(self, group_id: str, user_id: str) -> None:
        role = await self.stores.members.get_role(group_id, user_id)
        if role is not MemberRoleEnum.ADMIN:
            logger.info("Admin check denied group=%s user=%s role=%s", group_id, user_id, role)
            raise NotAuthorized(details={"group_id": group_id})

    async def _require_member(self, group_id: str, user_id: str) -> None:
        role = await self.stores.members.get_role(group_id, user_id)
        if role is None:
            raise NotAuthorized("Only group members can do this", details={"group_id": group_id})

    # -- draw ----------------------------------------------------------------

    async def perform_draw(
        self,
        group_id: str,
        acting_user_id: str,
        *,
        timeout: float | None = None,
    ) -> DrawOutcome:
        """Draw (or re-draw) the group's assignments.

        ``timeout`` (seconds) bounds both the search and the save; on expiry
        the draw fails without touching the previous state.
        """
        started = perf_counter()
        deadline = time.monotonic() + timeout if timeout is not None else None
        try:
            outcome = await self._with_conflict_retry(
                group_id,
                lambda: self._perform_once(group_id, acting_user_id, deadline),
            )
        except AppError as exc:
            self.metrics.record_draw((perf_counter() - started) * 1000.0, exc.code)
            raise
        self.metrics.record_draw((perf_counter() - started) * 1000.0)
        logger.info(
            "Draw performed group=%s by=%s members=%s",
            group_id,
            acting_user_id,
            len(outcome.member_ids),
        )
        await self._dispatch(group_id, outcome.member_ids, acting_user_id)
        return outcome

    async def _perform_once(self, group_id: str, acting_user_id: str, deadline: float | None) -> DrawOutcome:
        await self._require_admin(group_id, acting_user_id)
        state = await self.stores.groups.get_draw_state(group_id)
        if state is None:
            raise NotFound("Group not found", details={"group_id": group_id})

        members = await self.stores.members.list_members(group_id)
        if len(members) < MIN_DRAW_MEMBERS:
            raise InsufficientMembers(details={"member_count": len(members)})

        exclusion_rows = await self.stores.exclusions.list_for_group(group_id)
        pairs = [(row.user_a_id, row.user_b_id) for row in exclusion_rows]
        permutation = self._solve(group_id, members, pairs, deadline)

        await self._run_bounded(self._commit_draw(group_id, state.version, permutation), deadline)
        return DrawOutcome(
            group_id=group_id,
            is_draw_active=True,
            assignments=permutation,
            member_ids=tuple(members),
        )

    def _solve(
        self,
        group_id: str,
        members: list[str],
        pairs: list[tuple[str, str]],
        deadline: float | None,
    ) -> dict[str, str]:
        search_deadline = None
        if self.config.draw_search_timeout_ms > 0:
            search_deadline = time.monotonic() + self.config.draw_search_timeout_seconds
        if deadline is not None:
            search_deadline = deadline if search_deadline is None else min(search_deadline, deadline)

        try:
            return solve(
                members,
                pairs,
                rng=self.rng,
                shuffle_attempts=self.config.draw_shuffle_attempts,
                node_budget=self.config.draw_search_node_budget or None,
                deadline=search_deadline,
            )
        except DrawInfeasible as exc:
            logger.info(
                "No valid draw group=%s members=%s exclusions=%s exhausted=%s nodes=%s",
                group_id,
                len(members),
                len(pairs),
                exc.exhausted,
                exc.nodes,
            )
            raise NoValidAssignment(
                details={
                    "member_count": len(members),
                    "exclusion_count": len(pairs),
                    "search_exhausted": exc.exhausted,
                }
            ) from exc

    async def _commit_draw(self, group_id: str, version: int, permutation: dict[str, str]) -> None:
        async with self.stores.transaction():
            await self.stores.groups.claim(group_id, version)
            await self.stores.assignments.replace_all(group_id, permutation)
            await self.stores.groups.set_draw_active(group_id, True)

    async def end_draw(self, group_id: str, acting_user_id: str) -> DrawOutcome:
        started = perf_counter()
        try:
            removed = await self._with_conflict_retry(
                group_id,
                lambda: self._end_once(group_id, acting_user_id),
            )
        except AppError as exc:
            self.metrics.record_end((perf_counter() - started) * 1000.0, exc.code)
            raise
        self.metrics.record_end((perf_counter() - started) * 1000.0)
        logger.info("Draw ended group=%s by=%s removed=%s", group_id, acting_user_id, removed)
        return DrawOutcome(group_id=group_id, is_draw_active=False)

    async def _end_once(self, group_id: str, acting_user_id: str) -> int:
        await self._require_admin(group_id, acting_user_id)
        state = await self.stores.groups.get_draw_state(group_id)
        if state is None:
            raise NotFound("Group not found", details={"group_id": group_id})
        async with self.stores.transaction():
            await self.stores.groups.claim(group_id, state.version)
            removed = await self.stores.assignments.delete_all(group_id)
            await self.stores.groups.set_draw_active(group_id, False)
        return removed

    async def _with_conflict_retry(self, group_id: str, attempt: Callable[[], Awaitable[T]]) -> T:
        retries = max(self.config.draw_conflict_retries, 0)
        for number in range(retries + 1):
            try:
                async with _group_lock(group_id):
                    return await attempt()
            except ConcurrencyConflict:
                if number >= retries:
                    logger.warning("Draw conflict not resolved group=%s attempts=%s", group_id, number + 1)
                    raise
                self.metrics.record_conflict_retry()
                logger.info("Draw conflict group=%s, retrying", group_id)
        raise AssertionError("unreachable")

    async def _run_bounded(self, coro: Coroutine[Any, Any, T], deadline: float | None) -> T:
        if deadline is None:
            return await coro
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            coro.close()
            raise PersistenceFailure("Draw deadline expired before saving", details={"stage": "persist"})
        try:
            return await asyncio.wait_for(coro, timeout=remaining)
        except asyncio.TimeoutError:
            raise PersistenceFailure("Draw deadline expired while saving", details={"stage": "persist"}) from None

    async def _dispatch(self, group_id: str, member_ids: tuple[str, ...], actor_id: str) -> None:
        try:
            await self.dispatcher.notify_draw_performed(group_id, list(member_ids), actor_id)
        except Exception:
            logger.exception("Draw notification failed group=%s recipients=%s", group_id, len(member_ids))

    # -- queries -------------------------------------------------------------

    async def draw_status(self, group_id: str, acting_user_id: str) -> DrawStatus:
        await self._require_member(group_id, acting_user_id)
        state = await self.stores.groups.get_draw_state(group_id)
        if state is None:
            raise NotFound("Group not found", details={"group_id": group_id})
        members = await self.stores.members.list_members(group_id)
        exclusions = await self.stores.exclusions.list_for_group(group_id)
        return DrawStatus(
            group_id=group_id,
            is_draw_active=state.is_draw_active,
            member_count=len(members),
            exclusion_count=len(exclusions),
        )

    async def get_my_assignment(self, user_id: str, group_id: str) -> AssignmentView | None:
        found = await self.stores.assignments.get_active(user_id, group_id)
        if found is None:
            return None
        row, group_name = found
        return AssignmentView.from_row(row, group_name)

    async def get_my_assignments(self, user_id: str) -> list[AssignmentView]:
        rows = await self.stores.assignments.list_active_for_user(user_id)
        return [AssignmentView.from_row(row, group_name) for row, group_name in rows]

    async def mark_revealed(self, assignment_id: str, user_id: str) -> AssignmentView:
        row = await self.stores.assignments.get_by_id(assignment_id)
        if row is None:
            raise NotFound("Assignment not found")
        if row.giver_id != user_id:
            raise NotAuthorized("Only the giver can reveal this assignment")
        found = await self.stores.assignments.get_active(row.giver_id, row.group_id)
        if found is None or found[0].id != assignment_id:
            raise NotFound("Assignment not found")
        view = AssignmentView.from_row(row, found[1])
        if view.is_revealed:
            return view
        async with self.stores.transaction():
            await self.stores.assignments.mark_revealed(assignment_id)
        return replace(view, is_revealed=True)

    # -- exclusions ------------------------------------------------------------

    async def list_exclusions(self, group_id: str, acting_user_id: str) -> list[DrawExclusion]:
        await self._require_member(group_id, acting_user_id)
        return await self.stores.exclusions.list_for_group(group_id)

    async def add_exclusion(
        self,
        group_id: str,
        user_a_id: str,
        user_b_id: str,
        acting_user_id: str,
    ) -> DrawExclusion:
        await self._require_admin(group_id, acting_user_id)
        pair = normalize_pair(user_a_id, user_b_id)
        members = set(await self.stores.members.list_members(group_id))
        missing = [user_id for user_id in pair if user_id not in members]
        if missing:
            raise InvalidExclusion("Both users must be members of the group", details={"missing": missing})
        async with self.stores.transaction():
            row = await self.stores.exclusions.add(group_id, pair)
        logger.info("Exclusion added group=%s pair=%s/%s", group_id, pair.user_a_id, pair.user_b_id)
        return row

    async def remove_exclusion(self, exclusion_id: str, acting_user_id: str) -> DrawExclusion:
        row = await self.stores.exclusions.get(exclusion_id)
        if row is None:
            raise NotFound("Exclusion not found")
        await self._require_admin(row.group_id, acting_user_id)
        async with self.stores.transaction():
            await self.stores.exclusions.remove(exclusion_id)
        logger.info("Exclusion removed group=%s id=%s", row.group_id, exclusion_id)
        return row
