"""Giver -> receiver assignment search for gift-exchange draws.

A valid draw is a derangement of the member list that never pairs two
members listed in the group's exclusions (in either direction). The search
runs in two phases:

1. a fixed number of random Fisher-Yates shuffles, which succeeds at once for
   the sparse exclusion sets real groups have;
2. a randomized depth-first backtracking search that is exact, bounded by a
   node budget and an optional ``time.monotonic()`` deadline.

Hitting a bound is reported as ``DrawInfeasible(exhausted=True)``: the
search gave up without proving that no valid draw exists.
"""

from collections.abc import Iterable
import logging
import random
import time

from app.core.exclusions import ExclusionSet

logger = logging.getLogger("giftgroup.draw.solver")

DEFAULT_SHUFFLE_ATTEMPTS = 100
_DEADLINE_CHECK_EVERY = 64


class DrawInfeasible(Exception):
    def __init__(self, message: str, *, exhausted: bool = False, nodes: int = 0) -> None:
        super().__init__(message)
        self.exhausted = exhausted
        self.nodes = nodes


class _SearchLimitReached(Exception):
    pass


def _shuffle(items: list[str], rng: random.Random) -> None:
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]


def _try_shuffles(
    givers: list[str],
    exclusions: ExclusionSet,
    rng: random.Random,
    attempts: int,
) -> dict[str, str] | None:
    receivers = list(givers)
    for _ in range(attempts):
        _shuffle(receivers, rng)
        if all(exclusions.allows(g, r) for g, r in zip(givers, receivers)):
            return dict(zip(givers, receivers))
    return None


class _Backtracker:
    def __init__(
        self,
        givers: list[str],
        candidates: dict[str, list[str]],
        rng: random.Random,
        node_budget: int | None,
        deadline: float | None,
    ) -> None:
        self.givers = givers
        self.candidates = candidates
        self.rng = rng
        self.node_budget = node_budget
        self.deadline = deadline
        self.nodes = 0
        self.used: set[str] = set()
        self.result: dict[str, str] = {}

    def _tick(self) -> None:
        self.nodes += 1
        if self.node_budget is not None and self.nodes > self.node_budget:
            raise _SearchLimitReached("node budget")
        if self.deadline is not None and self.nodes % _DEADLINE_CHECK_EVERY == 0:
            if time.monotonic() >= self.deadline:
                raise _SearchLimitReached("deadline")

    def search(self, index: int = 0) -> bool:
        if index == len(self.givers):
            return True
        giver = self.givers[index]
        options = [r for r in self.candidates[giver] if r not in self.used]
        _shuffle(options, self.rng)
        for receiver in options:
            self._tick()
            self.used.add(receiver)
            self.result[giver] = receiver
            if self.search(index + 1):
                return True
            self.used.discard(receiver)
            del self.result[giver]
        return False


def solve(
    members: Iterable[str],
    exclusions: Iterable[tuple[str, str]] = (),
    *,
    rng: random.Random | None = None,
    shuffle_attempts: int = DEFAULT_SHUFFLE_ATTEMPTS,
    node_budget: int | None = None,
    deadline: float | None = None,
) -> dict[str, str]:
    """Return a ``{giver_id: receiver_id}`` mapping covering every member.

    Raises ``ValueError`` for fewer than two distinct members and
    ``DrawInfeasible`` when no valid mapping was found.
    """
    givers = sorted(set(members))
    if len(givers) < 2:
        raise ValueError("solve() needs at least 2 distinct members")

    rng = rng or random.Random()
    excluded = ExclusionSet(exclusions, members=givers)

    found = _try_shuffles(givers, excluded, rng, max(shuffle_attempts, 0))
    if found is not None:
        return found

    candidates = {g: [r for r in givers if excluded.allows(g, r)] for g in givers}
    stuck = [g for g, options in candidates.items() if not options]
    if stuck:
        raise DrawInfeasible(f"{len(stuck)} member(s) have nobody they may gift to")

    logger.debug(
        "Shuffle phase failed members=%s exclusions=%s attempts=%s, backtracking",
        len(givers),
        len(excluded),
        shuffle_attempts,
    )
    # Most constrained givers first keeps dead ends shallow.
    order = sorted(givers, key=lambda g: len(candidates[g]))
    search = _Backtracker(order, candidates, rng, node_budget, deadline)
    try:
        if search.search():
            return {g: search.result[g] for g in givers}
    except _SearchLimitReached as exc:
        logger.warning(
            "Draw search stopped at %s members=%s nodes=%s", exc, len(givers), search.nodes
        )
        raise DrawInfeasible(
            f"Search stopped at {exc} before a valid draw was found",
            exhausted=True,
            nodes=search.nodes,
        ) from None
    raise DrawInfeasible("No derangement satisfies the exclusions", nodes=search.nodes)
