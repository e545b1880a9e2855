"""Normalization and lookup helpers for undirected exclusion pairs."""

from collections.abc import Iterable
from typing import NamedTuple

from app.core.errors import InvalidExclusion


class ExclusionPair(NamedTuple):
    """Two members that must not be matched, stored as ``(min, max)``."""

    user_a_id: str
    user_b_id: str


def normalize_pair(user_a_id: str, user_b_id: str) -> ExclusionPair:
    a = (user_a_id or "").strip()
    b = (user_b_id or "").strip()
    if not a or not b:
        raise InvalidExclusion("Both members of an exclusion are required")
    if a == b:
        raise InvalidExclusion("A member cannot be excluded from themselves", details={"user_id": a})
    return ExclusionPair(a, b) if a < b else ExclusionPair(b, a)


class ExclusionSet:
    """Undirected membership test over a group's exclusion pairs.

    Pairs that reference ids outside ``members`` (when given) are dropped, so
    stale rows left behind by a departed member never constrain a draw.
    """

    def __init__(self, pairs: Iterable[tuple[str, str]] = (), members: Iterable[str] | None = None) -> None:
        allowed = set(members) if members is not None else None
        self._pairs: set[ExclusionPair] = set()
        for a, b in pairs:
            if a == b:
                continue
            if allowed is not None and (a not in allowed or b not in allowed):
                continue
            self._pairs.add(ExclusionPair(a, b) if a < b else ExclusionPair(b, a))

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self):
        return iter(sorted(self._pairs))

    def __contains__(self, pair: object) -> bool:
        if not isinstance(pair, tuple) or len(pair) != 2:
            return False
        return self.excludes(pair[0], pair[1])

    def excludes(self, giver_id: str, receiver_id: str) -> bool:
        if giver_id < receiver_id:
            return ExclusionPair(giver_id, receiver_id) in self._pairs
        return ExclusionPair(receiver_id, giver_id) in self._pairs

    def allows(self, giver_id: str, receiver_id: str) -> bool:
        """A giver may gift a receiver unless it is themselves or the pair is excluded."""
        return giver_id != receiver_id and not self.excludes(giver_id, receiver_id)
