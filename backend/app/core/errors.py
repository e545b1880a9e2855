"""Application errors raised by the draw engine and mapped to HTTP responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class AppError(Exception):
    """Base application error."""

    code: str
    message: str
    status_code: int
    details: Any | None = None

    def __str__(self) -> str:
        return self.message


class NotAuthorized(AppError):
    """Caller lacks the role the operation requires."""

    def __init__(self, message: str = "Only the group admin can do this", details: Any | None = None) -> None:
        super().__init__(code="not_authorized", message=message, status_code=403, details=details)


class InsufficientMembers(AppError):
    def __init__(
        self,
        message: str = "At least 2 members are needed for the draw; invite more members first",
        details: Any | None = None,
    ) -> None:
        super().__init__(code="insufficient_members", message=message, status_code=400, details=details)


class NoValidAssignment(AppError):
    """The exclusion graph admits no derangement (or none was found within budget)."""

    def __init__(
        self,
        message: str = "No valid assignment exists with these exclusions; try removing some",
        details: Any | None = None,
    ) -> None:
        super().__init__(code="no_valid_assignment", message=message, status_code=409, details=details)


class ConcurrencyConflict(AppError):
    """Another draw for the same group committed first. Safe to retry."""

    def __init__(
        self,
        message: str = "Another draw for this group is in progress; please retry",
        details: Any | None = None,
    ) -> None:
        super().__init__(code="concurrency_conflict", message=message, status_code=409, details=details)


class PersistenceFailure(AppError):
    def __init__(self, message: str = "Storage is unavailable, please try again", details: Any | None = None) -> None:
        super().__init__(code="persistence_failure", message=message, status_code=503, details=details)


class InvalidExclusion(AppError):
    def __init__(self, message: str = "Invalid exclusion", details: Any | None = None) -> None:
        super().__init__(code="invalid_exclusion", message=message, status_code=400, details=details)


class NotFound(AppError):
    def __init__(self, message: str = "Not found", details: Any | None = None) -> None:
        super().__init__(code="not_found", message=message, status_code=404, details=details)
