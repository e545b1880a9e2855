"""Audit logging for draw and exclusion operations."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request


logger = logging.getLogger("giftgroup.audit")

_SENSITIVE_KEYS = ("password", "token", "secret", "key", "authorization")


class AuditAction(str, Enum):
    """Audit action types."""
    # Draw lifecycle
    DRAW_PERFORM = "draw_perform"
    DRAW_END = "draw_end"

    # Exclusions
    EXCLUSION_ADD = "exclusion_add"
    EXCLUSION_REMOVE = "exclusion_remove"

    # Assignments
    ASSIGNMENT_REVEAL = "assignment_reveal"


def _client_host(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """
    Log an audit event.

    Args:
        action: The action being performed
        request: FastAPI request object (for IP, user agent)
        user_id: ID of the user performing the action
        details: Additional details about the action
        success: Whether the action was successful
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }

    if user_id is not None:
        event["user_id"] = str(user_id)

    if request:
        event["ip"] = _client_host(request)
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
        event["request_id"] = request.headers.get("X-Request-Id", "")

    if details:
        event["details"] = {
            key: "***REDACTED***" if key in _SENSITIVE_KEYS else value
            for key, value in details.items()
        }

    if success:
        logger.info("AUDIT: %s", event)
    else:
        logger.warning("AUDIT: %s", event)


def audit_draw_action(
    action: AuditAction,
    request: Request,
    user_id: str,
    group_id: str,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Log a draw or exclusion operation scoped to one group."""
    event_details: dict[str, Any] = {"group_id": group_id}
    if details:
        event_details.update(details)
    audit_log(action, request=request, user_id=user_id, details=event_details, success=success)
