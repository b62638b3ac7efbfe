"""
rogrouper.services.pending_join_service — Pending Bot Join Queue
=================================================================

When the bot cannot join a group on its own (usually a captcha), a
``pendingBotJoins/group-<groupId>`` record is queued for a site admin to
finish by hand.

Status graph::

    pending_captcha ──► captcha_completed ──► joined
          │                    │                 │
          └────────────────────┴─────────────────┴──► failed

Any transition not drawn above is rejected and leaves the record unchanged.
"""

from __future__ import annotations

import enum
import logging
import time

from sqlalchemy import Engine

from rogrouper.constants import Collections
from rogrouper.database.documents import (
    compare_and_set_document,
    delete_document,
    get_all_documents,
    get_document_with_version,
    set_document,
)

logger = logging.getLogger(__name__)

_MAX_WRITE_ATTEMPTS = 3


class JoinStatus(enum.StrEnum):
    PENDING_CAPTCHA = "pending_captcha"
    CAPTCHA_COMPLETED = "captcha_completed"
    JOINED = "joined"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[JoinStatus, frozenset[JoinStatus]] = {
    JoinStatus.PENDING_CAPTCHA: frozenset({JoinStatus.CAPTCHA_COMPLETED, JoinStatus.FAILED}),
    JoinStatus.CAPTCHA_COMPLETED: frozenset({JoinStatus.JOINED, JoinStatus.FAILED}),
    JoinStatus.JOINED: frozenset({JoinStatus.FAILED}),
    JoinStatus.FAILED: frozenset(),
}

# Admin action → target status.  "delete" is handled separately.
ACTION_TARGETS: dict[str, JoinStatus] = {
    "mark_captcha_completed": JoinStatus.CAPTCHA_COMPLETED,
    "mark_joined": JoinStatus.JOINED,
    "mark_failed": JoinStatus.FAILED,
}
DELETE_ACTION = "delete"


class PendingJoinError(ValueError):
    """Base class for rejected pending-join operations."""


class PendingJoinNotFoundError(PendingJoinError):
    pass


class InvalidJoinActionError(PendingJoinError):
    pass


class IllegalTransitionError(PendingJoinError):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move request from {current} to {target}")


class PendingJoinConflictError(PendingJoinError):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def request_id_for_group(group_id: int | str) -> str:
    return f"group-{group_id}"


def can_transition(current: str, target: str) -> bool:
    try:
        return JoinStatus(target) in ALLOWED_TRANSITIONS[JoinStatus(current)]
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_pending_joins(engine: Engine) -> list[dict]:
    """All requests, newest ``createdAt`` first."""
    requests = get_all_documents(engine, Collections.PENDING_BOT_JOINS)
    return sorted(requests, key=lambda r: r.get("createdAt") or 0, reverse=True)


def get_pending_join(engine: Engine, request_id: str) -> dict | None:
    data, _ = get_document_with_version(engine, Collections.PENDING_BOT_JOINS, request_id)
    return data


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def create_pending_join(
    engine: Engine,
    *,
    group_id: int,
    group_name: str,
    requested_by: dict,
    group_icon_url: str | None = None,
    error: str | None = None,
    now_ms: int | None = None,
) -> str:
    """Queue (or re-queue) a ``pending_captcha`` request for *group_id*.

    A request for the same group replaces the previous one.
    """
    now = now_ms if now_ms is not None else _now_ms()
    data: dict = {
        "groupId": group_id,
        "groupName": group_name,
        "requestedBy": requested_by,
        "status": JoinStatus.PENDING_CAPTCHA.value,
        "createdAt": now,
        "updatedAt": now,
    }
    if group_icon_url:
        data["groupIconUrl"] = group_icon_url
    if error:
        data["error"] = error

    request_id = request_id_for_group(group_id)
    set_document(engine, Collections.PENDING_BOT_JOINS, request_id, data, merge=False)
    logger.info("Queued pending bot join %s (%s)", request_id, error or "no error")
    return request_id


def apply_pending_join_action(
    engine: Engine,
    request_id: str,
    action: str,
    *,
    error: str | None = None,
    now_ms: int | None = None,
) -> dict:
    """Apply an admin *action* to a queued request.

    Returns ``{"success": True, "status": ...}`` or
    ``{"success": True, "deleted": True}``.

    Raises
    ------
    PendingJoinNotFoundError
        No such request.
    InvalidJoinActionError
        *action* is not recognised.
    IllegalTransitionError
        The status graph forbids the move.
    PendingJoinConflictError
        The record kept changing underneath us.
    """
    for _ in range(_MAX_WRITE_ATTEMPTS):
        data, version = get_document_with_version(
            engine, Collections.PENDING_BOT_JOINS, request_id
        )
        if data is None:
            raise PendingJoinNotFoundError("Request not found")

        if action == DELETE_ACTION:
            delete_document(engine, Collections.PENDING_BOT_JOINS, request_id)
            logger.info("Pending bot join %s deleted", request_id)
            return {"success": True, "deleted": True}

        target = ACTION_TARGETS.get(action)
        if target is None:
            raise InvalidJoinActionError("Invalid action")

        current = data.get("status", "")
        if not can_transition(current, target):
            raise IllegalTransitionError(current, target.value)

        data["status"] = target.value
        data["updatedAt"] = now_ms if now_ms is not None else _now_ms()
        if target is JoinStatus.FAILED:
            data["error"] = error or "Manual failure"

        if compare_and_set_document(
            engine, Collections.PENDING_BOT_JOINS, request_id, data, version
        ):
            logger.info("Pending bot join %s: %s → %s", request_id, current, target)
            return {"success": True, "status": target.value}

    raise PendingJoinConflictError("Request was modified concurrently; try again")
