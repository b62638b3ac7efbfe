"""
rogrouper.services.automation_service — Group Automation Records
=================================================================

One ``groupAutomation/<groupId>`` document per group::

    {
        "rules":         [{id, points, roleId, roleName}],
        "userPoints":    [{userId, username, points, subGroupId?}],
        "suspendedRole": {roleId, roleName},            # optional
        "suspensions":   [{id, userId, username, previousRoleId,
                           previousRoleName, suspendedAt, expiresAt}],
        "subGroups":     [{id, name, color, rules, excludeFromGeneralAutomation?}],
    }

All mutations go through :func:`mutate_automation`, which applies a named
action to a fresh copy of the record and writes it back with a
compare-and-swap.  A concurrent writer (another admin, or the suspension
sweep) makes the swap fail; the action is then re-applied to the newer
record.
"""

from __future__ import annotations

import copy
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy import Engine

from rogrouper.constants import Collections
from rogrouper.database.documents import compare_and_set_document, get_document_with_version

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3
DEFAULT_SUBGROUP_COLOR = "#6366f1"


class AutomationActionError(ValueError):
    """The action is unknown, or a field is missing or has the wrong type."""


class AutomationConflictError(RuntimeError):
    """The record changed on every write attempt."""


def empty_automation() -> dict:
    return {"rules": [], "userPoints": [], "suspensions": []}


def _normalize(data: dict | None) -> dict:
    record = copy.deepcopy(data) if data else empty_automation()
    record.setdefault("rules", [])
    record.setdefault("userPoints", [])
    record.setdefault("suspensions", [])
    return record


def _clean_user_points(record: dict) -> dict:
    """Drop empty ``subGroupId`` keys so stored user entries stay tidy."""
    cleaned = []
    for user in record["userPoints"]:
        entry = {
            "userId": user.get("userId"),
            "username": user.get("username"),
            "points": user.get("points", 0),
        }
        if user.get("subGroupId"):
            entry["subGroupId"] = user["subGroupId"]
        cleaned.append(entry)
    record["userPoints"] = cleaned
    return record


def _require(body: dict, *names: str) -> None:
    missing = [n for n in names if body.get(n) is None]
    if missing:
        raise AutomationActionError(f"Missing field(s): {', '.join(missing)}")


def _integer(body: dict, name: str, *, positive: bool = False) -> int:
    """Return ``body[name]`` as an int; JSON strings, bools and fractions are rejected."""
    value = body.get(name)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        raise AutomationActionError(f"{name} must be an integer")
    if positive and value <= 0:
        raise AutomationActionError(f"{name} must be positive")
    return value


def suspension_expired(suspension: dict, now_ms: int) -> bool:
    """True once ``expiresAt`` has passed.

    A missing or non-numeric ``expiresAt`` counts as expired so a corrupt
    entry cannot pin its member on the suspended role.
    """
    expires_at = suspension.get("expiresAt")
    if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
        return True
    return expires_at <= now_ms


def _new_id() -> str:
    return str(uuid.uuid4())


def _find_user(record: dict, user_id: Any) -> dict | None:
    return next((u for u in record["userPoints"] if u.get("userId") == user_id), None)


def _find_subgroup(record: dict, subgroup_id: Any) -> dict | None:
    return next(
        (sg for sg in record.setdefault("subGroups", []) if sg.get("id") == subgroup_id),
        None,
    )


# ---------------------------------------------------------------------------
# Actions — each mutates *record* in place; may return extra response fields
# ---------------------------------------------------------------------------
def _add_rule(record: dict, body: dict, now: int) -> None:
    _require(body, "points", "roleId", "roleName")
    record["rules"].append({
        "id": _new_id(),
        "points": _integer(body, "points"),
        "roleId": _integer(body, "roleId"),
        "roleName": body["roleName"],
    })


def _delete_rule(record: dict, body: dict, now: int) -> None:
    _require(body, "ruleId")
    record["rules"] = [r for r in record["rules"] if r.get("id") != body["ruleId"]]


def _upsert_points(record: dict, body: dict, points_for: Callable[[int], int]) -> None:
    user = _find_user(record, body["userId"])
    if user is not None:
        user["points"] = max(0, points_for(user.get("points", 0)))
        user["username"] = body.get("username")
    else:
        record["userPoints"].append({
            "userId": body["userId"],
            "username": body.get("username"),
            "points": max(0, points_for(0)),
        })


def _update_points(record: dict, body: dict, now: int) -> None:
    _require(body, "userId", "pointsDelta")
    delta = _integer(body, "pointsDelta")
    _upsert_points(record, body, lambda current: current + delta)


def _set_points(record: dict, body: dict, now: int) -> None:
    _require(body, "userId", "points")
    points = _integer(body, "points")
    _upsert_points(record, body, lambda current: points)


def _set_suspended_role(record: dict, body: dict, now: int) -> None:
    _require(body, "roleId", "roleName")
    record["suspendedRole"] = {"roleId": _integer(body, "roleId"), "roleName": body["roleName"]}


def _clear_suspended_role(record: dict, body: dict, now: int) -> None:
    record.pop("suspendedRole", None)


def _suspend_user(record: dict, body: dict, now: int) -> None:
    _require(body, "userId", "previousRoleId", "durationMs")
    previous_role_id = _integer(body, "previousRoleId")
    duration_ms = _integer(body, "durationMs", positive=True)
    record["suspensions"] = [
        s for s in record["suspensions"] if s.get("userId") != body["userId"]
    ]
    record["suspensions"].append({
        "id": _new_id(),
        "userId": body["userId"],
        "username": body.get("username"),
        "previousRoleId": previous_role_id,
        "previousRoleName": body.get("previousRoleName"),
        "suspendedAt": now,
        "expiresAt": now + duration_ms,
    })


def _unsuspend_user(record: dict, body: dict, now: int) -> None:
    _require(body, "userId")
    record["suspensions"] = [
        s for s in record["suspensions"] if s.get("userId") != body["userId"]
    ]


def _clean_expired_suspensions(record: dict, body: dict, now: int) -> dict:
    expired = [s for s in record["suspensions"] if suspension_expired(s, now)]
    record["suspensions"] = [s for s in record["suspensions"] if not suspension_expired(s, now)]
    return {"expiredSuspensions": expired}


def _create_subgroup(record: dict, body: dict, now: int) -> None:
    _require(body, "name")
    record.setdefault("subGroups", []).append({
        "id": _new_id(),
        "name": body["name"],
        "color": body.get("color") or DEFAULT_SUBGROUP_COLOR,
        "rules": [],
    })


def _delete_subgroup(record: dict, body: dict, now: int) -> None:
    _require(body, "subGroupId")
    subgroup_id = body["subGroupId"]
    record["subGroups"] = [
        sg for sg in record.get("subGroups", []) if sg.get("id") != subgroup_id
    ]
    for user in record["userPoints"]:
        if user.get("subGroupId") == subgroup_id:
            user.pop("subGroupId")


def _rename_subgroup(record: dict, body: dict, now: int) -> None:
    _require(body, "subGroupId", "name")
    subgroup = _find_subgroup(record, body["subGroupId"])
    if subgroup is not None:
        subgroup["name"] = body["name"]
        if body.get("color"):
            subgroup["color"] = body["color"]


def _update_subgroup_settings(record: dict, body: dict, now: int) -> None:
    _require(body, "subGroupId")
    subgroup = _find_subgroup(record, body["subGroupId"])
    if subgroup is not None and body.get("excludeFromGeneralAutomation") is not None:
        subgroup["excludeFromGeneralAutomation"] = bool(body["excludeFromGeneralAutomation"])


def _add_subgroup_rule(record: dict, body: dict, now: int) -> None:
    _require(body, "subGroupId", "points", "roleId", "roleName")
    subgroup = _find_subgroup(record, body["subGroupId"])
    if subgroup is not None:
        subgroup.setdefault("rules", []).append({
            "id": _new_id(),
            "points": _integer(body, "points"),
            "roleId": _integer(body, "roleId"),
            "roleName": body["roleName"],
        })


def _delete_subgroup_rule(record: dict, body: dict, now: int) -> None:
    _require(body, "subGroupId", "ruleId")
    subgroup = _find_subgroup(record, body["subGroupId"])
    if subgroup is not None:
        subgroup["rules"] = [
            r for r in subgroup.get("rules", []) if r.get("id") != body["ruleId"]
        ]


def _assign_user_to_subgroup(record: dict, body: dict, now: int) -> None:
    _require(body, "userId")
    user = _find_user(record, body["userId"])
    subgroup_id = body.get("subGroupId")
    if user is not None:
        if subgroup_id:
            user["subGroupId"] = subgroup_id
        else:
            user.pop("subGroupId", None)
    elif subgroup_id:
        record["userPoints"].append({
            "userId": body["userId"],
            "username": body.get("username"),
            "points": 0,
            "subGroupId": subgroup_id,
        })


def _remove_user_from_subgroup(record: dict, body: dict, now: int) -> None:
    _require(body, "userId")
    user = _find_user(record, body["userId"])
    if user is not None:
        user.pop("subGroupId", None)


ACTIONS: dict[str, Callable[[dict, dict, int], dict | None]] = {
    "addRule": _add_rule,
    "deleteRule": _delete_rule,
    "updatePoints": _update_points,
    "setPoints": _set_points,
    "setSuspendedRole": _set_suspended_role,
    "clearSuspendedRole": _clear_suspended_role,
    "suspendUser": _suspend_user,
    "unsuspendUser": _unsuspend_user,
    "cleanExpiredSuspensions": _clean_expired_suspensions,
    "createSubGroup": _create_subgroup,
    "deleteSubGroup": _delete_subgroup,
    "renameSubGroup": _rename_subgroup,
    "updateSubGroupSettings": _update_subgroup_settings,
    "addSubGroupRule": _add_subgroup_rule,
    "deleteSubGroupRule": _delete_subgroup_rule,
    "assignUserToSubGroup": _assign_user_to_subgroup,
    "removeUserFromSubGroup": _remove_user_from_subgroup,
}


def apply_action(record: dict, body: dict, now_ms: int) -> tuple[dict, dict]:
    """Apply ``body["action"]`` to a copy of *record*.

    Returns ``(new_record, extra_response_fields)``.

    Raises
    ------
    AutomationActionError
        Unknown action or missing fields.
    """
    handler = ACTIONS.get(body.get("action"))
    if handler is None:
        raise AutomationActionError(f"Unknown action: {body.get('action')!r}")
    updated = _normalize(record)
    extra = handler(updated, body, now_ms) or {}
    return _clean_user_points(updated), extra


# ---------------------------------------------------------------------------
# Store access
# ---------------------------------------------------------------------------
def get_automation(engine: Engine, group_id: str) -> tuple[dict, int]:
    """Return ``(record, version)``; missing records come back empty at v0."""
    data, version = get_document_with_version(engine, Collections.GROUP_AUTOMATION, str(group_id))
    return _normalize(data), version


def mutate_automation(
    engine: Engine,
    group_id: str,
    body: dict,
    *,
    now_ms: int | None = None,
) -> dict:
    """Apply an action and persist it; returns the stored record + extras.

    Raises
    ------
    AutomationActionError
        Bad action/body (nothing is written).
    AutomationConflictError
        Every compare-and-swap attempt lost to another writer.
    """
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        record, version = get_automation(engine, group_id)
        updated, extra = apply_action(record, body, now)
        if compare_and_set_document(
            engine, Collections.GROUP_AUTOMATION, str(group_id), updated, version
        ):
            logger.info(
                "Automation %s applied to group %s (v%d → v%d)",
                body.get("action"), group_id, version, version + 1,
            )
            return {**updated, **extra}
        logger.info(
            "Automation write conflict on group %s (attempt %d/%d)",
            group_id, attempt, MAX_WRITE_ATTEMPTS,
        )

    raise AutomationConflictError(
        f"Automation record for group {group_id} changed during update"
    )
