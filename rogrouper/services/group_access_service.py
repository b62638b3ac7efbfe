"""
rogrouper.services.group_access_service — Per-Group Dashboard Access
=====================================================================

Members ranked below :data:`~rogrouper.constants.MANAGER_RANK` only see a
group in the dashboard if the group's ``groupAccess/<groupId>`` document
lets them in::

    {
        "groupId": 123, "ownerId": "456",
        "allowedRoles": [{roleId, roleName, rank, permissions}],
        "allowedUsers": [{robloxId, username, displayName, addedAt, addedBy, permissions}],
        "adminUsers":   [{robloxId, username, displayName, addedAt, addedBy}],
        "adminRoles":   [{roleId, roleName, rank}],
        "updatedAt": 1700000000000,
    }

Allowed users/roles get the per-entry ``permissions`` flags; access admins
get every flag and may edit the allowed lists.  Only the group owner or a
site admin creates the document or edits the admin lists.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Engine

from rogrouper.constants import MANAGER_RANK, OWNER_RANK, Collections
from rogrouper.database.documents import (
    compare_and_set_document,
    get_all_documents,
    get_document_with_version,
)
from rogrouper.database.engine import run_db
from rogrouper.services.roblox_client import RobloxAPIError, RobloxClient
from rogrouper.services.site_admin_service import is_site_admin

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

PERMISSION_KEYS = (
    "canKick",
    "canSuspend",
    "canChangeRole",
    "canManagePoints",
    "canManageDivisions",
    "canViewAuditLog",
    "canManageAutomation",
    "canManageAwards",
)

ADMIN_ACTIONS = frozenset({"addAdminUser", "removeAdminUser", "addAdminRole", "removeAdminRole"})


class GroupAccessError(ValueError):
    """Unknown action or malformed body."""


class GroupAccessDenied(PermissionError):
    pass


class GroupAccessConflictError(RuntimeError):
    """The access document changed on every write attempt."""


def default_permissions() -> dict[str, bool]:
    return dict.fromkeys(PERMISSION_KEYS, False)


def full_permissions() -> dict[str, bool]:
    return dict.fromkeys(PERMISSION_KEYS, True)


def _permissions(raw: Any, base: dict | None = None) -> dict[str, bool]:
    """Overlay the known flags of *raw* onto *base* (all-false by default)."""
    merged = dict(base) if base else default_permissions()
    if isinstance(raw, dict):
        for key in PERMISSION_KEYS:
            if key in raw:
                merged[key] = bool(raw[key])
    return merged


def empty_access(group_id: int | str, owner_id: str = "", now_ms: int = 0) -> dict:
    return {
        "groupId": int(group_id),
        "ownerId": owner_id,
        "allowedRoles": [],
        "allowedUsers": [],
        "adminUsers": [],
        "adminRoles": [],
        "updatedAt": now_ms,
    }


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Store access
# ---------------------------------------------------------------------------
def get_group_access(engine: Engine, group_id: int | str) -> tuple[dict | None, int]:
    return get_document_with_version(engine, Collections.GROUP_ACCESS, str(group_id))


def accessible_group_ids(engine: Engine, roblox_id: str, memberships: Iterable[dict]) -> list[int]:
    """Groups where *roblox_id* holds a grant, directly or through their role."""
    role_by_group = {
        str((m.get("group") or {}).get("id")): (m.get("role") or {}).get("id")
        for m in memberships
    }
    granted = []
    for access in get_all_documents(engine, Collections.GROUP_ACCESS):
        if _grant_for(access, str(roblox_id), role_by_group.get(str(access["id"]))):
            granted.append(int(access["id"]))
    return granted


def _grant_for(access: dict, roblox_id: str, role_id: Any) -> str | None:
    """``"admin"``, ``"allowed"`` or ``None`` for one user against one document."""
    if any(u.get("robloxId") == roblox_id for u in access.get("adminUsers") or []):
        return "admin"
    if role_id is not None and any(r.get("roleId") == role_id for r in access.get("adminRoles") or []):
        return "admin"
    if any(u.get("robloxId") == roblox_id for u in access.get("allowedUsers") or []):
        return "allowed"
    if role_id is not None and any(r.get("roleId") == role_id for r in access.get("allowedRoles") or []):
        return "allowed"
    return None


# ---------------------------------------------------------------------------
# Who may do what
# ---------------------------------------------------------------------------
async def is_group_owner(roblox: RobloxClient, group_id: int | str, roblox_id: str) -> bool:
    try:
        info = await roblox.get_group_info(group_id)
    except RobloxAPIError as exc:
        logger.warning("Could not look up owner of group %s: %s", group_id, exc)
        return False
    return str((info.get("owner") or {}).get("id")) == str(roblox_id)


async def _membership(roblox: RobloxClient, group_id: int | str, roblox_id: str) -> dict | None:
    try:
        return await roblox.get_group_membership(group_id, roblox_id)
    except RobloxAPIError as exc:
        logger.warning("Could not look up %s's role in group %s: %s", roblox_id, group_id, exc)
        return None


def can_manage(
    access: dict | None, roblox_id: str, role: dict | None, *, owner: bool, site_admin: bool
) -> bool:
    if site_admin or owner:
        return True
    if access is None:
        return False
    role_id = (role or {}).get("id")
    if any(u.get("robloxId") == roblox_id for u in access.get("adminUsers") or []):
        return True
    return role_id is not None and any(r.get("roleId") == role_id for r in access.get("adminRoles") or [])


def permissions_for(access: dict | None, roblox_id: str, role: dict | None, *, site_admin: bool) -> dict:
    """Resolve ``{hasAccess, permissions, isFullAccess}`` for one member.

    Site admins and members ranked :data:`MANAGER_RANK` or above always get
    full access.  Otherwise admin grants beat allowed grants, and user
    grants beat role grants.
    """
    full = {"hasAccess": True, "permissions": full_permissions(), "isFullAccess": True}
    if site_admin or (role is not None and (role.get("rank") or 0) >= MANAGER_RANK):
        return full
    if access is None:
        return {"hasAccess": False, "permissions": default_permissions(), "isFullAccess": False}

    role_id = (role or {}).get("id")
    grant = _grant_for(access, roblox_id, role_id)
    if grant == "admin":
        return full
    if grant == "allowed":
        entry = next(
            (u for u in access.get("allowedUsers") or [] if u.get("robloxId") == roblox_id),
            None,
        ) or next(r for r in access.get("allowedRoles") or [] if r.get("roleId") == role_id)
        return {
            "hasAccess": True,
            "permissions": _permissions(entry.get("permissions")),
            "isFullAccess": False,
        }
    return {"hasAccess": False, "permissions": default_permissions(), "isFullAccess": False}


async def get_user_permissions(
    engine: Engine, roblox: RobloxClient, group_id: int | str, roblox_id: str
) -> dict:
    site_admin = await run_db(is_site_admin, engine, roblox_id)
    if site_admin:
        return permissions_for(None, roblox_id, None, site_admin=True)
    role = await _membership(roblox, group_id, roblox_id)
    access, _ = await run_db(get_group_access, engine, group_id)
    return permissions_for(access, roblox_id, role, site_admin=False)


async def describe_access(
    engine: Engine, roblox: RobloxClient, group_id: int | str, roblox_id: str
) -> dict:
    """Everything the access settings page shows for *roblox_id*."""
    access, _ = await run_db(get_group_access, engine, group_id)
    site_admin = await run_db(is_site_admin, engine, roblox_id)
    owner = await is_group_owner(roblox, group_id, roblox_id)
    role = await _membership(roblox, group_id, roblox_id)
    resolved = permissions_for(access, roblox_id, role, site_admin=site_admin)
    return {
        "access": access if access is not None else empty_access(group_id),
        "permissions": {
            "canManage": can_manage(access, roblox_id, role, owner=owner, site_admin=site_admin),
            "isOwner": owner,
            "isSiteAdmin": site_admin,
        },
        "userPermissions": resolved["permissions"],
        "isFullAccess": resolved["isFullAccess"],
        "userRank": OWNER_RANK if site_admin else (role or {}).get("rank") or 0,
    }


# ---------------------------------------------------------------------------
# Actions — each mutates *access* in place
# ---------------------------------------------------------------------------
def _member_entry(body: dict, actor_id: str, now: int) -> dict:
    if not body.get("robloxId"):
        raise GroupAccessError("robloxId is required")
    return {
        "robloxId": str(body["robloxId"]),
        "username": body.get("username"),
        "displayName": body.get("displayName"),
        "addedAt": now,
        "addedBy": actor_id,
    }


def _role_entry(body: dict) -> dict:
    if body.get("roleId") is None:
        raise GroupAccessError("roleId is required")
    return {"roleId": body["roleId"], "roleName": body.get("roleName"), "rank": body.get("rank")}


def _add_unique(entries: list[dict], entry: dict, key: str) -> None:
    if not any(e.get(key) == entry[key] for e in entries):
        entries.append(entry)


def _without(entries: list[dict], key: str, value: Any) -> list[dict]:
    if key == "robloxId":
        value = str(value)
    return [e for e in entries if e.get(key) != value]


def apply_access_action(access: dict, body: dict, actor_id: str, now_ms: int) -> dict:
    """Apply ``body["action"]`` to a copy of *access* and return it.

    Adding an entry that is already present is a no-op, as is updating
    the permissions of an entry that does not exist.

    Raises
    ------
    GroupAccessError
        Unknown action or missing id.
    """
    updated = copy.deepcopy(access)
    for key in ("allowedRoles", "allowedUsers", "adminUsers", "adminRoles"):
        updated.setdefault(key, [])
    action = body.get("action")

    if action == "addAllowedRole":
        entry = {**_role_entry(body), "permissions": _permissions(body.get("permissions"))}
        _add_unique(updated["allowedRoles"], entry, "roleId")
    elif action == "removeAllowedRole":
        updated["allowedRoles"] = _without(updated["allowedRoles"], "roleId", body.get("roleId"))
    elif action == "addAllowedUser":
        entry = _member_entry(body, actor_id, now_ms)
        entry["permissions"] = _permissions(body.get("permissions"))
        _add_unique(updated["allowedUsers"], entry, "robloxId")
    elif action == "removeAllowedUser":
        updated["allowedUsers"] = _without(updated["allowedUsers"], "robloxId", body.get("robloxId"))
    elif action == "addAdminUser":
        _add_unique(updated["adminUsers"], _member_entry(body, actor_id, now_ms), "robloxId")
    elif action == "removeAdminUser":
        updated["adminUsers"] = _without(updated["adminUsers"], "robloxId", body.get("robloxId"))
    elif action == "addAdminRole":
        _add_unique(updated["adminRoles"], _role_entry(body), "roleId")
    elif action == "removeAdminRole":
        updated["adminRoles"] = _without(updated["adminRoles"], "roleId", body.get("roleId"))
    elif action == "updateRolePermissions":
        for role in updated["allowedRoles"]:
            if role.get("roleId") == body.get("roleId"):
                role["permissions"] = _permissions(body.get("permissions"), role.get("permissions"))
    elif action == "updateUserPermissions":
        for user in updated["allowedUsers"]:
            if user.get("robloxId") == str(body.get("robloxId")):
                user["permissions"] = _permissions(body.get("permissions"), user.get("permissions"))
    else:
        raise GroupAccessError("Invalid action")

    updated["updatedAt"] = now_ms
    return updated


def _write_access(
    engine: Engine,
    group_id: int | str,
    body: dict,
    roblox_id: str,
    role: dict | None,
    *,
    owner: bool,
    site_admin: bool,
    now_ms: int,
) -> dict:
    for _ in range(MAX_WRITE_ATTEMPTS):
        access, version = get_group_access(engine, group_id)
        if access is None:
            if not (owner or site_admin):
                raise GroupAccessDenied("Only group owner can set up access")
            current = empty_access(group_id, roblox_id, now_ms)
        else:
            current = access
        if body.get("action") in ADMIN_ACTIONS and not (owner or site_admin):
            raise GroupAccessDenied("Only group owner or site admin can manage admin access")
        if not can_manage(access, roblox_id, role, owner=owner, site_admin=site_admin):
            raise GroupAccessDenied("Insufficient permissions")

        updated = apply_access_action(current, body, roblox_id, now_ms)
        if compare_and_set_document(engine, Collections.GROUP_ACCESS, str(group_id), updated, version):
            logger.info("Access %s applied to group %s by %s", body.get("action"), group_id, roblox_id)
            return updated
        logger.info("Access write conflict on group %s, retrying", group_id)
    raise GroupAccessConflictError(f"Access settings for group {group_id} changed during update")


async def update_access(
    engine: Engine,
    roblox: RobloxClient,
    group_id: int | str,
    roblox_id: str,
    body: dict,
    *,
    now_ms: int | None = None,
) -> dict:
    """Apply one access action on behalf of *roblox_id*.

    Raises
    ------
    GroupAccessDenied
        The caller may not make this change.
    GroupAccessError
        Unknown action or missing id.
    GroupAccessConflictError
        Every compare-and-swap attempt lost to another writer.
    """
    site_admin = await run_db(is_site_admin, engine, roblox_id)
    owner = await is_group_owner(roblox, group_id, roblox_id)
    role = await _membership(roblox, group_id, roblox_id)
    access = await run_db(
        _write_access,
        engine,
        group_id,
        body,
        str(roblox_id),
        role,
        owner=owner,
        site_admin=site_admin,
        now_ms=now_ms if now_ms is not None else _now_ms(),
    )
    return {
        "access": access,
        "permissions": {"canManage": True, "isOwner": owner, "isSiteAdmin": site_admin},
    }
