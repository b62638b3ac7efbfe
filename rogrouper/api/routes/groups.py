"""
rogrouper.api.routes.groups — Per-group endpoints
==================================================

The group list and member/role listings come from Roblox; role changes and
kicks go through the bot.  Access grants, automation and the audit log are
stored locally, one document per group.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy import Engine

from rogrouper.api.deps import get_bot_info_cache, get_current_user, get_engine, get_roblox_client
from rogrouper.api.errors import upstream_failure
from rogrouper.constants import DEFAULT_MEMBER_PAGE_SIZE, MEMBER_PAGE_SIZES, ROBLOX_GROUPS
from rogrouper.database.engine import run_db
from rogrouper.services import audit_service, automation_service, group_access_service, membership_service
from rogrouper.services.automation_service import AutomationActionError, AutomationConflictError
from rogrouper.services.bot_info import BotInfoCache
from rogrouper.services.group_access_service import (
    GroupAccessConflictError,
    GroupAccessDenied,
    GroupAccessError,
)
from rogrouper.services.membership_service import (
    InvalidRoleError,
    MemberNotFoundError,
    MemberPermissionError,
)
from rogrouper.services.roblox_client import RobloxAPIError, RobloxClient
from rogrouper.services.suspension_service import process_group_expired_suspensions

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/groups", tags=["groups"])


def member_page_size(raw: str | None) -> int:
    """Coerce ``?limit=`` to a page size Roblox accepts."""
    try:
        limit = int(raw) if raw else DEFAULT_MEMBER_PAGE_SIZE
    except ValueError:
        return DEFAULT_MEMBER_PAGE_SIZE
    return limit if limit in MEMBER_PAGE_SIZES else DEFAULT_MEMBER_PAGE_SIZE


# ---------------------------------------------------------------------------
# Roblox passthroughs
# ---------------------------------------------------------------------------
@router.get("")
async def list_groups(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
    cache: BotInfoCache = Depends(get_bot_info_cache),
):
    """Groups the caller can manage, with icon and bot status."""
    try:
        groups = await membership_service.list_manageable_groups(engine, roblox, cache, user["sub"])
    except RobloxAPIError as exc:
        logger.error("Error fetching groups for %s: %s", user["sub"], exc)
        return upstream_failure(exc, "Failed to fetch groups")
    return {"data": groups}


@router.get("/{group_id}/members")
async def list_members(
    group_id: int,
    cursor: str | None = None,
    limit: str | None = None,
    user: dict = Depends(get_current_user),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    params = {"limit": member_page_size(limit), "sortOrder": "Asc"}
    if cursor:
        params["cursor"] = cursor
    try:
        return await roblox.get_json(f"{ROBLOX_GROUPS}/groups/{group_id}/users", params=params)
    except RobloxAPIError as exc:
        logger.error("Error fetching members of group %s: %s", group_id, exc)
        return upstream_failure(exc, "Failed to fetch members")


@router.get("/{group_id}/roles")
async def list_roles(
    group_id: int,
    user: dict = Depends(get_current_user),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    try:
        return await roblox.get_json(f"{ROBLOX_GROUPS}/groups/{group_id}/roles")
    except RobloxAPIError as exc:
        logger.error("Error fetching roles of group %s: %s", group_id, exc)
        return upstream_failure(exc, "Failed to fetch roles")


@router.patch("/{group_id}/members/{user_id}")
async def change_member_role(
    group_id: int,
    user_id: int,
    body: dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    """Set a member's role, or kick them with ``{"action": "kick"}``."""
    if body.get("action") == "kick":
        return await kick_member(group_id, user_id, user, engine, roblox)

    role_id = body.get("roleId")
    if not isinstance(role_id, int) or isinstance(role_id, bool):
        raise HTTPException(400, "roleId must be an integer")
    try:
        return await membership_service.change_member_role(
            engine, roblox, group_id, user_id, role_id, user["sub"],
            trigger_sync=body.get("triggerSync", True) is not False,
        )
    except MemberPermissionError as exc:
        raise HTTPException(403, str(exc))
    except InvalidRoleError as exc:
        raise HTTPException(400, str(exc))
    except RobloxAPIError as exc:
        logger.error("Error updating role of %s in group %s: %s", user_id, group_id, exc)
        return upstream_failure(exc, exc.message)


@router.delete("/{group_id}/members/{user_id}")
async def kick_member(
    group_id: int,
    user_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    try:
        return await membership_service.kick_member(engine, roblox, group_id, user_id, user["sub"])
    except MemberPermissionError as exc:
        raise HTTPException(403, str(exc))
    except MemberNotFoundError as exc:
        raise HTTPException(404, str(exc))
    except RobloxAPIError as exc:
        logger.error("Error kicking %s from group %s: %s", user_id, group_id, exc)
        return upstream_failure(exc, exc.message)


# ---------------------------------------------------------------------------
# Access grants
# ---------------------------------------------------------------------------
@router.get("/{group_id}/access")
async def get_access(
    group_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    return await group_access_service.describe_access(engine, roblox, group_id, user["sub"])


@router.post("/{group_id}/access")
async def update_access(
    group_id: int,
    body: dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    try:
        return await group_access_service.update_access(engine, roblox, group_id, user["sub"], body)
    except GroupAccessDenied as exc:
        raise HTTPException(403, str(exc))
    except GroupAccessError as exc:
        raise HTTPException(400, str(exc))
    except GroupAccessConflictError as exc:
        raise HTTPException(409, str(exc))


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------
@router.get("/{group_id}/automation")
async def get_automation(
    group_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    """The group's automation record, with expired suspensions already lifted."""
    try:
        return await process_group_expired_suspensions(engine, roblox, str(group_id))
    except Exception:
        logger.exception("Error fetching automation for group %s", group_id)
        raise HTTPException(500, "Failed to fetch automation data")


@router.post("/{group_id}/automation")
async def update_automation(
    group_id: int,
    body: dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        return await run_db(automation_service.mutate_automation, engine, str(group_id), body)
    except AutomationActionError as exc:
        raise HTTPException(400, str(exc))
    except AutomationConflictError as exc:
        raise HTTPException(409, str(exc))


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@router.get("/{group_id}/audit-log")
async def get_audit_log(
    group_id: int,
    limit: int = Query(audit_service.MAX_ENTRIES, ge=1, le=audit_service.MAX_ENTRIES),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    entries = await run_db(audit_service.get_audit_entries, engine, str(group_id))
    return {"entries": entries[:limit]}


@router.post("/{group_id}/audit-log")
async def add_audit_entry(
    group_id: int,
    body: dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    """Record a dashboard action (role change, kick, ...) in the group's log."""
    if body.get("action") != "log" or not body.get("logAction"):
        raise HTTPException(400, "Invalid action")

    details = body.get("details")
    entry = await run_db(
        audit_service.append_audit_entry,
        engine,
        str(group_id),
        action=str(body["logAction"]),
        performed_by={"id": user["sub"], "name": user.get("name")},
        target_user_id=body.get("targetUserId"),
        target_username=body.get("targetUsername"),
        details=None if details is None else str(details),
    )
    return {"success": True, "entry": entry}
