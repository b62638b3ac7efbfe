"""
rogrouper.services.membership_service — Member Management Through the Bot
==========================================================================

Role changes and kicks are carried out by the bot account.  A caller who
is not a site admin may only act below their own rank in the group:
assign roles ranked lower than theirs and kick members ranked lower than
them.

Also builds the dashboard's group list: the groups a user manages, each
tagged with its icon and whether the bot can act there.
"""

from __future__ import annotations

import logging

import httpx
from sqlalchemy import Engine

from rogrouper.constants import MANAGER_RANK
from rogrouper.database.engine import run_db
from rogrouper.services.bot_info import BotInfoCache
from rogrouper.services.group_access_service import accessible_group_ids
from rogrouper.services.organization_service import get_organizations, matching_role_syncs
from rogrouper.services.pending_join_service import JoinStatus, list_pending_joins
from rogrouper.services.roblox_client import RobloxAPIError, RobloxClient, error_message
from rogrouper.services.site_admin_service import is_site_admin

logger = logging.getLogger(__name__)

CUSTOM_ACCESS_ROLE = {"id": 0, "name": "Custom Access", "rank": 0}
_OPEN_JOIN_STATUSES = frozenset({JoinStatus.PENDING_CAPTCHA.value, JoinStatus.CAPTCHA_COMPLETED.value})


class MemberPermissionError(PermissionError):
    pass


class InvalidRoleError(ValueError):
    pass


class MemberNotFoundError(LookupError):
    pass


async def _bot_call(request) -> httpx.Response:
    try:
        return await request
    except httpx.HTTPError as exc:
        raise RobloxAPIError(502, f"Request to Roblox failed: {exc}") from exc


async def _caller_rank(roblox: RobloxClient, group_id: int, actor_id: str, doing: str) -> int:
    role = await roblox.get_group_membership(group_id, actor_id)
    if role is None:
        raise MemberPermissionError(f"You must be a member of this group to {doing}")
    return role.get("rank") or 0


# ---------------------------------------------------------------------------
# Role changes
# ---------------------------------------------------------------------------
async def change_member_role(
    engine: Engine,
    roblox: RobloxClient,
    group_id: int,
    user_id: int,
    role_id: int,
    actor_id: str,
    *,
    trigger_sync: bool = True,
) -> dict:
    """Give *user_id* role *role_id*, then apply the actor's role syncs.

    Returns ``{"success": True, "appliedSyncs": ["<groupId>:<roleId>", ...]}``.
    A sync that fails is logged and left out of ``appliedSyncs``.

    Raises
    ------
    MemberPermissionError
        The actor is not in the group, or the role is at or above their rank.
    InvalidRoleError
        *role_id* is not a role of the group.
    RobloxAPIError
        Roblox refused the change or could not be reached.
    """
    if not await run_db(is_site_admin, engine, actor_id):
        actor_rank = await _caller_rank(roblox, group_id, actor_id, "change roles")
        target = next((r for r in await roblox.get_group_roles(group_id) if r.get("id") == role_id), None)
        if target is None:
            raise InvalidRoleError("Invalid target role")
        if (target.get("rank") or 0) >= actor_rank:
            raise MemberPermissionError(
                f"You cannot assign roles at or above your rank ({actor_rank}). "
                f'Target role "{target.get("name")}" has rank {target.get("rank")}.'
            )

    response = await _bot_call(roblox.set_member_role(group_id, user_id, role_id))
    if not response.is_success:
        message = error_message(response, "Failed to update role")
        if "roleset is invalid" in message:
            message = "Cannot assign this role - it may be at or above the bot's rank"
        raise RobloxAPIError(response.status_code, message, details=response.text)
    logger.info("User %s set to role %s in group %s by %s", user_id, role_id, group_id, actor_id)

    applied: list[str] = []
    if trigger_sync:
        orgs = await run_db(get_organizations, engine, actor_id)
        for sync in matching_role_syncs(orgs["organizations"], group_id, role_id):
            target_group, target_role = sync.get("targetGroupId"), sync.get("targetRoleId")
            try:
                synced = await _bot_call(roblox.set_member_role(target_group, user_id, target_role))
            except RobloxAPIError as exc:
                logger.error("Role sync to group %s failed for %s: %s", target_group, user_id, exc)
                continue
            if synced.is_success:
                applied.append(f"{target_group}:{target_role}")
            else:
                logger.warning(
                    "Role sync to group %s refused for %s (HTTP %d)",
                    target_group, user_id, synced.status_code,
                )
    return {"success": True, "appliedSyncs": applied}


async def kick_member(
    engine: Engine, roblox: RobloxClient, group_id: int, user_id: int, actor_id: str
) -> dict:
    """Remove *user_id* from the group.

    Raises
    ------
    MemberPermissionError
        The actor is not in the group, or the member is at or above their rank.
    MemberNotFoundError
        *user_id* is not in the group.
    RobloxAPIError
        Roblox refused the kick or could not be reached.
    """
    if not await run_db(is_site_admin, engine, actor_id):
        actor_rank = await _caller_rank(roblox, group_id, actor_id, "kick members")
        target = await roblox.get_group_membership(group_id, user_id)
        if target is None:
            raise MemberNotFoundError("User is not a member of this group")
        if (target.get("rank") or 0) >= actor_rank:
            raise MemberPermissionError(f"You cannot kick members at or above your rank ({actor_rank}).")

    response = await _bot_call(roblox.kick_member(group_id, user_id))
    if not response.is_success:
        raise RobloxAPIError(
            response.status_code, error_message(response, "Failed to kick user"), details=response.text,
        )
    logger.info("User %s kicked from group %s by %s", user_id, group_id, actor_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Group list
# ---------------------------------------------------------------------------
def _not_in_group() -> dict:
    return {"botStatus": "not_in_group", "botRank": 0, "botRoleName": ""}


async def bot_statuses(
    engine: Engine, roblox: RobloxClient, cache: BotInfoCache, group_ids: list[int]
) -> dict[int, dict]:
    """``{groupId: {botStatus, botRank, botRoleName}}``.

    ``ready`` needs rank :data:`MANAGER_RANK` or above, ``needs_rank`` is a
    lower role, ``pending`` an open join request.  Without a working bot
    every group reads ``not_in_group``.
    """
    statuses = {gid: _not_in_group() for gid in group_ids}
    if not group_ids or not roblox.bot_configured:
        return statuses
    try:
        bot = await cache.get(roblox)
        bot_groups = await roblox.get_user_group_roles(bot["id"])
    except (RobloxAPIError, httpx.HTTPError) as exc:
        logger.warning("Could not read bot memberships: %s", exc)
        return statuses

    bot_roles = {(m.get("group") or {}).get("id"): m.get("role") or {} for m in bot_groups}
    pending = {
        r.get("groupId")
        for r in await run_db(list_pending_joins, engine)
        if r.get("status") in _OPEN_JOIN_STATUSES
    }
    for gid in group_ids:
        role = bot_roles.get(gid)
        if role is not None:
            rank = role.get("rank") or 0
            statuses[gid] = {
                "botStatus": "ready" if rank >= MANAGER_RANK else "needs_rank",
                "botRank": rank,
                "botRoleName": role.get("name") or "",
            }
        elif gid in pending:
            statuses[gid] = {**_not_in_group(), "botStatus": "pending"}
    return statuses


async def _custom_access_entries(roblox: RobloxClient, group_ids: list[int]) -> list[dict]:
    entries = []
    for gid in group_ids:
        try:
            info = await roblox.get_group_info(gid)
        except RobloxAPIError as exc:
            logger.warning("Skipping custom-access group %s: %s", gid, exc)
            continue
        group = {
            key: info.get(key)
            for key in ("id", "name", "description", "owner", "memberCount", "created", "hasVerifiedBadge")
        }
        entries.append({"group": group, "role": dict(CUSTOM_ACCESS_ROLE)})
    return entries


async def list_manageable_groups(
    engine: Engine, roblox: RobloxClient, cache: BotInfoCache, roblox_id: str
) -> list[dict]:
    """Groups *roblox_id* can open in the dashboard.

    That is every group for a site admin; otherwise groups where they rank
    :data:`MANAGER_RANK` or above, plus groups that granted them access
    (listed with the placeholder "Custom Access" role).

    Raises
    ------
    RobloxAPIError
        The user's own memberships could not be fetched.
    """
    memberships = await roblox.get_user_group_roles(roblox_id)
    if await run_db(is_site_admin, engine, roblox_id):
        groups = list(memberships)
    else:
        groups = [m for m in memberships if ((m.get("role") or {}).get("rank") or 0) >= MANAGER_RANK]

    listed = {(m.get("group") or {}).get("id") for m in groups}
    granted = await run_db(accessible_group_ids, engine, roblox_id, memberships)
    groups += await _custom_access_entries(roblox, [gid for gid in granted if gid not in listed])

    group_ids = [m["group"]["id"] for m in groups]
    try:
        icons = await roblox.get_group_icons(group_ids)
    except RobloxAPIError as exc:
        logger.warning("Could not fetch group icons: %s", exc)
        icons = {}
    statuses = await bot_statuses(engine, roblox, cache, group_ids)

    return [
        {**m, "group": {**m["group"], "iconUrl": icons.get(m["group"]["id"])}, **statuses[m["group"]["id"]]}
        for m in groups
    ]
