"""
rogrouper.api.routes.bot — Bot identity, rank and join requests
================================================================
"""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

from rogrouper.api.deps import get_bot_info_cache, get_current_user, get_engine, get_roblox_client
from rogrouper.database.engine import run_db
from rogrouper.services import pending_join_service
from rogrouper.services.bot_info import BotInfoCache
from rogrouper.services.roblox_client import (
    BotNotConfiguredError,
    RobloxAPIError,
    RobloxClient,
    error_message,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["bot"])


@router.get("/bot/info")
async def bot_info(
    user: dict = Depends(get_current_user),
    roblox: RobloxClient = Depends(get_roblox_client),
    cache: BotInfoCache = Depends(get_bot_info_cache),
):
    try:
        return await cache.get(roblox)
    except BotNotConfiguredError:
        raise HTTPException(500, "Bot not configured")
    except RobloxAPIError as exc:
        logger.error("Failed to fetch bot info: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch bot info", "details": exc.message},
        )
    except httpx.HTTPError as exc:
        logger.error("Failed to fetch bot info: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch bot info", "details": str(exc)},
        )


@router.get("/groups/{group_id}/bot-role")
async def bot_role(
    group_id: int,
    user: dict = Depends(get_current_user),
    roblox: RobloxClient = Depends(get_roblox_client),
    cache: BotInfoCache = Depends(get_bot_info_cache),
):
    """The bot's role in *group_id*; rank 0 if it is not a member."""
    if not roblox.bot_configured:
        raise HTTPException(500, "Bot not configured")

    try:
        bot = await cache.get(roblox)
        memberships = await roblox.get_user_group_roles(bot["id"])
    except (RobloxAPIError, httpx.HTTPError):
        logger.exception("Error fetching bot role for group %s", group_id)
        return JSONResponse(
            status_code=500, content={"error": "Failed to fetch bot role", "rank": 0},
        )

    for membership in memberships:
        if (membership.get("group") or {}).get("id") == group_id:
            role = membership.get("role") or {}
            return {"role": role, "rank": role.get("rank", 0)}
    return {"error": "Bot is not a member of this group", "rank": 0}


# ---------------------------------------------------------------------------
# Join requests
# ---------------------------------------------------------------------------
async def _group_name(roblox: RobloxClient, group_id: int) -> str:
    try:
        info = await roblox.get_group_info(group_id)
    except RobloxAPIError as exc:
        logger.warning("Could not look up group %s: %s", group_id, exc)
        return f"Group {group_id}"
    return info.get("name") or f"Group {group_id}"


@router.get("/groups/{group_id}/bot-join")
async def bot_join_status(
    group_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    request_id = pending_join_service.request_id_for_group(group_id)
    try:
        data = await run_db(pending_join_service.get_pending_join, engine, request_id)
    except Exception:
        logger.exception("Error checking pending join status for group %s", group_id)
        raise HTTPException(500, "Failed to check status")

    if data is None:
        return {"exists": False}
    return {"exists": True, "status": data.get("status"), "updatedAt": data.get("updatedAt")}


@router.post("/groups/{group_id}/bot-join")
async def request_bot_join(
    group_id: int,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    """Ask the bot to join *group_id*.

    Anything Roblox will not let the bot do on its own (captcha, rate
    limit, unexpected error) is queued for a site admin.
    """
    if not roblox.bot_configured:
        raise HTTPException(500, "Bot not configured")

    group_name = await _group_name(roblox, group_id)

    try:
        response = await roblox.join_group(group_id)
    except httpx.HTTPError as exc:
        logger.error("Join request for group %s failed: %s", group_id, exc)
        failure = str(exc) or "Unknown error"
        message = "Request requires manual processing. An admin will handle this."
    else:
        if response.is_success:
            return {"success": True, "message": "Join request sent successfully"}

        failure = error_message(response, "Failed to join group")
        if "already" in failure:
            return {
                "success": True,
                "message": "Bot is already in the group or has a pending request",
            }
        if response.status_code == 400 and "pending" in failure:
            return {"success": True, "message": "Join request is pending approval"}

        lowered = failure.lower()
        if response.status_code in (403, 429) or "captcha" in lowered or "challenge" in lowered:
            message = "Captcha required. An admin will manually process this request."
        else:
            message = "Request requires manual processing. An admin will handle this."
        logger.info(
            "Bot could not join group %s (HTTP %d): %s", group_id, response.status_code, failure,
        )

    await run_db(
        pending_join_service.create_pending_join,
        engine,
        group_id=group_id,
        group_name=group_name,
        requested_by={"id": str(user["sub"]), "name": user.get("name") or "Unknown"},
        error=failure,
    )
    return {"success": False, "pendingCaptcha": True, "message": message}
