"""
rogrouper.api.routes.roblox — User lookups against the public Roblox APIs
==========================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from rogrouper.api.deps import get_current_user, get_roblox_client
from rogrouper.api.errors import upstream_failure
from rogrouper.constants import (
    ROBLOX_THUMBNAILS,
    ROBLOX_USERS,
    USER_SEARCH_LIMIT,
    USER_SEARCH_MIN_LENGTH,
)
from rogrouper.services.roblox_client import RobloxAPIError, RobloxClient

logger = logging.getLogger(__name__)
router = APIRouter(tags=["roblox"])


@router.get("/roblox/user/{user_id}")
async def get_user(
    user_id: int,
    user: dict = Depends(get_current_user),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    """Profile plus group memberships.  A failed group lookup is not fatal."""
    try:
        user_info = await roblox.get_json(f"{ROBLOX_USERS}/users/{user_id}")
    except RobloxAPIError as exc:
        if exc.status_code >= 500:
            return upstream_failure(exc, "Failed to fetch user data")
        return JSONResponse(
            status_code=exc.status_code, content={"error": "Failed to fetch user info"},
        )

    try:
        user_groups = await roblox.get_user_group_roles(user_id)
    except RobloxAPIError as exc:
        logger.warning("Could not load groups for user %s: %s", user_id, exc)
        user_groups = []

    return {"userInfo": user_info, "userGroups": user_groups}


@router.get("/roblox/users")
async def search_users(
    query: str | None = None,
    user: dict = Depends(get_current_user),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    keyword = (query or "").strip()
    if len(keyword) < USER_SEARCH_MIN_LENGTH:
        raise HTTPException(400, f"Query must be at least {USER_SEARCH_MIN_LENGTH} characters")

    try:
        data = await roblox.get_json(
            f"{ROBLOX_USERS}/users/search",
            params={"keyword": keyword, "limit": USER_SEARCH_LIMIT},
        )
    except RobloxAPIError as exc:
        logger.error("User search for %r failed: %s", keyword, exc)
        return upstream_failure(exc, "Failed to search users")

    return {
        "data": [
            {"id": u.get("id"), "name": u.get("name"), "displayName": u.get("displayName")}
            for u in data.get("data") or []
        ]
    }


@router.get("/users/avatars")
async def get_avatars(
    userIds: str | None = None,
    user: dict = Depends(get_current_user),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    if not userIds:
        raise HTTPException(400, "Missing userIds")

    try:
        return await roblox.get_json(
            f"{ROBLOX_THUMBNAILS}/users/avatar-headshot",
            params={
                "userIds": userIds,
                "size": "100x100",
                "format": "Png",
                "isCircular": "false",
            },
        )
    except RobloxAPIError as exc:
        logger.error("Avatar lookup failed: %s", exc)
        return upstream_failure(exc, "Failed to fetch avatars")
