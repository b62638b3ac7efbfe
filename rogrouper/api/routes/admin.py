"""
rogrouper.api.routes.admin — Site admin endpoints
==================================================

Everything here except ``/admin/check`` requires the caller to be on the
site-admin allow-list.  Mutations are additionally rate limited.
"""

from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy import Engine

from rogrouper.api.deps import JWT_ALGORITHM, JWT_SECRET, get_engine, get_site_admin
from rogrouper.api.rate_limit import rate_limited_admin
from rogrouper.database.engine import run_db
from rogrouper.services import pending_join_service, site_admin_service
from rogrouper.services.pending_join_service import (
    IllegalTransitionError,
    InvalidJoinActionError,
    PendingJoinConflictError,
    PendingJoinNotFoundError,
)
from rogrouper.services.site_admin_service import SiteAdminConflictError, SiteAdminError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PendingJoinAction(BaseModel):
    requestId: str | None = None
    action: str | None = None
    error: str | None = None


class SiteAdminChange(BaseModel):
    action: str | None = None
    robloxId: str | int | None = None


def _optional_session(authorization: Annotated[str | None, Header()] = None) -> dict | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return jwt.decode(
            authorization.split(" ", 1)[1], JWT_SECRET, algorithms=[JWT_ALGORITHM]
        )
    except jwt.InvalidTokenError:
        return None


# ---------------------------------------------------------------------------
# Admin check
# ---------------------------------------------------------------------------
@router.get("/check")
async def check_admin(
    session: dict | None = Depends(_optional_session),
    engine: Engine = Depends(get_engine),
):
    """Report whether the caller is a site admin (never fails)."""
    if not session or not session.get("sub"):
        return {"isAdmin": False}

    roblox_id = str(session["sub"])
    admins = await run_db(site_admin_service.get_site_admins, engine)
    admin_ids = [a.get("robloxId") for a in admins]
    is_admin = roblox_id in admin_ids
    logger.debug("Admin check: user=%s admins=%s is_admin=%s", roblox_id, admin_ids, is_admin)
    return {"isAdmin": is_admin, "debug": {"userRobloxId": roblox_id, "admins": admin_ids}}


# ---------------------------------------------------------------------------
# Pending bot joins
# ---------------------------------------------------------------------------
@router.get("/pending-joins")
async def list_pending_joins(
    admin: dict = Depends(get_site_admin),
    engine: Engine = Depends(get_engine),
):
    try:
        requests = await run_db(pending_join_service.list_pending_joins, engine)
    except Exception:
        logger.exception("Error fetching pending joins")
        raise HTTPException(500, "Failed to fetch pending joins")
    return {"requests": requests}


@router.post("/pending-joins")
async def update_pending_join(
    body: PendingJoinAction,
    admin: dict = Depends(rate_limited_admin),
    engine: Engine = Depends(get_engine),
):
    if not body.requestId or not body.action:
        raise HTTPException(400, "Missing requestId or action")

    try:
        return await run_db(
            pending_join_service.apply_pending_join_action,
            engine,
            body.requestId,
            body.action,
            error=body.error,
        )
    except PendingJoinNotFoundError:
        raise HTTPException(404, "Request not found")
    except (InvalidJoinActionError, IllegalTransitionError) as exc:
        raise HTTPException(400, str(exc))
    except PendingJoinConflictError as exc:
        raise HTTPException(409, str(exc))


# ---------------------------------------------------------------------------
# Site admins
# ---------------------------------------------------------------------------
@router.get("/site-admins")
async def list_site_admins(
    admin: dict = Depends(get_site_admin),
    engine: Engine = Depends(get_engine),
):
    try:
        admins = await run_db(site_admin_service.get_site_admins, engine)
    except Exception:
        logger.exception("Error fetching site admins")
        raise HTTPException(500, "Failed to fetch site admins")
    return {"admins": admins}


@router.post("/site-admins")
async def change_site_admins(
    body: SiteAdminChange,
    admin: dict = Depends(rate_limited_admin),
    engine: Engine = Depends(get_engine),
):
    if body.action not in ("add", "remove"):
        raise HTTPException(400, "Invalid action")
    if body.robloxId is None or str(body.robloxId).strip() == "":
        raise HTTPException(400, "Missing robloxId")

    roblox_id = str(body.robloxId).strip()
    try:
        if body.action == "add":
            admins = await run_db(site_admin_service.add_site_admin, engine, roblox_id)
        else:
            admins = await run_db(
                site_admin_service.remove_site_admin, engine, roblox_id, actor_id=admin["sub"],
            )
    except SiteAdminError as exc:
        raise HTTPException(400, str(exc))
    except SiteAdminConflictError as exc:
        raise HTTPException(409, str(exc))
    return {"admins": admins}
