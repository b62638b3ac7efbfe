"""
rogrouper.api.routes.organizations — The caller's organizations
================================================================

Organizations are private to the user who created them; every call reads
and writes only the caller's own list.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy import Engine

from rogrouper.api.deps import get_current_user, get_engine
from rogrouper.database.engine import run_db
from rogrouper.services import organization_service
from rogrouper.services.organization_service import (
    OrganizationConflictError,
    OrganizationError,
    OrganizationNotFoundError,
)

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.get("")
async def list_organizations(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return await run_db(organization_service.get_organizations, engine, user["sub"])


@router.post("")
async def update_organizations(
    body: dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        return await run_db(organization_service.mutate_organizations, engine, user["sub"], body)
    except OrganizationNotFoundError as exc:
        raise HTTPException(404, str(exc))
    except OrganizationError as exc:
        raise HTTPException(400, str(exc))
    except OrganizationConflictError as exc:
        raise HTTPException(409, str(exc))
