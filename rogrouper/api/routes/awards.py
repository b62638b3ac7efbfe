"""
rogrouper.api.routes.awards — Award definitions and given awards
=================================================================
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy import Engine

from rogrouper.api.deps import get_current_user, get_engine
from rogrouper.database.engine import run_db
from rogrouper.services import award_service
from rogrouper.services.award_service import AwardError, AwardNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/awards", tags=["awards"])


@router.get("")
async def list_awards(
    scopeType: str | None = None,
    scopeId: str | None = None,
    userId: str | None = None,
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    return await run_db(
        award_service.list_awards, engine, scope_type=scopeType, scope_id=scopeId, user_id=userId,
    )


@router.post("")
async def update_awards(
    body: dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        return await run_db(
            award_service.apply_award_action, engine, body, user.get("name") or "Unknown",
        )
    except AwardNotFoundError as exc:
        raise HTTPException(404, str(exc))
    except AwardError as exc:
        raise HTTPException(400, str(exc))
