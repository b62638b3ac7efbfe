"""
rogrouper.api.routes.cron — Externally triggered suspension sweep
==================================================================

For deployments that prefer an outside scheduler over (or in addition to)
the in-process :class:`~rogrouper.services.suspension_service.SuspensionSweeper`.
When ``CRON_SECRET`` is set the caller must send
``Authorization: Bearer <CRON_SECRET>``.
"""

from __future__ import annotations

import hmac
import os
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status

from rogrouper.api.deps import get_sweeper
from rogrouper.services.suspension_service import SuspensionSweeper

router = APIRouter(prefix="/cron", tags=["cron"])


def require_cron_secret(authorization: Annotated[str | None, Header()] = None) -> None:
    secret = os.getenv("CRON_SECRET", "").strip()
    if not secret:
        return
    if not hmac.compare_digest(authorization or "", f"Bearer {secret}"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")


@router.api_route("/process-suspensions", methods=["GET", "POST"])
async def process_suspensions(
    _: None = Depends(require_cron_secret),
    sweeper: SuspensionSweeper = Depends(get_sweeper),
):
    result = await sweeper.run_once()
    return {
        "success": True,
        "processedCount": result["processed"],
        "restoredCount": result["restored"],
        "timestamp": datetime.now(UTC).isoformat(),
    }
