"""
rogrouper.api.rate_limit — Per-Admin Mutation Rate Limiting
============================================================

Every privileged write spends the single shared bot credential or edits
shared documents, so site-admin mutations are throttled to 30 per minute
per admin (JWT ``sub``).  Over the limit → HTTP 429 with ``Retry-After``.

The window is DB-backed (``admin_rate_limit_events``) so it survives
restarts and is shared between API workers.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from rogrouper.api.deps import get_site_admin
from rogrouper.database.models import AdminRateLimitEvent

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class AdminRateLimiter:
    """Sliding-window counter keyed by admin id."""

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _window_timestamps(self, session: Session, admin_id: str, now: datetime) -> list[datetime]:
        cutoff = now - timedelta(seconds=self.window_seconds)
        session.execute(
            delete(AdminRateLimitEvent).where(
                AdminRateLimitEvent.admin_id == admin_id,
                AdminRateLimitEvent.timestamp < cutoff,
            )
        )
        return list(session.scalars(
            select(AdminRateLimitEvent.timestamp)
            .where(AdminRateLimitEvent.admin_id == admin_id)
            .order_by(AdminRateLimitEvent.timestamp.asc())
        ).all())

    def check(self, admin_id: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, {"remaining", "reset", "limit"})``."""
        now = datetime.now(UTC)
        with Session(self.engine) as session:
            timestamps = self._window_timestamps(session, admin_id, now)
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = timestamps[0]
            if oldest.tzinfo is None:
                oldest = oldest.replace(tzinfo=UTC)
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }

        return True, {
            "remaining": self.max_requests - count,
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, admin_id: str) -> int:
        """Record one mutation; returns the count now in the window."""
        with Session(self.engine) as session:
            session.add(AdminRateLimitEvent(admin_id=admin_id, timestamp=datetime.now(UTC)))
            session.flush()
            count = session.scalar(
                select(func.count())
                .select_from(AdminRateLimitEvent)
                .where(AdminRateLimitEvent.admin_id == admin_id)
            ) or 0
            session.commit()
        return count

    def reset(self, admin_id: str | None = None) -> None:
        """Clear rate limit state. If admin_id is None, clear all."""
        with Session(self.engine) as session:
            stmt = delete(AdminRateLimitEvent)
            if admin_id is not None:
                stmt = stmt.where(AdminRateLimitEvent.admin_id == admin_id)
            session.execute(stmt)
            session.commit()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_limiter: AdminRateLimiter | None = None


def get_rate_limiter() -> AdminRateLimiter:
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured — call configure_rate_limiter() first")
    return _limiter


def configure_rate_limiter(
    *,
    engine: Engine,
    max_requests: int = DEFAULT_RATE_LIMIT,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> AdminRateLimiter:
    global _limiter
    _limiter = AdminRateLimiter(max_requests, window_seconds, engine=engine)
    return _limiter


# ---------------------------------------------------------------------------
# FastAPI dependency — chains after get_site_admin
# ---------------------------------------------------------------------------
async def rate_limited_admin(
    request: Request,
    admin: dict = Depends(get_site_admin),
) -> dict:
    """Site-admin check plus the per-admin mutation throttle.

    GET/HEAD/OPTIONS pass straight through.
    """
    if request.method not in _MUTATION_METHODS:
        return admin

    limiter = get_rate_limiter()
    admin_id = admin["sub"]

    allowed, info = await asyncio.to_thread(limiter.check, admin_id)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for admin %s: %d requests in %ds",
            admin_id, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded: {limiter.max_requests} mutations per minute.",
            headers={"Retry-After": str(info["reset"])},
        )

    await asyncio.to_thread(limiter.record, admin_id)
    return admin
