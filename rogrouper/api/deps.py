"""
rogrouper.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from rogrouper.config import RogrouperConfig, load_config
from rogrouper.database.engine import create_db_engine, run_db
from rogrouper.services.bot_info import BotInfoCache
from rogrouper.services.roblox_client import RobloxClient
from rogrouper.services.site_admin_service import is_site_admin
from rogrouper.services.suspension_service import SuspensionSweeper

_WEAK_SECRETS = frozenset({
    "rogrouper-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> RogrouperConfig:
    if not os.path.exists("config.yaml"):
        return RogrouperConfig()
    return load_config()


# ---------------------------------------------------------------------------
# Process-wide services, built in the app lifespan and kept on app.state
# ---------------------------------------------------------------------------
def get_roblox_client(request: Request) -> RobloxClient:
    return request.app.state.roblox


def get_bot_info_cache(request: Request) -> BotInfoCache:
    return request.app.state.bot_info


def get_sweeper(request: Request) -> SuspensionSweeper:
    return request.app.state.sweeper


# ---------------------------------------------------------------------------
# Session / authorization
# ---------------------------------------------------------------------------
def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate the session JWT and return its payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid session token")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid session token")
    return payload


async def get_site_admin(
    user: dict = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> dict:
    """Like :func:`get_current_user`, plus a site-admin allow-list check (403)."""
    if not await run_db(is_site_admin, engine, user["sub"]):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Forbidden")
    return user
