"""
rogrouper.api.auth — Roblox OAuth2 (OIDC) + JWT issuance
=========================================================
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx
import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import delete

from rogrouper.api.deps import (
    JWT_ALGORITHM,
    JWT_SECRET,
    get_current_user,
    get_engine,
    get_roblox_client,
)
from rogrouper.constants import ROBLOX_OAUTH, ROBLOX_OAUTH_SCOPES
from rogrouper.database.engine import get_session, run_db
from rogrouper.database.models import OAuthState
from rogrouper.services.roblox_client import RobloxClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

OAUTH_STATE_TTL_SECONDS = 600
SESSION_TTL = timedelta(hours=12)


def _oauth_env() -> tuple[str, str, str, str]:
    """Return required OAuth env vars or raise a clear 500."""
    client_id = os.getenv("ROBLOX_CLIENT_ID", "").strip()
    client_secret = os.getenv("ROBLOX_CLIENT_SECRET", "").strip()
    redirect_uri = os.getenv("ROBLOX_REDIRECT_URI", "").strip()
    frontend_url = os.getenv("FRONTEND_URL", "").strip()

    missing = []
    if not client_id:
        missing.append("ROBLOX_CLIENT_ID")
    if not client_secret:
        missing.append("ROBLOX_CLIENT_SECRET")
    if not redirect_uri:
        missing.append("ROBLOX_REDIRECT_URI")
    if not frontend_url:
        missing.append("FRONTEND_URL")

    if missing:
        raise HTTPException(
            status_code=500,
            detail="Roblox OAuth is not configured: missing " + ", ".join(missing),
        )

    return client_id, client_secret, redirect_uri, frontend_url.rstrip("/")


def _store_oauth_state(engine, state: str) -> None:
    """Persist an OAuth state token and prune stale entries."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        session.add(OAuthState(state=state))


def _consume_oauth_state(engine, state: str) -> bool:
    """Consume a one-time OAuth state token if valid and unexpired."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return True


def issue_session_token(
    roblox_id: str,
    *,
    name: str | None = None,
    picture: str | None = None,
    access_token: str | None = None,
) -> str:
    """Sign a session JWT for *roblox_id*."""
    payload = {
        "sub": str(roblox_id),
        "name": name or "Unknown",
        "picture": picture,
        "access_token": access_token,
        "exp": datetime.now(UTC) + SESSION_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


@router.get("/login")
async def login(engine=Depends(get_engine)):
    """Redirect to the Roblox OAuth2 consent screen."""
    client_id, _, redirect_uri, _ = _oauth_env()

    state = secrets.token_urlsafe(32)
    await run_db(_store_oauth_state, engine, state)

    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": ROBLOX_OAUTH_SCOPES,
            "state": state,
        }
    )
    return RedirectResponse(f"{ROBLOX_OAUTH}/authorize?{query}")


@router.get("/callback")
async def callback(
    code: str,
    state: str,
    engine=Depends(get_engine),
    roblox: RobloxClient = Depends(get_roblox_client),
):
    """Exchange the OAuth code for a session JWT."""
    client_id, client_secret, redirect_uri, frontend_url = _oauth_env()

    if not await run_db(_consume_oauth_state, engine, state):
        raise HTTPException(400, "Invalid or expired OAuth state")

    try:
        token_resp = await roblox.http.post(
            f"{ROBLOX_OAUTH}/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "client_secret": client_secret,
            },
        )
        if token_resp.status_code != 200:
            logger.warning("Roblox token exchange failed: %d", token_resp.status_code)
            raise HTTPException(400, "OAuth token exchange failed")

        access_token = token_resp.json().get("access_token")
        if not access_token:
            raise HTTPException(400, "No access token returned")

        user_resp = await roblox.http.get(
            f"{ROBLOX_OAUTH}/userinfo",
            headers={"Authorization": f"Bearer {access_token}"},
        )
    except httpx.HTTPError as exc:
        logger.error("Roblox OAuth request failed: %s", exc)
        raise HTTPException(502, "Could not reach Roblox")

    if user_resp.status_code != 200:
        raise HTTPException(400, "Failed to fetch Roblox user")

    profile = user_resp.json()
    roblox_id = profile.get("sub")
    if not roblox_id:
        raise HTTPException(400, "Roblox profile has no subject")

    token = issue_session_token(
        roblox_id,
        name=profile.get("name") or profile.get("preferred_username"),
        picture=profile.get("picture"),
        access_token=access_token,
    )
    logger.info("Session issued for Roblox user %s", roblox_id)
    return RedirectResponse(f"{frontend_url}/auth/callback?token={token}")


@router.get("/me")
async def me(user: dict = Depends(get_current_user)):
    """Return the current session's user info."""
    return {
        "id": user["sub"],
        "name": user.get("name", "Unknown"),
        "picture": user.get("picture"),
    }
