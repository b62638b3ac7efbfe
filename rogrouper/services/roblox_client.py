"""
rogrouper.services.roblox_client — Roblox Web API Client
=========================================================

One ``httpx.AsyncClient`` shared by every outbound Roblox call.

Two kinds of requests go through here:

* **Public** lookups (groups, users, thumbnails) — unauthenticated JSON GETs.
* **Bot** requests — carry the privileged ``.ROBLOSECURITY`` cookie of the
  bot account.  Roblox answers the first mutating call with ``403`` plus an
  ``x-csrf-token`` header; the request is replayed once with that token.
  There is no further retry budget.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from rogrouper.constants import GROUP_ICON_SIZE, ROBLOX_GROUPS, ROBLOX_THUMBNAILS, ROBLOX_USERS

logger = logging.getLogger(__name__)

CSRF_HEADER = "x-csrf-token"


class RobloxAPIError(Exception):
    """A Roblox endpoint answered with a non-2xx status (or not at all)."""

    def __init__(self, status_code: int, message: str, details: str | None = None) -> None:
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(f"Roblox API error {status_code}: {message}")


class BotNotConfiguredError(RobloxAPIError):
    """``ROBLOX_BOT_TOKEN`` is not set, so privileged calls are impossible."""

    def __init__(self) -> None:
        super().__init__(500, "Bot not configured")


def error_message(response: httpx.Response, fallback: str) -> str:
    """Pull ``errors[0].message`` out of a Roblox error body if present."""
    try:
        body = response.json()
        return body.get("errors", [{}])[0].get("message") or fallback
    except (ValueError, AttributeError, IndexError):
        return fallback


class RobloxClient:
    """Async Roblox client with optional bot credential.

    Parameters
    ----------
    bot_token:
        The bot account's ``.ROBLOSECURITY`` cookie value, or ``None``.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport (tests pass an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        bot_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token or None
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    @property
    def bot_configured(self) -> bool:
        return self._bot_token is not None

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------
    # Public lookups
    # -------------------------------------------------------------------
    async def get_json(self, url: str, params: dict | None = None) -> Any:
        """GET *url* and return its JSON body.

        Raises
        ------
        RobloxAPIError
            On a non-2xx status or a transport failure.
        """
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError as exc:
            raise RobloxAPIError(502, f"Request to Roblox failed: {exc}") from exc

        if not response.is_success:
            logger.warning("Roblox GET %s → %d", url, response.status_code)
            raise RobloxAPIError(
                response.status_code,
                error_message(response, "Roblox request failed"),
                details=response.text,
            )
        return response.json()

    async def get_user_group_roles(self, user_id: int | str) -> list[dict]:
        """Return ``[{group, role}, ...]`` for every group *user_id* is in."""
        data = await self.get_json(f"{ROBLOX_GROUPS}/users/{user_id}/groups/roles")
        return data.get("data") or []

    async def get_group_membership(self, group_id: int | str, user_id: int | str) -> dict | None:
        """*user_id*'s ``{id, name, rank}`` role in *group_id*, or ``None``."""
        for membership in await self.get_user_group_roles(user_id):
            if str((membership.get("group") or {}).get("id")) == str(group_id):
                return membership.get("role") or {}
        return None

    async def get_group_info(self, group_id: int | str) -> dict:
        return await self.get_json(f"{ROBLOX_GROUPS}/groups/{group_id}")

    async def get_group_roles(self, group_id: int | str) -> list[dict]:
        data = await self.get_json(f"{ROBLOX_GROUPS}/groups/{group_id}/roles")
        return data.get("roles") or []

    async def get_group_icons(self, group_ids: list[int]) -> dict[int, str]:
        """Map group id to icon URL; icons still rendering are left out."""
        if not group_ids:
            return {}
        data = await self.get_json(
            f"{ROBLOX_THUMBNAILS}/groups/icons",
            params={
                "groupIds": ",".join(str(g) for g in group_ids),
                "size": GROUP_ICON_SIZE,
                "format": "Png",
                "isCircular": "false",
            },
        )
        return {
            icon["targetId"]: icon["imageUrl"]
            for icon in data.get("data") or []
            if icon.get("state") == "Completed" and icon.get("imageUrl")
        }

    # -------------------------------------------------------------------
    # Bot requests
    # -------------------------------------------------------------------
    async def bot_request(
        self, method: str, url: str, json: dict | None = None
    ) -> httpx.Response:
        """Send a request authenticated with the bot cookie.

        Returns the raw response; callers decide what a failure means.
        On ``403`` with an ``x-csrf-token`` header the request is replayed
        exactly once with that token.

        Raises
        ------
        BotNotConfiguredError
            If no bot token is configured.
        httpx.HTTPError
            On transport failures.
        """
        if self._bot_token is None:
            raise BotNotConfiguredError()

        headers = {
            "Content-Type": "application/json",
            "Cookie": f".ROBLOSECURITY={self._bot_token}",
        }
        response = await self._http.request(method, url, headers=headers, json=json)

        if response.status_code == 403:
            token = response.headers.get(CSRF_HEADER)
            if token:
                logger.debug("Refreshing CSRF token for %s %s", method, url)
                headers[CSRF_HEADER] = token
                response = await self._http.request(method, url, headers=headers, json=json)

        return response

    async def get_authenticated_user(self) -> dict:
        """Return the bot account's own ``{id, name, displayName}`` profile.

        Raises
        ------
        RobloxAPIError
            If the cookie is missing, rejected, or the body has no ``id``.
        """
        response = await self.bot_request("GET", f"{ROBLOX_USERS}/users/authenticated")
        if not response.is_success:
            raise RobloxAPIError(
                response.status_code,
                "Bot token may be invalid or expired",
                details=response.text,
            )
        data = response.json()
        if not data.get("id"):
            raise RobloxAPIError(500, "Invalid response from Roblox API", details=response.text)
        return data

    async def set_member_role(
        self, group_id: int | str, user_id: int | str, role_id: int
    ) -> httpx.Response:
        return await self.bot_request(
            "PATCH",
            f"{ROBLOX_GROUPS}/groups/{group_id}/users/{user_id}",
            json={"roleId": role_id},
        )

    async def kick_member(self, group_id: int | str, user_id: int | str) -> httpx.Response:
        return await self.bot_request("DELETE", f"{ROBLOX_GROUPS}/groups/{group_id}/users/{user_id}")

    async def join_group(self, group_id: int | str) -> httpx.Response:
        return await self.bot_request("POST", f"{ROBLOX_GROUPS}/groups/{group_id}/users", json={})
