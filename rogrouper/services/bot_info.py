"""
rogrouper.services.bot_info — Bot Profile Cache
================================================

Caches the bot account's own ``{id, name, displayName}`` so the dashboard
does not hit ``users/authenticated`` on every page load.

Lifecycle: empty at startup, filled on the first successful fetch, expires
after ``ttl_seconds`` (``0`` disables expiry), and can be dropped
explicitly with :meth:`BotInfoCache.invalidate` (e.g. after the bot cookie
is rotated).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from rogrouper.services.roblox_client import RobloxClient


class BotInfoCache:
    """Process-wide cache of the bot's Roblox identity.

    Usage::

        info = await cache.get(client)   # {"id": ..., "name": ..., "displayName": ...}
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._info: dict | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        if self._info is None:
            return False
        if not self.ttl_seconds:
            return True
        return self._clock() - self._fetched_at < self.ttl_seconds

    async def get(self, client: RobloxClient) -> dict:
        """Return cached bot info, fetching it when empty or stale.

        Concurrent callers on a cold cache share one fetch.  Failures are not
        cached; the next call fetches again.

        Raises
        ------
        RobloxAPIError
            If the bot token is absent or rejected.
        """
        if self._is_fresh():
            return dict(self._info)

        # one fetch at a time; waiters reuse its result
        async with self._lock:
            if not self._is_fresh():
                data = await client.get_authenticated_user()
                self._info = {
                    "id": data["id"],
                    "name": data.get("name"),
                    "displayName": data.get("displayName"),
                }
                self._fetched_at = self._clock()
            return dict(self._info)

    def invalidate(self) -> None:
        self._info = None
        self._fetched_at = 0.0
