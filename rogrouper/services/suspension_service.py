"""
rogrouper.services.suspension_service — Suspension Expiry Sweep
================================================================

Restores members whose temporary suspension has run out.

For every ``groupAutomation`` record:

1. Split ``suspensions`` into expired (``expiresAt <= now``) and live.
2. For each expired entry, ask Roblox (as the bot) to put the member back on
   ``previousRoleId``.
3. Drop the expired entries from the record, whether or not Roblox accepted
   the restore.  Failed restores are written to the group's audit log so
   they can be fixed by hand.

``now`` is read once per sweep.  The write in step 3 is a compare-and-swap:
if the record changed since it was read (an admin suspended someone, or a
second sweep got there first) the record is re-read and only the entries
this sweep processed are removed from the fresh list.

Entry points:

* :func:`process_all_expired_suspensions` — full scan, returns counts.
* :func:`process_group_expired_suspensions` — one group, returns the record.
* :class:`SuspensionSweeper` — runs the full scan on an interval inside the
  API process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any

from sqlalchemy import Engine

from rogrouper.constants import Collections
from rogrouper.database.documents import (
    compare_and_set_document,
    get_all_documents,
    get_document_with_version,
)
from rogrouper.database.engine import run_db
from rogrouper.services.audit_service import SYSTEM_ACTOR, append_audit_entry
from rogrouper.services.automation_service import empty_automation, suspension_expired
from rogrouper.services.roblox_client import RobloxClient

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


def _now_ms() -> int:
    return int(time.time() * 1000)


def _suspension_key(suspension: dict) -> Any:
    return suspension.get("id") or (suspension.get("userId"), suspension.get("expiresAt"))


def partition_suspensions(suspensions: list[dict], now_ms: int) -> tuple[list[dict], list[dict]]:
    """Return ``(expired, live)`` relative to *now_ms*."""
    expired, live = [], []
    for suspension in suspensions:
        expires_at = suspension.get("expiresAt")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            logger.warning(
                "[Auto-unsuspend] Suspension %s has no usable expiresAt; treating as expired",
                suspension.get("id") or suspension.get("userId"),
            )
        (expired if suspension_expired(suspension, now_ms) else live).append(suspension)
    return expired, live


# ---------------------------------------------------------------------------
# Store side (synchronous, run via run_db)
# ---------------------------------------------------------------------------
def drop_processed_suspensions(
    engine: Engine,
    group_id: str,
    record: dict,
    version: int,
    processed_keys: set,
) -> dict | None:
    """Remove *processed_keys* from the group's suspension list.

    The first attempt writes against the (*record*, *version*) the sweep
    read.  On a version conflict the record is re-read and the same keys
    are removed from the newer list, so suspensions added in between
    survive.  Returns the stored record, or ``None`` if every attempt
    conflicted or the record disappeared.
    """
    current, current_version = record, version
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        updated = dict(current)
        updated["suspensions"] = [
            s for s in current.get("suspensions") or []
            if _suspension_key(s) not in processed_keys
        ]
        if compare_and_set_document(
            engine, Collections.GROUP_AUTOMATION, group_id, updated, current_version
        ):
            return updated

        logger.info(
            "[Auto-unsuspend] Group %s changed during sweep, retrying (%d/%d)",
            group_id, attempt, MAX_WRITE_ATTEMPTS,
        )
        fresh, current_version = get_document_with_version(
            engine, Collections.GROUP_AUTOMATION, group_id
        )
        if fresh is None:
            logger.warning("[Auto-unsuspend] Group %s record vanished mid-sweep", group_id)
            return None
        current = fresh

    logger.error(
        "[Auto-unsuspend] Gave up writing group %s after %d conflicts",
        group_id, MAX_WRITE_ATTEMPTS,
    )
    return None


# ---------------------------------------------------------------------------
# Roblox side
# ---------------------------------------------------------------------------
async def _restore_one(
    engine: Engine, client: RobloxClient, group_id: str, suspension: dict
) -> bool:
    """Put one member back on their previous role.  Never raises."""
    username = suspension.get("username")
    user_id = suspension.get("userId")
    try:
        response = await client.set_member_role(
            group_id, user_id, suspension.get("previousRoleId")
        )
    except Exception as exc:
        logger.exception(
            "[Auto-unsuspend] Error restoring %s (%s) in group %s", username, user_id, group_id,
        )
        failure = str(exc)
    else:
        if response.is_success:
            logger.info(
                "[Auto-unsuspend] Restored %s (%s) to role %s in group %s",
                username, user_id, suspension.get("previousRoleName"), group_id,
            )
            return True
        failure = f"HTTP {response.status_code}: {response.text}"
        logger.error(
            "[Auto-unsuspend] Failed to restore %s in group %s: %s",
            username, group_id, failure,
        )

    try:
        await run_db(
            append_audit_entry,
            engine,
            group_id,
            action="suspension_restore_failed",
            performed_by=SYSTEM_ACTOR,
            target_user_id=user_id,
            target_username=username,
            details=(
                f"Could not restore role {suspension.get('previousRoleName')} "
                f"({suspension.get('previousRoleId')}): {failure}"
            ),
        )
    except Exception:
        logger.exception("[Auto-unsuspend] Could not audit failed restore in group %s", group_id)
    return False


async def _process_record(
    engine: Engine,
    client: RobloxClient,
    group_id: str,
    record: dict,
    version: int,
    now_ms: int,
) -> tuple[int, int, dict]:
    """Sweep one record; returns ``(processed, restored, record_after)``."""
    suspensions = record.get("suspensions") or []
    if not suspensions:
        return 0, 0, record

    expired, _ = partition_suspensions(suspensions, now_ms)
    if not expired:
        return 0, 0, record

    restored = 0
    for suspension in expired:
        if await _restore_one(engine, client, group_id, suspension):
            restored += 1

    stored = await run_db(
        drop_processed_suspensions,
        engine,
        group_id,
        record,
        version,
        {_suspension_key(s) for s in expired},
    )
    return len(expired), restored, stored if stored is not None else record


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------
async def process_all_expired_suspensions(
    engine: Engine,
    client: RobloxClient,
    now_ms: int | None = None,
) -> dict[str, int]:
    """Sweep every group; returns ``{"processed": N, "restored": M}``.

    Never raises: failures are logged and the sweep moves on.
    """
    now = now_ms if now_ms is not None else _now_ms()
    processed = 0
    restored = 0

    try:
        documents = await run_db(get_all_documents, engine, Collections.GROUP_AUTOMATION)
    except Exception:
        logger.exception("[Auto-unsuspend] Error loading automation records")
        return {"processed": processed, "restored": restored}

    for doc in documents:
        group_id = doc["id"]
        if not doc.get("suspensions"):
            continue
        try:
            # Re-read with its version so the write-back can detect races
            record, version = await run_db(
                get_document_with_version, engine, Collections.GROUP_AUTOMATION, group_id,
            )
            if record is None:
                continue
            group_processed, group_restored, _ = await _process_record(
                engine, client, group_id, record, version, now,
            )
        except Exception:
            logger.exception("[Auto-unsuspend] Error processing group %s", group_id)
            continue
        processed += group_processed
        restored += group_restored

    if processed:
        logger.info(
            "[Auto-unsuspend] Sweep complete: processed=%d restored=%d", processed, restored,
        )
    return {"processed": processed, "restored": restored}


async def process_group_expired_suspensions(
    engine: Engine,
    client: RobloxClient,
    group_id: str,
    now_ms: int | None = None,
) -> dict:
    """Sweep a single group and return its (possibly updated) record.

    Store errors while loading propagate; restore failures do not.
    """
    now = now_ms if now_ms is not None else _now_ms()
    data, version = await run_db(
        get_document_with_version, engine, Collections.GROUP_AUTOMATION, str(group_id),
    )
    if data is None:
        return empty_automation()
    _, _, record = await _process_record(engine, client, str(group_id), data, version, now)
    return record


class SuspensionSweeper:
    """Runs :func:`process_all_expired_suspensions` on a fixed interval.

    Sweeps started from this object (the loop, or :meth:`run_once` from the
    cron endpoint) never overlap within a process.
    """

    def __init__(self, engine: Engine, client: RobloxClient, interval_seconds: float = 60) -> None:
        self.engine = engine
        self.client = client
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now_ms: int | None = None) -> dict[str, int]:
        async with self._lock:
            return await process_all_expired_suspensions(self.engine, self.client, now_ms)

    async def _loop(self) -> None:
        while True:
            result = await self.run_once()
            if result["restored"]:
                logger.info(
                    "[SuspensionSweeper] Restored %d user(s) from suspension", result["restored"],
                )
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.interval_seconds <= 0:
            logger.info("[SuspensionSweeper] Disabled (interval is 0)")
            return
        if self.running:
            return
        logger.info(
            "[SuspensionSweeper] Starting — checking every %s seconds", self.interval_seconds,
        )
        self._task = asyncio.create_task(self._loop(), name="suspension-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("[SuspensionSweeper] Stopped")
