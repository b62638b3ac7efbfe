"""
rogrouper.services.audit_service — Per-Group Audit Log
=======================================================

Each group keeps one ``auditLogs/<groupId>`` document holding its most
recent entries, newest first::

    {"entries": [{"id", "action", "targetUserId", "targetUsername",
                  "performedBy", "performedByUsername", "details",
                  "timestamp"}, ...]}

Only the latest :data:`MAX_ENTRIES` are kept.
"""

from __future__ import annotations

import logging
import time
import uuid

from sqlalchemy import Engine

from rogrouper.constants import Collections
from rogrouper.database.documents import compare_and_set_document, get_document_with_version

logger = logging.getLogger(__name__)

MAX_ENTRIES = 100
SYSTEM_ACTOR = {"id": "system", "name": "Rogrouper"}

_MAX_WRITE_ATTEMPTS = 5


def get_audit_entries(engine: Engine, group_id: str) -> list[dict]:
    data, _ = get_document_with_version(engine, Collections.AUDIT_LOGS, str(group_id))
    if not data:
        return []
    return list(data.get("entries") or [])


def append_audit_entry(
    engine: Engine,
    group_id: str,
    *,
    action: str,
    performed_by: dict,
    target_user_id: int | None = None,
    target_username: str | None = None,
    details: str | None = None,
    now_ms: int | None = None,
) -> dict:
    """Prepend an entry to *group_id*'s log and return it.

    Raises
    ------
    RuntimeError
        If the log kept changing underneath us for every attempt.
    """
    entry = {
        "id": str(uuid.uuid4()),
        "action": action,
        "targetUserId": target_user_id,
        "targetUsername": target_username,
        "performedBy": str(performed_by.get("id")),
        "performedByUsername": performed_by.get("name") or "Unknown",
        "details": details,
        "timestamp": now_ms if now_ms is not None else int(time.time() * 1000),
    }

    for _ in range(_MAX_WRITE_ATTEMPTS):
        data, version = get_document_with_version(engine, Collections.AUDIT_LOGS, str(group_id))
        entries = list((data or {}).get("entries") or [])
        entries.insert(0, entry)
        if compare_and_set_document(
            engine,
            Collections.AUDIT_LOGS,
            str(group_id),
            {"entries": entries[:MAX_ENTRIES]},
            version,
        ):
            return entry

    raise RuntimeError(f"Could not append audit entry for group {group_id}")
