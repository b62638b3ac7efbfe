"""
rogrouper.services.award_service — Awards and Given Awards
===========================================================

Award definitions live in ``awards/<id>`` and each award handed to a
member in ``userAwards/<id>``.  A given award copies the award's name,
icon and colour so it still renders after the definition is edited.
Deleting an award deletes every copy of it that was handed out.
"""

from __future__ import annotations

import logging
import time
import uuid

from sqlalchemy import Engine

from rogrouper.constants import Collections
from rogrouper.database.documents import (
    delete_document,
    get_all_documents,
    get_document,
    query_documents,
    set_document,
)

logger = logging.getLogger(__name__)

DEFAULT_ICON = "🏆"
DEFAULT_COLOR = "#fbbf24"
SCOPE_TYPES = frozenset({"group", "organization"})


class AwardError(ValueError):
    pass


class AwardNotFoundError(AwardError):
    pass


def list_awards(
    engine: Engine,
    *,
    scope_type: str | None = None,
    scope_id: str | None = None,
    user_id: str | None = None,
) -> dict:
    """``{awards, userAwards}``, optionally narrowed to one scope and/or member.

    A scope filter applies to both lists: given awards are kept only if
    their award is in scope.
    """
    awards = sorted(get_all_documents(engine, Collections.AWARDS), key=lambda a: a.get("createdAt") or 0)
    user_awards = sorted(
        get_all_documents(engine, Collections.USER_AWARDS), key=lambda ua: ua.get("awardedAt") or 0,
    )

    if scope_type and scope_id:
        awards = [
            a for a in awards
            if (a.get("scope") or {}).get("type") == scope_type
            and str((a.get("scope") or {}).get("id")) == str(scope_id)
        ]
        in_scope = {a["id"] for a in awards}
        user_awards = [ua for ua in user_awards if ua.get("awardId") in in_scope]
    if user_id:
        user_awards = [ua for ua in user_awards if str(ua.get("userId")) == str(user_id)]
    return {"awards": awards, "userAwards": user_awards}


def create_award(engine: Engine, body: dict, *, now_ms: int) -> dict:
    if not body.get("name"):
        raise AwardError("name is required")
    if body.get("scopeType") not in SCOPE_TYPES or body.get("scopeId") is None:
        raise AwardError("scopeType must be 'group' or 'organization' and scopeId is required")
    award = {
        "id": str(uuid.uuid4()),
        "name": body["name"],
        "description": body.get("description") or "",
        "icon": body.get("icon") or DEFAULT_ICON,
        "color": body.get("color") or DEFAULT_COLOR,
        "createdAt": now_ms,
        "scope": {"type": body["scopeType"], "id": body["scopeId"], "name": body.get("scopeName")},
    }
    set_document(engine, Collections.AWARDS, award["id"], award, merge=False)
    logger.info("Award %s created for %s %s", award["name"], body["scopeType"], body["scopeId"])
    return award


def delete_award(engine: Engine, award_id: str) -> None:
    for given in query_documents(engine, Collections.USER_AWARDS, "awardId", "==", award_id):
        delete_document(engine, Collections.USER_AWARDS, given["id"])
    delete_document(engine, Collections.AWARDS, award_id)


def give_award(engine: Engine, body: dict, awarded_by: str, *, now_ms: int) -> dict:
    award = get_document(engine, Collections.AWARDS, str(body.get("awardId")))
    if award is None:
        raise AwardNotFoundError("Award not found")
    if body.get("userId") is None:
        raise AwardError("userId is required")
    given = {
        "id": str(uuid.uuid4()),
        "awardId": award["id"],
        "awardName": award.get("name"),
        "awardIcon": award.get("icon"),
        "awardColor": award.get("color"),
        "userId": body["userId"],
        "username": body.get("username"),
        "awardedAt": now_ms,
        "awardedBy": awarded_by,
        "reason": body.get("reason"),
    }
    set_document(engine, Collections.USER_AWARDS, given["id"], given, merge=False)
    logger.info("Award %s given to %s by %s", award.get("name"), body["userId"], awarded_by)
    return given


def apply_award_action(engine: Engine, body: dict, awarded_by: str, *, now_ms: int | None = None) -> dict:
    """Run one award action and return the full, unfiltered ``{awards, userAwards}``.

    Raises
    ------
    AwardNotFoundError
        ``giveAward`` names an unknown award.
    AwardError
        Unknown action or missing field.
    """
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    action = body.get("action")
    if action == "createAward":
        create_award(engine, body, now_ms=now)
    elif action == "deleteAward":
        delete_award(engine, str(body.get("awardId")))
    elif action == "giveAward":
        give_award(engine, body, awarded_by, now_ms=now)
    elif action == "revokeAward":
        delete_document(engine, Collections.USER_AWARDS, str(body.get("userAwardId")))
    else:
        raise AwardError("Invalid action")
    return list_awards(engine)
