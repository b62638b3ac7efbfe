"""
rogrouper.services.organization_service — Organizations and Role Syncs
=======================================================================

An organization is a named bundle of groups owned by one dashboard user.
Each user's organizations live in a single ``organizations/<robloxId>``
document::

    {"organizations": [{id, name, ownerId, groupIds, groups, roleSyncs, createdAt}]}

A role sync says "whoever gets role S in group A also gets role T in
group B"; ``sourceRoleId: null`` matches any role in the source group.
"""

from __future__ import annotations

import copy
import logging
import time
import uuid
from typing import Any

from sqlalchemy import Engine

from rogrouper.constants import Collections
from rogrouper.database.documents import compare_and_set_document, get_document_with_version

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

_SYNC_FIELDS = (
    "sourceGroupId",
    "sourceGroupName",
    "sourceRoleId",
    "sourceRoleName",
    "targetGroupId",
    "targetGroupName",
    "targetRoleId",
    "targetRoleName",
)


class OrganizationError(ValueError):
    """Unknown action or malformed body."""


class OrganizationNotFoundError(OrganizationError):
    pass


class OrganizationConflictError(RuntimeError):
    pass


def get_organizations(engine: Engine, owner_id: str) -> dict:
    data, _ = get_document_with_version(engine, Collections.ORGANIZATIONS, str(owner_id))
    return {"organizations": list((data or {}).get("organizations") or [])}


def matching_role_syncs(organizations: list[dict], group_id: int, role_id: int) -> list[dict]:
    """Syncs whose source is *role_id* (or any role) in *group_id*."""
    return [
        sync
        for org in organizations
        for sync in org.get("roleSyncs") or []
        if str(sync.get("sourceGroupId")) == str(group_id)
        and (sync.get("sourceRoleId") is None or sync.get("sourceRoleId") == role_id)
    ]


def _find_org(data: dict, body: dict) -> dict:
    org = next((o for o in data["organizations"] if o.get("id") == body.get("orgId")), None)
    if org is None:
        raise OrganizationNotFoundError("Organization not found")
    return org


def apply_organization_action(data: dict, body: dict, owner_id: str, now_ms: int) -> dict:
    updated = copy.deepcopy(data)
    action = body.get("action")

    if action == "create":
        if not body.get("name"):
            raise OrganizationError("name is required")
        updated["organizations"].append({
            "id": str(uuid.uuid4()),
            "name": body["name"],
            "ownerId": str(owner_id),
            "groupIds": list(body.get("groupIds") or []),
            "groups": list(body.get("groups") or []),
            "roleSyncs": [],
            "createdAt": now_ms,
        })
    elif action == "delete":
        updated["organizations"] = [o for o in updated["organizations"] if o.get("id") != body.get("orgId")]
    elif action == "updateGroups":
        org = _find_org(updated, body)
        org["groupIds"] = list(body.get("groupIds") or [])
        org["groups"] = list(body.get("groups") or [])
    elif action == "addRoleSync":
        org = _find_org(updated, body)
        if any(body.get(f) is None for f in ("sourceGroupId", "targetGroupId", "targetRoleId")):
            raise OrganizationError("sourceGroupId, targetGroupId and targetRoleId are required")
        sync: dict[str, Any] = {"id": str(uuid.uuid4())}
        sync.update({field: body.get(field) for field in _SYNC_FIELDS})
        org.setdefault("roleSyncs", []).append(sync)
    elif action == "deleteRoleSync":
        org = _find_org(updated, body)
        org["roleSyncs"] = [s for s in org.get("roleSyncs") or [] if s.get("id") != body.get("syncId")]
    elif action == "rename":
        if not body.get("name"):
            raise OrganizationError("name is required")
        _find_org(updated, body)["name"] = body["name"]
    else:
        raise OrganizationError("Invalid action")
    return updated


def mutate_organizations(
    engine: Engine, owner_id: str, body: dict, *, now_ms: int | None = None
) -> dict:
    """Apply one action to *owner_id*'s organizations and persist it.

    Raises
    ------
    OrganizationNotFoundError
        ``orgId`` names no organization of this user.
    OrganizationError
        Unknown action or missing field.
    OrganizationConflictError
        Every compare-and-swap attempt lost to another writer.
    """
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    for _ in range(MAX_WRITE_ATTEMPTS):
        stored, version = get_document_with_version(engine, Collections.ORGANIZATIONS, str(owner_id))
        current = {"organizations": list((stored or {}).get("organizations") or [])}
        updated = apply_organization_action(current, body, owner_id, now)
        if compare_and_set_document(engine, Collections.ORGANIZATIONS, str(owner_id), updated, version):
            logger.info("Organization %s applied for user %s", body.get("action"), owner_id)
            return updated
    raise OrganizationConflictError("Organizations changed during update; try again")
