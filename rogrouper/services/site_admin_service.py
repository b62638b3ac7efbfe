"""
rogrouper.services.site_admin_service — Site Admin Allow-List
==============================================================

The allow-list is a single document, ``siteConfig/admins``::

    {"admins": [{"robloxId": "3857050833"}, ...]}

Reads always go to the store.  Mutations enforce two rules so the
dashboard can never lock itself out: the last admin cannot be removed, and
an admin cannot remove themselves.  Both rules are checked against the list
being replaced, and the write is a compare-and-swap on the document version,
so two admins editing at once cannot undo each other's change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from sqlalchemy import Engine

from rogrouper.constants import SITE_ADMINS_DOC_ID, Collections
from rogrouper.database.documents import (
    compare_and_set_document,
    get_document_with_version,
)

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


class SiteAdminError(ValueError):
    """A requested allow-list change was rejected; the list is unchanged."""


class SiteAdminConflictError(RuntimeError):
    """The allow-list kept changing underneath every write attempt."""


def get_site_admins(engine: Engine) -> list[dict]:
    """Return the admins list verbatim (``[]`` if the document is absent)."""
    return _read_admins(engine)[0]


def _read_admins(engine: Engine) -> tuple[list[dict], int]:
    doc, version = get_document_with_version(engine, Collections.SITE_CONFIG, SITE_ADMINS_DOC_ID)
    return list((doc or {}).get("admins") or []), version


def _replace_admins(
    engine: Engine, change: Callable[[list[dict]], list[dict]]
) -> list[dict]:
    """Apply *change* to the current list and swap it in.

    *change* sees the freshly read list on every attempt and may raise
    :class:`SiteAdminError` to abort without writing.
    """
    for _ in range(MAX_WRITE_ATTEMPTS):
        admins, version = _read_admins(engine)
        updated = change(admins)
        if compare_and_set_document(
            engine, Collections.SITE_CONFIG, SITE_ADMINS_DOC_ID, {"admins": updated}, version,
        ):
            return updated
        logger.info("Site admin list changed during update, retrying")
    raise SiteAdminConflictError("Site admin list was modified concurrently; try again")


def is_site_admin(engine: Engine, roblox_id: str) -> bool:
    return any(a.get("robloxId") == str(roblox_id) for a in get_site_admins(engine))


def add_site_admin(engine: Engine, roblox_id: str) -> list[dict]:
    """Append *roblox_id* and return the updated list.

    Raises
    ------
    SiteAdminError
        If *roblox_id* is already an admin.
    SiteAdminConflictError
        Every write attempt lost to a concurrent change.
    """
    roblox_id = str(roblox_id)

    def append(admins: list[dict]) -> list[dict]:
        if any(a.get("robloxId") == roblox_id for a in admins):
            raise SiteAdminError("User is already a site admin")
        return [*admins, {"robloxId": roblox_id}]

    updated = _replace_admins(engine, append)
    logger.info("Site admin added: %s", roblox_id)
    return updated


def remove_site_admin(engine: Engine, roblox_id: str, *, actor_id: str) -> list[dict]:
    """Remove *roblox_id* on behalf of *actor_id* and return the updated list.

    Raises
    ------
    SiteAdminError
        If only one admin remains, or if *actor_id* targets themselves.
    SiteAdminConflictError
        Every write attempt lost to a concurrent change.
    """
    roblox_id = str(roblox_id)

    def drop(admins: list[dict]) -> list[dict]:
        if len(admins) <= 1:
            raise SiteAdminError("Cannot remove the last site admin")
        if roblox_id == str(actor_id):
            raise SiteAdminError("Cannot remove yourself as admin")
        return [a for a in admins if a.get("robloxId") != roblox_id]

    updated = _replace_admins(engine, drop)
    logger.info("Site admin removed: %s (by %s)", roblox_id, actor_id)
    return updated


def seed_site_admins(engine: Engine, admin_ids: Iterable[str]) -> bool:
    """Write the initial allow-list if the document does not exist yet.

    Returns ``True`` when the list was created.  An existing list is never
    touched, even if it differs from *admin_ids*.
    """
    ids = [str(i) for i in admin_ids]
    if not ids:
        return False
    existing, _ = get_document_with_version(engine, Collections.SITE_CONFIG, SITE_ADMINS_DOC_ID)
    if existing is not None:
        return False
    created = compare_and_set_document(
        engine,
        Collections.SITE_CONFIG,
        SITE_ADMINS_DOC_ID,
        {"admins": [{"robloxId": i} for i in ids]},
        expected_version=0,
    )
    if created:
        logger.info("Seeded %d bootstrap site admin(s)", len(ids))
    return created
