"""
rogrouper.database.documents — Document Store Gateway
======================================================

Thin typed wrapper over the ``documents`` table.  Documents are addressed by
a logical collection name plus an id, and carry a JSON body.

Every function opens its own session, so each call is an independent round
trip.  Store errors (``SQLAlchemyError``) propagate to the caller.

Read-modify-write callers that must not lose concurrent updates use
:func:`get_document_with_version` + :func:`compare_and_set_document`.
"""

from __future__ import annotations

import copy
import logging
import operator
from collections.abc import Callable
from typing import Any

from sqlalchemy import Engine, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rogrouper.database.engine import get_session
from rogrouper.database.models import Document

logger = logging.getLogger(__name__)


class DocumentNotFoundError(LookupError):
    """Raised by :func:`update_document` when the target does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document {collection}/{doc_id} not found")


def _array_contains(left: Any, right: Any) -> bool:
    return isinstance(left, list) and right in left


def _in(left: Any, right: Any) -> bool:
    return left in right


def _not_in(left: Any, right: Any) -> bool:
    return left not in right


# Filter operators accepted by query_documents()
QUERY_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _in,
    "not-in": _not_in,
    "array-contains": _array_contains,
}

_MISSING = object()


def _resolve_field(data: dict, field: str) -> Any:
    """Look up a dotted *field* path inside *data*."""
    value: Any = data
    for part in field.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _with_id(row: Document) -> dict:
    return {"id": row.id, **copy.deepcopy(row.data)}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_document(engine: Engine, collection: str, doc_id: str, default: Any = None) -> Any:
    """Return the body of ``collection/doc_id``, or *default* if absent."""
    with Session(engine) as session:
        row = session.get(Document, (collection, doc_id))
        if row is None:
            return default
        return copy.deepcopy(row.data)


def get_document_with_version(
    engine: Engine, collection: str, doc_id: str
) -> tuple[dict | None, int]:
    """Return ``(body, version)``; ``(None, 0)`` when the document is absent."""
    with Session(engine) as session:
        row = session.get(Document, (collection, doc_id))
        if row is None:
            return None, 0
        return copy.deepcopy(row.data), row.version


def get_all_documents(engine: Engine, collection: str) -> list[dict]:
    """Return every document in *collection*, each with an ``id`` key."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Document)
            .where(Document.collection == collection)
            .order_by(Document.id)
        ).all()
        return [_with_id(r) for r in rows]


def query_documents(
    engine: Engine, collection: str, field: str, op: str, value: Any
) -> list[dict]:
    """Return documents whose *field* satisfies ``field <op> value``.

    Documents missing the field never match.  Comparisons between
    incompatible types (e.g. ``"a" < 3``) are treated as non-matches.

    Raises
    ------
    ValueError
        If *op* is not one of :data:`QUERY_OPERATORS`.
    """
    try:
        predicate = QUERY_OPERATORS[op]
    except KeyError:
        raise ValueError(f"Unsupported query operator: {op!r}") from None

    results = []
    for doc in get_all_documents(engine, collection):
        candidate = _resolve_field(doc, field)
        if candidate is _MISSING:
            continue
        try:
            matched = predicate(candidate, value)
        except TypeError:
            continue
        if matched:
            results.append(doc)
    return results


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def set_document(
    engine: Engine, collection: str, doc_id: str, data: dict, *, merge: bool = True
) -> None:
    """Create or overwrite ``collection/doc_id``.

    With ``merge=True`` the top-level keys of *data* are merged into the
    existing body; otherwise the body is replaced.
    """
    with get_session(engine) as session:
        row = session.get(Document, (collection, doc_id))
        if row is None:
            session.add(Document(
                collection=collection, id=doc_id, data=copy.deepcopy(data), version=1,
            ))
            return
        body = {**row.data, **data} if merge else data
        row.data = copy.deepcopy(body)
        row.version += 1


def update_document(engine: Engine, collection: str, doc_id: str, fields: dict) -> None:
    """Merge *fields* into an existing document.

    Raises
    ------
    DocumentNotFoundError
        If the document does not exist.
    """
    with get_session(engine) as session:
        row = session.get(Document, (collection, doc_id))
        if row is None:
            raise DocumentNotFoundError(collection, doc_id)
        row.data = copy.deepcopy({**row.data, **fields})
        row.version += 1


def compare_and_set_document(
    engine: Engine,
    collection: str,
    doc_id: str,
    data: dict,
    expected_version: int,
) -> bool:
    """Replace the body only if the stored version equals *expected_version*.

    ``expected_version=0`` means "the document must not exist yet".
    Returns ``True`` on success, ``False`` when another writer got there first.
    """
    body = copy.deepcopy(data)
    if expected_version == 0:
        try:
            with get_session(engine) as session:
                session.add(Document(collection=collection, id=doc_id, data=body, version=1))
        except IntegrityError:
            logger.debug("CAS insert lost race for %s/%s", collection, doc_id)
            return False
        return True

    with get_session(engine) as session:
        result = session.execute(
            update(Document)
            .where(
                Document.collection == collection,
                Document.id == doc_id,
                Document.version == expected_version,
            )
            .values(data=body, version=expected_version + 1)
        )
        swapped = result.rowcount == 1
    if not swapped:
        logger.debug(
            "CAS conflict on %s/%s (expected v%d)", collection, doc_id, expected_version,
        )
    return swapped


def delete_document(engine: Engine, collection: str, doc_id: str) -> None:
    """Delete ``collection/doc_id``; deleting a missing document is a no-op."""
    with get_session(engine) as session:
        session.execute(
            delete(Document).where(
                Document.collection == collection,
                Document.id == doc_id,
            )
        )
