"""
tests/test_documents.py — Document Store Gateway Tests
=======================================================
"""

from __future__ import annotations

import pytest

from rogrouper.database.documents import (
    DocumentNotFoundError,
    compare_and_set_document,
    delete_document,
    get_all_documents,
    get_document,
    get_document_with_version,
    query_documents,
    set_document,
    update_document,
)


class TestReadsAndWrites:
    def test_missing_document_returns_default(self, db_engine):
        assert get_document(db_engine, "things", "nope") is None
        assert get_document(db_engine, "things", "nope", {"a": 1}) == {"a": 1}
        assert get_document_with_version(db_engine, "things", "nope") == (None, 0)

    def test_set_merges_by_default(self, db_engine):
        set_document(db_engine, "things", "1", {"a": 1, "b": 2})
        set_document(db_engine, "things", "1", {"b": 3, "c": 4})
        assert get_document(db_engine, "things", "1") == {"a": 1, "b": 3, "c": 4}

    def test_set_without_merge_replaces(self, db_engine):
        set_document(db_engine, "things", "1", {"a": 1, "b": 2})
        set_document(db_engine, "things", "1", {"c": 4}, merge=False)
        assert get_document(db_engine, "things", "1") == {"c": 4}

    def test_every_write_bumps_version(self, db_engine):
        set_document(db_engine, "things", "1", {"a": 1})
        assert get_document_with_version(db_engine, "things", "1")[1] == 1
        set_document(db_engine, "things", "1", {"a": 2})
        update_document(db_engine, "things", "1", {"b": 1})
        data, version = get_document_with_version(db_engine, "things", "1")
        assert data == {"a": 2, "b": 1}
        assert version == 3

    def test_update_missing_document_raises(self, db_engine):
        with pytest.raises(DocumentNotFoundError):
            update_document(db_engine, "things", "ghost", {"a": 1})

    def test_returned_data_is_a_copy(self, db_engine):
        set_document(db_engine, "things", "1", {"items": [1, 2]})
        data = get_document(db_engine, "things", "1")
        data["items"].append(3)
        assert get_document(db_engine, "things", "1") == {"items": [1, 2]}

    def test_get_all_includes_ids_and_is_scoped_to_collection(self, db_engine):
        set_document(db_engine, "things", "b", {"n": 2})
        set_document(db_engine, "things", "a", {"n": 1})
        set_document(db_engine, "other", "c", {"n": 3})
        assert get_all_documents(db_engine, "things") == [
            {"id": "a", "n": 1},
            {"id": "b", "n": 2},
        ]

    def test_delete(self, db_engine):
        set_document(db_engine, "things", "1", {"a": 1})
        delete_document(db_engine, "things", "1")
        delete_document(db_engine, "things", "1")  # no-op
        assert get_document(db_engine, "things", "1") is None


class TestQuery:
    @pytest.fixture(autouse=True)
    def _docs(self, db_engine):
        set_document(db_engine, "groups", "1", {"rank": 10, "tags": ["a", "b"], "owner": {"id": "x"}})
        set_document(db_engine, "groups", "2", {"rank": 50, "tags": ["b"], "owner": {"id": "y"}})
        set_document(db_engine, "groups", "3", {"name": "no rank"})

    @pytest.mark.parametrize(
        "op, value, expected",
        [
            ("==", 10, ["1"]),
            ("!=", 10, ["2"]),
            ("<", 50, ["1"]),
            ("<=", 50, ["1", "2"]),
            (">", 10, ["2"]),
            (">=", 10, ["1", "2"]),
            ("in", [50, 99], ["2"]),
            ("not-in", [50], ["1"]),
        ],
    )
    def test_comparison_operators(self, db_engine, op, value, expected):
        ids = [d["id"] for d in query_documents(db_engine, "groups", "rank", op, value)]
        assert ids == expected

    def test_array_contains(self, db_engine):
        ids = [d["id"] for d in query_documents(db_engine, "groups", "tags", "array-contains", "a")]
        assert ids == ["1"]

    def test_dotted_field_path(self, db_engine):
        ids = [d["id"] for d in query_documents(db_engine, "groups", "owner.id", "==", "y")]
        assert ids == ["2"]

    def test_incomparable_types_do_not_match(self, db_engine):
        assert query_documents(db_engine, "groups", "rank", "<", "abc") == []

    def test_unknown_operator_rejected(self, db_engine):
        with pytest.raises(ValueError, match="Unsupported query operator"):
            query_documents(db_engine, "groups", "rank", "~=", 1)


class TestCompareAndSet:
    def test_insert_requires_absent_document(self, db_engine):
        assert compare_and_set_document(db_engine, "things", "1", {"a": 1}, 0)
        assert not compare_and_set_document(db_engine, "things", "1", {"a": 2}, 0)
        assert get_document_with_version(db_engine, "things", "1") == ({"a": 1}, 1)

    def test_update_with_current_version(self, db_engine):
        set_document(db_engine, "things", "1", {"a": 1})
        assert compare_and_set_document(db_engine, "things", "1", {"a": 2}, 1)
        assert get_document_with_version(db_engine, "things", "1") == ({"a": 2}, 2)

    def test_stale_version_is_rejected(self, db_engine):
        set_document(db_engine, "things", "1", {"a": 1})
        set_document(db_engine, "things", "1", {"a": 2})  # someone else wrote
        assert not compare_and_set_document(db_engine, "things", "1", {"a": 99}, 1)
        assert get_document(db_engine, "things", "1") == {"a": 2}
