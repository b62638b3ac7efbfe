"""
tests/test_pending_joins.py — Pending Bot Join Queue Tests
===========================================================
"""

from __future__ import annotations

import pytest

from rogrouper.services.pending_join_service import (
    IllegalTransitionError,
    InvalidJoinActionError,
    JoinStatus,
    PendingJoinNotFoundError,
    apply_pending_join_action,
    can_transition,
    create_pending_join,
    get_pending_join,
    list_pending_joins,
)

REQUESTER = {"id": "555", "name": "Owner"}


def _create(engine, group_id=123, now_ms=1_000, **kwargs):
    return create_pending_join(
        engine,
        group_id=group_id,
        group_name=f"Group {group_id}",
        requested_by=REQUESTER,
        now_ms=now_ms,
        **kwargs,
    )


class TestTransitionGraph:
    @pytest.mark.parametrize(
        "current, target, allowed",
        [
            ("pending_captcha", "captcha_completed", True),
            ("pending_captcha", "failed", True),
            ("pending_captcha", "joined", False),
            ("captcha_completed", "joined", True),
            ("captcha_completed", "failed", True),
            ("captcha_completed", "pending_captcha", False),
            ("joined", "failed", True),
            ("joined", "captcha_completed", False),
            ("failed", "joined", False),
            ("failed", "pending_captcha", False),
            ("bogus", "joined", False),
        ],
    )
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed


class TestCreate:
    def test_creates_pending_captcha_record(self, db_engine):
        request_id = _create(db_engine, error="Captcha required")
        assert request_id == "group-123"
        record = get_pending_join(db_engine, request_id)
        assert record["status"] == JoinStatus.PENDING_CAPTCHA
        assert record["groupId"] == 123
        assert record["requestedBy"] == REQUESTER
        assert record["error"] == "Captcha required"
        assert record["createdAt"] == record["updatedAt"] == 1_000
        assert "groupIconUrl" not in record

    def test_new_request_replaces_old_one(self, db_engine):
        _create(db_engine, error="first")
        apply_pending_join_action(db_engine, "group-123", "mark_failed")
        _create(db_engine, now_ms=2_000)
        record = get_pending_join(db_engine, "group-123")
        assert record["status"] == "pending_captcha"
        assert "error" not in record

    def test_list_newest_first(self, db_engine):
        _create(db_engine, group_id=1, now_ms=100)
        _create(db_engine, group_id=2, now_ms=300)
        _create(db_engine, group_id=3, now_ms=200)
        assert [r["id"] for r in list_pending_joins(db_engine)] == ["group-2", "group-3", "group-1"]


class TestActions:
    def test_happy_path(self, db_engine):
        _create(db_engine)
        assert apply_pending_join_action(
            db_engine, "group-123", "mark_captcha_completed", now_ms=2_000,
        ) == {"success": True, "status": "captcha_completed"}
        assert apply_pending_join_action(
            db_engine, "group-123", "mark_joined", now_ms=3_000,
        ) == {"success": True, "status": "joined"}
        record = get_pending_join(db_engine, "group-123")
        assert record["status"] == "joined"
        assert record["updatedAt"] == 3_000

    def test_mark_failed_defaults_error(self, db_engine):
        _create(db_engine)
        apply_pending_join_action(db_engine, "group-123", "mark_failed")
        assert get_pending_join(db_engine, "group-123")["error"] == "Manual failure"

    def test_mark_failed_keeps_given_error(self, db_engine):
        _create(db_engine)
        apply_pending_join_action(db_engine, "group-123", "mark_failed", error="Group closed")
        assert get_pending_join(db_engine, "group-123")["error"] == "Group closed"

    def test_illegal_transition_leaves_record_unchanged(self, db_engine):
        _create(db_engine)
        before = get_pending_join(db_engine, "group-123")
        with pytest.raises(IllegalTransitionError):
            apply_pending_join_action(db_engine, "group-123", "mark_joined")
        assert get_pending_join(db_engine, "group-123") == before

    def test_failed_is_terminal(self, db_engine):
        _create(db_engine)
        apply_pending_join_action(db_engine, "group-123", "mark_failed")
        with pytest.raises(IllegalTransitionError):
            apply_pending_join_action(db_engine, "group-123", "mark_captcha_completed")

    def test_unknown_action_leaves_record_unchanged(self, db_engine):
        _create(db_engine)
        before = get_pending_join(db_engine, "group-123")
        with pytest.raises(InvalidJoinActionError):
            apply_pending_join_action(db_engine, "group-123", "approve")
        assert get_pending_join(db_engine, "group-123") == before

    def test_delete(self, db_engine):
        _create(db_engine)
        assert apply_pending_join_action(db_engine, "group-123", "delete") == {
            "success": True,
            "deleted": True,
        }
        assert get_pending_join(db_engine, "group-123") is None

    def test_missing_request(self, db_engine):
        with pytest.raises(PendingJoinNotFoundError):
            apply_pending_join_action(db_engine, "group-404", "delete")
