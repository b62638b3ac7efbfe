"""
tests/test_awards.py — Award Tests
===================================
"""

from __future__ import annotations

import pytest

from rogrouper.services.award_service import (
    DEFAULT_COLOR,
    DEFAULT_ICON,
    AwardError,
    AwardNotFoundError,
    apply_award_action,
    list_awards,
)


def _create(engine, name="Medal", scope_type="group", scope_id=55, now_ms=1):
    body = {"action": "createAward", "name": name, "scopeType": scope_type, "scopeId": scope_id}
    data = apply_award_action(engine, body, "Owner", now_ms=now_ms)
    return next(a for a in data["awards"] if a["name"] == name)


def _give(engine, award_id, user_id=7, now_ms=2):
    body = {"action": "giveAward", "awardId": award_id, "userId": user_id, "username": "bob", "reason": "brave"}
    return apply_award_action(engine, body, "Owner", now_ms=now_ms)["userAwards"]


class TestAwards:
    def test_create_defaults(self, db_engine):
        award = _create(db_engine)
        assert award["icon"] == DEFAULT_ICON
        assert award["color"] == DEFAULT_COLOR
        assert award["description"] == ""
        assert award["scope"] == {"type": "group", "id": 55, "name": None}

    def test_give_copies_award_details(self, db_engine):
        award = _create(db_engine)
        [given] = _give(db_engine, award["id"])
        assert given["awardName"] == "Medal"
        assert given["awardIcon"] == DEFAULT_ICON
        assert given["awardedBy"] == "Owner"
        assert given["reason"] == "brave"

    def test_give_unknown_award(self, db_engine):
        with pytest.raises(AwardNotFoundError):
            _give(db_engine, "missing")

    def test_revoke(self, db_engine):
        award = _create(db_engine)
        [given] = _give(db_engine, award["id"])
        data = apply_award_action(db_engine, {"action": "revokeAward", "userAwardId": given["id"]}, "Owner")
        assert data["userAwards"] == []
        assert len(data["awards"]) == 1

    def test_delete_removes_given_copies(self, db_engine):
        keep = _create(db_engine, "Keep")
        drop = _create(db_engine, "Drop")
        _give(db_engine, keep["id"])
        _give(db_engine, drop["id"], now_ms=3)
        data = apply_award_action(db_engine, {"action": "deleteAward", "awardId": drop["id"]}, "Owner")
        assert [a["name"] for a in data["awards"]] == ["Keep"]
        assert [ua["awardId"] for ua in data["userAwards"]] == [keep["id"]]

    @pytest.mark.parametrize(
        "body",
        [
            {"action": "polish"},
            {"action": "createAward", "scopeType": "group", "scopeId": 1},
            {"action": "createAward", "name": "x", "scopeType": "planet", "scopeId": 1},
        ],
    )
    def test_bad_body(self, db_engine, body):
        with pytest.raises(AwardError):
            apply_award_action(db_engine, body, "Owner")


class TestListFilters:
    @pytest.fixture
    def seeded(self, db_engine):
        group_award = _create(db_engine, "Group", "group", 55, now_ms=1)
        org_award = _create(db_engine, "Org", "organization", "org-1", now_ms=2)
        _give(db_engine, group_award["id"], user_id=7, now_ms=3)
        _give(db_engine, org_award["id"], user_id=7, now_ms=4)
        _give(db_engine, group_award["id"], user_id=8, now_ms=5)
        return group_award, org_award

    def test_unfiltered(self, db_engine, seeded):
        data = list_awards(db_engine)
        assert [a["name"] for a in data["awards"]] == ["Group", "Org"]
        assert len(data["userAwards"]) == 3

    def test_scope_filters_both_lists(self, db_engine, seeded):
        data = list_awards(db_engine, scope_type="group", scope_id="55")
        assert [a["name"] for a in data["awards"]] == ["Group"]
        assert {ua["awardName"] for ua in data["userAwards"]} == {"Group"}

    def test_user_filter(self, db_engine, seeded):
        data = list_awards(db_engine, user_id="8")
        assert [ua["userId"] for ua in data["userAwards"]] == [8]
        assert len(data["awards"]) == 2

    def test_scope_and_user(self, db_engine, seeded):
        data = list_awards(db_engine, scope_type="organization", scope_id="org-1", user_id="7")
        assert [ua["awardName"] for ua in data["userAwards"]] == ["Org"]
