"""
tests/test_rate_limit.py — Admin Mutation Rate Limiting Tests
==============================================================
Site-admin mutations are limited per admin; over the limit the API answers
429 with ``Retry-After``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import auth_headers, make_admin_token
from sqlalchemy.orm import Session

from rogrouper.api.rate_limit import AdminRateLimiter
from rogrouper.database.models import AdminRateLimitEvent
from rogrouper.services.site_admin_service import seed_site_admins


class TestAdminRateLimiter:
    @pytest.fixture(autouse=True)
    def _limiter(self, db_engine):
        self.engine = db_engine
        self.limiter = AdminRateLimiter(max_requests=3, window_seconds=60, engine=db_engine)

    def test_allows_up_to_limit(self):
        for expected_remaining in (3, 2, 1):
            allowed, info = self.limiter.check("a")
            assert allowed
            assert info["remaining"] == expected_remaining
            self.limiter.record("a")

        allowed, info = self.limiter.check("a")
        assert not allowed
        assert info["remaining"] == 0
        assert 1 <= info["reset"] <= 61
        assert info["limit"] == 3

    def test_admins_are_counted_separately(self):
        for _ in range(3):
            self.limiter.record("a")
        assert not self.limiter.check("a")[0]
        assert self.limiter.check("b")[0]

    def test_old_events_fall_out_of_window(self):
        stale = datetime.now(UTC) - timedelta(seconds=120)
        with Session(self.engine) as s:
            s.add_all([AdminRateLimitEvent(admin_id="a", timestamp=stale) for _ in range(3)])
            s.commit()

        allowed, info = self.limiter.check("a")
        assert allowed
        assert info["remaining"] == 3
        with Session(self.engine) as s:
            assert s.query(AdminRateLimitEvent).count() == 0

    def test_reset_one_and_all(self):
        self.limiter.record("a")
        self.limiter.record("b")
        self.limiter.reset("a")
        assert self.limiter.check("a")[1]["remaining"] == 3
        assert self.limiter.check("b")[1]["remaining"] == 2
        self.limiter.reset()
        assert self.limiter.check("b")[1]["remaining"] == 3


class TestRateLimitedRoutes:
    @pytest.fixture
    def limited_client(self, client, db_engine):
        import rogrouper.api.rate_limit as rl_mod

        seed_site_admins(db_engine, ["admin-123", "admin-456"])
        rl_mod._limiter = AdminRateLimiter(max_requests=3, window_seconds=60, engine=db_engine)
        return client, rl_mod._limiter

    def test_reads_are_not_limited(self, limited_client):
        test_client, limiter = limited_client
        for _ in range(3):
            limiter.record("admin-123")
        headers = auth_headers(make_admin_token(sub="admin-123"))
        for _ in range(5):
            assert test_client.get("/api/admin/site-admins", headers=headers).status_code == 200

    def test_mutation_over_limit_is_429(self, limited_client):
        test_client, limiter = limited_client
        for _ in range(3):
            limiter.record("admin-123")

        resp = test_client.post(
            "/api/admin/site-admins",
            headers=auth_headers(make_admin_token(sub="admin-123")),
            json={"action": "add", "robloxId": "789"},
        )
        assert resp.status_code == 429
        assert "Retry-After" in resp.headers
        assert "Rate limit exceeded" in resp.json()["error"]

    def test_limit_is_per_admin(self, limited_client):
        test_client, limiter = limited_client
        for _ in range(3):
            limiter.record("admin-123")

        resp = test_client.post(
            "/api/admin/site-admins",
            headers=auth_headers(make_admin_token(sub="admin-456")),
            json={"action": "add", "robloxId": "789"},
        )
        assert resp.status_code == 200

    def test_mutations_are_recorded(self, limited_client):
        test_client, limiter = limited_client
        headers = auth_headers(make_admin_token(sub="admin-123"))
        for roblox_id in ("1", "2", "3"):
            resp = test_client.post(
                "/api/admin/site-admins", headers=headers, json={"action": "add", "robloxId": roblox_id},
            )
            assert resp.status_code == 200

        resp = test_client.post(
            "/api/admin/site-admins", headers=headers, json={"action": "add", "robloxId": "4"},
        )
        assert resp.status_code == 429
