"""
tests/test_jwt_startup.py — Session Secret Validation
======================================================
The API refuses to start when JWT_SECRET is missing, blank, too short, or
a known weak default.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from rogrouper.api.deps import _load_jwt_secret


class TestJWTSecretValidation:
    """``_load_jwt_secret()`` runs at import time of ``rogrouper.api.deps``."""

    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="not set"):
                _load_jwt_secret()

    def test_rejects_empty_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": ""}):
            with pytest.raises(RuntimeError, match="not set"):
                _load_jwt_secret()

    @pytest.mark.parametrize("weak", ["rogrouper-dev-secret-change-me", "change-me", "secret"])
    def test_rejects_known_weak_defaults(self, weak):
        with patch.dict(os.environ, {"JWT_SECRET": weak}):
            with pytest.raises(RuntimeError, match="known weak default"):
                _load_jwt_secret()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "s" * 31}):
            with pytest.raises(RuntimeError, match="too short"):
                _load_jwt_secret()

    def test_accepts_strong_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "a" * 32}):
            assert _load_jwt_secret() == "a" * 32


class TestSessionTokens:
    def test_issued_token_is_accepted(self):
        from rogrouper.api.auth import issue_session_token
        from rogrouper.api.deps import get_current_user

        token = issue_session_token("3857050833", name="Owner", picture=None)
        payload = get_current_user(f"Bearer {token}")
        assert payload["sub"] == "3857050833"
        assert payload["name"] == "Owner"

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer not-a-jwt"])
    def test_bad_headers_are_401(self, header):
        from fastapi import HTTPException

        from rogrouper.api.deps import get_current_user

        with pytest.raises(HTTPException) as excinfo:
            get_current_user(header)
        assert excinfo.value.status_code == 401
