"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of rogrouper.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import asyncio  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from rogrouper.database.models import Base  # noqa: E402
from rogrouper.services.roblox_client import RobloxClient  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


def run(coro):
    """Run a coroutine to completion (no pytest-asyncio needed)."""
    return asyncio.run(coro)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Rogrouper tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Fake Roblox
# ---------------------------------------------------------------------------
class FakeRoblox:
    """Callable handler for :class:`httpx.MockTransport`.

    Register canned answers with :meth:`on`; each registration is used once
    except the last one for a route, which keeps answering.  Unregistered
    routes get a Roblox-style 404.  Every request is kept in ``requests``.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, url: str, status: int = 200, json=None, headers=None):
        self.routes.setdefault((method, url), []).append((status, json, headers or {}))
        return self

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if (r.method, _bare_url(r)) == (method, url)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answers = self.routes.get((request.method, _bare_url(request)))
        if not answers:
            return httpx.Response(404, json={"errors": [{"code": 0, "message": "NotFound"}]})
        status, body, headers = answers.pop(0) if len(answers) > 1 else answers[0]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body, headers=headers)


def _bare_url(request: httpx.Request) -> str:
    return f"{request.url.scheme}://{request.url.host}{request.url.path}"


@pytest.fixture
def fake_roblox() -> FakeRoblox:
    return FakeRoblox()


def make_roblox_client(fake: FakeRoblox, bot_token: str | None = "bot-cookie") -> RobloxClient:
    return RobloxClient(bot_token=bot_token, transport=httpx.MockTransport(fake))


@pytest.fixture
def roblox_client(fake_roblox: FakeRoblox) -> RobloxClient:
    return make_roblox_client(fake_roblox)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
@pytest.fixture
def admin_token():
    """Generate a valid session JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create a session JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from rogrouper.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "name": username},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db_engine, fake_roblox):
    """FastAPI TestClient wired to the SQLite engine and the fake Roblox.

    The app lifespan is not run; the services it would build are placed on
    ``app.state`` here instead.
    """
    from fastapi.testclient import TestClient

    from rogrouper.api.deps import get_engine
    from rogrouper.api.main import app
    from rogrouper.api.rate_limit import configure_rate_limiter
    from rogrouper.services.bot_info import BotInfoCache
    from rogrouper.services.suspension_service import SuspensionSweeper

    roblox = make_roblox_client(fake_roblox)
    app.dependency_overrides[get_engine] = lambda: db_engine
    app.state.roblox = roblox
    app.state.bot_info = BotInfoCache()
    app.state.sweeper = SuspensionSweeper(db_engine, roblox, interval_seconds=0)
    configure_rate_limiter(engine=db_engine)

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()
