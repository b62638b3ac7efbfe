"""
rogrouper.database.engine — Engine, Schema Bootstrap & Thread Bridge
=====================================================================

SQLAlchemy + psycopg2 is synchronous while the API and the suspension
sweeper run on ``asyncio``.  Store functions therefore take an
:class:`~sqlalchemy.Engine` as their first argument and are called from
async code through :func:`run_db`::

    engine = create_db_engine()
    init_db(engine, cfg.bootstrap_admin_ids)
    admins = await run_db(get_site_admins, engine)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from rogrouper.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# One API process plus the sweeper task; Postgres default max_connections
# is 100, so keep the ceiling well below it.
POOL_OPTIONS = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 10,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}


def database_url() -> str:
    """Return ``DATABASE_URL`` or raise :class:`RuntimeError` if unset."""
    url = os.getenv("DATABASE_URL", "").strip()
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Copy .env.example to .env and point it at a PostgreSQL database."
        )
    return url


def create_db_engine(url: str | None = None) -> Engine:
    """Build the shared pooled engine (``DATABASE_URL`` when *url* is None)."""
    engine = create_engine(url or database_url(), **POOL_OPTIONS)
    logger.info("Database engine ready (host=%s, db=%s)", engine.url.host, engine.url.database)
    return engine


def init_db(engine: Engine, bootstrap_admin_ids: Iterable[str] = ()) -> None:
    """Ensure tables exist, then seed the site-admin document if absent.

    Production schemas come from ``alembic upgrade head``; ``create_all`` is a
    no-op there and covers fresh dev/test databases.
    """
    from rogrouper.services.site_admin_service import seed_site_admins

    Base.metadata.create_all(engine)
    seeded = seed_site_admins(engine, bootstrap_admin_ids)
    logger.info("Schema verified; site admins seeded: %s", seeded)


@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Session scoped to one unit of work: commit on exit, roll back on error."""
    with Session(engine) as session, session.begin():
        yield session


async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a synchronous store call on the default thread pool."""
    return await asyncio.to_thread(func, *args, **kwargs)
