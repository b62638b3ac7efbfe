"""
alembic/env.py — Migration Environment
=======================================
Migrations target :data:`rogrouper.database.models.Base` and connect with the
same ``DATABASE_URL`` the API reads (``.env`` is honoured).  ``alembic.ini``
only supplies logging; it never carries a connection string.
"""

from __future__ import annotations

from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

from alembic import context

load_dotenv()

from rogrouper.database.engine import database_url  # noqa: E402
from rogrouper.database.models import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

METADATA = Base.metadata


def _configure(**kwargs) -> None:
    # compare_type so JSONB/BigInteger drift shows up in autogenerate
    context.configure(target_metadata=METADATA, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def migrate_offline() -> None:
    """Emit SQL to stdout (``alembic upgrade head --sql``)."""
    _configure(
        url=database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def migrate_online() -> None:
    """Apply migrations over a throwaway, unpooled connection."""
    engine = create_engine(database_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _configure(connection=connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    migrate_offline()
else:
    migrate_online()
