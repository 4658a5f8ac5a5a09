"""Alembic environment for the alert tables.

The database URL comes from DATABASE_URL (via Settings), never from
alembic.ini. SQLite runs use batch mode so ALTERs work in development.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context
from alert_relay.config import get_settings
from alert_relay.core.database import prepare_database_url
from alert_relay.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

db_url, connect_args = prepare_database_url(get_settings().database_url)
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = Base.metadata

IS_SQLITE = db_url.startswith("sqlite")


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=IS_SQLITE,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without connecting."""
    _configure(
        url=db_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Apply the migrations over an async connection."""
    engine = create_async_engine(db_url, poolclass=pool.NullPool, connect_args=connect_args)
    async with engine.connect() as connection:
        await connection.run_sync(_run_sync)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
