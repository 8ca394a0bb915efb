"""
NoteFlow Alembic Environment
==============================

What:  Applies the notes schema through the same Database handle the API and
       the backfill CLI use.
How:   The URL is DATABASE_URL from noteflow.config, or `-x database_url=...`
       for a one-off target. Online runs borrow Database.engine and dispose it
       afterwards; SQLite targets get batch mode so ALTERs work there too.
Who:   `alembic upgrade head` / `alembic revision --autogenerate` from backend/.

Examples:
    alembic upgrade head
    alembic -x database_url=sqlite+aiosqlite:///./notes.db upgrade head
    alembic upgrade head --sql > notes.sql
"""

import asyncio
import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from noteflow.config import settings
from noteflow.database import Base, Database

# Registers the notes table with Base.metadata for --autogenerate
from noteflow.models.note import Note  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")


def target_url() -> str:
    overrides = context.get_x_argument(as_dictionary=True)
    return overrides.get("database_url") or settings.database_url


def configure(**kwargs) -> None:
    url = kwargs.get("url") or str(kwargs["connection"].engine.url)
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    configure(url=target_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _apply(connection: Connection) -> None:
    configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    database = Database(target_url())
    logger.info("Migrating %s", database.engine.url.render_as_string(hide_password=True))
    try:
        async with database.engine.connect() as connection:
            await connection.run_sync(_apply)
    finally:
        await database.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
