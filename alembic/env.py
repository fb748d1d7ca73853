from __future__ import annotations

import logging
import os
from logging.config import fileConfig
from typing import Any

from sqlalchemy import engine_from_config, event, pool

from alembic import context

from app.core.config import get_settings
from app.models import Base  # registers every mapper

# =============================================================================
# Alembic config and logging
# =============================================================================
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")


# =============================================================================
# Database URL
# =============================================================================
def get_database_url() -> str:
    """
    Priority:
      1) ALEMBIC_DATABASE_URL
      2) app settings (DATABASE_URL / .env)
      3) sqlalchemy.url from alembic.ini
    """
    url = (os.getenv("ALEMBIC_DATABASE_URL") or "").strip()
    if url:
        return url
    url = (get_settings().DATABASE_URL or "").strip()
    if url:
        return url.replace("postgres://", "postgresql://", 1)
    url = (config.get_main_option("sqlalchemy.url") or "").strip()
    if url:
        return url
    raise RuntimeError("DATABASE_URL is not set")


DATABASE_URL = get_database_url()
config.set_main_option("sqlalchemy.url", DATABASE_URL)

target_metadata = Base.metadata


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def make_context_kwargs() -> dict[str, Any]:
    return dict(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=_is_sqlite(DATABASE_URL),
    )


def run_migrations_offline() -> None:
    context.configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **make_context_kwargs(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        future=True,
    )
    if _is_sqlite(DATABASE_URL):

        @event.listens_for(connectable, "connect")
        def _set_sqlite_pragma(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    with connectable.connect() as connection:
        context.configure(connection=connection, **make_context_kwargs())
        with context.begin_transaction():
            context.run_migrations()
    logger.info("Migrations applied to %s", connectable.url.render_as_string(hide_password=True))


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
