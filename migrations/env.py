"""Alembic environment configuration for event persistence."""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlmodel import SQLModel

from app.config import settings
from app.core.database import coerce_sync_database_url
from app.models import event_record  # noqa: F401 - ensure models are imported

config = context.config

if config.config_file_name is not None and os.path.exists(config.config_file_name):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

logger = logging.getLogger("events.alembic")
target_metadata = SQLModel.metadata


def _log_database_url(url: str, source: str) -> None:
    try:
        rendered = make_url(url).render_as_string(hide_password=True)
    except ArgumentError:  # pragma: no cover - log only
        rendered = "<invalid DATABASE_URL>"
    logger.info("Alembic resolved DATABASE_URL from %s: %s", source, rendered)


def _resolve_database_url() -> str:
    candidates = [
        ("alembic config", config.get_main_option("sqlalchemy.url")),
        ("environment variable", os.environ.get("DATABASE_URL")),
        ("app settings", settings.database_url),
    ]
    for source, value in candidates:
        if not value:
            continue
        _log_database_url(value, source)
        return value
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def run_migrations_offline() -> None:
    """Emit SQL without a live connection (e.g., for review in CI)."""
    context.configure(
        url=_resolve_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live database."""
    url, connect_args, _ = coerce_sync_database_url(make_url(_resolve_database_url()))
    connectable = create_engine(url, poolclass=pool.NullPool, connect_args=connect_args)
    try:
        with connectable.connect() as connection:
            do_run_migrations(connection)
    finally:
        connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
