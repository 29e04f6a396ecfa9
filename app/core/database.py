from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from app.config import settings

logger = logging.getLogger(__name__)


def create_database_engine(
    database_url: str,
    *,
    pool_min_size: int | None = None,
    pool_max_size: int | None = None,
) -> Engine:
    """Build a synchronous SQLAlchemy engine for the configured database."""
    if not database_url:
        raise ValueError("DATABASE_URL is required to create a database engine.")

    parsed_url = make_url(database_url)
    sync_url, connect_args, drivername = coerce_sync_database_url(parsed_url)
    pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
    pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
    is_sqlite = drivername.startswith("sqlite")
    engine_kwargs: dict[str, Any] = {
        "echo": settings.database_echo,
        "connect_args": connect_args,
        "pool_pre_ping": not is_sqlite,
    }
    if is_sqlite and parsed_url.database in (None, "", ":memory:"):
        engine_kwargs["poolclass"] = StaticPool
    elif not is_sqlite:
        engine_kwargs["pool_size"] = pool_min
        engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)
        engine_kwargs["pool_recycle"] = 300

    engine = create_engine(sync_url, **engine_kwargs)
    logger.info(
        "database.engine.initialized",
        extra={"backend": backend_label(parsed_url, drivername)},
    )
    return engine


def coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+aiomysql") or drivername.endswith("+asyncmy"):
        drivername = drivername.split("+", 1)[0] + "+pymysql"
    elif drivername.endswith("+aiosqlite"):
        drivername = "sqlite"
    sync_url = url.set(drivername=drivername)
    if drivername.startswith("mysql"):
        query = dict(sync_url.query) if sync_url.query else {}
        query.setdefault("charset", "utf8mb4")
        sync_url = sync_url.set(query=query)
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def backend_label(url: URL, drivername: str | None = None) -> str:
    driver = drivername or url.drivername
    if driver.startswith("sqlite"):
        return "sqlite"
    if driver.startswith("mysql"):
        return "mysql"
    return "postgres"


def check_database_health(engine: Engine | None) -> bool:
    """Check if database is accessible."""
    if engine is None:
        return True  # No database configured, consider healthy

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False
