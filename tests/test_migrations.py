from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ROOT = Path(__file__).resolve().parents[1]


def _alembic_config(database_url: str) -> Config:
    config = Config()
    config.set_main_option("script_location", str(ROOT / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def test_upgrade_creates_events_table_and_downgrade_drops_it(tmp_path: Path):
    database_url = f"sqlite:///{tmp_path / 'events.db'}"
    config = _alembic_config(database_url)

    command.upgrade(config, "head")

    engine = create_engine(database_url)
    try:
        inspector = inspect(engine)
        assert "events" in inspector.get_table_names()
        columns = {column["name"] for column in inspector.get_columns("events")}
        assert {"id", "title", "type", "city", "start_date", "end_date", "hash", "created_at", "updated_at"} <= columns
        unique = {constraint["name"] for constraint in inspector.get_unique_constraints("events")}
        assert "uq_events_hash" in unique
        indexes = {index["name"] for index in inspector.get_indexes("events")}
        assert {"ix_events_start_date", "ix_events_city"} <= indexes

        command.downgrade(config, "base")
        assert "events" not in inspect(engine).get_table_names()
    finally:
        engine.dispose()
