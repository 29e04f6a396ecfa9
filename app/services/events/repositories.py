"""Persistence backends for ingested events."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import func, or_
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from app.config import settings
from app.core.database import backend_label, check_database_health, create_database_engine
from app.models.event import EventInput, EventPage, EventQuery, StoredEvent, UpsertResult
from app.models.event_record import MUTABLE_COLUMNS, EventRecord
from app.observability.metrics import metrics
from app.services.events.errors import EventPersistenceError
from app.services.events.hashing import event_hash

logger = logging.getLogger(__name__)


class EventRepository(Protocol):
    """Persistence contract for stored events."""

    def upsert_many(self, events: Sequence[EventInput]) -> UpsertResult:
        ...

    def query(self, query: EventQuery) -> EventPage:
        ...

    def get_many(self, ids: Sequence[int]) -> list[StoredEvent]:
        ...

    def ping(self) -> bool:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _collapse_by_hash(events: Sequence[EventInput]) -> dict[str, EventInput]:
    """Key events by dedup hash; later duplicates within a batch win."""
    collapsed: dict[str, EventInput] = {}
    for event in events:
        collapsed[event_hash(event)] = event
    return collapsed


class InMemoryEventRepository(EventRepository):
    """Thread-safe repository used for API/local development."""

    def __init__(self) -> None:
        self._rows: dict[str, StoredEvent] = {}
        self._next_id = 1
        self._lock = Lock()

    def upsert_many(self, events: Sequence[EventInput]) -> UpsertResult:
        if not events:
            logger.warning("events.upsert.empty", extra={"backend": "memory"})
            return UpsertResult()

        collapsed = _collapse_by_hash(events)
        inserted = 0
        now = _utcnow()
        with self._lock:
            for digest, event in collapsed.items():
                existing = self._rows.get(digest)
                if existing is None:
                    self._rows[digest] = StoredEvent(
                        id=self._next_id,
                        hash=digest,
                        created_at=now,
                        updated_at=now,
                        **event.model_dump(),
                    )
                    self._next_id += 1
                    inserted += 1
                    continue
                changes: dict[str, Any] = {
                    column: getattr(event, column) for column in MUTABLE_COLUMNS if column != "updated_at"
                }
                changes["updated_at"] = now
                self._rows[digest] = existing.model_copy(update=changes)

        result = UpsertResult(inserted=inserted, updated=len(events) - inserted)
        _record_upsert(result, backend="memory")
        return result

    def query(self, query: EventQuery) -> EventPage:
        with self._lock:
            rows = list(self._rows.values())
        matches = sorted(
            (row for row in rows if _matches(row, query)),
            key=lambda row: (row.start_date, row.id),
        )
        window = matches[query.offset : query.offset + query.page_size]
        return EventPage(items=window, total=len(matches), page=query.page, page_size=query.page_size)

    def get_many(self, ids: Sequence[int]) -> list[StoredEvent]:
        wanted = set(ids)
        with self._lock:
            found = [row for row in self._rows.values() if row.id in wanted]
        return sorted(found, key=lambda row: row.id)

    def ping(self) -> bool:
        return True


def _matches(row: StoredEvent, query: EventQuery) -> bool:
    if query.type is not None and row.type != query.type:
        return False
    if query.city and row.city != query.city:
        return False
    if query.q:
        needle = query.q.lower()
        haystacks = (row.title, row.venue or "", row.address or "")
        if not any(needle in value.lower() for value in haystacks):
            return False
    active_until = row.end_date or row.start_date
    if query.from_date is not None and active_until < query.from_date:
        return False
    if query.to_date is not None and row.start_date > query.to_date:
        return False
    return True


class SQLEventRepository(EventRepository):
    """SQLModel-backed repository that persists events to MySQL/Postgres/SQLite."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SQLEventRepository.")

        self._engine: Engine = create_database_engine(
            database_url,
            pool_min_size=pool_min_size,
            pool_max_size=pool_max_size,
        )
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine, tables=[EventRecord.__table__])
        self._backend = backend_label(make_url(database_url))

    @property
    def engine(self) -> Engine:
        return self._engine

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def ping(self) -> bool:
        return check_database_health(self._engine)

    def upsert_many(self, events: Sequence[EventInput]) -> UpsertResult:
        if not events:
            logger.warning("events.upsert.empty", extra={"backend": self._backend})
            return UpsertResult()

        collapsed = _collapse_by_hash(events)
        now = _utcnow()
        rows = [_to_row(event, digest, now) for digest, event in collapsed.items()]
        try:
            with self._session() as session:
                existing_statement = select(EventRecord.hash).where(EventRecord.hash.in_(list(collapsed)))
                existing = set(session.exec(existing_statement).all())
                session.connection().execute(self._build_upsert(rows))
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception(
                "events.upsert.error",
                extra={"backend": self._backend, "batch_size": len(events)},
            )
            raise EventPersistenceError(f"Failed to upsert events: {exc}", code="500_INTERNAL") from exc

        inserted = len(collapsed) - len(existing)
        result = UpsertResult(inserted=inserted, updated=len(events) - inserted)
        _record_upsert(result, backend=self._backend)
        return result

    def _build_upsert(self, rows: list[dict[str, Any]]):
        table = EventRecord.__table__
        dialect = self._engine.dialect.name
        if dialect == "mysql":
            statement = mysql.insert(table).values(rows)
            return statement.on_duplicate_key_update(
                {column: statement.inserted[column] for column in MUTABLE_COLUMNS}
            )
        if dialect == "postgresql":
            statement = postgresql.insert(table).values(rows)
        elif dialect == "sqlite":
            statement = sqlite.insert(table).values(rows)
        else:
            raise EventPersistenceError(f"Upsert is not supported on dialect {dialect!r}.", code="500_INTERNAL")
        return statement.on_conflict_do_update(
            index_elements=[table.c.hash],
            set_={column: statement.excluded[column] for column in MUTABLE_COLUMNS},
        )

    def query(self, query: EventQuery) -> EventPage:
        conditions = _build_conditions(query)
        try:
            with self._session() as session:
                count_statement = select(func.count()).select_from(EventRecord).where(*conditions)
                total = session.exec(count_statement).one()
                statement = (
                    select(EventRecord)
                    .where(*conditions)
                    .order_by(EventRecord.start_date.asc(), EventRecord.id.asc())
                    .offset(query.offset)
                    .limit(query.page_size)
                )
                records = session.exec(statement).all()
                items = [record.to_stored_event() for record in records]
        except SQLAlchemyError as exc:
            logger.exception("events.query.error", extra={"backend": self._backend})
            raise EventPersistenceError("Failed to query stored events.", code="500_INTERNAL") from exc

        logger.info(
            "events.query.completed",
            extra={"page": query.page, "page_size": query.page_size, "total": total},
        )
        return EventPage(items=items, total=total, page=query.page, page_size=query.page_size)

    def get_many(self, ids: Sequence[int]) -> list[StoredEvent]:
        if not ids:
            return []
        try:
            with self._session() as session:
                statement = select(EventRecord).where(EventRecord.id.in_(list(ids))).order_by(EventRecord.id)
                return [record.to_stored_event() for record in session.exec(statement).all()]
        except SQLAlchemyError as exc:
            logger.exception("events.lookup.error", extra={"backend": self._backend})
            raise EventPersistenceError("Failed to load stored events.", code="500_INTERNAL") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session


def _to_row(event: EventInput, digest: str, now: datetime) -> dict[str, Any]:
    row = event.model_dump()
    row["type"] = event.type.value
    row.update(hash=digest, created_at=now, updated_at=now)
    return row


def _build_conditions(query: EventQuery) -> list[Any]:
    conditions: list[Any] = []
    if query.type is not None:
        conditions.append(EventRecord.type == query.type.value)
    if query.city:
        conditions.append(EventRecord.city == query.city)
    if query.q:
        conditions.append(
            or_(
                EventRecord.title.icontains(query.q, autoescape=True),
                EventRecord.venue.icontains(query.q, autoescape=True),
                EventRecord.address.icontains(query.q, autoescape=True),
            )
        )
    if query.from_date is not None:
        active_until = func.coalesce(EventRecord.end_date, EventRecord.start_date)
        conditions.append(active_until >= query.from_date)
    if query.to_date is not None:
        conditions.append(EventRecord.start_date <= query.to_date)
    return conditions


def _record_upsert(result: UpsertResult, *, backend: str) -> None:
    tags = {"repository": backend}
    metrics.increment("events.upsert.inserted", result.inserted, tags=tags)
    metrics.increment("events.upsert.updated", result.updated, tags=tags)
    logger.info(
        "events.upsert.completed",
        extra={"inserted": result.inserted, "updated": result.updated, "backend": backend},
    )


def build_event_repository(database_url: str | None = None) -> EventRepository:
    """Instantiate an EventRepository using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("events.repository.initialized", extra={"backend": "memory"})
        return InMemoryEventRepository()
    try:
        repository = SQLEventRepository(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
            auto_create_schema=settings.database_auto_create_schema,
        )
        logger.info("events.repository.initialized", extra={"backend": "database"})
        return repository
    except Exception:
        logger.exception("events.repository.init_failed", extra={"backend": "database"})
        raise
