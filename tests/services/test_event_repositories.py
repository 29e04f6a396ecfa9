from __future__ import annotations

import hashlib
from collections.abc import Iterator
from datetime import date

import pytest
from sqlalchemy import text

from app.models.event import EventInput, EventQuery, EventType
from app.services.events import repositories as repositories_module
from app.services.events.errors import EventPersistenceError
from app.services.events.hashing import compute_event_hash, event_hash
from app.services.events.repositories import (
    EventRepository,
    InMemoryEventRepository,
    SQLEventRepository,
    build_event_repository,
)
from tests.helpers.metrics_stub import StubMetrics


def _event(title: str = "Expo A", **overrides) -> EventInput:
    payload = {
        "title": title,
        "type": EventType.EXPO,
        "city": "杭州",
        "venue": "杭州国际博览中心",
        "address": "萧山区奔竞大道353号",
        "start_date": date(2025, 3, 1),
        "end_date": None,
        "source_url": "https://example.com/expo-a",
    }
    payload.update(overrides)
    return EventInput(**payload)


@pytest.fixture(params=["memory", "sqlite"])
def repository(request: pytest.FixtureRequest) -> Iterator[EventRepository]:
    if request.param == "memory":
        yield InMemoryEventRepository()
        return
    repo = SQLEventRepository("sqlite://", auto_create_schema=True)
    try:
        yield repo
    finally:
        repo.dispose()


def test_hash_is_sha256_of_identity_fields():
    expected = hashlib.sha256("Expo A|2025-03-01|杭州国际博览中心|杭州".encode("utf-8")).hexdigest()

    assert compute_event_hash("Expo A", date(2025, 3, 1), "杭州国际博览中心", "杭州") == expected
    assert compute_event_hash("Expo A", "2025-03-01", "杭州国际博览中心", "杭州") == expected


def test_hash_ignores_mutable_fields():
    base = _event()
    changed = _event(address="新地址", organizer="主办方", price_range="100元", end_date=date(2025, 3, 2))

    assert event_hash(base) == event_hash(changed)
    assert event_hash(base) != event_hash(_event(city="上海"))
    assert event_hash(_event(venue=None)) == compute_event_hash("Expo A", date(2025, 3, 1), "", "杭州")


def test_upsert_is_idempotent(repository: EventRepository):
    events = [_event(), _event("Concert B", type=EventType.CONCERT, start_date=date(2025, 3, 2))]

    first = repository.upsert_many(events)
    second = repository.upsert_many(events)

    assert (first.inserted, first.updated) == (2, 0)
    assert (second.inserted, second.updated) == (0, 2)
    assert repository.query(EventQuery()).total == 2


def test_identity_match_updates_mutable_fields(repository: EventRepository):
    repository.upsert_many([_event()])
    original = repository.query(EventQuery()).items[0]

    result = repository.upsert_many(
        [_event(address="新地址", price_range="80-380元", end_date=date(2025, 3, 3), type=EventType.CONCERT)]
    )

    assert (result.inserted, result.updated) == (0, 1)
    page = repository.query(EventQuery())
    assert page.total == 1
    stored = page.items[0]
    assert stored.id == original.id
    assert stored.hash == original.hash
    assert stored.address == "新地址"
    assert stored.price_range == "80-380元"
    assert stored.end_date == date(2025, 3, 3)
    assert stored.type is EventType.CONCERT


def test_duplicates_within_batch_collapse_to_last(repository: EventRepository):
    result = repository.upsert_many([_event(address="first"), _event(address="last")])

    assert (result.inserted, result.updated) == (1, 1)
    page = repository.query(EventQuery())
    assert page.total == 1
    assert page.items[0].address == "last"


def test_empty_batch_is_a_no_op(repository: EventRepository):
    result = repository.upsert_many([])

    assert (result.inserted, result.updated) == (0, 0)
    assert repository.query(EventQuery()).total == 0


@pytest.mark.parametrize(
    "window, expected",
    [
        ((date(2025, 1, 14), date(2025, 1, 20)), True),
        ((date(2025, 1, 16), date(2025, 1, 20)), False),
        ((date(2025, 1, 1), date(2025, 1, 9)), False),
        ((date(2025, 1, 1), date(2025, 1, 10)), True),
        ((date(2025, 1, 15), None), True),
        ((None, date(2025, 1, 10)), True),
    ],
)
def test_date_range_uses_interval_overlap(repository: EventRepository, window, expected):
    repository.upsert_many([_event(start_date=date(2025, 1, 10), end_date=date(2025, 1, 15))])
    from_date, to_date = window

    page = repository.query(EventQuery(from_date=from_date, to_date=to_date))

    assert (page.total == 1) is expected


def test_single_day_event_without_end_date(repository: EventRepository):
    repository.upsert_many([_event(start_date=date(2025, 1, 10))])

    assert repository.query(EventQuery(from_date=date(2025, 1, 10))).total == 1
    assert repository.query(EventQuery(from_date=date(2025, 1, 11))).total == 0


def test_filters_and_keyword_search(repository: EventRepository):
    repository.upsert_many(
        [
            _event("春季家居展", venue="杭州国际博览中心"),
            _event("Jazz Night", type=EventType.CONCERT, venue="Livehouse 100%", start_date=date(2025, 3, 2)),
            _event("Shanghai Expo", city="上海", venue="国家会展中心"),
        ]
    )

    assert repository.query(EventQuery(type=EventType.CONCERT)).total == 1
    assert repository.query(EventQuery(city="上海")).total == 1
    assert repository.query(EventQuery(q="家居")).total == 1
    assert repository.query(EventQuery(q="博览")).total == 1
    assert repository.query(EventQuery(q="100%")).items[0].title == "Jazz Night"
    assert repository.query(EventQuery(q="_")).total == 0
    assert repository.query(EventQuery(q="nothing")).total == 0


def test_pagination_orders_by_start_date(repository: EventRepository):
    events = [_event(f"Event {day:02d}", start_date=date(2025, 4, day)) for day in (5, 1, 3, 2, 4)]
    repository.upsert_many(events)

    first = repository.query(EventQuery(page=1, page_size=2))
    third = repository.query(EventQuery(page=3, page_size=2))
    beyond = repository.query(EventQuery(page=4, page_size=2))

    assert first.total == 5
    assert [item.title for item in first.items] == ["Event 01", "Event 02"]
    assert [item.title for item in third.items] == ["Event 05"]
    assert beyond.items == [] and beyond.total == 5


def test_get_many_returns_known_ids(repository: EventRepository):
    repository.upsert_many([_event(), _event("Concert B")])
    ids = [item.id for item in repository.query(EventQuery()).items]

    found = repository.get_many([*ids, 999])

    assert sorted(event.id for event in found) == sorted(ids)
    assert repository.get_many([]) == []


def test_upsert_records_metrics(monkeypatch: pytest.MonkeyPatch):
    stub = StubMetrics()
    monkeypatch.setattr(repositories_module, "metrics", stub)
    repository = InMemoryEventRepository()

    repository.upsert_many([_event()])

    assert stub.counted("events.upsert.inserted") == 1
    assert stub.counted("events.upsert.updated") == 0


def test_storage_failure_raises_persistence_error():
    repository = SQLEventRepository("sqlite://", auto_create_schema=True)
    with repository.engine.begin() as connection:
        connection.execute(text("DROP TABLE events"))

    with pytest.raises(EventPersistenceError) as excinfo:
        repository.upsert_many([_event()])

    assert excinfo.value.code == "500_INTERNAL"
    repository.dispose()


def test_sql_repository_ping():
    repository = SQLEventRepository("sqlite://", auto_create_schema=True)

    assert repository.ping() is True
    repository.dispose()


def test_factory_falls_back_to_memory(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(repositories_module.settings, "database_url", None)

    assert isinstance(build_event_repository(), InMemoryEventRepository)


def test_factory_builds_sql_repository():
    repository = build_event_repository("sqlite://")

    assert isinstance(repository, SQLEventRepository)
    repository.dispose()


def test_keyword_search_ignores_case(repository: EventRepository):
    repository.upsert_many(
        [
            _event("Jazz Night", type=EventType.CONCERT, venue="Blue Note Hall"),
            _event("Rock Expo", address="West Lake Road"),
        ]
    )

    assert [item.title for item in repository.query(EventQuery(q="jazz")).items] == ["Jazz Night"]
    assert [item.title for item in repository.query(EventQuery(q="BLUE NOTE")).items] == ["Jazz Night"]
    assert [item.title for item in repository.query(EventQuery(q="west lake")).items] == ["Rock Expo"]
