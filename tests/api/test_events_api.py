from __future__ import annotations

from contextlib import contextmanager
from datetime import date

from app.main import app
from app.models.event import EventInput, EventQuery, EventType
from app.services.events.errors import EventPersistenceError
from app.services.events.repositories import InMemoryEventRepository
from app.services.events.service import EventService, get_event_service
from app.services.ingestion.fetcher import EventFetcher
from app.services.ingestion.orchestrator import CityLocks, IngestionOrchestrator
from app.services.ingestion.verifier import EventVerifier
from tests.helpers.fakes import RoutingChatClient, expo_record, listing_payload, verdict


def _build_service(listing=None, verification=None, repository=None, locks=None) -> EventService:
    orchestrator = IngestionOrchestrator(
        fetcher=EventFetcher(listing),
        verifier=EventVerifier(verification, sleep=lambda _: None),
        locks=locks,
    )
    return EventService(
        repository=repository or InMemoryEventRepository(),
        orchestrator=orchestrator,
        today=lambda: date(2025, 2, 22),
    )


def _configured_service(**kwargs) -> EventService:
    return _build_service(
        listing=RoutingChatClient(lambda _: listing_payload(expo_record())),
        verification=RoutingChatClient(lambda _: verdict(True)),
        **kwargs,
    )


@contextmanager
def _override_service(service: EventService):
    app.dependency_overrides[get_event_service] = lambda: service
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_event_service, None)


def _seed(repository: InMemoryEventRepository) -> None:
    repository.upsert_many(
        [
            EventInput(
                title="春季家居展",
                type=EventType.EXPO,
                city="杭州",
                venue="杭州国际博览中心",
                start_date=date(2025, 1, 10),
                end_date=date(2025, 1, 15),
            ),
            EventInput(title="Jazz Night", type=EventType.CONCERT, city="杭州", start_date=date(2025, 1, 18)),
            EventInput(title="Shanghai Expo", type=EventType.EXPO, city="上海", start_date=date(2025, 1, 20)),
        ]
    )


def test_list_events_with_filters_and_pagination(client):
    repository = InMemoryEventRepository()
    _seed(repository)
    with _override_service(_build_service(repository=repository)):
        response = client.get("/api/events", params={"city": "杭州", "pageSize": 1, "page": 2})
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["page"] == 2
        assert body["pageSize"] == 1
        assert [item["title"] for item in body["items"]] == ["Jazz Night"]

        overlap = client.get("/api/events", params={"from": "2025-01-14", "to": "2025-01-17"})
        assert [item["title"] for item in overlap.json()["items"]] == ["春季家居展"]

        concerts = client.get("/api/events", params={"type": "concert"})
        assert concerts.json()["total"] == 1

        keyword = client.get("/api/events", params={"q": "博览"})
        assert keyword.json()["items"][0]["venue"] == "杭州国际博览中心"


def test_list_events_defaults(client):
    with _override_service(_build_service()):
        response = client.get("/api/events")
        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0, "page": 1, "pageSize": 10}


def test_list_events_rejects_invalid_parameters(client):
    with _override_service(_build_service()):
        assert client.get("/api/events", params={"type": "festival"}).status_code == 422
        assert client.get("/api/events", params={"page": 0}).status_code == 422
        assert client.get("/api/events", params={"pageSize": 101}).status_code == 422
        assert client.get("/api/events", params={"from": "2025/01/01"}).status_code == 422


def test_sync_stores_then_updates(client):
    service = _configured_service()
    with _override_service(service):
        first = client.post("/api/events/sync", params={"city": "杭州"})
        assert first.status_code == 200
        assert first.json() == {
            "city": "杭州",
            "targetDate": "2025-03-01",
            "inserted": 1,
            "updated": 0,
            "message": "Stored 1 verified events for 杭州.",
        }

        second = client.post("/api/events/sync", params={"city": "杭州"})
        assert (second.json()["inserted"], second.json()["updated"]) == (0, 1)


def test_sync_without_results_is_still_200(client):
    service = _build_service(
        listing=RoutingChatClient(lambda _: "[]"),
        verification=RoutingChatClient(lambda _: verdict(True)),
    )
    with _override_service(service):
        response = client.post("/api/events/sync", params={"city": "杭州"})
        assert response.status_code == 200
        assert response.json()["inserted"] == 0
        assert response.json()["message"] == "No verified events found for 杭州."


def test_sync_unavailable_returns_503(client):
    with _override_service(_build_service()):
        response = client.post("/api/events/sync")
        assert response.status_code == 503
        assert "DEEPSEEK_API_KEY" in response.json()["detail"]


def test_sync_busy_returns_409(client):
    locks = CityLocks()
    with _override_service(_configured_service(locks=locks)), locks.hold("杭州"):
        response = client.post("/api/events/sync", params={"city": "杭州"})
        assert response.status_code == 409


def test_sync_persistence_failure_returns_500(client):
    class _BrokenRepository(InMemoryEventRepository):
        def upsert_many(self, events):
            raise EventPersistenceError("database unavailable", code="500_INTERNAL")

    with _override_service(_configured_service(repository=_BrokenRepository())):
        response = client.post("/api/events/sync", params={"city": "杭州"})
        assert response.status_code == 500


def test_verify_endpoint(client):
    repository = InMemoryEventRepository()
    _seed(repository)
    service = _build_service(
        verification=RoutingChatClient(lambda prompt: verdict(verified="Jazz" in prompt, confidence=0.4)),
        repository=repository,
    )
    with _override_service(service):
        response = client.post("/api/events/verify", json={"ids": [2, 99]})
        assert response.status_code == 200
        body = response.json()
        assert body["missing"] == [99]
        assert body["results"] == [{"id": 2, "verified": True, "confidence": 0.4, "reason": "listed on the venue site"}]


def test_verify_endpoint_validation_and_unavailable(client):
    with _override_service(_configured_service()):
        assert client.post("/api/events/verify", json={"ids": []}).status_code == 422
        assert client.post("/api/events/verify", json={"ids": [1, 1]}).status_code == 422
    with _override_service(_build_service()):
        assert client.post("/api/events/verify", json={"ids": [1]}).status_code == 503


def test_sync_rejects_city_wider_than_column(client):
    service = _configured_service()
    with _override_service(service):
        response = client.post("/api/events/sync", params={"city": "城" * 51})
        assert response.status_code == 422
        assert service.list_events(EventQuery()).total == 0
