import httpx
import pytest
from fastapi.testclient import TestClient

from shared.schemas.embedding import EmbeddingConfig
from services.api.main import Services, app, get_services
from services.embed.batcher import TokenBudgetBatcher
from services.embed.cache import EmbeddingCache
from services.embed.errors import ProviderRateLimitError
from services.embed.summarizer import TicketSummarizer
from services.ingest.storage import ArangoStorage

ME = "me@example.com"


def payload(t):
    return t.model_dump(by_alias=True)


@pytest.fixture
def services(fake_db, recording_embedder):
    config = EmbeddingConfig(api_key=None)
    return Services(
        config=config,
        cache=EmbeddingCache(TokenBudgetBatcher(recording_embedder(), token_limit=8000)),
        summarizer=TicketSummarizer(config),
        storage=ArangoStorage(db=fake_db),
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    data = client.get("/health").json()

    assert data["status"] == "healthy"
    assert data["llm_configured"] is False


def test_list_tickets_hides_embeddings(client, services, ticket):
    services.storage.store_tickets([ticket("A-1", project_key="A", embedding=[1.0, 0.0])])

    data = client.get("/api/tickets", params={"project": "A"}).json()

    assert [t["key"] for t in data] == ["A-1"]
    assert data[0]["embedding"] is None


def test_parent_path(client, services, ticket):
    services.storage.store_tickets([ticket("E-1", issue_type="Epic"), ticket("T-1", parent_key="E-1")])

    assert client.get("/api/tickets/T1/parents").json() == ["E1"]
    assert client.get("/api/tickets/NOPE/parents").status_code == 404


def test_sort_with_filters(client, ticket):
    body = {
        "tickets": [
            payload(ticket("A-1", status="Done", updated="2025-01-02T00:00:00.000+0000")),
            payload(ticket("A-2", status="Open", updated="2025-01-03T00:00:00.000+0000")),
            payload(ticket("A-3", status="Open", updated="2025-01-01T00:00:00.000+0000")),
        ],
        "mode": "updated",
        "filters": {"status": ["Open"]},
    }

    data = client.post("/api/tickets/sort", json=body).json()

    assert [t["key"] for t in data["tickets"]] == ["A-2", "A-3"]
    assert data["applied_mode"] == "updated"
    assert not data["fell_back"]


def test_smart_sort_reports_fallback(client, services, ticket, recording_embedder):
    services.cache = EmbeddingCache(TokenBudgetBatcher(
        recording_embedder(error=ProviderRateLimitError("slow down", status_code=429)),
        token_limit=8000,
    ))
    body = {
        "tickets": [payload(ticket("A-1", assignee_email=ME)), payload(ticket("A-2"))],
        "userEmail": ME,
    }

    data = client.post("/api/tickets/sort", json=body).json()

    assert data["fell_back"]
    assert data["requested_mode"] == "default"
    assert data["applied_mode"] == "updated"


def test_tree_endpoint(client, ticket):
    body = {
        "tickets": [
            payload(ticket("E-1", issue_type="Epic")),
            payload(ticket("T-1", parent_key="E-1")),
            payload(ticket("L-1")),
        ],
        "filters": {"hideEmptyParents": True},
    }

    data = client.post("/api/tickets/tree", json=body).json()

    assert [r["key"] for r in data["roots"]] == ["E-1"]
    assert [c["key"] for c in data["roots"][0]["children"]] == ["T-1"]
    assert [o["key"] for o in data["orphans"]] == ["L-1"]


def test_similarity_status_not_configured(client):
    data = client.get("/api/similarity/status").json()

    assert data["available"] is False
    assert data["error_kind"] == "not_configured"


def test_clear_embedding_cache(client, services, ticket):
    body = {
        "tickets": [payload(ticket("A-1", assignee_email=ME)), payload(ticket("A-2"))],
        "userEmail": ME,
    }
    client.post("/api/tickets/sort", json=body)

    assert len(services.cache) == 2
    assert client.delete("/api/embeddings/cache").json() == {"cleared": 2}
    assert len(services.cache) == 0


def test_summary_not_configured_is_503(client, ticket):
    response = client.post("/api/summaries/ticket", json={"ticket": payload(ticket("A-1"))})

    assert response.status_code == 503
    assert response.json()["detail"]["kind"] == "not_configured"


def test_summary_rate_limit_is_429(client, services, ticket):
    config = EmbeddingConfig(base_url="https://llm.test/v1", api_key="sk-test")
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429)))
    services.summarizer = TicketSummarizer(config, http_client=http)

    response = client.post("/api/summaries/aggregated", json={"tickets": [payload(ticket("A-1"))]})

    assert response.status_code == 429


def test_children_summary(client, services, ticket):
    config = EmbeddingConfig(base_url="https://llm.test/v1", api_key="sk-test")
    http = httpx.AsyncClient(transport=httpx.MockTransport(
        lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "All good."}}]})
    ))
    services.summarizer = TicketSummarizer(config, http_client=http)
    body = {"parent": payload(ticket("E-1", issue_type="Epic")), "children": [payload(ticket("T-1"))]}

    response = client.post("/api/summaries/children", json=body)

    assert response.json() == {"summary": "All good."}
