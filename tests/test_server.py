"""HTTP API tests."""
import pytest
from fastapi.testclient import TestClient

from conftest import ARTICLE
from rag_pipeline.models import StageResult
from rag_pipeline.server import create_app
from rag_pipeline.stages import Stage

URL = "https://example.com/vectors"


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["ingest"] == "/v1/rag/ingest"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["vector_store"]["backend"] == "memory"
    assert data["active_runs"] == 0


def test_ingest_and_inspect_run(client):
    response = client.post("/v1/rag/ingest", json={"url": URL})

    assert response.status_code == 200
    data = response.json()
    assert data["pipeline"] == "default"
    assert data["url"] == URL
    assert data["chunks_stored"] > 0
    assert [s["stage"] for s in data["stages"]] == ["scraper", "chunker", "embedding", "storage"]

    run = client.get(f"/v1/runs/{data['run_id']}").json()
    assert run["status"] == "completed"
    assert "chunks" in run["state_keys"]
    assert [m["sender"] for m in run["messages"]] == ["scraper", "chunker", "embedding", "storage"]

    stats = client.get("/v1/rag/stats").json()
    assert stats["active_documents"] == 1
    assert stats["active_chunks"] == data["chunks_stored"]


def test_ingest_rejects_invalid_chunk_parameters(client):
    response = client.post("/v1/rag/ingest", json={"url": URL, "chunk_size": 100, "chunk_overlap": 80})

    assert response.status_code == 400
    data = response.json()
    assert data["detail"] == "Invalid chunking parameters"
    assert data["errors"]


def test_failed_run_reports_stage(client, fetcher):
    fetcher.error = "HTTP 503"

    response = client.post("/v1/rag/ingest", json={"url": URL})

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["failed_stage"] == "scraper"
    assert detail["errors"] == ["HTTP 503"]
    assert detail["completed_stages"] == []


def test_cancelled_run_returns_conflict(client, service):
    class CancellingStage(Stage):
        name = "scraper"

        async def run(self, context, cancel_token):
            service.cancel(context.run_id)
            return StageResult.ok("Fetched", {"raw_content": ARTICLE})

    service.factory.register_stage("scraper", lambda cfg: CancellingStage(cfg))

    response = client.post("/v1/rag/ingest", json={"url": URL})

    assert response.status_code == 409


def test_unknown_run(client):
    assert client.get("/v1/runs/missing").status_code == 404
    assert client.post("/v1/runs/missing/cancel").status_code == 404


def test_search_and_query(client):
    client.post("/v1/rag/ingest", json={"url": URL})

    search = client.post("/v1/rag/search", json={"query": "cosine similarity", "top_k": 2, "min_score": 0.0})
    assert search.status_code == 200
    results = search.json()["results"]
    assert len(results) == 2
    assert results[0]["score"] >= results[1]["score"]

    query = client.post("/v1/rag/query", json={"query": "cosine similarity", "min_score": 0.0})
    assert query.status_code == 200
    assert query.json()["answer"] == "Answer to: cosine similarity"
    assert query.json()["sources"]


def test_blank_search_query(client):
    response = client.post("/v1/rag/search", json={"query": ""})

    assert response.status_code == 400


def test_list_pipelines(client):
    response = client.get("/v1/pipelines")

    assert response.status_code == 200
    assert [p["name"] for p in response.json()] == ["default", "github"]


def test_select_pipeline(client):
    response = client.post("/v1/pipelines/select", json={"url": "https://github.com/qdrant/qdrant"})

    assert response.status_code == 200
    data = response.json()
    assert data["selected"]["name"] == "github"
    assert data["reason"] == "Best match based on priority 10"
    assert [m["pipeline_id"] for m in data["matches"]] == ["github", "default"]


def test_add_rule_changes_selection(client):
    url = "https://docs.example.com/guide"
    assert client.post("/v1/pipelines/select", json={"url": url}).json()["selected"]["name"] == "default"

    response = client.post(
        "/v1/pipelines/rules",
        json={"pipeline_id": "github", "pattern": r"^https://docs\.example\.com/", "priority": 20},
    )
    assert response.status_code == 200
    assert response.json()["priority"] == 20

    assert client.post("/v1/pipelines/select", json={"url": url}).json()["selected"]["name"] == "github"


@pytest.mark.parametrize("payload", [
    {"pipeline_id": "github", "pattern": "([unclosed", "priority": 5},
    {"pipeline_id": "missing", "pattern": "example", "priority": 5},
])
def test_add_rule_rejections(client, payload):
    response = client.post("/v1/pipelines/rules", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"]["message"]


def test_list_stages(client):
    response = client.get("/v1/stages")

    assert response.status_code == 200
    names = [s["name"] for s in response.json()]
    assert names == ["chunker", "embedding", "github", "scraper", "storage"]
