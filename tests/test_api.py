"""Tests for API endpoints using mocked services."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from vsearch.errors import DimensionMismatch, IndexUnavailable
from vsearch.models.domain import (
    IndexReport,
    QueryOutcome,
    RecordFailure,
    SearchResult,
)
from vsearch.models.variants import build_model_config
from vsearch.services.vector_store import VectorStore


@pytest.fixture
def app():
    """Create a test app with mocked services in app.state."""
    from vsearch.main import app as fastapi_app

    mock_pipeline = MagicMock()
    mock_pipeline.config = build_model_config("BGESmallZHV15")
    mock_pipeline.index_records = AsyncMock(
        return_value=IndexReport(
            total=2,
            indexed=1,
            failed=1,
            batches=1,
            failures=[RecordFailure(id=2, reason="empty_text")],
        )
    )
    mock_pipeline.search_many = AsyncMock(
        return_value=[
            QueryOutcome(
                query="苹果",
                results=[SearchResult(id=1, score=0.92, payload={"case_name": "红苹果案"})],
            ),
            QueryOutcome(query="合同", error="index down"),
        ]
    )

    mock_vector_store = AsyncMock(spec=VectorStore)
    mock_vector_store.collection_name = "cases"
    mock_vector_store.count = AsyncMock(return_value=100)

    fastapi_app.state.pipeline = mock_pipeline
    fastapi_app.state.vector_store = mock_vector_store

    return fastapi_app


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["indexed_records"] == 100
    assert data["collection_name"] == "cases"
    assert data["model"] == "BAAI/bge-small-zh-v1.5"
    assert data["dimension"] == 512


def test_health_degraded_when_qdrant_down(client, app):
    app.state.vector_store.count = AsyncMock(side_effect=RuntimeError("Qdrant unreachable"))
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["qdrant_connected"] is False
    assert data["indexed_records"] == 0


def test_index_returns_per_id_report(client, app):
    resp = client.post(
        "/api/index",
        json={"records": [{"id": 1, "text": "红苹果"}, {"id": 2, "text": " "}]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["indexed"] == 1
    assert data["failures"] == [{"id": 2, "reason": "empty_text", "error": ""}]

    records = app.state.pipeline.index_records.await_args.args[0]
    assert [r.id for r in records] == [1, 2]


def test_index_rejects_empty_batch(client):
    resp = client.post("/api/index", json={"records": []})
    assert resp.status_code == 422


def test_search_returns_outcomes_in_order(client, app):
    resp = client.post("/api/search", json={"queries": ["苹果", "合同"], "top_k": 5})
    assert resp.status_code == 200
    outcomes = resp.json()["outcomes"]
    assert [o["query"] for o in outcomes] == ["苹果", "合同"]
    assert outcomes[0]["results"][0] == {
        "id": 1,
        "score": 0.92,
        "payload": {"case_name": "红苹果案"},
    }
    assert outcomes[1]["error"] == "index down"

    app.state.pipeline.search_many.assert_awaited_once_with(["苹果", "合同"], top_k=5, filter=None)


def test_search_passes_filter(client, app):
    client.post(
        "/api/search", json={"queries": ["盗窃"], "top_k": 3, "filter": {"court": "朝阳法院"}}
    )
    kwargs = app.state.pipeline.search_many.await_args.kwargs
    assert kwargs["filter"] == {"court": "朝阳法院"}


def test_search_validation(client):
    assert client.post("/api/search", json={"queries": []}).status_code == 422
    assert client.post("/api/search", json={"queries": ["  "]}).status_code == 422
    assert client.post("/api/search", json={"queries": ["a"], "top_k": 0}).status_code == 422


def test_dimension_mismatch_maps_to_409(client, app):
    app.state.pipeline.index_records = AsyncMock(side_effect=DimensionMismatch(512, 1024))
    resp = client.post("/api/index", json={"records": [{"id": 1, "text": "红苹果"}]})
    assert resp.status_code == 409
    assert "1024" in resp.json()["detail"]


def test_index_unavailable_maps_to_503(client, app):
    app.state.pipeline.search_many = AsyncMock(side_effect=IndexUnavailable("qdrant down"))
    resp = client.post("/api/search", json={"queries": ["苹果"]})
    assert resp.status_code == 503


def test_global_exception_handler_returns_500(client, app):
    """Unhandled exception in a route should return a clean 500 JSON response."""
    app.state.pipeline.search_many = AsyncMock(side_effect=RuntimeError("Unexpected boom"))
    resp = client.post("/api/search", json={"queries": ["苹果"]})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal server error"
