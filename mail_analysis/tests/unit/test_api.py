"""Unit tests for the HTTP API."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from mail_analysis.jobs import RetryItemResult, RetryJobResult
from mail_analysis.main import (
    app,
    get_analysis_client,
    get_batch_processor,
    get_db,
    get_retry_job,
)


@pytest.fixture
def mock_db(item_factory, user_context):
    """Mock database for testing without real DB connection."""
    db = MagicMock()
    db.get_unanalyzed_items = AsyncMock(return_value=[item_factory("msg-1"), item_factory("msg-2")])
    db.get_user_context = AsyncMock(return_value=user_context)
    return db


@pytest.fixture
def mock_retry_job():
    job = MagicMock()
    job.run = AsyncMock(
        return_value=RetryJobResult(
            found=1,
            processed=1,
            succeeded=1,
            items=[RetryItemResult(item_id="msg-7", success=True)],
        )
    )
    return job


@pytest.fixture
def client(mock_db, batch_processor, mock_retry_job):
    analysis_client = MagicMock()
    analysis_client.health_check = AsyncMock(return_value=True)

    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_batch_processor] = lambda: batch_processor
    app.dependency_overrides[get_retry_job] = lambda: mock_retry_job
    app.dependency_overrides[get_analysis_client] = lambda: analysis_client
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "analysis_service": True}


class TestAnalyze:
    """Tests for POST /analyze."""

    def test_analyze(self, client, mock_db):
        response = client.post("/analyze", json={"user_id": "user-1", "max_emails": 20, "batch_size": 5})

        assert response.status_code == 200
        body = response.json()
        assert body["total_emails"] == 2
        assert body["success_count"] == 2
        assert body["categories"] == {"clients": 2}
        assert body["actions_created"] == 2
        assert body["total_tokens_used"] == 600
        assert body["estimated_cost"] == pytest.approx(600 * 0.0000006)
        assert body["errors"] == []
        mock_db.get_unanalyzed_items.assert_awaited_once_with("user-1", limit=20, include_analyzed=False)

    def test_reanalyze(self, client, mock_db):
        client.post("/analyze", json={"user_id": "user-1", "skip_analyzed": False})

        mock_db.get_unanalyzed_items.assert_awaited_once_with("user-1", limit=50, include_analyzed=True)

    def test_no_emails(self, client, mock_db):
        mock_db.get_unanalyzed_items.return_value = []

        response = client.post("/analyze", json={"user_id": "user-1"})

        assert response.status_code == 200
        assert response.json()["message"] == "No emails to analyze"
        assert response.json()["total_emails"] == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"user_id": "user-1", "max_emails": 0},
            {"user_id": "user-1", "max_emails": 201},
            {"user_id": "user-1", "batch_size": 21},
            {"max_emails": 10},
        ],
    )
    def test_invalid_request(self, client, payload):
        """Test request bounds are validated."""
        response = client.post("/analyze", json=payload)

        assert response.status_code == 422

    def test_database_error(self, client, mock_db):
        mock_db.get_unanalyzed_items.side_effect = ConnectionError("database unavailable")

        response = client.post("/analyze", json={"user_id": "user-1"})

        assert response.status_code == 500
        assert "database unavailable" in response.json()["detail"]


class TestRetryFailed:
    """Tests for POST /retry-failed."""

    def test_retry(self, client, mock_retry_job):
        response = client.post("/retry-failed")

        assert response.status_code == 200
        body = response.json()
        assert body["succeeded"] == 1
        assert body["items"] == [{"item_id": "msg-7", "success": True, "error": None}]
        mock_retry_job.run.assert_awaited_once()

    def test_retry_query_failure(self, client, mock_retry_job):
        mock_retry_job.run.return_value = RetryJobResult(success=False, error="Failed to query failed analyses: boom")

        response = client.post("/retry-failed")

        assert response.status_code == 500
        assert "boom" in response.json()["detail"]
