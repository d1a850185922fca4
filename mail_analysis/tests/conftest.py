"""
Shared pytest fixtures for mail_analysis tests.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from mail_analysis.config import Settings
from mail_analysis.core.database import AnalysisStore
from mail_analysis.core.models import AnalysisItem, Client, UserContext
from mail_analysis.processors import BatchProcessor, EmailProcessor
from mail_analysis.services.analysis_client import ServiceResponse

TOKENS_PER_CALL = 100

DEFAULT_RESPONSES = {
    "categorize": {
        "category": "clients",
        "confidence": 0.9,
        "reasoning": "Message from a known client about an ongoing project",
        "summary": "Acme asks for the revised proposal",
        "quick_action": "reply",
    },
    "extract-action": {
        "has_action": True,
        "action_type": "respond",
        "action_title": "Send revised proposal to Acme",
        "urgency_score": 7,
        "deadline": "2026-10-23",
        "estimated_minutes": 30,
        "confidence": 0.85,
    },
    "tag-client": {
        "client_match": True,
        "client_name": "Acme Corp",
        "client_id": "client-1",
        "match_confidence": 0.95,
        "relationship_signal": "positive",
    },
    "detect-event": {
        "has_event": True,
        "event_title": "Product Launch Meetup",
        "event_date": "2026-11-05",
        "event_time": "18:00",
        "location_type": "in_person",
        "location": "Shoreditch, London",
        "confidence": 0.9,
    },
}


class FakeAnalysisService:
    """
    Stand-in for AnalysisServiceClient.

    Responses are keyed by endpoint. A value may be a dict, an exception to
    raise, or a callable taking the request payload and returning either.
    """

    def __init__(self, responses: dict | None = None, tokens_used: int = TOKENS_PER_CALL):
        self.responses = {**DEFAULT_RESPONSES, **(responses or {})}
        self.tokens_used = tokens_used
        self.calls: list[tuple[str, dict]] = []

    async def analyze(self, endpoint: str, payload: dict) -> ServiceResponse:
        self.calls.append((endpoint, payload))
        response = self.responses[endpoint]
        if callable(response):
            response = response(payload)
        if isinstance(response, Exception):
            raise response
        return ServiceResponse(data=response, tokens_used=self.tokens_used)

    def call_count(self, endpoint: str) -> int:
        return sum(1 for called, _ in self.calls if called == endpoint)


def make_item(item_id: str = "msg-1", **overrides) -> AnalysisItem:
    fields = {
        "id": item_id,
        "subject": "Revised proposal for Q4 campaign",
        "sender_email": "jordan@acme.com",
        "sender_name": "Jordan Lee",
        "date": "2026-10-16T09:30:00+00:00",
        "snippet": "Could you send over the revised proposal...",
        "body_text": "Hi,\n\nCould you send over the revised proposal by Friday?\n\nThanks,\nJordan",
        "labels": ("INBOX", "IMPORTANT"),
    }
    fields.update(overrides)
    return AnalysisItem(**fields)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no real delays or timeouts."""
    return Settings(
        analyzer_timeout_seconds=5.0,
        delay_between_batches_ms=0,
        item_timeout_seconds=None,
        cost_per_token=0.0000006,
        retry_delay_between_items_ms=0,
    )


@pytest.fixture
def sample_item() -> AnalysisItem:
    """Sample unanalyzed email."""
    return make_item()


@pytest.fixture
def analyzed_item() -> AnalysisItem:
    """Email that already has an analysis."""
    return make_item("msg-analyzed", analyzed_at=datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def user_context() -> UserContext:
    """User context with one known client."""
    return UserContext(
        user_id="user-1",
        role="Account Director",
        company="Brightside Studio",
        timezone="Europe/London",
        locale="en-GB",
        location_city="London",
        vip_emails=("ceo@acme.com",),
        clients=(Client(id="client-1", name="Acme Corp", email_domains=("acme.com",)),),
        priorities=("client work", "deadlines"),
    )


@pytest.fixture
def fake_service() -> FakeAnalysisService:
    return FakeAnalysisService()


@pytest.fixture
def mock_store():
    """Mock store for testing without a real database."""
    return AsyncMock(spec=AnalysisStore)


@pytest.fixture
def email_processor(fake_service, mock_store, test_settings) -> EmailProcessor:
    return EmailProcessor.from_client(fake_service, store=mock_store, settings=test_settings)


@pytest.fixture
def sleep_calls() -> list[float]:
    return []


@pytest.fixture
def batch_processor(email_processor, sleep_calls, test_settings) -> BatchProcessor:
    """Batch processor that records pacing delays instead of sleeping."""

    async def fake_sleep(seconds: float) -> None:
        sleep_calls.append(seconds)

    return BatchProcessor(email_processor, cost_per_token=test_settings.cost_per_token, sleep=fake_sleep)


@pytest.fixture
def item_factory():
    """Build emails with overridden fields: item_factory("msg-2", subject=...)."""
    return make_item
