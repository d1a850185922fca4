"""Unit tests for the batch processor."""

import asyncio

import pytest

from mail_analysis.processors import BatchOptions
from mail_analysis.services.analysis_client import AnalysisServiceError


def fail_for_subject(subject: str, response: dict):
    """Service response that errors for one subject and answers normally otherwise."""

    def respond(payload):
        if f"Subject: {subject}" in payload["content"]:
            return AnalysisServiceError("service unavailable")
        return response

    return respond


@pytest.fixture
def items(item_factory):
    return [item_factory(f"msg-{i}", subject=f"Status update {i}") for i in range(5)]


class TestBatchOptions:
    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            BatchOptions(batch_size=0)

    def test_process_options(self):
        options = BatchOptions(skip_analyzed=False, create_actions=False).process_options()

        assert options.skip_analyzed is False
        assert options.save_to_database is True
        assert options.create_actions is False


class TestProcessBatch:
    """Tests for BatchProcessor.process_batch."""

    @pytest.mark.asyncio
    async def test_chunks_and_pacing(self, batch_processor, sleep_calls, items, user_context):
        """Test 5 emails with batch size 2 run as 3 chunks with 2 pauses."""
        progress = []
        options = BatchOptions(
            batch_size=2,
            delay_between_batches_ms=100,
            on_progress=lambda c, t: progress.append((c, t)),
        )

        result = await batch_processor.process_batch(items, user_context, options)

        assert progress == [(2, 5), (4, 5), (5, 5)]
        assert sleep_calls == [0.1, 0.1]
        assert result.total_emails == 5
        assert result.success_count == 5
        assert result.failure_count == 0

    @pytest.mark.asyncio
    async def test_statistics(self, batch_processor, items, user_context):
        result = await batch_processor.process_batch(items, user_context, BatchOptions(batch_size=10))

        assert result.total_tokens_used == 5 * 300
        assert result.estimated_cost == pytest.approx(1500 * 0.0000006)
        assert set(result.results) == {f"msg-{i}" for i in range(5)}
        assert result.total_time_ms >= 0
        assert result.cancelled is False

    @pytest.mark.asyncio
    async def test_counts_add_up(self, batch_processor, fake_service, item_factory, analyzed_item, user_context):
        """Test every email lands in exactly one of success, failure, skipped."""
        for endpoint in ("categorize", "extract-action", "tag-client"):
            fake_service.responses[endpoint] = fail_for_subject("Broken", fake_service.responses[endpoint])
        batch = [
            item_factory("ok-1"),
            item_factory("broken-1", subject="Broken"),
            analyzed_item,
            item_factory("ok-2"),
        ]

        result = await batch_processor.process_batch(batch, user_context, BatchOptions(batch_size=3))

        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.skipped_count == 1
        assert result.total_emails == result.success_count + result.failure_count + result.skipped_count
        assert result.results["broken-1"].success is False

    @pytest.mark.asyncio
    async def test_on_error_only_for_failed_emails(self, batch_processor, fake_service, item_factory, user_context):
        """Test errors of failed emails are reported once each, partial failures are not."""
        for endpoint in ("categorize", "extract-action", "tag-client"):
            fake_service.responses[endpoint] = fail_for_subject("Broken", fake_service.responses[endpoint])
        fake_service.responses["tag-client"] = AnalysisServiceError("tagger down")
        reported = []
        batch = [item_factory("ok-1"), item_factory("broken-1", subject="Broken")]

        result = await batch_processor.process_batch(
            batch, user_context, BatchOptions(on_error=lambda item_id, error: reported.append((item_id, error)))
        )

        assert [item_id for item_id, _ in reported] == ["broken-1"] * 3
        assert len(result.errors) == 3
        assert all(e.item_id == "broken-1" for e in result.errors)
        assert result.success_count == 1

    @pytest.mark.asyncio
    async def test_total_failure_still_returns(self, batch_processor, fake_service, items, user_context):
        """Test a batch completes even when every analyzer fails."""
        for endpoint in ("categorize", "extract-action", "tag-client"):
            fake_service.responses[endpoint] = AnalysisServiceError("service down")

        result = await batch_processor.process_batch(items, user_context)

        assert result.failure_count == 5
        assert result.success_count == 0
        assert len(result.errors) == 15

    @pytest.mark.asyncio
    async def test_single_event_email_runs_detector_once(self, batch_processor, fake_service, item_factory, user_context):
        """Test 10 emails with one event email invoke the EventDetector once."""
        categorize = fake_service.responses["categorize"]

        def respond(payload):
            if "Subject: Launch party" in payload["content"]:
                return {"category": "event", "confidence": 0.95}
            return categorize

        fake_service.responses["categorize"] = respond
        batch = [item_factory(f"msg-{i}") for i in range(9)] + [item_factory("msg-event", subject="Launch party")]

        result = await batch_processor.process_batch(batch, user_context, BatchOptions(batch_size=4))

        assert fake_service.call_count("detect-event") == 1
        assert result.results["msg-event"].analysis.event_detection is not None

    @pytest.mark.asyncio
    async def test_creates_pending_action(self, batch_processor, mock_store, item_factory, user_context):
        await batch_processor.process_batch([item_factory()], user_context)

        mock_store.insert_action.assert_awaited_once()
        assert mock_store.insert_action.await_args.args[0].status == "pending"

    @pytest.mark.asyncio
    async def test_max_emails(self, batch_processor, fake_service, items, user_context):
        result = await batch_processor.process_batch(items, user_context, BatchOptions(max_emails=2))

        assert result.total_emails == 2
        assert len(fake_service.calls) == 6

    @pytest.mark.asyncio
    async def test_empty_batch(self, batch_processor, sleep_calls, user_context):
        result = await batch_processor.process_batch([], user_context)

        assert result.total_emails == 0
        assert result.avg_time_per_email_ms == 0
        assert result.estimated_cost == 0
        assert sleep_calls == []

    @pytest.mark.asyncio
    async def test_process_sequentially(self, batch_processor, sleep_calls, items, user_context):
        progress = []

        result = await batch_processor.process_sequentially(
            items[:3], user_context, BatchOptions(batch_size=10, on_progress=lambda c, t: progress.append(c))
        )

        assert progress == [1, 2, 3]
        assert len(sleep_calls) == 2
        assert result.success_count == 3

    @pytest.mark.asyncio
    async def test_unexpected_processor_error(self, batch_processor, items, user_context, monkeypatch):
        """Test an exception from the email processor fails only that email."""
        original = batch_processor.email_processor.process

        async def process(item, context, options=None):
            if item.id == "msg-1":
                raise RuntimeError("connection pool exhausted")
            return await original(item, context, options)

        monkeypatch.setattr(batch_processor.email_processor, "process", process)

        result = await batch_processor.process_batch(items, user_context)

        assert result.failure_count == 1
        assert result.success_count == 4
        assert result.results["msg-1"].errors[0].analyzer == "EmailProcessor"
        assert result.results["msg-1"].errors[0].error == "connection pool exhausted"

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self, batch_processor, items, user_context):
        def broken_callback(completed, total):
            raise RuntimeError("ui went away")

        result = await batch_processor.process_batch(items, user_context, BatchOptions(on_progress=broken_callback))

        assert result.success_count == 5


class TestStream:
    """Tests for BatchProcessor.stream."""

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, batch_processor, items, user_context):
        events = [event async for event in batch_processor.stream(items, user_context, BatchOptions(batch_size=2))]

        completed = [event.completed for event in events]
        assert completed == sorted(completed)
        assert completed[-1] == 5
        assert [event.done for event in events] == [False, False, False, True]
        assert events[-1].result.total_emails == 5
        assert events[0].chunk_count == 3

    @pytest.mark.asyncio
    async def test_closing_stops_further_chunks(self, batch_processor, fake_service, items, user_context):
        """Test closing the stream early leaves later chunks unprocessed."""
        stream = batch_processor.stream(items, user_context, BatchOptions(batch_size=2))

        first = await stream.__anext__()
        await stream.aclose()

        assert first.completed == 2
        assert len(fake_service.calls) == 6


class TestDeadlines:
    """Tests for item and batch timeouts."""

    @pytest.mark.asyncio
    async def test_item_timeout(self, batch_processor, items, user_context, monkeypatch):
        """Test a slow email is failed and its work cancelled."""
        original = batch_processor.email_processor.process
        cancelled = []

        async def process(item, context, options=None):
            if item.id == "msg-2":
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.append(item.id)
                    raise
            return await original(item, context, options)

        monkeypatch.setattr(batch_processor.email_processor, "process", process)

        result = await batch_processor.process_batch(items, user_context, BatchOptions(item_timeout_seconds=0.2))

        assert cancelled == ["msg-2"]
        assert result.failure_count == 1
        assert result.success_count == 4
        error = result.results["msg-2"].errors[0]
        assert error.analyzer == "EmailProcessor"
        assert error.error == "Processing timed out after 0.2s"

    @pytest.mark.asyncio
    async def test_item_timeout_within_batch_deadline(self, batch_processor, items, user_context, monkeypatch):
        """Test an email timing out before the batch deadline reports its own timeout."""
        original = batch_processor.email_processor.process

        async def process(item, context, options=None):
            if item.id == "msg-2":
                await asyncio.sleep(10)
            return await original(item, context, options)

        monkeypatch.setattr(batch_processor.email_processor, "process", process)

        result = await batch_processor.process_batch(
            items,
            user_context,
            BatchOptions(item_timeout_seconds=0.1, batch_timeout_seconds=30),
        )

        assert result.cancelled is False
        error = result.results["msg-2"].errors[0]
        assert error.analyzer == "EmailProcessor"
        assert error.error == "Processing timed out after 0.1s"

    @pytest.mark.asyncio
    async def test_batch_deadline(self, batch_processor, sleep_calls, items, user_context, monkeypatch):
        """Test an expired batch deadline stops new chunks and accounts every email."""

        async def slow_process(item, context, options=None):
            await asyncio.sleep(10)

        monkeypatch.setattr(batch_processor.email_processor, "process", slow_process)
        progress = []

        result = await batch_processor.process_batch(
            items,
            user_context,
            BatchOptions(batch_size=2, batch_timeout_seconds=0.05, on_progress=lambda c, t: progress.append(c)),
        )

        assert result.cancelled is True
        assert result.total_emails == 5
        assert result.failure_count == 5
        assert result.results["msg-0"].errors[0].analyzer == "BatchProcessor"
        assert result.results["msg-0"].errors[0].error == "Batch deadline exceeded"
        assert result.results["msg-4"].errors[0].error == "Batch deadline exceeded"
        assert progress == [2, 5]
        assert len(sleep_calls) == 1
