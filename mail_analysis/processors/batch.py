"""
Batch processor: runs the email processor over many emails.

Emails are processed in fixed-size chunks. Emails within a chunk run
concurrently; chunks run one after another with a pause in between to stay
under the analysis service's rate limit.
"""

import asyncio
import dataclasses
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable

from mail_analysis.config import settings
from mail_analysis.core.logging import bind_context, clear_context, get_logger
from mail_analysis.core.models import (
    AnalysisItem,
    AnalyzerError,
    BatchResult,
    ItemError,
    ProcessingResult,
    ProgressEvent,
    UserContext,
)
from mail_analysis.processors.email import EmailProcessor, ProcessOptions

log = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]
ErrorCallback = Callable[[str, str], None]


@dataclass
class BatchOptions(ProcessOptions):
    """Options for batch processing, on top of the per-email options."""

    batch_size: int = 10
    delay_between_batches_ms: int = 100
    max_emails: int | None = None  # None: no cap
    item_timeout_seconds: float | None = None
    batch_timeout_seconds: float | None = None
    on_progress: ProgressCallback | None = None  # (completed, total), once per chunk
    on_error: ErrorCallback | None = None  # (item_id, error), once per error of a failed email

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.max_emails is not None and self.max_emails < 0:
            raise ValueError(f"max_emails must not be negative, got {self.max_emails}")

    def process_options(self) -> ProcessOptions:
        return ProcessOptions(
            skip_analyzed=self.skip_analyzed,
            save_to_database=self.save_to_database,
            create_actions=self.create_actions,
        )


class BatchProcessor:
    """
    Process many emails in paced, concurrent chunks.

    `stream` yields a ProgressEvent after every chunk and a final event that
    carries the BatchResult. `process_batch` runs the stream to completion.
    Analyzer and database failures never escape: they are counted and
    reported in the result.
    """

    def __init__(
        self,
        email_processor: EmailProcessor,
        cost_per_token: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.email_processor = email_processor
        self.cost_per_token = settings.cost_per_token if cost_per_token is None else cost_per_token
        self.sleep = sleep

    async def process_batch(
        self,
        items: Iterable[AnalysisItem],
        context: UserContext,
        options: BatchOptions | None = None,
    ) -> BatchResult:
        """
        Process emails in batches.

        Args:
            items: Emails to process, in order
            context: User context shared by every email
            options: Batch options

        Returns:
            BatchResult with counts, cost and per-email results
        """
        result = BatchResult()
        async for event in self.stream(items, context, options):
            if event.done:
                result = event.result
        return result

    async def process_sequentially(
        self,
        items: Iterable[AnalysisItem],
        context: UserContext,
        options: BatchOptions | None = None,
    ) -> BatchResult:
        """Process emails one at a time (batch size 1)."""
        opts = dataclasses.replace(options or BatchOptions(), batch_size=1)
        return await self.process_batch(items, context, opts)

    async def stream(
        self,
        items: Iterable[AnalysisItem],
        context: UserContext,
        options: BatchOptions | None = None,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Process emails, yielding progress after each chunk.

        Closing the iterator early stops before the next chunk is started.
        """
        opts = options or BatchOptions()
        start = time.monotonic()
        deadline = start + opts.batch_timeout_seconds if opts.batch_timeout_seconds is not None else None

        to_process = list(items)
        if opts.max_emails is not None:
            to_process = to_process[: opts.max_emails]
        total = len(to_process)
        chunks = [to_process[i:i + opts.batch_size] for i in range(0, total, opts.batch_size)]

        batch = BatchResult(total_emails=total)
        completed = 0

        log.info(
            "batch_processing_started",
            total_emails=total,
            batch_size=opts.batch_size,
            chunks=len(chunks),
            delay_ms=opts.delay_between_batches_ms,
        )

        for index, chunk in enumerate(chunks):
            if deadline is not None and time.monotonic() >= deadline:
                self._abandon(to_process[completed:], batch, opts)
                batch.cancelled = True
                completed = total
                log.warning("batch_deadline_exceeded", completed_chunks=index, remaining_chunks=len(chunks) - index)
                yield self._progress(opts, completed, total, index, len(chunks))
                break

            log.debug("processing_chunk", chunk=index + 1, size=len(chunk), progress=f"{completed}/{total}")

            results = await asyncio.gather(
                *(self._process_item(item, context, opts, deadline) for item in chunk)
            )
            for item, result in zip(chunk, results):
                self._record(item.id, result, batch, opts)

            completed += len(chunk)
            yield self._progress(opts, completed, total, index + 1, len(chunks))

            if index < len(chunks) - 1:
                await self.sleep(opts.delay_between_batches_ms / 1000)

        batch.total_time_ms = int((time.monotonic() - start) * 1000)
        batch.avg_time_per_email_ms = round(batch.total_time_ms / total) if total else 0
        batch.estimated_cost = batch.total_tokens_used * self.cost_per_token

        log.info(
            "batch_processing_complete",
            total_emails=batch.total_emails,
            success_count=batch.success_count,
            failure_count=batch.failure_count,
            skipped_count=batch.skipped_count,
            total_time_ms=batch.total_time_ms,
            avg_time_per_email_ms=batch.avg_time_per_email_ms,
            total_tokens_used=batch.total_tokens_used,
            estimated_cost=f"${batch.estimated_cost:.4f}",
            cancelled=batch.cancelled,
        )

        yield ProgressEvent(
            completed=completed,
            total=total,
            chunk_index=len(chunks),
            chunk_count=len(chunks),
            result=batch,
        )

    async def _process_item(
        self,
        item: AnalysisItem,
        context: UserContext,
        opts: BatchOptions,
        deadline: float | None,
    ) -> ProcessingResult:
        """Run one email, converting timeouts and unexpected errors into a failed result."""
        timeout = opts.item_timeout_seconds
        deadline_bound = False
        if deadline is not None:
            remaining = max(deadline - time.monotonic(), 0.0)
            if timeout is None or remaining < timeout:
                timeout = remaining
                deadline_bound = True

        bind_context(item_id=item.id)
        try:
            return await asyncio.wait_for(
                self.email_processor.process(item, context, opts.process_options()),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            if deadline_bound:
                log.error("batch_deadline_exceeded_in_flight")
                return _failed_result(item.id, "BatchProcessor", "Batch deadline exceeded")
            error = f"Processing timed out after {timeout:.1f}s"
            log.error("email_processing_timeout", timeout_seconds=timeout)
            return _failed_result(item.id, "EmailProcessor", error)
        except Exception as e:
            log.error("unexpected_email_processing_error", error=str(e))
            return _failed_result(item.id, "EmailProcessor", str(e) or type(e).__name__)
        finally:
            clear_context()

    def _record(self, item_id: str, result: ProcessingResult, batch: BatchResult, opts: BatchOptions) -> None:
        batch.results[item_id] = result
        batch.total_tokens_used += result.analysis.total_tokens_used

        if result.success:
            if result.analysis.total_tokens_used == 0:
                batch.skipped_count += 1
            else:
                batch.success_count += 1
            return

        batch.failure_count += 1
        for error in result.errors:
            batch.errors.append(ItemError(item_id=item_id, error=error.error))
            if opts.on_error is not None:
                try:
                    opts.on_error(item_id, error.error)
                except Exception as e:
                    log.warning("error_callback_failed", item_id=item_id, error=str(e))

    def _abandon(self, items: list[AnalysisItem], batch: BatchResult, opts: BatchOptions) -> None:
        """Record emails never started because the batch deadline passed."""
        for item in items:
            self._record(item.id, _failed_result(item.id, "BatchProcessor", "Batch deadline exceeded"), batch, opts)

    @staticmethod
    def _progress(opts: BatchOptions, completed: int, total: int, chunk_index: int, chunk_count: int) -> ProgressEvent:
        if opts.on_progress is not None:
            try:
                opts.on_progress(completed, total)
            except Exception as e:
                log.warning("progress_callback_failed", error=str(e))
        return ProgressEvent(completed=completed, total=total, chunk_index=chunk_index, chunk_count=chunk_count)


def _failed_result(item_id: str, analyzer: str, error: str) -> ProcessingResult:
    return ProcessingResult(
        item_id=item_id,
        success=False,
        errors=[AnalyzerError(analyzer=analyzer, error=error)],
    )
