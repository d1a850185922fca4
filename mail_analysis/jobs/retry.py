"""
Retry job for failed email analyses.

Finds emails whose last analysis failed, waits out a cooldown so transient
service problems can clear, then resets and re-analyzes them one at a time.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta

from mail_analysis.config import Settings, settings as default_settings
from mail_analysis.core.database import Database
from mail_analysis.core.logging import bind_context, clear_context, get_logger
from mail_analysis.core.models import AnalysisItem, UserContext
from mail_analysis.processors.email import EmailProcessor, ProcessOptions

log = get_logger(__name__)


@dataclass
class RetryItemResult:
    item_id: str
    success: bool
    error: str | None = None


@dataclass
class RetryJobResult:
    """Outcome of one retry run."""

    success: bool = True
    found: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    items: list[RetryItemResult] = field(default_factory=list)
    error: str | None = None


class RetryFailedAnalysesJob:
    """
    Re-run analysis for emails that previously failed.

    Only failures older than the cooldown and newer than the max age are
    picked up, oldest first, at most `retry_max_items_per_run` per run.
    """

    def __init__(
        self,
        db: Database,
        email_processor: EmailProcessor,
        settings: Settings | None = None,
        sleep=asyncio.sleep,
    ):
        self.db = db
        self.email_processor = email_processor
        self.settings = settings or default_settings
        self.sleep = sleep

    async def run(self) -> RetryJobResult:
        s = self.settings
        result = RetryJobResult()

        log.info(
            "retry_job_starting",
            max_items=s.retry_max_items_per_run,
            cooldown_hours=s.retry_cooldown_hours,
            max_age_hours=s.retry_max_error_age_hours,
        )

        try:
            rows = await self.db.get_failed_items(
                limit=s.retry_max_items_per_run,
                cooldown=timedelta(hours=s.retry_cooldown_hours),
                max_age=timedelta(hours=s.retry_max_error_age_hours),
            )
        except Exception as e:
            log.error("retry_job_query_failed", error=str(e))
            return RetryJobResult(success=False, error=f"Failed to query failed analyses: {e}")

        result.found = len(rows)
        if not rows:
            log.info("retry_job_nothing_to_do")
            return result

        by_user: dict[str, list[AnalysisItem]] = defaultdict(list)
        for row in rows:
            by_user[str(row["user_id"])].append(AnalysisItem.from_row(row))

        first = True
        for user_id, items in by_user.items():
            try:
                context = await self.db.get_user_context(user_id)
            except Exception as e:
                log.error("retry_job_context_failed", user_id=user_id, error=str(e))
                for item in items:
                    self._record(result, RetryItemResult(item.id, False, f"Failed to load user context: {e}"))
                continue

            for item in items:
                if not first:
                    await self.sleep(s.retry_delay_between_items_ms / 1000)
                first = False
                self._record(result, await self._retry_item(item, context))

        log.info(
            "retry_job_complete",
            found=result.found,
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result

    async def _retry_item(self, item: AnalysisItem, context: UserContext) -> RetryItemResult:
        bind_context(item_id=item.id, user_id=context.user_id)
        try:
            await self.db.reset_analysis_state([item.id])
            processed = await self.email_processor.process(item, context, ProcessOptions(skip_analyzed=False))
        except Exception as e:
            log.error("retry_item_failed", error=str(e))
            return RetryItemResult(item.id, False, str(e))
        finally:
            clear_context()

        if processed.success:
            log.info("retry_item_succeeded", item_id=item.id, tokens_used=processed.analysis.total_tokens_used)
            return RetryItemResult(item.id, True)

        error = "; ".join(f"{e.analyzer}: {e.error}" for e in processed.errors) or "All analyzers failed"
        log.warning("retry_item_still_failing", item_id=item.id, error=error)
        return RetryItemResult(item.id, False, error)

    @staticmethod
    def _record(result: RetryJobResult, item_result: RetryItemResult) -> None:
        result.items.append(item_result)
        result.processed += 1
        if item_result.success:
            result.succeeded += 1
        else:
            result.failed += 1
