"""
Email processor: runs one email through every analyzer.

Pipeline:
1. Skip emails that already have an analysis (optional)
2. Run the core analyzers (Categorizer, ActionExtractor, ClientTagger) in parallel
3. Run EventDetector if the email was categorized as an event
4. Aggregate successful analyzer data and cost totals
5. Save the analysis, then create the action, set the category and link the client

A failing analyzer never fails the email on its own: the email only fails
when every core analyzer failed. Database errors are logged and reported in
the result, never raised.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable

from mail_analysis.analyzers import (
    ActionExtractor,
    Categorizer,
    ClientTagger,
    EventDetector,
    build_analyzers,
)
from mail_analysis.config import Settings, settings as default_settings
from mail_analysis.core.database import AnalysisStore, Database
from mail_analysis.core.logging import get_logger
from mail_analysis.core.models import (
    ActionRecord,
    AggregatedAnalysis,
    AnalysisItem,
    AnalyzerError,
    AnalyzerName,
    AnalyzerOutcome,
    CategorizationData,
    ProcessingResult,
    UserContext,
)
from mail_analysis.services.analysis_client import AnalysisServiceClient

log = get_logger(__name__)

DATABASE = "database"


@dataclass
class ProcessOptions:
    """Options for processing a single email."""

    skip_analyzed: bool = True  # skip if analyzed_at is set
    save_to_database: bool = True
    create_actions: bool = True


def should_detect_events(categorization: AnalyzerOutcome[CategorizationData], trigger_category: str) -> bool:
    """Whether the Categorizer result calls for the EventDetector."""
    return (
        categorization.success
        and categorization.data is not None
        and categorization.data.category == trigger_category
    )


class EmailProcessor:
    """
    Orchestrates all analyzers for a single email.

    Core analyzers run on every email, concurrently. The EventDetector is a
    secondary analyzer and only runs after the Categorizer returns the
    trigger category.
    """

    def __init__(
        self,
        categorizer: Categorizer,
        action_extractor: ActionExtractor,
        client_tagger: ClientTagger,
        event_detector: EventDetector,
        store: AnalysisStore | None = None,
        event_trigger_category: str | None = None,
    ):
        self.categorizer = categorizer
        self.action_extractor = action_extractor
        self.client_tagger = client_tagger
        self.event_detector = event_detector
        self.store = store or Database()
        self.event_trigger_category = event_trigger_category or default_settings.event_trigger_category

        log.debug(
            "email_processor_initialized",
            categorizer_enabled=categorizer.is_enabled(),
            action_extractor_enabled=action_extractor.is_enabled(),
            client_tagger_enabled=client_tagger.is_enabled(),
            event_detector_enabled=event_detector.is_enabled(),
        )

    @classmethod
    def from_client(
        cls,
        client: AnalysisServiceClient,
        store: AnalysisStore | None = None,
        settings: Settings | None = None,
    ) -> "EmailProcessor":
        """Build a processor whose analyzers share one service client."""
        s = settings or default_settings
        categorizer, action_extractor, client_tagger, event_detector = build_analyzers(client, s)
        return cls(
            categorizer,
            action_extractor,
            client_tagger,
            event_detector,
            store=store,
            event_trigger_category=s.event_trigger_category,
        )

    async def process(
        self,
        item: AnalysisItem,
        context: UserContext,
        options: ProcessOptions | None = None,
    ) -> ProcessingResult:
        """
        Process a single email through all analyzers.

        Args:
            item: Email to analyze
            context: User context (clients, VIPs, analyzer overrides)
            options: Processing options

        Returns:
            ProcessingResult with aggregated analysis and per-analyzer outcomes
        """
        opts = options or ProcessOptions()
        start = time.monotonic()

        if opts.skip_analyzed and item.analyzed_at is not None:
            log.info("email_already_analyzed_skipping", item_id=item.id)
            return ProcessingResult(item_id=item.id, success=True, analysis=AggregatedAnalysis())

        log.info(
            "email_processing_started",
            item_id=item.id,
            subject=(item.subject or "")[:50],
            has_clients=bool(context.clients),
        )

        # Phase 1: core analyzers, always
        categorization, action, client = await self._run_core_analyzers(item, context)
        outcomes: dict[AnalyzerName, AnalyzerOutcome] = {
            AnalyzerName.CATEGORIZER: categorization,
            AnalyzerName.ACTION_EXTRACTOR: action,
            AnalyzerName.CLIENT_TAGGER: client,
        }

        # Phase 2: EventDetector, only for event emails
        if should_detect_events(categorization, self.event_trigger_category) and self.event_detector.is_enabled(context):
            log.debug("running_event_detector", item_id=item.id)
            outcomes[AnalyzerName.EVENT_DETECTOR] = await self._run_event_detector(item, context)

        success = categorization.success or action.success or client.success

        result = ProcessingResult(
            item_id=item.id,
            success=success,
            analysis=self.aggregate(outcomes),
            outcomes=outcomes,
            errors=self.collect_errors(outcomes),
        )

        if opts.save_to_database:
            if success:
                await self._save(item, context, result, opts)
            else:
                await self._mark_failed(item, result)

        log.info(
            "email_processing_complete",
            item_id=item.id,
            success=success,
            category=result.analysis.categorization.category if result.analysis.categorization else None,
            has_action=result.analysis.action_extraction.has_action if result.analysis.action_extraction else None,
            client_match=result.analysis.client_tagging.client_match if result.analysis.client_tagging else None,
            has_event=result.analysis.event_detection.has_event if result.analysis.event_detection else False,
            tokens_used=result.analysis.total_tokens_used,
            errors=len(result.errors),
            total_time_ms=int((time.monotonic() - start) * 1000),
        )
        return result

    # Analyzer execution

    async def _run_core_analyzers(
        self,
        item: AnalysisItem,
        context: UserContext,
    ) -> tuple[AnalyzerOutcome, AnalyzerOutcome, AnalyzerOutcome]:
        """Run Categorizer, ActionExtractor and ClientTagger concurrently."""
        analyzers = (self.categorizer, self.action_extractor, self.client_tagger)
        raw = await asyncio.gather(
            *(analyzer.analyze(item, context) for analyzer in analyzers),
            return_exceptions=True,
        )
        categorization, action, client = (
            self._to_outcome(result, analyzer.name, item.id) for result, analyzer in zip(raw, analyzers)
        )
        return categorization, action, client

    async def _run_event_detector(self, item: AnalysisItem, context: UserContext) -> AnalyzerOutcome:
        try:
            result = await self.event_detector.analyze(item, context)
        except Exception as e:
            result = e
        return self._to_outcome(result, AnalyzerName.EVENT_DETECTOR, item.id)

    @staticmethod
    def _to_outcome(result: AnalyzerOutcome | BaseException, name: AnalyzerName, item_id: str) -> AnalyzerOutcome:
        """Turn an exception raised by an analyzer into a failed outcome."""
        if isinstance(result, AnalyzerOutcome):
            return result
        if not isinstance(result, Exception):
            raise result  # CancelledError and friends
        error = str(result) or type(result).__name__
        log.error("analyzer_raised", analyzer=name.value, item_id=item_id, error=error)
        return AnalyzerOutcome.failed(error)

    # Aggregation

    @staticmethod
    def aggregate(outcomes: dict[AnalyzerName, AnalyzerOutcome]) -> AggregatedAnalysis:
        """
        Combine analyzer outcomes.

        Tokens and time count every analyzer that ran, failed or not. Data is
        only taken from successful analyzers.
        """

        def data_of(name: AnalyzerName):
            outcome = outcomes.get(name)
            return outcome.data if outcome is not None and outcome.success else None

        return AggregatedAnalysis(
            categorization=data_of(AnalyzerName.CATEGORIZER),
            action_extraction=data_of(AnalyzerName.ACTION_EXTRACTOR),
            client_tagging=data_of(AnalyzerName.CLIENT_TAGGER),
            event_detection=data_of(AnalyzerName.EVENT_DETECTOR),
            total_tokens_used=sum(o.tokens_used for o in outcomes.values()),
            total_processing_time_ms=sum(o.processing_time_ms for o in outcomes.values()),
        )

    @staticmethod
    def collect_errors(outcomes: dict[AnalyzerName, AnalyzerOutcome]) -> list[AnalyzerError]:
        return [
            AnalyzerError(analyzer=name.value, error=outcome.error or "Unknown error")
            for name, outcome in outcomes.items()
            if not outcome.success
        ]

    # Persistence

    async def _save(
        self,
        item: AnalysisItem,
        context: UserContext,
        result: ProcessingResult,
        opts: ProcessOptions,
    ) -> None:
        """Save the analysis, then apply each side effect independently."""
        analysis = result.analysis

        try:
            await self.store.upsert_analysis(item.id, context.user_id, analysis)
        except Exception as e:
            log.error("save_analysis_failed", item_id=item.id, error=str(e))
            result.errors.append(AnalyzerError(analyzer=DATABASE, error=f"Failed to save analysis: {e}"))
            return

        action = analysis.action_extraction
        if opts.create_actions and action is not None and action.has_action and action.action_type != "none":
            record = ActionRecord.from_extraction(item.id, context.user_id, action)
            if await self._best_effort(result, "create_action", self.store.insert_action(record)):
                log.info(
                    "action_created",
                    item_id=item.id,
                    action_type=record.action_type,
                    urgency=record.urgency_score,
                )

        if analysis.categorization is not None:
            await self._best_effort(
                result,
                "update_category",
                self.store.update_item_category(item.id, analysis.categorization.category),
            )

        tagging = analysis.client_tagging
        if tagging is not None and tagging.client_match:
            client_id = ClientTagger.resolve_client_id(tagging, context)
            if client_id:
                await self._best_effort(result, "link_client", self.store.link_item_to_client(item.id, client_id))

    async def _mark_failed(self, item: AnalysisItem, result: ProcessingResult) -> None:
        message = "; ".join(f"{e.analyzer}: {e.error}" for e in result.errors) or "All analyzers failed"
        await self._best_effort(result, "mark_analysis_error", self.store.mark_analysis_error(item.id, message))

    @staticmethod
    async def _best_effort(result: ProcessingResult, operation: str, call: Awaitable[None]) -> bool:
        """Await a database call, recording a failure instead of raising."""
        try:
            await call
            return True
        except Exception as e:
            log.warning("database_side_effect_failed", item_id=result.item_id, operation=operation, error=str(e))
            result.errors.append(AnalyzerError(analyzer=DATABASE, error=f"{operation} failed: {e}"))
            return False
