"""
Abstract base class for email analyzers.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from mail_analysis.core.logging import get_logger
from mail_analysis.core.models import (
    AnalysisItem,
    AnalyzerName,
    AnalyzerOutcome,
    AnalyzerRole,
    UserContext,
)
from mail_analysis.services.analysis_client import AnalysisServiceClient

log = get_logger(__name__)

DEFAULT_MAX_BODY_CHARS = 16000
DEFAULT_CONFIDENCE = 0.5

T = TypeVar("T")


@dataclass(frozen=True)
class AnalyzerConfig:
    """Per-analyzer settings."""

    enabled: bool = True
    model: str = "gpt-4.1-mini"
    temperature: float = 0.2
    max_tokens: int = 500
    max_body_chars: int = DEFAULT_MAX_BODY_CHARS
    timeout_seconds: float | None = None


class BaseAnalyzer(ABC, Generic[T]):
    """
    Abstract analyzer interface.

    Subclasses declare their name, role and service endpoint, and map the
    service's JSON to a typed data object in `parse`. `analyze` never raises
    for ordinary failures: disabled config, service errors, timeouts and
    malformed responses all become a failed AnalyzerOutcome.
    """

    name: AnalyzerName
    role: AnalyzerRole = AnalyzerRole.CORE
    endpoint: str

    def __init__(self, client: AnalysisServiceClient, config: AnalyzerConfig | None = None):
        self.client = client
        self.config = config or AnalyzerConfig()

    @abstractmethod
    def parse(self, data: dict[str, Any]) -> T:
        """
        Convert the service's JSON data into this analyzer's data type.

        Raises:
            ValueError: If required fields are missing
        """
        pass

    def is_enabled(self, context: UserContext | None = None) -> bool:
        """Check config, honouring a per-user override when present."""
        if context is not None and self.name.value in context.enabled_analyzers:
            return bool(context.enabled_analyzers[self.name.value])
        return self.config.enabled

    async def analyze(self, item: AnalysisItem, context: UserContext) -> AnalyzerOutcome[T]:
        """
        Analyze one email.

        Args:
            item: Email to analyze
            context: User context

        Returns:
            AnalyzerOutcome with parsed data on success, or the error message
        """
        start = time.monotonic()

        if not self.is_enabled(context):
            log.info("analyzer_disabled", analyzer=self.name.value, item_id=item.id)
            return AnalyzerOutcome.failed("Analyzer is disabled", processing_time_ms=_elapsed_ms(start))

        payload = {
            "content": self.format_item(item),
            "system_context": context.to_dict(),
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

        try:
            response = await asyncio.wait_for(
                self.client.analyze(self.endpoint, payload),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"{self.name.value} timed out after {self.config.timeout_seconds}s"
            log.error("analysis_timeout", analyzer=self.name.value, item_id=item.id)
            return AnalyzerOutcome.failed(error, processing_time_ms=_elapsed_ms(start))
        except Exception as e:
            log.error("analysis_failed", analyzer=self.name.value, item_id=item.id, error=str(e))
            return AnalyzerOutcome.failed(str(e) or type(e).__name__, processing_time_ms=_elapsed_ms(start))

        try:
            data = self.parse(response.data)
        except (KeyError, TypeError, ValueError) as e:
            log.error("analysis_parse_error", analyzer=self.name.value, item_id=item.id, error=str(e))
            # tokens were still spent
            return AnalyzerOutcome.failed(
                f"Malformed {self.name.value} response: {e}",
                processing_time_ms=_elapsed_ms(start),
                tokens_used=response.tokens_used,
            )

        outcome = AnalyzerOutcome.ok(
            data=data,
            confidence=self.extract_confidence(data),
            tokens_used=response.tokens_used,
            processing_time_ms=_elapsed_ms(start),
        )

        log.debug(
            "analysis_complete",
            analyzer=self.name.value,
            item_id=item.id,
            confidence=outcome.confidence,
            tokens_used=outcome.tokens_used,
            duration_ms=outcome.processing_time_ms,
        )
        return outcome

    def format_item(self, item: AnalysisItem) -> str:
        """Render the email as the text sent to the analysis service."""
        parts = [
            f"From: {item.sender_name or ''} <{item.sender_email}>",
            f"Date: {item.date}",
            f"Subject: {item.subject or '(no subject)'}",
        ]

        if item.labels:
            parts.append(f"Labels: {', '.join(item.labels)}")

        parts.append("")
        parts.append("--- Email Body ---")

        if item.body_text:
            parts.append(truncate_body(item.body_text, self.config.max_body_chars))
        elif item.snippet:
            parts.append(f"[Snippet only]: {item.snippet}")
        else:
            parts.append("[No body content available]")

        return "\n".join(parts)

    @staticmethod
    def extract_confidence(data: Any) -> float:
        confidence = getattr(data, "confidence", None)
        if isinstance(confidence, (int, float)) and confidence > 0:
            return float(confidence)
        return DEFAULT_CONFIDENCE


def truncate_body(body: str, max_chars: int) -> str:
    """Cut the body to max_chars, marking the cut."""
    if len(body) <= max_chars:
        return body
    return body[:max_chars] + "\n\n[... truncated]"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
