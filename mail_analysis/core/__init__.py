"""Core modules for email analysis."""

from .logging import configure_logging, get_logger, bind_context, clear_context
from .models import (
    AnalysisItem,
    UserContext,
    AnalyzerName,
    AnalyzerRole,
    AnalyzerOutcome,
    AggregatedAnalysis,
    ProcessingResult,
    BatchResult,
)
from .database import AnalysisStore, Database

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "AnalysisItem",
    "UserContext",
    "AnalyzerName",
    "AnalyzerRole",
    "AnalyzerOutcome",
    "AggregatedAnalysis",
    "ProcessingResult",
    "BatchResult",
    "AnalysisStore",
    "Database",
]
