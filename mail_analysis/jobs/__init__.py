"""Periodic jobs."""

from .retry import RetryFailedAnalysesJob, RetryItemResult, RetryJobResult

__all__ = ["RetryFailedAnalysesJob", "RetryItemResult", "RetryJobResult"]
