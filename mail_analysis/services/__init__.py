"""External service clients."""

from .analysis_client import AnalysisServiceClient, AnalysisServiceError, ServiceResponse

__all__ = ["AnalysisServiceClient", "AnalysisServiceError", "ServiceResponse"]
