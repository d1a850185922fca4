"""
Categorizer: assigns the email a life-bucket category, summary and quick action.
"""

from typing import Any

from mail_analysis.analyzers.base import BaseAnalyzer
from mail_analysis.core.logging import get_logger
from mail_analysis.core.models import EMAIL_CATEGORIES, AnalyzerName, AnalyzerRole, CategorizationData

log = get_logger(__name__)


class Categorizer(BaseAnalyzer[CategorizationData]):
    """Categorizes an email. Its category decides whether events are detected."""

    name = AnalyzerName.CATEGORIZER
    role = AnalyzerRole.CORE
    endpoint = "categorize"

    def parse(self, data: dict[str, Any]) -> CategorizationData:
        result = CategorizationData.from_dict(data)
        # Unknown categories are kept as-is; the service may add new ones
        if result.category not in EMAIL_CATEGORIES:
            log.warning("unknown_category", category=result.category)
        return result
