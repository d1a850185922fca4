"""
ActionExtractor: detects whether the email asks the user to do something.
"""

from typing import Any

from mail_analysis.analyzers.base import BaseAnalyzer
from mail_analysis.core.models import ActionExtractionData, AnalyzerName, AnalyzerRole


class ActionExtractor(BaseAnalyzer[ActionExtractionData]):
    name = AnalyzerName.ACTION_EXTRACTOR
    role = AnalyzerRole.CORE
    endpoint = "extract-action"

    def parse(self, data: dict[str, Any]) -> ActionExtractionData:
        if "has_action" not in data:
            raise ValueError("ActionExtractor response is missing 'has_action'")
        return ActionExtractionData.from_dict(data)
