"""
EventDetector: extracts event details (date, time, location, RSVP).

Secondary analyzer. It only runs when the Categorizer puts the email in the
event category, since most emails contain no event.
"""

from typing import Any

from mail_analysis.analyzers.base import BaseAnalyzer
from mail_analysis.core.models import AnalyzerName, AnalyzerRole, EventDetectionData


class EventDetector(BaseAnalyzer[EventDetectionData]):
    name = AnalyzerName.EVENT_DETECTOR
    role = AnalyzerRole.SECONDARY
    endpoint = "detect-event"

    def parse(self, data: dict[str, Any]) -> EventDetectionData:
        if "has_event" not in data:
            raise ValueError("EventDetector response is missing 'has_event'")
        return EventDetectionData.from_dict(data)
