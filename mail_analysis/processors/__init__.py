"""Email and batch processors."""

from .email import EmailProcessor, ProcessOptions, should_detect_events
from .batch import BatchOptions, BatchProcessor

__all__ = [
    "EmailProcessor",
    "ProcessOptions",
    "should_detect_events",
    "BatchOptions",
    "BatchProcessor",
]
