"""
Email analyzers module.

All analyzers call the remote analysis service through one shared client.
"""

from mail_analysis.config import Settings, settings as default_settings
from mail_analysis.services.analysis_client import AnalysisServiceClient

from .base import AnalyzerConfig, BaseAnalyzer
from .categorizer import Categorizer
from .action_extractor import ActionExtractor
from .client_tagger import ClientTagger
from .event_detector import EventDetector


def build_analyzers(
    client: AnalysisServiceClient,
    settings: Settings | None = None,
) -> tuple[Categorizer, ActionExtractor, ClientTagger, EventDetector]:
    """
    Create the four analyzers configured from settings.

    Returns:
        (categorizer, action_extractor, client_tagger, event_detector)
    """
    s = settings or default_settings

    def config(enabled: bool, temperature: float, max_tokens: int) -> AnalyzerConfig:
        return AnalyzerConfig(
            enabled=enabled,
            model=s.analyzer_model,
            temperature=temperature,
            max_tokens=max_tokens,
            max_body_chars=s.analyzer_max_body_chars,
            timeout_seconds=s.analyzer_timeout_seconds,
        )

    return (
        Categorizer(client, config(s.categorizer_enabled, 0.2, 750)),
        ActionExtractor(client, config(s.action_extractor_enabled, 0.3, 500)),
        ClientTagger(client, config(s.client_tagger_enabled, 0.2, 300)),
        EventDetector(client, config(s.event_detector_enabled, 0.2, 600)),
    )


__all__ = [
    "AnalyzerConfig",
    "BaseAnalyzer",
    "Categorizer",
    "ActionExtractor",
    "ClientTagger",
    "EventDetector",
    "build_analyzers",
]
