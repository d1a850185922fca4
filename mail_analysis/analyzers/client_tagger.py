"""
ClientTagger: matches the email against the user's known clients.
"""

from typing import Any

from mail_analysis.analyzers.base import BaseAnalyzer
from mail_analysis.core.models import AnalyzerName, AnalyzerRole, ClientTaggingData, UserContext


class ClientTagger(BaseAnalyzer[ClientTaggingData]):
    name = AnalyzerName.CLIENT_TAGGER
    role = AnalyzerRole.CORE
    endpoint = "tag-client"

    def parse(self, data: dict[str, Any]) -> ClientTaggingData:
        if "client_match" not in data:
            raise ValueError("ClientTagger response is missing 'client_match'")
        return ClientTaggingData.from_dict(data)

    @staticmethod
    def resolve_client_id(data: ClientTaggingData, context: UserContext) -> str | None:
        """Find the client id for a match reported by name only."""
        if data.client_id:
            return data.client_id
        if not data.client_match or not data.client_name:
            return None
        wanted = data.client_name.strip().lower()
        for client in context.clients:
            if client.name.strip().lower() == wanted:
                return client.id
        return None
