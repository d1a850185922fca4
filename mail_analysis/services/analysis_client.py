"""
Client for the remote analysis service.

Every analyzer sends its prompt input to the analysis service via HTTP and
receives structured JSON back, together with the number of tokens spent.
"""

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from mail_analysis.config import settings
from mail_analysis.core.logging import get_logger

log = get_logger(__name__)


class AnalysisServiceError(RuntimeError):
    """Raised when the analysis service cannot produce a result."""


@dataclass
class ServiceResponse:
    """Parsed response from the analysis service."""

    data: dict[str, Any]
    tokens_used: int = 0


class AnalysisServiceClient:
    """Async HTTP client for the remote analysis service."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.analysis_service_url).rstrip("/")
        self.timeout = timeout or settings.analysis_service_timeout
        self.max_retries = settings.analysis_service_max_retries if max_retries is None else max_retries
        self.retry_base_delay = (
            settings.analysis_service_retry_base_delay if retry_base_delay is None else retry_base_delay
        )
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def analyze(self, endpoint: str, payload: dict[str, Any]) -> ServiceResponse:
        """
        Run one analyzer on the remote service.

        Rate-limited calls (HTTP 429) are retried with exponential backoff.

        Args:
            endpoint: Analyzer endpoint name, e.g. "categorize"
            payload: Request body

        Returns:
            ServiceResponse with the analyzer data and tokens used

        Raises:
            AnalysisServiceError: On HTTP, transport or service-reported errors
        """
        url = f"{self.base_url}/analyze/{endpoint}"

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._client.post(url, json=payload)
                response.raise_for_status()
                body = response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429 and attempt < self.max_retries:
                    wait_time = self.retry_base_delay * (2 ** attempt)
                    log.warning(
                        "analysis_service_rate_limited_retrying",
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        wait_seconds=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue
                log.error("analysis_service_http_error", endpoint=endpoint, status=status, error=str(e))
                raise AnalysisServiceError(f"Analysis service error ({status}): {e}") from e
            except httpx.RequestError as e:
                log.error("analysis_service_request_error", endpoint=endpoint, error=str(e))
                raise AnalysisServiceError(f"Failed to reach analysis service: {e}") from e
            except ValueError as e:
                log.error("analysis_service_invalid_json", endpoint=endpoint, error=str(e))
                raise AnalysisServiceError(f"Invalid JSON from analysis service: {e}") from e

            if not isinstance(body, dict):
                raise AnalysisServiceError("Analysis service response is not a JSON object")

            if body.get("error"):
                log.warning("analysis_service_returned_error", endpoint=endpoint, error=body["error"])
                raise AnalysisServiceError(f"Analysis service returned error: {body['error']}")

            data = body.get("data")
            if not isinstance(data, dict):
                raise AnalysisServiceError("Analysis service response has no 'data' object")

            return ServiceResponse(data=data, tokens_used=int(body.get("tokens_used") or 0))

        raise AnalysisServiceError("Analysis service retries exhausted")

    async def health_check(self) -> bool:
        """Check if the analysis service is healthy."""
        try:
            response = await self._client.get(f"{self.base_url}/health")
            response.raise_for_status()
            return response.json().get("status") == "healthy"
        except Exception as e:
            log.warning("analysis_service_health_check_failed", error=str(e))
            return False

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
