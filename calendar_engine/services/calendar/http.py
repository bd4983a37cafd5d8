# calendar_engine/services/calendar/http.py
import logging
from typing import Any, Dict, Optional

import httpx

from calendar_engine.services.calendar.exceptions import ProviderRequestError, ProviderUnavailable

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def build_http_client(timeout_seconds: float) -> httpx.AsyncClient:
    """Shared client for every provider call; one per process"""
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))


class ProviderHttpClient:
    """Maps httpx failures onto the calendar error taxonomy for one provider"""

    def __init__(self, client: httpx.AsyncClient, provider: str):
        self.client = client
        self.provider = provider

    async def send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request; only transport-level failures are translated"""
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{self.provider} request timed out: {method} {url}")
            raise ProviderUnavailable(f"{self.provider} request timed out", provider=self.provider) from e
        except httpx.TransportError as e:
            logger.warning(f"{self.provider} transport error on {method} {url}: {e}")
            raise ProviderUnavailable(f"{self.provider} is unreachable", provider=self.provider) from e

    def raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        status = response.status_code
        body = response.text
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            logger.warning(f"{self.provider} API unavailable ({status}): {body[:500]}")
            raise ProviderUnavailable(
                f"{self.provider} API unavailable ({status})",
                provider=self.provider,
                status_code=status,
            )
        logger.error(f"{self.provider} API error ({status}): {body[:500]}")
        raise ProviderRequestError(
            f"{self.provider} API rejected the request ({status})",
            provider=self.provider,
            status_code=status,
            body=body,
        )

    async def request_json(self, method: str, url: str, **kwargs) -> Optional[Dict[str, Any]]:
        response = await self.send(method, url, **kwargs)
        self.raise_for_status(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()
