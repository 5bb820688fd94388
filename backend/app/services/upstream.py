############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# upstream.py: Streaming client for the upstream Responses API
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Streaming client for the upstream Responses-style provider API."""

import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from backend.app.core.errors import UpstreamError
from backend.app.core.metrics import UPSTREAM_LATENCY
from backend.app.core.translators.responses_stream import ResponsesStreamTranslator
from backend.app.logging_config import get_logger
from backend.app.settings import Settings, get_settings

logger = get_logger(__name__)


class UpstreamClient:
    """POSTs provider payloads to ``{base_url}/responses`` and streams events back."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._http_client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "UpstreamClient":
        return cls(
            base_url=settings.upstream_base_url,
            api_key=settings.upstream_api_key,
            timeout=float(settings.upstream_timeout),
            client=client,
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with the upstream read timeout."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.timeout,
                    write=10.0,
                    pool=10.0,
                ),
            )
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream_events(self, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """Send *payload* and yield decoded upstream SSE events.

        Raises:
            UpstreamError: non-2xx status or transport failure
        """
        client = await self._get_http_client()
        url = f"{self.base_url}/responses"
        start = time.monotonic()

        try:
            async with client.stream("POST", url, json=payload, headers=self._headers()) as response:
                if response.status_code < 200 or response.status_code >= 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning(
                        "upstream_error_status",
                        status_code=response.status_code,
                        body=body[:500],
                        model=payload.get("model"),
                    )
                    raise UpstreamError(
                        f"Upstream returned HTTP {response.status_code}",
                        status_code=response.status_code,
                        body=body,
                    )

                async for event in ResponsesStreamTranslator.parse_sse(response.aiter_bytes()):
                    yield event
        except httpx.HTTPError as e:
            logger.warning("upstream_transport_error", error=str(e), model=payload.get("model"))
            raise UpstreamError(f"Upstream request failed: {e}") from e
        finally:
            UPSTREAM_LATENCY.observe(time.monotonic() - start)


# Global client instance
_upstream_client: Optional[UpstreamClient] = None


def get_upstream_client() -> UpstreamClient:
    """Get the global upstream client instance."""
    global _upstream_client
    if _upstream_client is None:
        _upstream_client = UpstreamClient.from_settings(get_settings())
    return _upstream_client


async def shutdown_upstream_client() -> None:
    """Close the global upstream client."""
    global _upstream_client
    if _upstream_client is not None:
        await _upstream_client.close()
        _upstream_client = None
