############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# image_fetcher.py: Bounded remote image retrieval
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Remote image retrieval with domain, size and time bounds."""

import base64
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from backend.app.core.errors import ContentResolutionError
from backend.app.core.metrics import IMAGE_FETCH_COUNT, IMAGE_FETCH_LATENCY
from backend.app.logging_config import get_logger
from backend.app.settings import Settings, get_settings

logger = get_logger(__name__)

MAX_REDIRECTS = 5


@dataclass
class FetchedImage:
    """Raw image bytes plus the server-reported content type."""

    data: bytes
    mime_type: Optional[str] = None

    def as_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class ImageFetcher:
    """
    Fetches image bytes from remote URLs.

    Every failure (disallowed URL, non-2xx, timeout, oversized body,
    transport error) raises ContentResolutionError carrying the URL.
    Nothing is retried.
    """

    def __init__(
        self,
        allowed_domains: Optional[List[str]] = None,
        max_bytes: int = 10 * 1024 * 1024,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.allowed_domains = [d.lower() for d in (allowed_domains or [])]
        self.max_bytes = max_bytes
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "ImageFetcher":
        return cls(
            allowed_domains=settings.image_allowed_domains,
            max_bytes=settings.image_max_bytes,
            timeout=settings.image_fetch_timeout,
            client=client,
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _is_allowed_domain(self, hostname: str) -> bool:
        if not self.allowed_domains:
            return True
        hostname = hostname.lower()
        return any(
            hostname == domain or hostname.endswith("." + domain)
            for domain in self.allowed_domains
        )

    def _check_url(self, url: str) -> None:
        if not isinstance(url, str) or not url.strip():
            raise ContentResolutionError(str(url), "invalid image url")
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ContentResolutionError(url, "invalid image url protocol")
        if not self._is_allowed_domain(parts.hostname):
            raise ContentResolutionError(url, "image domain not allowed")

    async def fetch(self, url: str) -> FetchedImage:
        """Download *url* and return its bytes.

        Redirects are followed by hand, at most ``MAX_REDIRECTS`` hops, and
        every hop must pass the same URL checks as *url*.
        """
        try:
            self._check_url(url)
        except ContentResolutionError:
            IMAGE_FETCH_COUNT.labels(outcome="rejected").inc()
            raise

        client = await self._get_http_client()
        start = time.monotonic()
        target = url
        try:
            for _ in range(MAX_REDIRECTS + 1):
                async with client.stream(
                    "GET", target, timeout=self.timeout, follow_redirects=False
                ) as response:
                    if response.is_redirect:
                        target = self._next_hop(url, response)
                        continue
                    data, mime_type = await self._read_body(url, response)
                    break
            else:
                IMAGE_FETCH_COUNT.labels(outcome="http_error").inc()
                raise ContentResolutionError(url, "too many redirects")
        except httpx.TimeoutException as e:
            IMAGE_FETCH_COUNT.labels(outcome="network_error").inc()
            raise ContentResolutionError(url, "image fetch timeout") from e
        except httpx.HTTPError as e:
            IMAGE_FETCH_COUNT.labels(outcome="network_error").inc()
            raise ContentResolutionError(url, f"network error: {e}") from e
        finally:
            IMAGE_FETCH_LATENCY.observe(time.monotonic() - start)

        IMAGE_FETCH_COUNT.labels(outcome="ok").inc()
        logger.debug("image_fetched", url=url, bytes=len(data), mime_type=mime_type)
        return FetchedImage(data=data, mime_type=mime_type)

    def _next_hop(self, url: str, response: httpx.Response) -> str:
        location = str(response.url.join(response.headers["location"]))
        try:
            self._check_url(location)
        except ContentResolutionError as e:
            IMAGE_FETCH_COUNT.labels(outcome="rejected").inc()
            logger.warning("image_redirect_rejected", url=url, location=location, reason=e.reason)
            raise ContentResolutionError(url, e.reason) from e
        return location

    async def _read_body(self, url: str, response: httpx.Response) -> Tuple[bytes, Optional[str]]:
        if response.status_code < 200 or response.status_code >= 300:
            IMAGE_FETCH_COUNT.labels(outcome="http_error").inc()
            raise ContentResolutionError(url, f"upstream returned HTTP {response.status_code}")

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            IMAGE_FETCH_COUNT.labels(outcome="too_large").inc()
            raise ContentResolutionError(url, "image too large")

        buf = bytearray()
        async for chunk in response.aiter_bytes():
            buf.extend(chunk)
            if len(buf) > self.max_bytes:
                IMAGE_FETCH_COUNT.labels(outcome="too_large").inc()
                raise ContentResolutionError(url, "image too large")

        content_type = response.headers.get("content-type")
        mime_type = content_type.split(";")[0].strip() if content_type else None
        return bytes(buf), mime_type or None

    async def fetch_base64(self, url: str) -> Tuple[str, Optional[str]]:
        """Download *url* and return ``(base64_payload, mime_type)``."""
        image = await self.fetch(url)
        return image.as_base64(), image.mime_type


# Global fetcher instance
_image_fetcher: Optional[ImageFetcher] = None


def get_image_fetcher() -> ImageFetcher:
    """Get the global image fetcher instance."""
    global _image_fetcher
    if _image_fetcher is None:
        _image_fetcher = ImageFetcher.from_settings(get_settings())
    return _image_fetcher


async def shutdown_image_fetcher() -> None:
    """Close the global fetcher's HTTP client."""
    global _image_fetcher
    if _image_fetcher is not None:
        await _image_fetcher.close()
        _image_fetcher = None
