"""Remote image fetch tests using httpx.MockTransport."""

import base64

import httpx
import pytest

from backend.app.core.errors import ContentResolutionError
from backend.app.services.image_fetcher import ImageFetcher


class TestImageFetcher:
    """Fetch success and failure modes."""

    @pytest.mark.asyncio
    async def test_fetch_ok(self, image_fetcher, image_server, png_bytes):
        url = image_server.add("/a.png")
        image = await image_fetcher.fetch(url)
        assert image.data == png_bytes
        assert image.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_content_type_parameters_stripped(self, image_fetcher, image_server):
        url = image_server.add("/a.jpg", content_type="image/jpeg; charset=binary")
        image = await image_fetcher.fetch(url)
        assert image.mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_missing_content_type(self, image_fetcher, image_server):
        url = image_server.add("/raw", content_type="")
        image = await image_fetcher.fetch(url)
        assert image.mime_type is None

    @pytest.mark.asyncio
    async def test_fetch_base64(self, image_fetcher, image_server, png_bytes):
        url = image_server.add("/a.png")
        b64, mime_type = await image_fetcher.fetch_base64(url)
        assert base64.b64decode(b64) == png_bytes
        assert mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_non_2xx(self, image_fetcher, image_server):
        url = image_server.add("/gone.png", status=404, body=b"not found")
        with pytest.raises(ContentResolutionError) as exc_info:
            await image_fetcher.fetch(url)
        assert exc_info.value.url == url
        assert "404" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_too_large_body(self, image_fetcher, image_server):
        url = image_server.add("/big.png", body=b"x" * 2048)
        with pytest.raises(ContentResolutionError) as exc_info:
            await image_fetcher.fetch(url)
        assert exc_info.value.reason == "image too large"

    @pytest.mark.asyncio
    async def test_disallowed_domain_not_requested(self, image_fetcher, image_server):
        with pytest.raises(ContentResolutionError) as exc_info:
            await image_fetcher.fetch("https://evil.test/a.png")
        assert exc_info.value.reason == "image domain not allowed"
        assert image_server.requested == []

    @pytest.mark.asyncio
    async def test_suffix_lookalike_domain_rejected(self, image_fetcher):
        with pytest.raises(ContentResolutionError):
            await image_fetcher.fetch("https://notexample.com/a.png")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["ftp://img.example.com/a.png", "not a url", ""])
    async def test_invalid_url(self, image_fetcher, url):
        with pytest.raises(ContentResolutionError):
            await image_fetcher.fetch(url)

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = ImageFetcher(allowed_domains=[], client=client)
        with pytest.raises(ContentResolutionError) as exc_info:
            await fetcher.fetch("https://anywhere.test/a.png")
        assert "network error" in exc_info.value.reason
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = ImageFetcher(allowed_domains=[], client=client)
        with pytest.raises(ContentResolutionError) as exc_info:
            await fetcher.fetch("https://anywhere.test/a.png")
        assert exc_info.value.reason == "image fetch timeout"
        await client.aclose()

    def test_from_settings(self, test_settings):
        fetcher = ImageFetcher.from_settings(test_settings)
        assert fetcher.allowed_domains == ["example.com"]
        assert fetcher.max_bytes == 1024


class TestRedirects:
    """Redirect hops are checked against the allow-list."""

    @staticmethod
    def _fetcher(routes, requested):
        def handler(request):
            requested.append(str(request.url))
            status, headers, body = routes.get(str(request.url), (404, {}, b"missing"))
            return httpx.Response(status, headers=headers, content=body)

        # A client that would follow redirects on its own must not bypass the checks
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        return ImageFetcher(allowed_domains=["example.com"], max_bytes=1024, client=client), client

    @pytest.mark.asyncio
    async def test_redirect_to_disallowed_host_rejected(self):
        requested = []
        routes = {
            "https://img.example.com/a.png": (302, {"location": "http://169.254.169.254/secret"}, b""),
            "http://169.254.169.254/secret": (200, {"content-type": "image/png"}, b"credentials"),
        }
        fetcher, client = self._fetcher(routes, requested)

        with pytest.raises(ContentResolutionError) as exc_info:
            await fetcher.fetch("https://img.example.com/a.png")

        assert exc_info.value.url == "https://img.example.com/a.png"
        assert exc_info.value.reason == "image domain not allowed"
        assert requested == ["https://img.example.com/a.png"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_redirect_to_non_http_scheme_rejected(self):
        requested = []
        routes = {"https://img.example.com/a.png": (301, {"location": "file:///etc/passwd"}, b"")}
        fetcher, client = self._fetcher(routes, requested)

        with pytest.raises(ContentResolutionError):
            await fetcher.fetch("https://img.example.com/a.png")
        assert len(requested) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_redirect_within_allowed_domains_followed(self, png_bytes):
        requested = []
        routes = {
            "https://img.example.com/a.png": (302, {"location": "https://cdn.example.com/a.png"}, b""),
            "https://cdn.example.com/a.png": (307, {"location": "/final.png"}, b""),
            "https://cdn.example.com/final.png": (200, {"content-type": "image/png"}, png_bytes),
        }
        fetcher, client = self._fetcher(routes, requested)

        image = await fetcher.fetch("https://img.example.com/a.png")

        assert image.data == png_bytes
        assert requested[-1] == "https://cdn.example.com/final.png"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_redirect_loop_stops(self):
        requested = []
        routes = {"https://img.example.com/loop": (302, {"location": "https://img.example.com/loop"}, b"")}
        fetcher, client = self._fetcher(routes, requested)

        with pytest.raises(ContentResolutionError) as exc_info:
            await fetcher.fetch("https://img.example.com/loop")
        assert exc_info.value.reason == "too many redirects"
        assert len(requested) == 6
        await client.aclose()
