"""Upstream client tests using httpx.MockTransport."""

import json

import httpx
import pytest

from backend.app.core.errors import UpstreamError
from backend.app.services.upstream import UpstreamClient


async def _collect_stream(async_gen):
    items = []
    async for item in async_gen:
        items.append(item)
    return items


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestUpstreamClient:
    """POST /responses and SSE streaming."""

    @pytest.mark.asyncio
    async def test_streams_events(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            body = (
                'data: {"type": "response.output_text.delta", "delta": "hi"}\n\n'
                "data: [DONE]\n\n"
            )
            return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

        http = _client(handler)
        upstream = UpstreamClient("https://upstream.test/api/v1/", api_key="sk-1", client=http)
        events = await _collect_stream(upstream.stream_events({"model": "volcengine/m", "input": []}))

        assert events == [{"type": "response.output_text.delta", "delta": "hi"}]
        assert seen["url"] == "https://upstream.test/api/v1/responses"
        assert seen["auth"] == "Bearer sk-1"
        assert seen["body"]["model"] == "volcengine/m"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, content=b"data: [DONE]\n\n")

        http = _client(handler)
        upstream = UpstreamClient("https://upstream.test", client=http)
        assert await _collect_stream(upstream.stream_events({"model": "m"})) == []
        assert seen["auth"] is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_error_status(self):
        http = _client(lambda request: httpx.Response(401, content=b'{"error": "bad key"}'))
        upstream = UpstreamClient("https://upstream.test", client=http)
        with pytest.raises(UpstreamError) as exc_info:
            await _collect_stream(upstream.stream_events({"model": "m"}))
        assert exc_info.value.status_code == 401
        assert "bad key" in exc_info.value.body
        await http.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        http = _client(handler)
        upstream = UpstreamClient("https://upstream.test", client=http)
        with pytest.raises(UpstreamError) as exc_info:
            await _collect_stream(upstream.stream_events({"model": "m"}))
        assert exc_info.value.status_code is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        http = _client(lambda request: httpx.Response(200))
        upstream = UpstreamClient("https://upstream.test", client=http)
        await upstream.close()
        assert not http.is_closed
        await http.aclose()

    def test_from_settings(self, test_settings):
        upstream = UpstreamClient.from_settings(test_settings)
        assert upstream.base_url == "https://upstream.test/api/v1"
        assert upstream.api_key == "sk-test"
