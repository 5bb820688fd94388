"""Fixed-window rate limiter tests."""

import pytest
from starlette.requests import Request

from backend.app.security.rate_limits import RateLimiter, get_client_ip


def _request(headers=None, client=("10.0.0.9", 5000)):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "client": client})


class TestRateLimiter:
    """Window counting."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        limiter = RateLimiter()
        results = [await limiter.hit("k", 3, 60) for _ in range(3)]
        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_blocks_over_limit(self):
        limiter = RateLimiter()
        for _ in range(2):
            await limiter.hit("k", 2, 60)
        result = await limiter.hit("k", 2, 60)
        assert not result.allowed
        assert result.remaining == 0
        assert 1 <= result.retry_after <= 60

    @pytest.mark.asyncio
    async def test_keys_independent(self):
        limiter = RateLimiter()
        await limiter.hit("a", 1, 60)
        assert (await limiter.hit("b", 1, 60)).allowed
        assert not (await limiter.hit("a", 1, 60)).allowed

    @pytest.mark.asyncio
    async def test_window_resets(self):
        limiter = RateLimiter()
        await limiter.hit("k", 1, -1)
        result = await limiter.hit("k", 1, -1)
        assert result.allowed

    @pytest.mark.asyncio
    async def test_cleanup_drops_expired(self):
        limiter = RateLimiter()
        await limiter.hit("k", 1, -1)
        await limiter.cleanup()
        assert limiter._windows == {}

    @pytest.mark.asyncio
    async def test_live_windows_capped(self):
        limiter = RateLimiter(max_entries=3)
        for i in range(3):
            await limiter.hit(f"k{i}", 5, 60 + i)

        result = await limiter.hit("new", 5, 60)

        assert result.allowed
        assert len(limiter._windows) == 3
        assert "k0" not in limiter._windows
        assert {"k1", "k2", "new"} == set(limiter._windows)

    @pytest.mark.asyncio
    async def test_expired_windows_swept_before_eviction(self):
        limiter = RateLimiter(max_entries=2)
        await limiter.hit("stale", 5, -1)
        await limiter.hit("live", 5, 60)

        await limiter.hit("new", 5, 60)

        assert set(limiter._windows) == {"live", "new"}


class TestClientIP:
    """Client address resolution."""

    def test_forwarded_for_first_entry(self):
        assert get_client_ip(_request({"X-Forwarded-For": "1.2.3.4, 10.0.0.1"})) == "1.2.3.4"

    def test_real_ip(self):
        assert get_client_ip(_request({"X-Real-IP": "5.6.7.8"})) == "5.6.7.8"

    def test_socket_peer(self):
        assert get_client_ip(_request()) == "10.0.0.9"

    def test_unknown(self):
        assert get_client_ip(_request(client=None)) == "unknown"
