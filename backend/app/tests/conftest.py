############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# conftest.py: Pytest configuration and shared test fixtures
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pytest configuration and shared fixtures for chatbridge tests."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.app.core.mode_policy import ModePolicy
from backend.app.core.translators.history_builder import HistoryBuilder
from backend.app.core.translators.part_resolver import PartResolver
from backend.app.db import models  # noqa: F401
from backend.app.db.base import Base
from backend.app.services.image_fetcher import ImageFetcher
from backend.app.settings import Settings

# 1x1 transparent PNG
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)

IMAGE_HOST = "https://img.example.com"


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret",
        upstream_base_url="https://upstream.test/api/v1",
        upstream_api_key="sk-test",
        image_allowed_domains=["example.com"],
        image_max_bytes=1024,
        image_fetch_timeout=2.0,
        image_fetch_concurrency=4,
        chat_rate_limit=30,
        chat_rate_window_seconds=60,
        log_format="console",
    )


class ImageServer:
    """Routes for a MockTransport serving canned image responses."""

    def __init__(self):
        self.routes: Dict[str, Tuple[int, bytes, Dict[str, str]]] = {}
        self.requested: List[str] = []

    def add(self, path: str, body: bytes = PNG_BYTES, status: int = 200, content_type: str = "image/png") -> str:
        headers = {"content-type": content_type} if content_type else {}
        self.routes[path] = (status, body, headers)
        return f"{IMAGE_HOST}{path}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requested.append(str(request.url))
        status, body, headers = self.routes.get(request.url.path, (404, b"missing", {}))
        return httpx.Response(status, content=body, headers=headers)


@pytest.fixture
def image_server() -> ImageServer:
    return ImageServer()


@pytest_asyncio.fixture
async def image_fetcher(image_server) -> AsyncIterator[ImageFetcher]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(image_server.handler))
    fetcher = ImageFetcher(allowed_domains=["example.com"], max_bytes=1024, timeout=2.0, client=client)
    yield fetcher
    await client.aclose()


@pytest.fixture
def mode_policy() -> ModePolicy:
    return ModePolicy()


@pytest.fixture
def part_resolver(image_fetcher) -> PartResolver:
    return PartResolver(image_fetcher)


@pytest.fixture
def history_builder(part_resolver) -> HistoryBuilder:
    return HistoryBuilder(part_resolver, concurrency=4)


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Callable returning a committing session context, like get_async_db_context."""
    maker = async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def factory() -> AsyncIterator[AsyncSession]:
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return factory


@pytest.fixture
def sample_history() -> List[dict]:
    """Stored messages as they appear in persisted conversation JSON."""
    return [
        {"role": "user", "type": "parts", "content": "Hi", "parts": [{"text": "Hi"}]},
        {"role": "model", "type": "text", "content": "Hello", "parts": [{"text": "Hello"}]},
        {"role": "user", "type": "parts", "content": "And now?", "parts": [{"text": "And now?"}]},
    ]


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES
