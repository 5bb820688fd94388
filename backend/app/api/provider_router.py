############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# provider_router.py: Inbound chat endpoint and model id rewriting
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Provider router: rewrites the model id and forwards to the chat handler."""

import json
from typing import Any, Optional, Protocol

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from backend.app.core.errors import MalformedRequest
from backend.app.core.metrics import REQUEST_COUNT
from backend.app.core.mode_policy import ModePolicy
from backend.app.core.translators.history_builder import HistoryBuilder
from backend.app.core.translators.part_resolver import PartResolver
from backend.app.db.session import get_async_db_context
from backend.app.logging_config import get_logger
from backend.app.security.rate_limits import get_client_ip, get_rate_limiter
from backend.app.security.session_auth import AuthUser, require_user
from backend.app.services.chat_handler import ForwardedRequest, ResponsesChatHandler
from backend.app.services.image_fetcher import get_image_fetcher
from backend.app.services.upstream import get_upstream_client
from backend.app.settings import get_settings

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


class ChatHandler(Protocol):
    async def execute(self, forwarded: ForwardedRequest, user: AuthUser) -> Response:
        ...


def parse_json_object(raw: bytes) -> dict:
    """Decode a request body that must be a JSON object.

    Raises:
        MalformedRequest: body is not valid JSON or not an object
    """
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedRequest() from e
    if not isinstance(body, dict):
        raise MalformedRequest()
    return body


class ProviderRouter:
    """Normalizes the inbound model id, then delegates to the handler.

    The handler's response is returned as-is; streaming bodies are never
    buffered here.
    """

    def __init__(self, mode_policy: ModePolicy, handler: ChatHandler):
        self.mode_policy = mode_policy
        self.handler = handler

    def rewrite_body(self, body: dict) -> dict:
        """Copy *body* with only ``model`` trimmed and qualified."""
        forwarded = dict(body)
        model: Any = body.get("model")
        if isinstance(model, str):
            forwarded["model"] = self.mode_policy.qualify_model_id(model.strip())
        return forwarded

    async def route(self, request: Request, user: AuthUser) -> Response:
        try:
            body = parse_json_object(await request.body())
        except MalformedRequest as e:
            REQUEST_COUNT.labels(endpoint="bytedance", status="400").inc()
            return JSONResponse(status_code=400, content={"error": e.message})

        forwarded = ForwardedRequest(
            method=request.method,
            headers=request.headers,
            body=self.rewrite_body(body),
            client_ip=get_client_ip(request),
            is_disconnected=request.is_disconnected,
        )
        if forwarded.body.get("model") != body.get("model"):
            logger.debug("model_id_qualified", original=body.get("model"), model=forwarded.body["model"])
        return await self.handler.execute(forwarded, user)


# Global router instance
_provider_router: Optional[ProviderRouter] = None


def get_provider_router() -> ProviderRouter:
    """Build (once) the router wired to the shared collaborators."""
    global _provider_router
    if _provider_router is None:
        settings = get_settings()
        mode_policy = ModePolicy.from_settings(settings)
        resolver = PartResolver(get_image_fetcher(), default_mime_type=settings.default_image_mime_type)
        handler = ResponsesChatHandler(
            mode_policy=mode_policy,
            history_builder=HistoryBuilder(resolver, concurrency=settings.image_fetch_concurrency),
            upstream=get_upstream_client(),
            rate_limiter=get_rate_limiter(),
            session_factory=get_async_db_context,
            settings=settings,
        )
        _provider_router = ProviderRouter(mode_policy, handler)
    return _provider_router


def reset_provider_router() -> None:
    global _provider_router
    _provider_router = None


@router.post("/bytedance")
async def bytedance_chat(
    request: Request,
    user: AuthUser = Depends(require_user),
    provider: ProviderRouter = Depends(get_provider_router),
):
    """
    Chat with the Responses-style provider.

    Streams ``text``, ``thought`` and ``citations`` events as SSE.
    """
    return await provider.route(request, user)
