############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# chat_handler.py: Responses-API chat handler and SSE relay
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Downstream chat handler for the Responses-style provider.

Validates the forwarded body, assembles the provider payload from history,
the current turn and the system instruction, then relays the upstream
stream to the client as SSE while recording the turn in persistence.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
)
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from backend.app.core.conversation_schemas import (
    InputImageBlock,
    InputTextBlock,
    LineMode,
    ProviderContentBlock,
    ProviderMessage,
    StoredMessage,
    StoredMessageType,
    StoredRole,
    data_uri,
)
from backend.app.core.errors import (
    ClientDisconnected,
    ContentResolutionError,
    MalformedRequest,
    UpstreamError,
)
from backend.app.core.metrics import REQUEST_COUNT
from backend.app.core.mode_policy import ModePolicy
from backend.app.core.translators.history_builder import PROVIDER_ROLES, HistoryBuilder
from backend.app.core.translators.part_resolver import PartResolver
from backend.app.core.translators.responses_stream import ResponsesStreamTranslator, StreamAccumulator
from backend.app.db import chat_crud
from backend.app.logging_config import get_logger
from backend.app.security.rate_limits import RateLimiter
from backend.app.security.session_auth import AuthUser
from backend.app.services.upstream import UpstreamClient
from backend.app.settings import Settings, get_settings

logger = get_logger(__name__)

ENDPOINT = "bytedance"

REASONING_EFFORTS = frozenset({"none", "low", "medium", "high", "xhigh"})
DEFAULT_REASONING_EFFORT = "high"

# Replaces the stored conversation with client-supplied messages; no new user turn
REGENERATE_MODE = "regenerate"

FORMATTING_GUARD = (
    "Output formatting rules: Do not use Markdown horizontal rules or standalone "
    "lines of '---'. Do not insert multiple consecutive blank lines; use at most "
    "one blank line between paragraphs."
)

SYSTEM_REMINDER_TAG = "<system-reminder>"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


@dataclass
class ForwardedRequest:
    """Inbound request as handed from the provider router to a handler."""

    method: str
    headers: Mapping[str, str]
    body: Dict[str, Any]
    client_ip: str = "unknown"
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None

    async def client_gone(self) -> bool:
        if self.is_disconnected is None:
            return False
        return await self.is_disconnected()


def inject_current_time_reminder(
    system_text: str,
    tz_name: str = "Asia/Shanghai",
    now: Optional[datetime] = None,
) -> str:
    """Append a current-time reminder block unless one is already present."""
    if SYSTEM_REMINDER_TAG in system_text:
        return system_text

    try:
        tz = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        tz, tz_name = timezone.utc, "UTC"
    current = (now or datetime.now(timezone.utc)).astimezone(tz)
    stamp = current.strftime("%Y-%m-%d %H:%M:%S")
    reminder = (
        f"\n\n{SYSTEM_REMINDER_TAG}\n"
        f"Current time: {stamp} (time zone: {tz_name}). Treat this as the present "
        f"moment when reasoning and answering.\n"
        f"</system-reminder>"
    )
    return f"{system_text}{reminder}"


def parse_int(value: Any) -> Optional[int]:
    """Lenient integer parse for numeric JSON fields that may arrive as strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_inline_history(raw: Any) -> List[StoredMessage]:
    """Parse client-supplied history, dropping entries that are not valid turns."""
    if not isinstance(raw, list):
        return []
    messages = []
    for entry in raw:
        if not isinstance(entry, dict) or entry.get("role") not in PROVIDER_ROLES:
            continue
        try:
            messages.append(StoredMessage.model_validate(entry))
        except ValidationError:
            logger.debug("inline_history_entry_dropped", role=entry.get("role"))
    return messages


def parse_regenerate_messages(raw: List[Any]) -> List[Tuple[Optional[str], StoredMessage]]:
    """Strictly parse the replacement messages of a regenerate request.

    Returns ``(client_id, message)`` pairs in order.

    Raises:
        MalformedRequest: an entry is not a valid user or model message
    """
    parsed = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict) or entry.get("role") not in PROVIDER_ROLES:
            raise MalformedRequest(f"messages[{i}] is not a user or model message")
        try:
            message = StoredMessage.model_validate(entry)
        except ValidationError as e:
            raise MalformedRequest(f"messages[{i}] is invalid") from e
        parsed.append((_client_id(entry.get("id")), message))
    return parsed


async def run_until_disconnect(
    awaitable: Awaitable[Any],
    client_gone: Callable[[], Awaitable[bool]],
    poll_interval: float = 0.25,
) -> Any:
    """Await *awaitable*, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnected: the client went away; the work was cancelled
    """
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if done:
                return task.result()
            if await client_gone():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise ClientDisconnected()
    except asyncio.CancelledError:
        task.cancel()
        raise


class ResponsesChatHandler:
    """
    Handles ``POST /api/bytedance`` for the Responses-style provider.

    Order of checks: body size, required fields, rate limit, regenerate
    messages, conversation ownership. Nothing is written until history and
    images have been resolved; image failures abort with 502 before anything
    is sent upstream. In regenerate mode the stored conversation is replaced
    by the supplied messages and no new user turn is added.
    """

    def __init__(
        self,
        mode_policy: ModePolicy,
        history_builder: HistoryBuilder,
        upstream: UpstreamClient,
        rate_limiter: RateLimiter,
        session_factory: SessionFactory,
        settings: Optional[Settings] = None,
    ):
        self.mode_policy = mode_policy
        self.history_builder = history_builder
        self.upstream = upstream
        self.rate_limiter = rate_limiter
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    @property
    def resolver(self) -> PartResolver:
        return self.history_builder.resolver

    def _error(
        self, status_code: int, content: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> JSONResponse:
        REQUEST_COUNT.labels(endpoint=ENDPOINT, status=str(status_code)).inc()
        return JSONResponse(status_code=status_code, content=content, headers=headers)

    def _too_large(self, headers: Mapping[str, str]) -> bool:
        declared = parse_int(headers.get("content-length"))
        return declared is not None and declared > self.settings.max_request_bytes

    async def execute(self, forwarded: ForwardedRequest, user: AuthUser) -> Response:
        """Validate, translate and relay one chat request."""
        if self._too_large(forwarded.headers):
            return self._error(413, {"error": "Request too large"})

        body = forwarded.body
        model = body.get("model")
        prompt = body.get("prompt")
        if not model or not isinstance(model, str):
            return self._error(400, {"error": "Model is required"})
        if not prompt or not isinstance(prompt, str):
            return self._error(400, {"error": "Prompt is required"})

        limit = await self.rate_limiter.hit(
            f"chat:{user.user_id}:{forwarded.client_ip}",
            self.settings.chat_rate_limit,
            self.settings.chat_rate_window_seconds,
        )
        if not limit.allowed:
            return self._error(
                429,
                {"error": "Too many requests, please try again later"},
                headers={
                    "Retry-After": str(limit.retry_after),
                    "X-RateLimit-Remaining": "0",
                },
            )

        config = body.get("config") if isinstance(body.get("config"), dict) else {}

        replacement: Optional[List[Tuple[Optional[str], StoredMessage]]] = None
        if body.get("mode") == REGENERATE_MODE and isinstance(body.get("messages"), list):
            try:
                replacement = parse_regenerate_messages(body["messages"])
            except MalformedRequest as e:
                return self._error(400, {"error": e.message})

        async with self.session_factory() as db:
            if await chat_crud.get_user_by_id(db, user.user_id) is None:
                return self._error(401, {"error": "Unauthorized"})

            loaded = await self._load_conversation(db, body, user)
            if loaded is None:
                return self._error(404, {"error": "Not found"})
            conversation_id, stored_history = loaded

        if replacement is not None:
            history = [message for _, message in replacement]
        elif "history" in body:
            history = parse_inline_history(body["history"])
        else:
            history = stored_history
        history_limit = parse_int(body.get("historyLimit"))
        if history_limit is not None and history_limit > 0:
            history = history[-history_limit:]

        try:
            input_messages, image_entries = await run_until_disconnect(
                self._build_input(history, None if replacement is not None else prompt, config),
                forwarded.client_gone,
            )
        except ContentResolutionError as e:
            logger.warning("image_resolution_failed", url=e.url, reason=e.reason, model=model)
            return self._error(502, {"error": "Failed to load image", "url": e.url})
        except ClientDisconnected:
            logger.info("client_disconnected_before_stream", model=model)
            REQUEST_COUNT.labels(endpoint=ENDPOINT, status="499").inc()
            return Response(status_code=499)

        async with self.session_factory() as db:
            if conversation_id is None:
                conv = await chat_crud.create_conversation(
                    db, user.user_id, title=chat_crud.title_from_prompt(prompt), model=model
                )
                conversation_id = conv.id
            if replacement is not None:
                await chat_crud.replace_messages(db, conversation_id, replacement)
            else:
                await chat_crud.append_message(
                    db,
                    conversation_id,
                    self._user_turn(prompt, image_entries),
                    client_id=_client_id(body.get("userMessageId")),
                )

        payload = self.build_payload(model, config, input_messages)

        logger.info(
            "chat_request_relayed",
            model=model,
            conversation_id=conversation_id,
            regenerate=replacement is not None,
            input_messages=len(input_messages),
            images=len(image_entries),
        )
        REQUEST_COUNT.labels(endpoint=ENDPOINT, status="200").inc()

        headers = dict(SSE_HEADERS)
        headers["X-Conversation-Id"] = str(conversation_id)
        return StreamingResponse(
            self.relay(payload, conversation_id, model, _client_id(body.get("modelMessageId"))),
            media_type="text/event-stream; charset=utf-8",
            headers=headers,
        )

    async def _load_conversation(
        self,
        db: AsyncSession,
        body: Dict[str, Any],
        user: AuthUser,
    ) -> Optional[Tuple[Optional[int], List[StoredMessage]]]:
        """Resolve the named conversation and its stored messages.

        Returns ``(None, [])`` when no conversation is named (one is created
        once the request has been translated), or ``None`` when the named
        conversation does not exist or belongs to someone else.
        """
        raw_id = body.get("conversationId")
        if raw_id is None or raw_id == "":
            return None, []

        conversation_id = parse_int(raw_id)
        if conversation_id is None:
            return None
        conv = await chat_crud.get_conversation(db, conversation_id, user.user_id)
        if conv is None:
            return None
        return conv.id, await chat_crud.get_conversation_messages(db, conv.id)

    async def _build_input(
        self,
        history: List[StoredMessage],
        prompt: Optional[str],
        config: Dict[str, Any],
    ) -> Tuple[List[ProviderMessage], List[Tuple[str, str]]]:
        input_messages = await self.history_builder.build(history)
        if prompt is None:
            return input_messages, []

        content: List[ProviderContentBlock] = [InputTextBlock(text=prompt)]
        image_entries: List[Tuple[str, str]] = []
        images = config.get("images") if isinstance(config.get("images"), list) else []
        for img in images:
            url = img.get("url") if isinstance(img, dict) else None
            if not url or not isinstance(url, str):
                continue
            fetched = await self.resolver.fetcher.fetch(url)
            mime_type = img.get("mimeType") or fetched.mime_type or self.resolver.default_mime_type
            content.append(InputImageBlock(image_url=data_uri(mime_type, fetched.as_base64())))
            image_entries.append((url, mime_type))

        input_messages.append(ProviderMessage(role="user", content=content))
        return input_messages, image_entries

    @staticmethod
    def _user_turn(prompt: str, image_entries: List[Tuple[str, str]]) -> StoredMessage:
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for url, mime_type in image_entries:
            parts.append({"inlineData": {"mimeType": mime_type, "url": url}})
        return StoredMessage.model_validate({
            "role": StoredRole.USER.value,
            "content": prompt,
            "type": StoredMessageType.PARTS.value,
            "parts": parts,
        })

    def system_instruction(self, config: Dict[str, Any]) -> str:
        mode = LineMode.parse(config.get("lineMode"))
        base = self.mode_policy.augment_system_prompt(config.get("systemPrompt"), mode)
        base = inject_current_time_reminder(base, self.settings.reminder_timezone)
        return f"{base}\n\n{FORMATTING_GUARD}"

    def build_payload(
        self,
        model: str,
        config: Dict[str, Any],
        input_messages: List[ProviderMessage],
    ) -> Dict[str, Any]:
        """Assemble the upstream request body."""
        developer = ProviderMessage(
            role="developer",
            content=[InputTextBlock(text=self.system_instruction(config))],
        )

        effort = config.get("thinkingLevel")
        thinking: Dict[str, Any] = {"type": "enabled"}
        budget_tokens = parse_int(config.get("budgetTokens"))
        if budget_tokens is not None and budget_tokens > 0:
            thinking["budget_tokens"] = budget_tokens

        payload: Dict[str, Any] = {
            "model": model,
            "stream": True,
            "reasoning": {
                "effort": effort if effort in REASONING_EFFORTS else DEFAULT_REASONING_EFFORT,
                "summary": "auto",
            },
            "extra_body": {"thinking": thinking},
        }
        max_tokens = parse_int(config.get("maxTokens"))
        if max_tokens is not None and max_tokens > 0:
            payload["max_output_tokens"] = max_tokens

        include_sig = self.settings.forward_thought_signature
        payload["input"] = [
            msg.to_payload(include_thought_signature=include_sig)
            for msg in [developer, *input_messages]
        ]
        return payload

    async def relay(
        self,
        payload: Dict[str, Any],
        conversation_id: int,
        model: str,
        client_id: Optional[str] = None,
    ) -> AsyncIterator[bytes]:
        """Relay upstream events to the client as SSE.

        Yields SSE-formatted chunks, always ending with ``[DONE]``.
        """
        acc = StreamAccumulator()
        try:
            async for event in self.upstream.stream_events(payload):
                for out in ResponsesStreamTranslator.to_client_events(event, acc):
                    yield ResponsesStreamTranslator.format_sse(out)
        except UpstreamError as e:
            logger.warning("upstream_stream_failed", error=e.message, status_code=e.status_code, model=model)
            message = e.message if not e.body else f"{e.message}: {e.body[:500]}"
            yield ResponsesStreamTranslator.format_sse({"type": "stream_error", "message": message})
            yield ResponsesStreamTranslator.format_sse("[DONE]")
            return

        if acc.citations:
            yield ResponsesStreamTranslator.format_sse({"type": "citations", "citations": acc.citations})
        yield ResponsesStreamTranslator.format_sse("[DONE]")

        # The reply write must finish even if the client disconnects now.
        await asyncio.shield(self._persist_reply(conversation_id, acc, model, client_id))

    async def _persist_reply(
        self,
        conversation_id: int,
        acc: StreamAccumulator,
        model: str,
        client_id: Optional[str],
    ) -> None:
        reply = StoredMessage.model_validate({
            "role": StoredRole.MODEL.value,
            "content": acc.text,
            "thought": acc.thought or None,
            "type": StoredMessageType.TEXT.value,
            "parts": [{"text": acc.text}],
        })
        async with self.session_factory() as db:
            await chat_crud.append_message(db, conversation_id, reply, model=model, client_id=client_id)
        logger.debug(
            "model_reply_persisted",
            conversation_id=conversation_id,
            chars=len(acc.text),
            thought_chars=len(acc.thought),
        )


def _client_id(value: Any) -> Optional[str]:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)[:64]
    return None
