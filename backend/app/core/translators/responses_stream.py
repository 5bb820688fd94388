############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# responses_stream.py: Upstream Responses SSE to client event translator
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Upstream Responses-API stream to client event translator."""

import codecs
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List

from backend.app.logging_config import get_logger

logger = get_logger(__name__)

REASONING_DELTA_EVENTS = frozenset({
    "response.reasoning.delta",
    "response.reasoning_summary_text.delta",
})


@dataclass
class StreamAccumulator:
    """Text, thought and citations seen so far in one relayed stream."""

    text: str = ""
    thought: str = ""
    citations: List[Dict[str, Any]] = field(default_factory=list)

    def add_citation(self, url: str, title: Any = None) -> bool:
        if any(c.get("url") == url for c in self.citations):
            return False
        self.citations.append({"url": url, "title": title})
        return True


def _join_chunk_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if not isinstance(value, list):
        return ""
    out = []
    for item in value:
        if isinstance(item, str):
            out.append(item)
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            out.append(item["text"])
    return "".join(out)


def _join_chunk_thought(value: Any) -> str:
    if isinstance(value, dict):
        value = [value]
    if isinstance(value, list):
        out = []
        for item in value:
            if isinstance(item, str):
                out.append(item)
            elif isinstance(item, dict):
                text = item.get("text", item.get("content"))
                if isinstance(text, str):
                    out.append(text)
        return "".join(out)
    return value if isinstance(value, str) else ""


class ResponsesStreamTranslator:
    """Parse upstream SSE and map events to the client event protocol.

    Client events are ``{"type": "text"|"thought", "content": ...}`` and
    ``{"type": "citations", "citations": [...]}``.
    """

    @staticmethod
    async def parse_sse(byte_stream: AsyncIterator[bytes]) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded JSON payloads of ``data:`` lines until ``[DONE]``."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""

        async for chunk_bytes in byte_stream:
            buffer += decoder.decode(chunk_bytes)
            lines = buffer.split("\n")
            buffer = lines.pop()

            for line in lines:
                line = line.strip()
                if not line or line.startswith(":") or not line.startswith("data:"):
                    continue

                data_str = line[5:].strip()
                if data_str == "[DONE]":
                    return
                try:
                    payload = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.debug("upstream_sse_unparseable", line=data_str[:200])
                    continue
                if not isinstance(payload, dict):
                    logger.debug("upstream_sse_not_object", line=data_str[:200])
                    continue
                yield payload

    @staticmethod
    def to_client_events(event: Dict[str, Any], acc: StreamAccumulator) -> List[Dict[str, Any]]:
        """Map one upstream event to zero or more client events, updating *acc*."""
        if not isinstance(event, dict):
            return []
        event_type = event.get("type")

        if event_type == "response.output_text.delta":
            delta = event.get("delta")
            if not delta or not isinstance(delta, str):
                return []
            acc.text += delta
            return [{"type": "text", "content": delta}]

        if event_type in REASONING_DELTA_EVENTS:
            delta = event.get("delta")
            if not delta or not isinstance(delta, str):
                return []
            acc.thought += delta
            return [{"type": "thought", "content": delta}]

        if event_type == "response.output_text.annotation.added":
            ann = event.get("annotation")
            if not isinstance(ann, dict):
                return []
            if ann.get("type") == "url_citation" and isinstance(ann.get("url"), str) and ann["url"]:
                if acc.add_citation(ann["url"], ann.get("title")):
                    return [{"type": "citations", "citations": list(acc.citations)}]
            return []

        # Chat-completions style chunks from gateways that ignore the Responses format
        choices = event.get("choices")
        if isinstance(choices, list):
            first = choices[0] if choices else None
            delta = first.get("delta") if isinstance(first, dict) else None
            if not isinstance(delta, dict):
                return []
            out = []
            text = _join_chunk_text(delta.get("content"))
            if text:
                acc.text += text
                out.append({"type": "text", "content": text})
            thought = _join_chunk_thought(delta.get("reasoning_content"))
            if thought:
                acc.thought += thought
                out.append({"type": "thought", "content": thought})
            return out

        return []

    @staticmethod
    def format_sse(payload: Any) -> bytes:
        """Encode a client event as one SSE message."""
        if payload == "[DONE]":
            return b"data: [DONE]\n\n"
        return ("data: " + json.dumps(payload, ensure_ascii=False) + "\n\n").encode("utf-8")
