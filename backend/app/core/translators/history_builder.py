############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# history_builder.py: Stored conversation history to provider input translator
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Stored conversation history to provider ``input`` translator.

Parts within one message are resolved strictly in order. Different messages
share no state, so they are resolved concurrently under a semaphore that caps
how many image fetches can be in flight for one request.
"""

import asyncio
from typing import Iterable, List, Optional, Sequence

from backend.app.core.conversation_schemas import (
    InlineImageRef,
    ProviderContentBlock,
    ProviderMessage,
    StoredImagePart,
    StoredMessage,
    StoredMessageType,
    StoredPart,
    StoredRole,
    StoredTextPart,
)
from backend.app.core.translators.part_resolver import PartResolver
from backend.app.logging_config import get_logger

logger = get_logger(__name__)

PROVIDER_ROLES = {
    StoredRole.USER.value: "user",
    StoredRole.MODEL.value: "assistant",
}


def stored_parts_for(message: StoredMessage) -> List[Optional[StoredPart]]:
    """Return the ordered parts of a stored message.

    ``parts`` wins whenever it is present and non-empty. Older single-field
    messages get a synthesized sequence: text from ``content`` first, then
    the ``image`` URL.
    """
    if message.parts:
        return list(message.parts)

    parts: List[Optional[StoredPart]] = []
    if message.content and message.content.strip():
        parts.append(StoredTextPart(text=message.content))
    if message.image and message.image.strip():
        parts.append(
            StoredImagePart(inline_data=InlineImageRef(url=message.image, mime_type=message.mime_type))
        )
    return parts


class HistoryBuilder:
    """Translate stored conversation messages into provider messages."""

    def __init__(self, resolver: PartResolver, concurrency: int = 4):
        self.resolver = resolver
        self.concurrency = max(1, concurrency)

    @staticmethod
    def _is_participant(message: StoredMessage) -> bool:
        if message.type == StoredMessageType.ERROR:
            return False
        return message.role in PROVIDER_ROLES

    async def _resolve_message(
        self, message: StoredMessage, semaphore: asyncio.Semaphore
    ) -> Optional[ProviderMessage]:
        role = PROVIDER_ROLES[message.role]
        content: List[ProviderContentBlock] = []
        async with semaphore:
            for part in stored_parts_for(message):
                if part is None:
                    continue
                block = await self.resolver.resolve(part, role)
                if block is not None:
                    content.append(block)

        if not content:
            return None
        return ProviderMessage(role=role, content=content)

    async def build(self, messages: Iterable[StoredMessage]) -> List[ProviderMessage]:
        """Build the provider input sequence from *messages*.

        Raises:
            ContentResolutionError: any part failed to resolve; no partial
                history is returned.
        """
        retained: Sequence[StoredMessage] = [m for m in messages if self._is_participant(m)]
        if not retained:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [
            asyncio.ensure_future(self._resolve_message(message, semaphore))
            for message in retained
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        output = [msg for msg in results if msg is not None]
        dropped = len(retained) - len(output)
        if dropped:
            logger.debug("history_messages_dropped", dropped=dropped, kept=len(output))
        return output
