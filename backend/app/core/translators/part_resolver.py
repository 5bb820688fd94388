############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# part_resolver.py: Stored message part to provider content block translator
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Stored part to provider content block translator."""

from typing import Any, Optional

from backend.app.core.conversation_schemas import (
    InputImageBlock,
    InputTextBlock,
    OutputTextBlock,
    ProviderContentBlock,
    StoredImagePart,
    StoredTextPart,
    data_uri,
    parse_stored_part,
)
from backend.app.logging_config import get_logger
from backend.app.services.image_fetcher import ImageFetcher

logger = get_logger(__name__)

ASSISTANT_ROLES = frozenset({"assistant", "model"})


def is_assistant_role(role: str) -> bool:
    """Assistant-equivalent roles produce ``output_*`` blocks."""
    return role in ASSISTANT_ROLES


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


class PartResolver:
    """Translate one stored part into one provider content block."""

    def __init__(self, fetcher: ImageFetcher, default_mime_type: str = "image/jpeg"):
        self.fetcher = fetcher
        self.default_mime_type = default_mime_type

    async def resolve(self, part: Any, role: str) -> Optional[ProviderContentBlock]:
        """Resolve a stored part for a message authored by *role*.

        Args:
            part: StoredTextPart, StoredImagePart or a raw stored dict
            role: "user", "model" or "assistant"

        Returns:
            A content block, or None when the part carries nothing the
            provider accepts (empty text, assistant image, unknown shape).

        Raises:
            ContentResolutionError: the part's image could not be fetched
        """
        parsed = parse_stored_part(part)
        assistant = is_assistant_role(role)

        if isinstance(parsed, StoredTextPart):
            if not _non_empty(parsed.text):
                return None
            if assistant:
                return OutputTextBlock(text=parsed.text, thought_signature=parsed.thought_signature)
            return InputTextBlock(text=parsed.text, thought_signature=parsed.thought_signature)

        if isinstance(parsed, StoredImagePart):
            # Model-authored images are never re-submitted as input.
            if assistant:
                return None
            url = parsed.inline_data.url
            if not _non_empty(url):
                return None
            image = await self.fetcher.fetch(url)
            mime_type = parsed.inline_data.mime_type or image.mime_type or self.default_mime_type
            return InputImageBlock(
                image_url=data_uri(mime_type, image.as_base64()),
                thought_signature=parsed.thought_signature,
            )

        logger.debug("unsupported_part_shape", role=role, part_type=type(part).__name__)
        return None
