############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# conversation_schemas.py: Stored conversation and provider payload schemas
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Stored conversation schemas and provider payload schemas.

Stored* models mirror what the persistence layer keeps for every message.
They accept the camelCase names used in stored JSON (``mimeType``,
``inlineData``, ``thoughtSignature``) and are frozen: the translation layer
only ever reads them.

Provider* models are the outbound shapes for a Responses-style ``input``
array and are rebuilt for every request.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from backend.app.core.errors import UnsupportedPartShape


class StoredRole(str, Enum):
    """Roles persisted for a conversation message."""
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class StoredMessageType(str, Enum):
    """How a stored message carries its content."""
    TEXT = "text"
    PARTS = "parts"
    ERROR = "error"


class LineMode(str, Enum):
    """Request-scoped assistant persona selector."""
    PREMIUM = "premium"
    ECONOMY = "economy"

    @classmethod
    def parse(cls, value: Any) -> "LineMode":
        """Anything other than ``"economy"`` selects premium."""
        return cls.ECONOMY if value == cls.ECONOMY.value else cls.PREMIUM


class _StoredModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# Stored part types
class InlineImageRef(_StoredModel):
    """Reference to an uploaded image."""
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    url: str


class StoredTextPart(_StoredModel):
    """Text run, optionally a model thought."""
    text: str
    thought: Optional[bool] = None
    thought_signature: Optional[str] = Field(default=None, alias="thoughtSignature")


class StoredImagePart(_StoredModel):
    """Image stored by URL."""
    inline_data: InlineImageRef = Field(alias="inlineData")
    thought_signature: Optional[str] = Field(default=None, alias="thoughtSignature")


StoredPart = Union[StoredTextPart, StoredImagePart]


def parse_stored_part(raw: Any, strict: bool = False) -> Optional[StoredPart]:
    """Parse one raw stored part.

    A part with a ``text`` string is a text part; a part with an
    ``inlineData`` object is an image part. Anything else is unsupported and
    yields ``None``, or raises ``UnsupportedPartShape`` when *strict*.
    """
    if isinstance(raw, (StoredTextPart, StoredImagePart)):
        return raw

    try:
        if isinstance(raw, dict):
            if isinstance(raw.get("text"), str):
                return StoredTextPart.model_validate(raw)
            if isinstance(raw.get("inlineData", raw.get("inline_data")), dict):
                return StoredImagePart.model_validate(raw)
    except ValidationError as e:
        if strict:
            raise UnsupportedPartShape(raw, str(e)) from e
        return None

    if strict:
        raise UnsupportedPartShape(raw)
    return None


class StoredMessage(_StoredModel):
    """One persisted conversation message."""
    role: str
    content: str = ""
    thought: Optional[str] = None
    type: StoredMessageType = StoredMessageType.TEXT
    image: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    parts: Optional[List[Optional[StoredPart]]] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )

    @model_validator(mode="before")
    @classmethod
    def _coerce_parts(cls, data: Any) -> Any:
        # Unsupported parts are kept as None placeholders so part order survives parsing.
        if isinstance(data, dict) and isinstance(data.get("parts"), list):
            data = dict(data)
            data["parts"] = [parse_stored_part(p) for p in data["parts"]]
        if isinstance(data, dict) and data.get("content") is None:
            data = dict(data)
            data["content"] = ""
        return data

    @model_validator(mode="after")
    def _check_parts(self) -> "StoredMessage":
        if self.type == StoredMessageType.PARTS and not self.parts:
            raise ValueError("messages of type 'parts' must carry at least one part")
        return self

    def to_storage_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase names used in stored JSON."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# Provider content blocks
class InputTextBlock(BaseModel):
    """User-side text."""
    type: Literal["input_text"] = "input_text"
    text: str
    thought_signature: Optional[str] = Field(default=None, exclude=True)


class OutputTextBlock(BaseModel):
    """Assistant-side text."""
    type: Literal["output_text"] = "output_text"
    text: str
    thought_signature: Optional[str] = Field(default=None, exclude=True)


class InputImageBlock(BaseModel):
    """User-side image as a data URI."""
    type: Literal["input_image"] = "input_image"
    image_url: str
    thought_signature: Optional[str] = Field(default=None, exclude=True)


ProviderContentBlock = Union[InputTextBlock, OutputTextBlock, InputImageBlock]


class ProviderMessage(BaseModel):
    """One entry of the provider ``input`` array."""
    role: Literal["user", "assistant", "developer"]
    content: List[ProviderContentBlock] = Field(min_length=1)

    def to_payload(self, include_thought_signature: bool = False) -> Dict[str, Any]:
        """Render as a plain dict for the request body."""
        blocks = []
        for block in self.content:
            data = block.model_dump()
            if include_thought_signature and block.thought_signature:
                data["thought_signature"] = block.thought_signature
            blocks.append(data)
        return {"role": self.role, "content": blocks}


def data_uri(mime_type: str, b64_payload: str) -> str:
    """Build a ``data:<mime>;base64,<payload>`` URI."""
    return f"data:{mime_type};base64,{b64_payload}"
