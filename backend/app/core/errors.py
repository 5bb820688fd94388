############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# errors.py: Error taxonomy for payload translation
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Errors raised while translating stored conversations to provider payloads."""

from typing import Any, Optional


class TranslationError(Exception):
    """Base class for translation-layer failures."""


class MalformedRequest(TranslationError):
    """Inbound request body could not be parsed."""

    def __init__(self, message: str = "Invalid JSON in request body"):
        super().__init__(message)
        self.message = message


class ContentResolutionError(TranslationError):
    """A part's remote resource could not be retrieved or decoded.

    Always fatal for the enclosing translation; never converted to an
    empty block.
    """

    def __init__(self, url: str, reason: str = "fetch failed"):
        super().__init__(f"Failed to resolve content from {url}: {reason}")
        self.url = url
        self.reason = reason


class UnsupportedPartShape(TranslationError):
    """A stored part matches none of the recognized shapes."""

    def __init__(self, part: Any, detail: Optional[str] = None):
        super().__init__(detail or "Unsupported stored part shape")
        self.part = part


class UpstreamError(Exception):
    """The upstream provider rejected the request or the stream broke."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class ClientDisconnected(Exception):
    """The downstream client went away before the response started."""
