############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# __init__.py: Payload translation layer package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Payload translation layer for chatbridge.

Translates stored conversations (messages made of text and image parts)
into Responses-style provider ``input`` messages.
"""

from backend.app.core.translators.part_resolver import PartResolver, is_assistant_role
from backend.app.core.translators.history_builder import HistoryBuilder, stored_parts_for
from backend.app.core.translators.responses_stream import (
    ResponsesStreamTranslator,
    StreamAccumulator,
)

__all__ = [
    "PartResolver",
    "HistoryBuilder",
    "ResponsesStreamTranslator",
    "StreamAccumulator",
    "is_assistant_role",
    "stored_parts_for",
]
