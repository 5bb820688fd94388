############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# conversations.py: Conversation read and delete endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Conversation endpoints for the signed-in user."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.mode_policy import ModePolicy
from backend.app.db import chat_crud
from backend.app.db.models import ChatConversation, ChatMessage
from backend.app.db.session import get_async_db
from backend.app.logging_config import get_logger
from backend.app.security.session_auth import AuthUser, require_user
from backend.app.settings import get_settings

logger = get_logger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def get_mode_policy() -> ModePolicy:
    return ModePolicy.from_settings(get_settings())


def _display(policy: ModePolicy, model: Optional[str]) -> Optional[str]:
    return policy.display_model_id(model) if model else model


def _conversation_summary(conv: ChatConversation, policy: ModePolicy) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "title": conv.title,
        "model": _display(policy, conv.model),
        "updatedAt": conv.updated_at.isoformat() if conv.updated_at else None,
    }


def _message_view(row: ChatMessage, policy: ModePolicy) -> Dict[str, Any]:
    data = chat_crud.to_stored_message(row).to_storage_dict()
    data["id"] = row.client_id or str(row.id)
    if row.model:
        data["model"] = _display(policy, row.model)
    return data


@router.get("")
async def list_conversations(
    user: AuthUser = Depends(require_user),
    db: AsyncSession = Depends(get_async_db),
    policy: ModePolicy = Depends(get_mode_policy),
):
    """List the user's conversations, most recently updated first."""
    conversations = await chat_crud.list_conversations(db, user.user_id)
    return {"conversations": [_conversation_summary(c, policy) for c in conversations]}


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: int,
    user: AuthUser = Depends(require_user),
    db: AsyncSession = Depends(get_async_db),
    policy: ModePolicy = Depends(get_mode_policy),
):
    """Get one conversation with its messages in insertion order."""
    conv = await chat_crud.get_conversation(db, conversation_id, user.user_id)
    if conv is None:
        return JSONResponse(status_code=404, content={"error": "Not found"})

    rows = await chat_crud.get_message_rows(db, conv.id)
    try:
        messages = [_message_view(row, policy) for row in rows]
    except ValidationError as e:
        logger.warning("conversation_unreadable", conversation_id=conv.id, error=str(e))
        return JSONResponse(
            status_code=409,
            content={"error": "Outdated conversation: unsupported message type"},
        )

    conversation = _conversation_summary(conv, policy)
    conversation["messages"] = messages
    return {"conversation": conversation}


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    user: AuthUser = Depends(require_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Delete a conversation and its messages."""
    deleted = await chat_crud.delete_conversation(db, conversation_id, user.user_id)
    if deleted:
        logger.info("conversation_deleted", conversation_id=conversation_id, user_id=user.user_id)
    return {"success": True}
