############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# chat_crud.py: Database CRUD operations for chat entities
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database CRUD operations for users, chat conversations and messages."""

from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.conversation_schemas import StoredMessage
from backend.app.db.models import ChatConversation, ChatMessage, User

TITLE_MAX_CHARS = 30


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_user(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(email=email)
        db.add(user)
        await db.flush()
    return user


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def title_from_prompt(prompt: str) -> str:
    if len(prompt) > TITLE_MAX_CHARS:
        return prompt[:TITLE_MAX_CHARS] + "..."
    return prompt or "New Chat"


async def create_conversation(
    db: AsyncSession,
    user_id: int,
    title: str = "New Chat",
    model: Optional[str] = None,
) -> ChatConversation:
    conv = ChatConversation(user_id=user_id, title=title, model=model)
    db.add(conv)
    await db.flush()
    return conv


async def list_conversations(
    db: AsyncSession,
    user_id: int,
    limit: int = 100,
) -> List[ChatConversation]:
    result = await db.execute(
        select(ChatConversation)
        .where(ChatConversation.user_id == user_id)
        .order_by(ChatConversation.updated_at.desc(), ChatConversation.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_conversation(
    db: AsyncSession,
    conversation_id: int,
    user_id: int,
) -> Optional[ChatConversation]:
    result = await db.execute(
        select(ChatConversation).where(
            ChatConversation.id == conversation_id,
            ChatConversation.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def touch_conversation(db: AsyncSession, conversation_id: int) -> None:
    await db.execute(
        update(ChatConversation)
        .where(ChatConversation.id == conversation_id)
        .values(updated_at=datetime.now(timezone.utc))
    )


async def delete_conversation(
    db: AsyncSession,
    conversation_id: int,
    user_id: int,
) -> bool:
    conv = await get_conversation(db, conversation_id, user_id)
    if not conv:
        return False

    await db.execute(
        delete(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    )
    await db.delete(conv)
    await db.flush()
    return True


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def to_stored_message(msg: ChatMessage) -> StoredMessage:
    """Convert a message row into the StoredMessage the translators consume."""
    return StoredMessage.model_validate({
        "role": msg.role,
        "content": msg.content,
        "thought": msg.thought,
        "type": msg.message_type,
        "image": msg.image,
        "mimeType": msg.mime_type,
        "parts": msg.parts,
        "createdAt": msg.created_at or datetime.now(timezone.utc),
    })


async def get_message_rows(
    db: AsyncSession,
    conversation_id: int,
) -> List[ChatMessage]:
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.id)
    )
    return list(result.scalars().all())


async def get_conversation_messages(
    db: AsyncSession,
    conversation_id: int,
) -> List[StoredMessage]:
    """Stored messages of a conversation in insertion order."""
    return [to_stored_message(row) for row in await get_message_rows(db, conversation_id)]


async def count_messages(db: AsyncSession, conversation_id: int) -> int:
    result = await db.execute(
        select(func.count(ChatMessage.id)).where(ChatMessage.conversation_id == conversation_id)
    )
    return int(result.scalar_one())


async def append_message(
    db: AsyncSession,
    conversation_id: int,
    message: StoredMessage,
    model: Optional[str] = None,
    client_id: Optional[str] = None,
) -> ChatMessage:
    stored: dict = message.to_storage_dict()
    parts: Optional[List[Any]] = stored.get("parts")
    row = ChatMessage(
        conversation_id=conversation_id,
        client_id=client_id,
        role=message.role,
        content=message.content,
        thought=message.thought,
        message_type=message.type.value,
        image=message.image,
        mime_type=message.mime_type,
        parts=parts,
        model=model,
    )
    db.add(row)
    await touch_conversation(db, conversation_id)
    await db.flush()
    return row


async def replace_messages(
    db: AsyncSession,
    conversation_id: int,
    messages: Iterable[Tuple[Optional[str], StoredMessage]],
) -> int:
    """Overwrite a conversation's messages with ``(client_id, message)`` pairs, in order."""
    await db.execute(
        delete(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    )
    count = 0
    for client_id, message in messages:
        await append_message(db, conversation_id, message, client_id=client_id)
        count += 1
    return count
