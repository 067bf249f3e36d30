"""SQLAlchemy-backed conversation persistence."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardwise.errors import ConversationNotFoundError, PersistenceError
from cardwise.models.conversation import Conversation, ConversationMessage

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200


@dataclass
class ChatMessage:
    role: str  # user | assistant
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


def _uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class ConversationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_conversation(self, user_id: uuid.UUID | str, metadata: dict[str, Any] | None = None) -> str:
        """Create a conversation owned by ``user_id`` and return its id."""
        metadata = dict(metadata or {})
        title = metadata.pop("title", None)
        try:
            async with self._session_factory() as db:
                conversation = Conversation(
                    user_id=_uuid(user_id),
                    title=title[:TITLE_MAX_LENGTH] if isinstance(title, str) else None,
                    meta=metadata,
                )
                db.add(conversation)
                await db.commit()
                return str(conversation.id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create conversation for user {user_id}: {e}")
            raise PersistenceError("Failed to create conversation") from e

    async def add_message(self, user_id: uuid.UUID | str, conversation_id: uuid.UUID | str, message: ChatMessage) -> str:
        """Append ``message``; the conversation must belong to ``user_id``."""
        conv_id, owner_id = _uuid(conversation_id), _uuid(user_id)
        if conv_id is None or owner_id is None:
            raise ConversationNotFoundError(str(conversation_id))
        try:
            async with self._session_factory() as db:
                conversation = await db.scalar(
                    select(Conversation).where(Conversation.id == conv_id, Conversation.user_id == owner_id)
                )
                if conversation is None:
                    raise ConversationNotFoundError(str(conversation_id))
                row = ConversationMessage(
                    conversation_id=conv_id,
                    role=message.role,
                    content=message.content,
                    meta=message.metadata or None,
                )
                db.add(row)
                conversation.updated_at = func.now()
                await db.commit()
                return str(row.id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to add message to conversation {conversation_id}: {e}")
            raise PersistenceError("Failed to save message") from e

    async def list_conversations(self, user_id: uuid.UUID | str, limit: int = 20, offset: int = 0) -> list[dict]:
        owner_id = _uuid(user_id)
        if owner_id is None:
            return []
        count = (
            select(func.count(ConversationMessage.id))
            .where(ConversationMessage.conversation_id == Conversation.id)
            .scalar_subquery()
        )
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Conversation, count.label("message_count"))
                    .where(Conversation.user_id == owner_id)
                    .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
                return [
                    {
                        "id": str(conversation.id),
                        "title": conversation.title,
                        "metadata": conversation.meta or {},
                        "messageCount": message_count,
                        "createdAt": conversation.created_at.isoformat() if conversation.created_at else None,
                        "updatedAt": conversation.updated_at.isoformat() if conversation.updated_at else None,
                    }
                    for conversation, message_count in result.all()
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to list conversations for user {user_id}: {e}")
            raise PersistenceError("Failed to load conversations") from e
