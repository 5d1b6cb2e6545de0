"""
Conversation persistence.

Every save carries the complete chat history and replaces the stored
snapshot; conversations are never physically removed, only flagged deleted.
"""

import json
import logging
from typing import Any, Dict, List, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from welfare_backend.models import Conversation
from welfare_backend.services.errors import NotFoundError, StorageUnavailableError, ValidationError
from welfare_backend.services.message_codec import decode_messages, normalize_messages
from welfare_backend.services.timestamps import ensure_utc, next_timestamp, utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def serialize_summary(conversation: Conversation) -> Dict[str, Any]:
    """History entry: metadata only, never the message bodies."""
    return {
        "conversation_id": conversation.conversation_id,
        "created_at": ensure_utc(conversation.created_at),
        "message_count": conversation.message_count or 0,
        "context_enabled": bool(conversation.context_enabled),
    }


def serialize_conversation(conversation: Conversation) -> Dict[str, Any]:
    return {
        "conversation_id": conversation.conversation_id,
        "user_id": conversation.user_id,
        "messages": decode_messages(conversation.chat_data),
        "message_count": conversation.message_count or 0,
        "context_enabled": bool(conversation.context_enabled),
        "deleted": bool(conversation.deleted),
        "created_at": ensure_utc(conversation.created_at),
        "updated_at": ensure_utc(conversation.updated_at),
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ConversationStore:
    """
    CRUD and soft-delete for conversation records keyed by ``conversation_id``.

    Concurrent saves to the same id resolve last-write-wins.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def save(
        self,
        conversation_id: str,
        user_id: str,
        messages: Union[str, List[Any]],
        context_enabled: bool,
    ) -> Dict[str, Any]:
        """
        Write a full snapshot of a conversation.

        Args:
            conversation_id: Caller-supplied conversation id
            user_id: Owning user
            messages: Complete ordered message list, or its JSON encoding
            context_enabled: Whether context was enabled for the chat

        Returns:
            ``{"success": True}`` once the snapshot is committed

        Raises:
            ValidationError: malformed id or messages; nothing is written
            StorageUnavailableError: the database write failed
        """
        if not conversation_id or not str(conversation_id).strip():
            raise ValidationError("conversationId is required", field="conversationId")
        if not user_id or not str(user_id).strip():
            raise ValidationError("userId is required", field="userId")

        normalized = normalize_messages(messages)
        snapshot = {
            "user_id": user_id,
            "chat_data": json.dumps(normalized, ensure_ascii=False),
            "message_count": len(normalized),
            "context_enabled": bool(context_enabled),
        }

        try:
            await self._write_snapshot(conversation_id, snapshot)
        except IntegrityError:
            # Lost an insert race for this id; apply ours on top of the winner.
            await self.db.rollback()
            logger.info("Concurrent insert for conversation %s, retrying as update", conversation_id)
            try:
                await self._write_snapshot(conversation_id, snapshot)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.exception("Failed to save conversation %s", conversation_id)
                raise StorageUnavailableError(f"Failed to save conversation: {exc}") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Failed to save conversation %s", conversation_id)
            raise StorageUnavailableError(f"Failed to save conversation: {exc}") from exc

        logger.info(
            "Saved conversation %s for user %s (%d messages)",
            conversation_id, user_id, snapshot["message_count"],
        )
        return {"success": True}

    async def _write_snapshot(self, conversation_id: str, snapshot: Dict[str, Any]) -> None:
        result = await self.db.execute(
            select(Conversation).where(Conversation.conversation_id == conversation_id)
        )
        conversation = result.scalar_one_or_none()

        if conversation is None:
            now = utcnow()
            self.db.add(Conversation(
                conversation_id=conversation_id,
                deleted=False,
                created_at=now,
                updated_at=now,
                **snapshot,
            ))
        else:
            for field, value in snapshot.items():
                setattr(conversation, field, value)
            conversation.updated_at = next_timestamp(conversation.updated_at)

        await self.db.commit()

    async def fetch_history(self, user_id: str) -> List[Dict[str, Any]]:
        """Return summaries of a user's live conversations, newest first."""
        try:
            result = await self.db.execute(
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .where(Conversation.deleted.is_(False))
                .order_by(Conversation.created_at.desc(), Conversation.conversation_id)
            )
            conversations = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load history for user %s", user_id)
            raise StorageUnavailableError(f"Failed to load history: {exc}") from exc

        logger.info("Loaded %s conversations for user %s", len(conversations), user_id)
        return [serialize_summary(conversation) for conversation in conversations]

    async def fetch_conversation(self, conversation_id: str) -> Dict[str, Any]:
        """
        Load one conversation with its messages decoded.

        Raises:
            NotFoundError: the id is unknown or soft-deleted
        """
        try:
            result = await self.db.execute(
                select(Conversation).where(Conversation.conversation_id == conversation_id)
            )
            conversation = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load conversation %s", conversation_id)
            raise StorageUnavailableError(f"Failed to load conversation: {exc}") from exc

        if conversation is None or conversation.deleted:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        return serialize_conversation(conversation)

    async def soft_delete(self, conversation_id: str) -> Dict[str, Any]:
        """
        Flag a conversation deleted. Idempotent; unknown ids also succeed.
        """
        try:
            result = await self.db.execute(
                select(Conversation.updated_at).where(Conversation.conversation_id == conversation_id)
            )
            previous = result.scalar_one_or_none()
            if previous is None:
                logger.info("Soft delete requested for unknown conversation %s", conversation_id)
                return {"success": True}

            await self.db.execute(
                update(Conversation)
                .where(Conversation.conversation_id == conversation_id)
                .values(deleted=True, updated_at=next_timestamp(previous))
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Failed to soft delete conversation %s", conversation_id)
            raise StorageUnavailableError(f"Failed to delete conversation: {exc}") from exc

        logger.info("Soft deleted conversation: %s", conversation_id)
        return {"success": True}
