"""Conversation persistence and search API endpoints.

Store errors propagate to the `StoreError` handler installed by `create_app`.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from welfare_backend.config import DEFAULT_USER_ID
from welfare_backend.db_session import get_async_session
from welfare_backend.schemas import (
    ConversationDetail,
    ConversationResponse,
    ConversationSummary,
    SaveConversationRequest,
    SaveConversationResponse,
    SearchConversationsRequest,
    SearchConversationsResponse,
    SoftDeleteResponse,
)
from welfare_backend.services.conversation_search import ConversationSearchIndex
from welfare_backend.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def get_conversation_store(db: AsyncSession = Depends(get_async_session)) -> ConversationStore:
    return ConversationStore(db)


def get_search_index(db: AsyncSession = Depends(get_async_session)) -> ConversationSearchIndex:
    return ConversationSearchIndex(db)


@router.post("/save", response_model=SaveConversationResponse)
async def save_conversation(
    request: SaveConversationRequest,
    store: ConversationStore = Depends(get_conversation_store),
):
    """Persist the complete message history of a conversation."""
    result = await store.save(
        request.conversation_id,
        request.user_id,
        request.messages,
        request.context_enabled,
    )
    return SaveConversationResponse(**result)


@router.get("/history", response_model=List[ConversationSummary])
async def get_history(
    user_id: str = Query(DEFAULT_USER_ID, alias="userId"),
    store: ConversationStore = Depends(get_conversation_store),
):
    """List a user's conversations (metadata only), newest first."""
    summaries = await store.fetch_history(user_id)
    return [ConversationSummary(**summary) for summary in summaries]


@router.post("/search", response_model=SearchConversationsResponse)
async def search_conversations(
    request: SearchConversationsRequest,
    index: ConversationSearchIndex = Depends(get_search_index),
):
    """Filter a user's conversations by date range, context flag and analysis tags."""
    result = await index.search(
        request.user_id,
        date_from=request.date_from,
        date_to=request.date_to,
        tags=request.tags,
        context_enabled=request.context_enabled,
    )
    return SearchConversationsResponse(
        conversations=[ConversationSummary(**summary) for summary in result["conversations"]],
        count=result["count"],
    )


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    store: ConversationStore = Depends(get_conversation_store),
):
    logger.info("Fetching conversation: %s", conversation_id)
    conversation = await store.fetch_conversation(conversation_id)
    return ConversationResponse(success=True, conversation=ConversationDetail(**conversation))


@router.put("/{conversation_id}/delete", response_model=SoftDeleteResponse)
async def soft_delete_conversation(
    conversation_id: str,
    store: ConversationStore = Depends(get_conversation_store),
):
    """Hide a conversation from history and search. The record is kept."""
    result = await store.soft_delete(conversation_id)
    return SoftDeleteResponse(**result)
