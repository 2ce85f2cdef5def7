"""
Chat API endpoints for conversations and message history
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import Optional
import logging

from ..dependencies import get_store
from ..schemas.chat import (
    ConversationResponse,
    ConversationCreate,
    ConversationListResponse,
    MessageResponse,
    MessagePageResponse,
)
from ..services.conversation_store import ConversationStore
from ..utils.auth import get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["chat"])


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    limit: int = Query(50, ge=1, le=200),
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """
    Get all conversations for the current user.

    Returns:
        List of conversations ordered by most recent activity
    """
    conversations = await store.list_conversations(user_id, limit=limit)
    return ConversationListResponse(
        conversations=[ConversationResponse.model_validate(c) for c in conversations]
    )


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: ConversationCreate,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """
    Create a new conversation with one of the user's characters.

    Args:
        conversation_data: Character id and optional title

    Returns:
        Created conversation
    """
    character = await store.get_character(user_id, conversation_data.character_id)
    if not character:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Character not found"
        )

    conversation = await store.create_conversation(
        user_id=user_id,
        character_id=character.id,
        title=conversation_data.title
    )

    logger.info(f"✅ API: Conversation created: {conversation.id}")
    return ConversationResponse.model_validate(conversation)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """Get a specific conversation by ID."""
    conversation = await store.get_conversation(user_id, conversation_id)

    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )

    return ConversationResponse.model_validate(conversation)


@router.get("/{conversation_id}/messages", response_model=MessagePageResponse)
async def get_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    before: Optional[str] = Query(None, description="Return messages older than this message id"),
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """
    Get one page of a conversation's history.

    Args:
        conversation_id: ID of the conversation
        limit: Page size
        before: Cursor from a previous page's next_cursor

    Returns:
        Messages in chronological order, with has_more/next_cursor for older pages
    """
    conversation = await store.get_conversation(user_id, conversation_id)
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )

    messages, next_cursor = await store.list_messages(conversation_id, limit=limit, before=before)
    logger.info(f"Messages retrieved for conversation {conversation_id}: count={len(messages)}")

    return MessagePageResponse(
        messages=[MessageResponse.model_validate(m) for m in messages],
        has_more=next_cursor is not None,
        next_cursor=next_cursor,
    )
