"""
Character API endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
import logging

from ..dependencies import get_store
from ..schemas.chat import CharacterCreate, CharacterUpdate, CharacterResponse, CharacterListResponse
from ..services.conversation_store import ConversationStore
from ..utils.auth import get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/characters", tags=["characters"])


@router.get("", response_model=CharacterListResponse)
async def list_characters(
    limit: int = Query(50, ge=1, le=200),
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """Get the current user's characters, newest first."""
    characters = await store.list_characters(user_id, limit=limit)
    return CharacterListResponse(
        characters=[CharacterResponse.model_validate(c) for c in characters]
    )


@router.post("", response_model=CharacterResponse, status_code=status.HTTP_201_CREATED)
async def create_character(
    character_data: CharacterCreate,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """
    Create a character.

    Args:
        character_data: Name and system prompt
    """
    character = await store.create_character(
        user_id=user_id,
        name=character_data.name,
        system_prompt=character_data.system_prompt
    )
    logger.info(f"✅ API: Character created: {character.id}")
    return CharacterResponse.model_validate(character)


@router.get("/{character_id}", response_model=CharacterResponse)
async def get_character(
    character_id: str,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """Get a specific character by ID."""
    character = await store.get_character(user_id, character_id)

    if not character:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Character not found"
        )

    return CharacterResponse.model_validate(character)


@router.put("/{character_id}", response_model=CharacterResponse)
async def update_character(
    character_id: str,
    character_data: CharacterUpdate,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """
    Update a character's name or system prompt.

    The new system prompt applies to the next exchange in every
    conversation with this character.
    """
    update_data = character_data.model_dump(exclude_unset=True, exclude_none=True)
    character = await store.update_character(user_id, character_id, update_data)

    if not character:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Character not found"
        )

    return CharacterResponse.model_validate(character)


@router.delete("/{character_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_character(
    character_id: str,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """Delete a character along with its conversations and message history."""
    deleted = await store.delete_character(user_id, character_id)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Character not found"
        )

    logger.info(f"✅ API: Character deleted: {character_id}")
    return None
