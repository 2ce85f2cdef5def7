"""
Pydantic schemas for Chat models
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


# ==================== CHARACTER SCHEMAS ====================

class CharacterCreate(BaseModel):
    """Schema for creating a new character"""
    name: str = Field(..., min_length=1, max_length=50, description="Character name")
    system_prompt: str = Field(..., min_length=1, description="Instructions seeding every chat with this character")


class CharacterUpdate(BaseModel):
    """Schema for updating a character. Omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    system_prompt: Optional[str] = Field(None, min_length=1)


class CharacterResponse(BaseModel):
    """Schema for character response"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    system_prompt: str
    usage_count: int
    created_at: datetime
    updated_at: datetime


class CharacterListResponse(BaseModel):
    """Schema for list of characters"""
    characters: List[CharacterResponse]


# ==================== CONVERSATION SCHEMAS ====================

class ConversationCreate(BaseModel):
    """Schema for creating a new conversation"""
    character_id: str = Field(..., description="Character to talk to")
    title: Optional[str] = Field(None, max_length=100, description="Optional conversation title")


class ConversationResponse(BaseModel):
    """Schema for conversation response"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    character_id: str
    title: str
    message_count: int
    last_message_at: datetime
    created_at: datetime


class ConversationListResponse(BaseModel):
    """Schema for list of conversations"""
    conversations: List[ConversationResponse]


# ==================== MESSAGE SCHEMAS ====================

class MessageResponse(BaseModel):
    """Schema for message response"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    role: str = Field(..., description="Message role: 'user', 'assistant' or 'system'")
    content: str
    tokens: Optional[int] = None
    model: Optional[str] = None
    timestamp: datetime


class MessagePageResponse(BaseModel):
    """A chronological page of messages plus the cursor for the page before it"""
    messages: List[MessageResponse]
    has_more: bool
    next_cursor: Optional[str] = Field(None, description="Pass as ?before= to fetch older messages")
