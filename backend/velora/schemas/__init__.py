"""
Pydantic schemas package.
"""
from .chat import (
    CharacterCreate,
    CharacterUpdate,
    CharacterResponse,
    CharacterListResponse,
    ConversationCreate,
    ConversationResponse,
    ConversationListResponse,
    MessageResponse,
    MessagePageResponse,
)

from .frames import (
    ChatFrame,
    TokenFrame,
    DoneFrame,
    ErrorFrame,
    OutboundFrame,
    encode_frame,
)

__all__ = [
    # Chat
    "CharacterCreate",
    "CharacterUpdate",
    "CharacterResponse",
    "CharacterListResponse",
    "ConversationCreate",
    "ConversationResponse",
    "ConversationListResponse",
    "MessageResponse",
    "MessagePageResponse",
    # Relay frames
    "ChatFrame",
    "TokenFrame",
    "DoneFrame",
    "ErrorFrame",
    "OutboundFrame",
    "encode_frame",
]
