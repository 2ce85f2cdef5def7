"""
Database models package.
"""
from .character import Character
from .conversation import Conversation
from .message import Message, MessageRole

__all__ = [
    "Character",
    "Conversation",
    "Message",
    "MessageRole",
]
