"""
Conversation model for chat threads between a user and a character
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index
import uuid

from velora.database import Base, utcnow


class Conversation(Base):
    """
    Conversation is a named thread between one user and one character.
    user_id and character_id never change after creation; message_count and
    last_message_at only move forward, once per recorded message pair.
    """
    __tablename__ = "conversations"

    # Primary key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), nullable=False)

    # Ownership (user ids come from the identity provider)
    user_id = Column(String(64), nullable=False, index=True)
    character_id = Column(String(36), ForeignKey('characters.id', ondelete='CASCADE'), nullable=False, index=True)

    # Conversation metadata
    title = Column(String(100), nullable=False)
    message_count = Column(Integer, nullable=False, default=0, server_default='0')

    # Timestamps
    last_message_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_conversations_user_last_message", "user_id", "last_message_at"),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, user_id={self.user_id}, character_id={self.character_id})>"
