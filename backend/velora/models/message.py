"""
Message model for chat messages in conversations
"""
from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, Index
import uuid

from velora.database import Base, utcnow


class MessageRole:
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    ALL = (USER, ASSISTANT, SYSTEM)


class Message(Base):
    """
    Message is one immutable turn in a conversation's append-only log.
    Ordered by (conversation_id, timestamp, id); rows past expires_at are
    treated as gone.
    """
    __tablename__ = "messages"

    # Primary key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), nullable=False)

    # Relationships
    conversation_id = Column(String(36), ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)

    # Message content
    role = Column(String(20), nullable=False, comment="user, assistant or system")
    content = Column(Text, nullable=False, default="")

    # Generation metadata (assistant messages)
    tokens = Column(Integer, nullable=True)
    model = Column(String(100), nullable=True)

    # Timestamps
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        Index("ix_messages_conversation_timestamp", "conversation_id", "timestamp", "id"),
    )

    def __repr__(self):
        return f"<Message(id={self.id}, conversation_id={self.conversation_id}, role='{self.role}')>"
