"""
Character model for AI personas
"""
from sqlalchemy import Column, String, Text, Integer, DateTime
import uuid

from velora.database import Base, utcnow


class Character(Base):
    """
    Character is an AI persona owned by a user. The system prompt seeds
    every context window sent to the completion provider.
    """
    __tablename__ = "characters"

    # Primary key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), nullable=False)

    # Ownership
    user_id = Column(String(64), nullable=False, index=True)

    # Persona
    name = Column(String(50), nullable=False)
    system_prompt = Column(Text, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0, server_default='0')

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Character(id={self.id}, user_id={self.user_id}, name='{self.name}')>"
