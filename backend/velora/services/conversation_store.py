"""
Conversation store: keyed persistence for characters, conversations and messages.

Every public method is a coroutine that runs one short unit of work in the
thread pool with its own session, so the event loop only waits at these calls.
Each call touches a single key; counters are bumped with one atomic UPDATE.
"""
from typing import Any, Dict, Optional, List, Tuple, Callable
from datetime import timedelta
import logging

from sqlalchemy import and_, or_, update, delete, func, select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from velora.database import utcnow
from velora.models.character import Character
from velora.models.conversation import Conversation
from velora.models.message import Message, MessageRole

logger = logging.getLogger(__name__)


class ConversationStore:
    """
    Async facade over SQLAlchemy sessions for the chat relay and the REST API.
    """

    CHARACTER_EDITABLE_FIELDS = ("name", "system_prompt")

    def __init__(self, session_factory: Callable[[], Session], retention_days: int = 90):
        self.session_factory = session_factory
        self.retention = timedelta(days=retention_days)

    # ==================== CHARACTERS ====================

    async def create_character(self, user_id: str, name: str, system_prompt: str) -> Character:
        return await run_in_threadpool(self._create_character, user_id, name, system_prompt)

    def _create_character(self, user_id: str, name: str, system_prompt: str) -> Character:
        with self.session_factory() as db:
            character = Character(user_id=user_id, name=name, system_prompt=system_prompt)
            db.add(character)
            db.commit()
            db.refresh(character)
            logger.info(f"✅ Created character {character.id} for user {user_id}")
            return character

    async def get_character(self, user_id: str, character_id: str) -> Optional[Character]:
        """Get a character by key. Characters owned by another user are absent."""
        return await run_in_threadpool(self._get_character, user_id, character_id)

    def _get_character(self, user_id: str, character_id: str) -> Optional[Character]:
        with self.session_factory() as db:
            return db.query(Character).filter(
                Character.id == character_id,
                Character.user_id == user_id
            ).first()

    async def list_characters(self, user_id: str, limit: int = 50) -> List[Character]:
        return await run_in_threadpool(self._list_characters, user_id, limit)

    def _list_characters(self, user_id: str, limit: int) -> List[Character]:
        with self.session_factory() as db:
            return db.query(Character).filter(
                Character.user_id == user_id
            ).order_by(Character.created_at.desc()).limit(limit).all()

    async def update_character(self, user_id: str, character_id: str, fields: Dict[str, Any]) -> Optional[Character]:
        """
        Apply name/system_prompt changes to a character.

        Returns:
            The updated character, or None when the user owns no such character
        """
        return await run_in_threadpool(self._update_character, user_id, character_id, fields)

    def _update_character(self, user_id: str, character_id: str, fields: Dict[str, Any]) -> Optional[Character]:
        with self.session_factory() as db:
            character = db.query(Character).filter(
                Character.id == character_id,
                Character.user_id == user_id
            ).first()
            if not character:
                return None

            for field, value in fields.items():
                if field not in self.CHARACTER_EDITABLE_FIELDS:
                    raise ValueError(f"Character field cannot be updated: {field}")
                setattr(character, field, value)
            character.updated_at = utcnow()

            db.commit()
            db.refresh(character)
            logger.info(f"✅ Updated character {character_id}: {', '.join(fields) or 'no changes'}")
            return character

    async def delete_character(self, user_id: str, character_id: str) -> bool:
        """
        Delete a character together with its conversations and their messages.

        Returns:
            False when the user owns no such character
        """
        return await run_in_threadpool(self._delete_character, user_id, character_id)

    def _delete_character(self, user_id: str, character_id: str) -> bool:
        with self.session_factory() as db:
            character = db.query(Character).filter(
                Character.id == character_id,
                Character.user_id == user_id
            ).first()
            if not character:
                return False

            conversation_ids = select(Conversation.id).where(Conversation.character_id == character_id)
            removed_messages = db.execute(
                delete(Message).where(Message.conversation_id.in_(conversation_ids))
            ).rowcount or 0
            removed_conversations = db.execute(
                delete(Conversation).where(Conversation.character_id == character_id)
            ).rowcount or 0
            db.delete(character)
            db.commit()

        logger.info(
            f"🗑️ Deleted character {character_id} with {removed_conversations} conversation(s) "
            f"and {removed_messages} message(s)"
        )
        return True

    async def increment_character_usage(self, user_id: str, character_id: str) -> None:
        await run_in_threadpool(self._increment_character_usage, user_id, character_id)

    def _increment_character_usage(self, user_id: str, character_id: str) -> None:
        with self.session_factory() as db:
            db.execute(
                update(Character)
                .where(Character.id == character_id, Character.user_id == user_id)
                .values(usage_count=Character.usage_count + 1, updated_at=utcnow())
            )
            db.commit()

    # ==================== CONVERSATIONS ====================

    async def create_conversation(
        self,
        user_id: str,
        character_id: str,
        title: Optional[str] = None
    ) -> Conversation:
        return await run_in_threadpool(self._create_conversation, user_id, character_id, title)

    def _create_conversation(self, user_id: str, character_id: str, title: Optional[str]) -> Conversation:
        now = utcnow()
        with self.session_factory() as db:
            conversation = Conversation(
                user_id=user_id,
                character_id=character_id,
                title=title or f"Conversation {now.date().isoformat()}",
                message_count=0,
                last_message_at=now,
                created_at=now,
            )
            db.add(conversation)
            db.commit()
            db.refresh(conversation)
            logger.info(f"✅ Created conversation {conversation.id} with character {character_id}")
            return conversation

    async def get_conversation(self, user_id: str, conversation_id: str) -> Optional[Conversation]:
        """Get a conversation by key. Conversations owned by another user are absent."""
        return await run_in_threadpool(self._get_conversation, user_id, conversation_id)

    def _get_conversation(self, user_id: str, conversation_id: str) -> Optional[Conversation]:
        with self.session_factory() as db:
            return db.query(Conversation).filter(
                Conversation.id == conversation_id,
                Conversation.user_id == user_id
            ).first()

    async def list_conversations(self, user_id: str, limit: int = 50) -> List[Conversation]:
        """Most recently active first."""
        return await run_in_threadpool(self._list_conversations, user_id, limit)

    def _list_conversations(self, user_id: str, limit: int) -> List[Conversation]:
        with self.session_factory() as db:
            return db.query(Conversation).filter(
                Conversation.user_id == user_id
            ).order_by(Conversation.last_message_at.desc()).limit(limit).all()

    async def touch_conversation(self, user_id: str, conversation_id: str) -> None:
        """Bump message_count and last_message_at in a single statement."""
        await run_in_threadpool(self._touch_conversation, user_id, conversation_id)

    def _touch_conversation(self, user_id: str, conversation_id: str) -> None:
        with self.session_factory() as db:
            db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id, Conversation.user_id == user_id)
                .values(message_count=Conversation.message_count + 1, last_message_at=utcnow())
            )
            db.commit()

    # ==================== MESSAGES ====================

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tokens: Optional[int] = None,
        model: Optional[str] = None
    ) -> Message:
        """
        Append one message to a conversation's log.

        The timestamp is strictly later than every message already in the
        conversation, so the log order matches the write order.
        """
        if role not in MessageRole.ALL:
            raise ValueError(f"Unknown message role: {role}")
        return await run_in_threadpool(self._append_message, conversation_id, role, content, tokens, model)

    def _append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tokens: Optional[int],
        model: Optional[str]
    ) -> Message:
        with self.session_factory() as db:
            timestamp = utcnow()
            latest = db.query(func.max(Message.timestamp)).filter(
                Message.conversation_id == conversation_id
            ).scalar()
            if latest is not None and timestamp <= latest:
                timestamp = latest + timedelta(microseconds=1)

            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                tokens=tokens,
                model=model,
                timestamp=timestamp,
                expires_at=timestamp + self.retention,
            )
            db.add(message)
            db.commit()
            db.refresh(message)
            return message

    async def get_recent_messages(self, conversation_id: str, limit: int) -> List[Message]:
        """The newest `limit` unexpired messages, newest first."""
        return await run_in_threadpool(self._get_recent_messages, conversation_id, limit)

    def _get_recent_messages(self, conversation_id: str, limit: int) -> List[Message]:
        with self.session_factory() as db:
            return db.query(Message).filter(
                Message.conversation_id == conversation_id,
                Message.expires_at > utcnow()
            ).order_by(Message.timestamp.desc(), Message.id.desc()).limit(limit).all()

    async def list_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        before: Optional[str] = None
    ) -> Tuple[List[Message], Optional[str]]:
        """
        Page through history backwards.

        Args:
            conversation_id: Conversation to read
            limit: Page size
            before: Message id cursor; only messages older than it are returned

        Returns:
            (messages oldest-first, cursor for the previous page or None)
        """
        return await run_in_threadpool(self._list_messages, conversation_id, limit, before)

    def _list_messages(
        self,
        conversation_id: str,
        limit: int,
        before: Optional[str]
    ) -> Tuple[List[Message], Optional[str]]:
        with self.session_factory() as db:
            query = db.query(Message).filter(
                Message.conversation_id == conversation_id,
                Message.expires_at > utcnow()
            )

            if before:
                anchor = db.query(Message).filter(
                    Message.id == before,
                    Message.conversation_id == conversation_id
                ).first()
                if anchor is None:
                    return [], None
                query = query.filter(or_(
                    Message.timestamp < anchor.timestamp,
                    and_(Message.timestamp == anchor.timestamp, Message.id < anchor.id)
                ))

            rows = query.order_by(Message.timestamp.desc(), Message.id.desc()).limit(limit + 1).all()

        has_more = len(rows) > limit
        page = rows[:limit]
        page.reverse()
        next_cursor = page[0].id if has_more and page else None
        return page, next_cursor

    async def purge_expired_messages(self) -> int:
        """Delete messages past their retention window. Returns the number removed."""
        return await run_in_threadpool(self._purge_expired_messages)

    def _purge_expired_messages(self) -> int:
        with self.session_factory() as db:
            result = db.execute(
                delete(Message).where(Message.expires_at <= utcnow())
            )
            db.commit()
            removed = result.rowcount or 0
        if removed:
            logger.info(f"🧹 Purged {removed} expired message(s)")
        return removed
