"""
Chat relay engine: turns one inbound chat frame into streamed token frames,
a terminal frame and a durable record of the exchange.

Each frame runs one exchange through these states:

    VALIDATING -> LOADING -> RECORDING_INPUT -> ASSEMBLING_CONTEXT
        -> STREAMING -> RECORDING_OUTPUT -> FINALIZING -> DONE

Any state can end in FAILED. Once RECORDING_INPUT has completed the user
message stays stored whatever happens next.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union
import asyncio
import logging

from pydantic import ValidationError

from velora.errors import ErrorKind, RelayError
from velora.models.message import Message, MessageRole
from velora.schemas.frames import ChatFrame, DoneFrame, ErrorFrame, OutboundFrame, TokenFrame
from velora.services.completion_provider import CompletionProvider
from velora.services.connection_registry import ConnectionRegistry
from velora.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Missing required fields: conversationId, content, userId"


class ExchangeState(str, Enum):
    VALIDATING = "validating"
    LOADING = "loading"
    RECORDING_INPUT = "recording_input"
    ASSEMBLING_CONTEXT = "assembling_context"
    STREAMING = "streaming"
    RECORDING_OUTPUT = "recording_output"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExchangeOutcome:
    """How one exchange ended. Recorded in logs and returned to the caller."""
    state: ExchangeState
    status_code: int
    error_kind: Optional[ErrorKind] = None
    failed_at: Optional[ExchangeState] = None
    message_id: Optional[str] = None
    tokens: Optional[int] = None
    delivery_failed: bool = False


class Exchange:
    """Mutable state of one in-flight exchange."""

    def __init__(self, connection_id: str, frame: Optional[ChatFrame] = None):
        self.connection_id = connection_id
        self.frame = frame
        self.state = ExchangeState.VALIDATING
        self.delivery_failed = False

    def advance(self, state: ExchangeState) -> None:
        logger.debug(f"Exchange on {self.connection_id}: {self.state.value} -> {state.value}")
        self.state = state


class RelayEngine:
    """
    Runs chat exchanges against the store, the completion provider and the
    connection registry it is constructed with.
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: CompletionProvider,
        registry: ConnectionRegistry,
        history_limit: int = 20
    ):
        self.store = store
        self.provider = provider
        self.registry = registry
        self.history_limit = history_limit

    # ==================== ENTRY POINTS ====================

    @staticmethod
    def parse_frame(raw: Union[str, bytes]) -> ChatFrame:
        """
        Validate an inbound frame.

        Raises:
            RelayError: INVALID_REQUEST for malformed JSON or a missing or
                empty conversationId, content or userId.
        """
        try:
            return ChatFrame.model_validate_json(raw)
        except ValidationError as e:
            raise RelayError(ErrorKind.INVALID_REQUEST, MISSING_FIELDS_MESSAGE) from e

    async def handle_message(self, connection_id: str, raw: Union[str, bytes]) -> ExchangeOutcome:
        """Validate a raw frame and run its exchange to completion or failure."""
        try:
            frame = self.parse_frame(raw)
        except RelayError as e:
            return await self.reject(connection_id, e)
        return await self.run_exchange(connection_id, frame)

    async def reject(self, connection_id: str, error: RelayError) -> ExchangeOutcome:
        """Fail an exchange whose frame never validated. No store calls are made."""
        return await self._fail(Exchange(connection_id), error)

    async def run_exchange(self, connection_id: str, frame: ChatFrame) -> ExchangeOutcome:
        """
        Run one validated exchange.

        Every failure is caught here and turned into a single error frame;
        nothing propagates to other exchanges.
        """
        exchange = Exchange(connection_id, frame)
        logger.info(
            f"📨 Processing chat message: conversation={frame.conversation_id}, "
            f"user={frame.user_id}, connection={connection_id}"
        )

        try:
            return await self._run(exchange)
        except asyncio.CancelledError:
            logger.warning(
                f"🛑 Exchange on conversation {frame.conversation_id} cancelled during {exchange.state.value}"
            )
            raise
        except RelayError as e:
            return await self._fail(exchange, e)
        except Exception as e:
            if exchange.state == ExchangeState.STREAMING:
                error = RelayError(ErrorKind.UPSTREAM_FAILURE, f"Completion provider error: {str(e)}")
            else:
                error = RelayError(ErrorKind.INTERNAL_ERROR)
            logger.error(
                f"❌ Unexpected error during {exchange.state.value} on conversation "
                f"{frame.conversation_id}: {str(e)}",
                exc_info=True
            )
            return await self._fail(exchange, error)

    # ==================== STATE MACHINE ====================

    async def _run(self, exchange: Exchange) -> ExchangeOutcome:
        frame = exchange.frame

        exchange.advance(ExchangeState.LOADING)
        conversation = await self.store.get_conversation(frame.user_id, frame.conversation_id)
        if not conversation:
            raise RelayError(ErrorKind.NOT_FOUND, "Conversation not found")

        character = await self.store.get_character(frame.user_id, conversation.character_id)
        if not character:
            raise RelayError(ErrorKind.NOT_FOUND, "Character not found")

        # The user message must be durable before generation starts.
        exchange.advance(ExchangeState.RECORDING_INPUT)
        user_message = await self.store.append_message(
            frame.conversation_id, MessageRole.USER, frame.content
        )
        logger.info(f"✅ User message saved: message_id={user_message.id}")

        exchange.advance(ExchangeState.ASSEMBLING_CONTEXT)
        recent_messages = await self.store.get_recent_messages(frame.conversation_id, self.history_limit)
        context = self.build_context(character.system_prompt, recent_messages)
        logger.info(f"🔧 Context built: {len(context)} messages ({len(context) - 1} from history)")

        exchange.advance(ExchangeState.STREAMING)
        buffer: List[str] = []
        stream = await self.provider.stream_completion(context)
        async for token in stream:
            buffer.append(token)
            await self._deliver(exchange, TokenFrame(content=token))
        completion = stream.result()
        logger.info(
            f"✅ Completion finished: {len(buffer)} increment(s), model={completion.model}, "
            f"tokens={completion.tokens}{' (estimated)' if completion.estimated else ''}"
        )

        exchange.advance(ExchangeState.RECORDING_OUTPUT)
        assistant_message = await self.store.append_message(
            frame.conversation_id,
            MessageRole.ASSISTANT,
            "".join(buffer),
            tokens=completion.tokens,
            model=completion.model,
        )

        exchange.advance(ExchangeState.FINALIZING)
        await self.store.touch_conversation(frame.user_id, frame.conversation_id)
        await self.store.increment_character_usage(frame.user_id, character.id)
        await self._deliver(exchange, DoneFrame(message_id=assistant_message.id, tokens=completion.tokens))

        exchange.advance(ExchangeState.DONE)
        logger.info(
            f"🎉 Chat message processed: conversation={frame.conversation_id}, "
            f"message_id={assistant_message.id}, tokens={completion.tokens}, status=200"
        )
        return ExchangeOutcome(
            state=ExchangeState.DONE,
            status_code=200,
            message_id=assistant_message.id,
            tokens=completion.tokens,
            delivery_failed=exchange.delivery_failed,
        )

    def build_context(self, system_prompt: str, recent_messages: Sequence[Message]) -> List[Dict[str, str]]:
        """
        Build the context window: the system prompt followed by at most
        history_limit messages, oldest first.

        Args:
            system_prompt: The character's system prompt
            recent_messages: History as returned by the store, newest first
        """
        history = list(recent_messages[:self.history_limit])
        history.reverse()

        context = [{"role": MessageRole.SYSTEM, "content": system_prompt}]
        context.extend({"role": msg.role, "content": msg.content} for msg in history)
        return context

    # ==================== DELIVERY & FAILURE ====================

    async def _deliver(self, exchange: Exchange, frame: OutboundFrame) -> None:
        """
        Send a frame for this exchange. After the first failed send the
        client is considered gone and later frames are dropped.
        """
        if exchange.delivery_failed:
            return
        try:
            await self.registry.send(exchange.connection_id, frame)
        except RelayError as e:
            exchange.delivery_failed = True
            logger.warning(
                f"⚠️ Delivery failed on {exchange.connection_id} during {exchange.state.value}, "
                f"continuing without client: {e.message}"
            )

    async def _fail(self, exchange: Exchange, error: RelayError) -> ExchangeOutcome:
        failed_at = exchange.state
        exchange.advance(ExchangeState.FAILED)

        logger.error(
            f"❌ Chat exchange failed at {failed_at.value}: kind={error.kind.value}, "
            f"status={error.status_code}, error={error.message}"
        )
        await self._deliver(exchange, ErrorFrame(error=error.message))

        return ExchangeOutcome(
            state=ExchangeState.FAILED,
            status_code=error.status_code,
            error_kind=error.kind,
            failed_at=failed_at,
            delivery_failed=exchange.delivery_failed,
        )
