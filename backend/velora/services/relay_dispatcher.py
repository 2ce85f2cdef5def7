"""
Relay dispatcher: schedules one task per inbound chat frame.
"""
from typing import Optional, Union
import asyncio
import logging

from velora.errors import ErrorKind, RelayError
from velora.services.conversation_serializer import ConversationSerializer
from velora.services.relay_engine import RelayEngine
from velora.utils.background_task_manager import BackgroundTaskManager

logger = logging.getLogger(__name__)


class RelayDispatcher:
    """
    Runs exchanges concurrently and applies the connection policies.

    serialize_per_conversation: exchanges for one conversation run one at a
        time in arrival order; otherwise every exchange starts immediately.
    cancel_on_disconnect: closing a connection cancels its in-flight
        exchanges; otherwise they finish and persist the reply.
    """

    def __init__(
        self,
        engine: RelayEngine,
        task_manager: BackgroundTaskManager,
        serialize_per_conversation: bool = False,
        cancel_on_disconnect: bool = False
    ):
        self.engine = engine
        self.task_manager = task_manager
        self.cancel_on_disconnect = cancel_on_disconnect
        self.serializer = ConversationSerializer(task_manager) if serialize_per_conversation else None

    def dispatch(self, connection_id: str, raw: Union[str, bytes]) -> Optional[asyncio.Task]:
        """
        Schedule the exchange for one raw frame.

        Returns the exchange task, or None when the exchange was queued
        behind another exchange for the same conversation.
        """
        if self.task_manager.is_shutting_down():
            error = RelayError(ErrorKind.INTERNAL_ERROR, "Server is shutting down")
            return self._spawn(connection_id, self.engine.reject(connection_id, error))

        try:
            frame = self.engine.parse_frame(raw)
        except RelayError as e:
            return self._spawn(connection_id, self.engine.reject(connection_id, e))

        if self.serializer is not None:
            self.serializer.submit(
                frame.conversation_id,
                lambda: self.engine.run_exchange(connection_id, frame),
                key=connection_id,
            )
            return None

        return self._spawn(connection_id, self.engine.run_exchange(connection_id, frame))

    def connection_closed(self, connection_id: str) -> None:
        """Apply the disconnect policy to the connection's exchanges."""
        if self.cancel_on_disconnect:
            dropped = self.serializer.discard(connection_id) if self.serializer is not None else 0
            cancelled = self.task_manager.cancel_tasks(connection_id)
            if cancelled or dropped:
                logger.info(
                    f"🛑 Connection {connection_id} closed: cancelled {cancelled} running "
                    f"and {dropped} queued exchange(s)"
                )
            return

        running = self.task_manager.running_count(connection_id)
        if running:
            logger.info(
                f"Connection {connection_id} closed with {running} exchange(s) in flight, "
                f"letting them finish"
            )

    async def drain(self, timeout: float) -> None:
        """
        Let exchanges still queued per conversation run before shutdown
        cancels whatever is left. Waits at most timeout seconds.
        """
        if self.serializer is None:
            return
        try:
            await asyncio.wait_for(self.serializer.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Queued exchanges did not finish within {timeout}s - cancelling them")

    def _spawn(self, connection_id: str, coro) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"exchange-{connection_id}")
        self.task_manager.register_task(task, connection_id)
        return task
