"""
Per-conversation single-writer queues.

Exchanges submitted for the same conversation run one after another, in
submission order, on a worker task owned by that conversation. Workers are
started on demand and exit as soon as their queue is empty, so different
conversations never wait on each other.
"""
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple
import asyncio
import logging

from velora.utils.background_task_manager import BackgroundTaskManager

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class ConversationSerializer:
    """Single-writer job queues keyed by conversation id."""

    def __init__(self, task_manager: BackgroundTaskManager):
        self.task_manager = task_manager
        self._pending: Dict[str, Deque[Tuple[Job, Optional[str]]]] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    def submit(self, conversation_id: str, job: Job, key: Optional[str] = None) -> None:
        """
        Queue a job behind any earlier jobs for the same conversation.

        Args:
            conversation_id: Serialization key
            job: Zero-argument coroutine function to run
            key: Task-manager key (the connection id) the job's task is registered under
        """
        self._pending.setdefault(conversation_id, deque()).append((job, key))

        if conversation_id not in self._workers:
            worker = asyncio.create_task(
                self._drain(conversation_id),
                name=f"conversation-writer-{conversation_id}"
            )
            self._workers[conversation_id] = worker
            self.task_manager.register_task(worker)

    def discard(self, key: str) -> int:
        """Drop queued jobs registered under key that have not started yet."""
        dropped = 0
        for jobs in self._pending.values():
            kept = [item for item in jobs if item[1] != key]
            dropped += len(jobs) - len(kept)
            jobs.clear()
            jobs.extend(kept)
        if dropped:
            logger.info(f"🛑 Dropped {dropped} queued exchange(s) for {key}")
        return dropped

    async def join(self) -> None:
        """Wait until every worker has drained its queue."""
        while self._workers:
            await asyncio.wait(list(self._workers.values()))

    async def _drain(self, conversation_id: str) -> None:
        jobs = self._pending[conversation_id]
        try:
            while jobs:
                job, key = jobs.popleft()
                task = asyncio.create_task(job(), name=f"exchange-{conversation_id}")
                self.task_manager.register_task(task, key)
                # wait() returns when the job ends, cancelled or not, without
                # propagating its outcome into the worker.
                await asyncio.wait({task})
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        f"❌ Queued exchange for conversation {conversation_id} raised: {task.exception()}"
                    )
        finally:
            self._workers.pop(conversation_id, None)
            if not self._pending.get(conversation_id):
                self._pending.pop(conversation_id, None)
