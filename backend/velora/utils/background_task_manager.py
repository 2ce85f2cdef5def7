"""
Background task manager for tracking and gracefully terminating background tasks.
Chat exchanges run as tasks keyed by the connection that started them, so they
can be cancelled per connection or all at once when the application shuts down.
"""
import asyncio
import logging
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskManager:
    """
    Manages background tasks and handles graceful shutdown.
    Tracks running tasks and cancels them when the application shuts down.
    """

    def __init__(self):
        self._shutdown_flag = False
        self._running_tasks: Set[asyncio.Task] = set()
        self._keyed_tasks: Dict[str, Set[asyncio.Task]] = {}

    def is_shutting_down(self) -> bool:
        """Check if the application is shutting down."""
        return self._shutdown_flag

    def running_count(self, key: Optional[str] = None) -> int:
        if key is None:
            return len(self._running_tasks)
        return len(self._keyed_tasks.get(key, ()))

    def initiate_shutdown(self):
        """Mark the application as shutting down."""
        if not self._shutdown_flag:
            logger.info("🛑 Shutdown initiated - cancelling all background tasks...")
            self._shutdown_flag = True

            # Cancel all running tasks
            for task in list(self._running_tasks):
                if not task.done():
                    logger.info(f"🛑 Cancelling background task: {task.get_name()}")
                    task.cancel()

    def register_task(self, task: asyncio.Task, key: Optional[str] = None):
        """Register a background task for tracking, optionally under a key."""
        self._running_tasks.add(task)
        task.add_done_callback(self._running_tasks.discard)

        if key is not None:
            self._keyed_tasks.setdefault(key, set()).add(task)
            task.add_done_callback(lambda t: self._forget_keyed(key, t))

        logger.debug(f"Registered background task: {task.get_name()}")

    def _forget_keyed(self, key: str, task: asyncio.Task):
        tasks = self._keyed_tasks.get(key)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._keyed_tasks[key]

    def cancel_tasks(self, key: str) -> int:
        """Cancel every unfinished task registered under key. Returns how many were cancelled."""
        cancelled = 0
        for task in list(self._keyed_tasks.get(key, ())):
            if not task.done():
                logger.info(f"🛑 Cancelling background task {task.get_name()} for {key}")
                task.cancel()
                cancelled += 1
        return cancelled

    async def wait_for_shutdown(self, timeout: float = 10.0):
        """Wait for all tasks to complete or timeout during shutdown."""
        if not self.is_shutting_down():
            return

        # Filter out already completed tasks
        active_tasks = [t for t in self._running_tasks if not t.done()]

        if not active_tasks:
            logger.info("✅ No background tasks to wait for")
            return

        logger.info(f"⏳ Waiting for {len(active_tasks)} active task(s)...")
        try:
            await asyncio.wait_for(
                asyncio.gather(*active_tasks, return_exceptions=True),
                timeout=timeout
            )
            logger.info("✅ All background tasks completed")
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Some background tasks did not complete within {timeout}s timeout - forcing shutdown")
            # Force cancel remaining tasks
            for task in active_tasks:
                if not task.done():
                    task.cancel()
