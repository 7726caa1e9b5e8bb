"""Background dispatcher for fire-and-forget notifications.

Jobs are coroutine factories queued from request handlers and run by a
single worker task, each retried with exponential backoff. A job that
keeps failing is logged and dropped; the submitting request never sees it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from src.core.config import get_settings

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]

# Backoff bounds between attempts (seconds)
RETRY_WAIT_MULTIPLIER = 1.0
RETRY_WAIT_MAX_SECONDS = 10.0

# How long shutdown waits for queued jobs before cancelling them
DRAIN_TIMEOUT_SECONDS = 5.0


class NotificationDispatcher:
    """Queue of notification jobs drained by one worker task."""

    def __init__(
        self,
        max_attempts: int | None = None,
        retry_wait_multiplier: float = RETRY_WAIT_MULTIPLIER,
    ) -> None:
        self.max_attempts = max_attempts or get_settings().notification_max_attempts
        self.retry_wait_multiplier = retry_wait_multiplier
        self._queue: asyncio.Queue[tuple[str, JobFactory]] | None = None
        self._worker: asyncio.Task | None = None
        self._detached: set[asyncio.Task] = set()
        self._completed = 0
        self._failed = 0

    @property
    def is_running(self) -> bool:
        """Check if the worker task is alive."""
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start the worker task."""
        if self.is_running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._worker_loop())
        logger.info("Notification dispatcher started")

    async def stop(self, drain_timeout: float = DRAIN_TIMEOUT_SECONDS) -> None:
        """Stop the worker, giving queued jobs a bounded time to finish."""
        if self._queue is not None and self.is_running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Notification dispatcher stopped with %d jobs pending", self._queue.qsize()
                )

        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            logger.info("Notification dispatcher stopped")

        if self._detached:
            await asyncio.gather(*self._detached, return_exceptions=True)

    def submit(self, name: str, factory: JobFactory) -> None:
        """Schedule a job. Never raises and never blocks.

        Args:
            name: Label used in logs, e.g. "order_confirmation:0101251200".
            factory: Zero-argument callable returning the awaitable to run.
                It is called again on every retry.
        """
        if self.is_running and self._queue is not None:
            self._queue.put_nowait((name, factory))
            return

        try:
            task = asyncio.get_running_loop().create_task(self._run_job(name, factory))
        except RuntimeError:
            logger.warning("No event loop running; dropping notification %s", name)
            return

        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    async def drain(self) -> None:
        """Wait until every submitted job has finished."""
        if self._queue is not None and self.is_running:
            await self._queue.join()
        if self._detached:
            await asyncio.gather(*self._detached, return_exceptions=True)

    async def _worker_loop(self) -> None:
        """Run queued jobs one at a time."""
        assert self._queue is not None
        while True:
            name, factory = await self._queue.get()
            try:
                await self._run_job(name, factory)
            finally:
                self._queue.task_done()

    async def _run_job(self, name: str, factory: JobFactory) -> None:
        """Run one job with retries; log instead of raising on final failure."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_multiplier, max=RETRY_WAIT_MAX_SECONDS),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await factory()
        except Exception as e:
            self._failed += 1
            logger.error(
                "Notification %s failed after %d attempts: %s", name, self.max_attempts, e
            )
            return

        self._completed += 1
        logger.debug("Notification %s delivered", name)

    def get_stats(self) -> dict:
        """Get dispatcher counters."""
        return {
            "running": self.is_running,
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "completed": self._completed,
            "failed": self._failed,
        }


# Global singleton instance
_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get or create the global notification dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


async def init_notification_dispatcher() -> NotificationDispatcher:
    """Start the dispatcher worker. Call at app startup."""
    dispatcher = get_notification_dispatcher()
    await dispatcher.start()
    return dispatcher


async def shutdown_notification_dispatcher() -> None:
    """Stop the dispatcher worker. Call at app shutdown."""
    global _dispatcher
    if _dispatcher:
        await _dispatcher.stop()
        _dispatcher = None
