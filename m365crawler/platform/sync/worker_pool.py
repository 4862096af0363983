"""Bounded task dispatch for crawl work."""

import asyncio
import os
from typing import Any, Callable, List, Optional

from m365crawler.core.config import settings
from m365crawler.core.exceptions import CrawlerException
from m365crawler.core.logging import ContextualLogger
from m365crawler.core.logging import logger as default_logger


class CrawlTaskDispatcher:
    """Runs crawl tasks on a fixed pool of worker tasks fed by a bounded queue.

    When the queue is full the submitting coroutine runs the task itself. Work
    is never dropped and the walker never blocks on a full queue, which also
    throttles discovery to the speed of processing.

    The first exception escaping a task is kept and re-raised by the next
    `submit` (and by `raise_if_failed`) so the crawl can abort.
    """

    def __init__(
        self,
        requested_workers: int = 1,
        logger: Optional[ContextualLogger] = None,
        cpu_count: Optional[int] = None,
    ):
        """Initialize the dispatcher.

        Args:
            requested_workers: Requested pool size; capped at a multiple of the CPU count.
            logger: Contextual logger with crawl metadata.
            cpu_count: CPU count override, defaults to os.cpu_count().
        """
        cpus = cpu_count or os.cpu_count() or 1
        cap = settings.CRAWLER_MAX_POOL_FACTOR * cpus
        self.max_workers = max(1, min(requested_workers, cap))
        self.logger = logger or default_logger
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_workers)
        self._workers: List[asyncio.Task] = []
        self._accepting = True
        self._failure: Optional[BaseException] = None
        self.submitted = 0
        self.inline_runs = 0

    @property
    def failure(self) -> Optional[BaseException]:
        """The first exception that escaped a task, if any."""
        return self._failure

    def _ensure_started(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"crawl-worker-{i}")
            for i in range(self.max_workers)
        ]
        self.logger.debug(f"WORKER_POOL started {self.max_workers} workers")

    async def submit(self, coro: Callable, *args: Any, **kwargs: Any) -> None:
        """Queue a task, or run it inline when the queue is full.

        Raises:
            The first failure recorded by any task, once one exists.
            CrawlerException: If the dispatcher has been shut down.
        """
        self.raise_if_failed()
        if not self._accepting:
            raise CrawlerException("Dispatcher is shut down")
        self._ensure_started()

        self.submitted += 1
        task_id = f"task_{self.submitted}"
        try:
            self.queue.put_nowait((task_id, coro, args, kwargs))
            self.logger.debug(
                f"WORKER_SUBMIT [{task_id}] queued (depth: {self.queue.qsize()}/{self.max_workers})"
            )
        except asyncio.QueueFull:
            self.inline_runs += 1
            self.logger.debug(f"WORKER_INLINE [{task_id}] queue full, running in caller")
            await self._run(task_id, coro, args, kwargs)
        self.raise_if_failed()

    async def _run(self, task_id: str, coro: Callable, args: tuple, kwargs: dict) -> None:
        try:
            await coro(*args, **kwargs)
        except Exception as e:
            self.logger.error(f"WORKER_ERROR [{task_id}] {type(e).__name__}: {e}")
            if self._failure is None:
                self._failure = e

    async def _worker(self, index: int) -> None:
        while True:
            task_id, coro, args, kwargs = await self.queue.get()
            try:
                await self._run(task_id, coro, args, kwargs)
            finally:
                self.queue.task_done()

    def raise_if_failed(self) -> None:
        """Re-raise the first task failure, if any."""
        if self._failure is not None:
            raise self._failure

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop accepting work and wait for queued tasks, then stop the workers.

        Args:
            timeout: Seconds to wait for the queue to drain; defaults to settings.

        Returns:
            True when every queued task finished within the timeout.

        Raises:
            asyncio.CancelledError: If the wait is interrupted; workers are cancelled first.
        """
        self._accepting = False
        timeout = settings.CRAWLER_SHUTDOWN_TIMEOUT if timeout is None else timeout
        drained = False
        try:
            await asyncio.wait_for(self.queue.join(), timeout)
            drained = True
        except asyncio.TimeoutError:
            self.logger.warning(
                f"WORKER_POOL tasks still pending after {timeout}s "
                f"({self.queue.qsize()} queued); cancelling workers"
            )
        finally:
            await self.cancel()
        return drained

    async def cancel(self) -> None:
        """Cancel the workers without waiting for queued tasks."""
        self._accepting = False
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
