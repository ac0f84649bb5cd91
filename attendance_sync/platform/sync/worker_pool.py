"""Bounded asyncio worker pool over a shared work queue.

Each item is claimed exactly once: workers take items from one queue with
``get_nowait`` and no item is ever put back. A worker checks the stop
signal before claiming the next item, so stopping never interrupts work in
progress; it only keeps new items from being started.
"""

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

if TYPE_CHECKING:
    from attendance_sync.core.logging import ContextualLogger
    from attendance_sync.core.protocols import SyncMetrics

T = TypeVar("T")

ItemHandler = Callable[[T], Awaitable[None]]


class AsyncWorkerPool(Generic[T]):
    """Fixed number of workers draining a queue of items.

    The first unexpected exception from a handler stops every worker from
    claiming further items; in-flight handlers are allowed to finish and the
    exception is then re-raised from ``run``.
    """

    def __init__(
        self,
        max_workers: int,
        logger: "ContextualLogger",
        metrics: Optional["SyncMetrics"] = None,
    ) -> None:
        """Initialize the pool.

        Args:
            max_workers: Upper bound on concurrently running handlers.
            logger: Contextual logger.
            metrics: Optional metrics sink for the active-worker gauge.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self.logger = logger
        self._metrics = metrics
        self._active = 0
        self._aborted = False

    @property
    def active_workers(self) -> int:
        return self._active

    async def run(
        self,
        items: Iterable[T],
        handler: ItemHandler,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> int:
        """Process every item unless stopped.

        Args:
            items: Work items, claimed in iteration order.
            handler: Coroutine function run once per claimed item.
            should_stop: Checked before each claim; True drains the queue.

        Returns:
            Number of items left unclaimed.
        """
        queue: "asyncio.Queue[T]" = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)
        if queue.empty():
            return 0

        self._aborted = False
        worker_count = min(self.max_workers, queue.qsize())
        workers: List[asyncio.Task] = [
            asyncio.create_task(self._worker(i, queue, handler, should_stop), name=f"worker-{i}")
            for i in range(worker_count)
        ]
        self.logger.debug(f"Started {worker_count} workers for {queue.qsize()} items")

        try:
            done, _ = await asyncio.wait(workers)
        except asyncio.CancelledError:
            self.logger.info(f"Cancelling {len(workers)} workers...")
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        self._check_task_errors(done)
        return queue.qsize()

    async def _worker(
        self,
        worker_id: int,
        queue: "asyncio.Queue[T]",
        handler: ItemHandler,
        should_stop: Callable[[], bool],
    ) -> None:
        while not (self._aborted or should_stop()):
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._set_active(self._active + 1)
            try:
                await handler(item)
            except Exception:
                self._aborted = True
                raise
            finally:
                self._set_active(self._active - 1)
                queue.task_done()

    def _set_active(self, value: int) -> None:
        self._active = value
        if self._metrics is not None:
            self._metrics.set_active_workers(value)

    def _check_task_errors(self, tasks: Iterable[asyncio.Task]) -> None:
        """Re-raise the first worker error, logging any others."""
        errors = [task.exception() for task in tasks if not task.cancelled() and task.exception()]
        if not errors:
            return
        for extra in errors[1:]:
            self.logger.error(f"Additional worker error: {extra}", exc_info=extra)
        self.logger.error(f"Unexpected error in worker: {errors[0]}", exc_info=errors[0])
        raise errors[0]
