"""Bounded-concurrency work queue for phase jobs.

Jobs are zero-argument callables returning an awaitable. Each accepted job
is spawned as an asyncio task that waits on a semaphore, so jobs start in
the order they were enqueued and at most ``concurrency`` run at once.

The backlog is unbounded: there is no backpressure signal, no priority,
no cancellation and no result propagation. A job that raises is logged
and counted as completed, and the queue keeps serving later jobs.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Set

from src.linear_pilot.events.metrics import PilotMetrics

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class WorkQueue:
    """Semaphore-gated task runner.

    Attributes:
        concurrency: Maximum number of jobs executing at the same time.

    Example:
        >>> queue = WorkQueue(concurrency=2)
        >>> queue.enqueue(lambda: run_planning(issue_id), label="planning")
        >>> await queue.join()
    """

    def __init__(
        self,
        concurrency: int = 2,
        metrics: Optional[PilotMetrics] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self._metrics = metrics
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._waiting = 0
        self._running = 0
        self._completed = 0

        logger.info(
            "Work queue initialized",
            extra={"concurrency": concurrency},
        )

    @property
    def running(self) -> int:
        """Number of jobs currently executing."""
        return self._running

    @property
    def pending(self) -> int:
        """Number of accepted jobs still waiting for a slot."""
        return self._waiting

    @property
    def completed(self) -> int:
        return self._completed

    def enqueue(self, job: Job, label: str = "job") -> None:
        """Accept a job for execution and return immediately.

        Must be called from within a running event loop.

        Args:
            job: Zero-argument callable returning an awaitable.
            label: Short name used in logs and metrics.
        """
        self._waiting += 1
        task = asyncio.get_running_loop().create_task(self._run(job, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.debug(
            "Job enqueued",
            extra={"label": label, "pending": self.pending, "running": self._running},
        )
        self._update_gauges()

    async def join(self) -> None:
        """Wait until every job accepted so far (and any they enqueue) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, job: Job, label: str) -> None:
        async with self._semaphore:
            self._waiting -= 1
            self._running += 1
            self._update_gauges()
            start_time = time.monotonic()
            succeeded = True
            try:
                await job()
            except Exception:
                succeeded = False
                logger.exception(
                    "Queued job raised",
                    extra={"label": label},
                )
            finally:
                duration = time.monotonic() - start_time
                self._running -= 1
                self._completed += 1
                if self._metrics is not None:
                    self._metrics.record_job(label, succeeded, duration)
                self._update_gauges()

    def _update_gauges(self) -> None:
        if self._metrics is not None:
            self._metrics.set_queue_depth(self.pending, self._running)
