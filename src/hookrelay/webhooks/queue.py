"""Delivery queue and worker loop.

Jobs are kept in a min-heap ordered by ``(next_attempt_at, sequence)``:
ready jobs come out FIFO and a retried job is never handed out before its
scheduled time. A single worker task drains the heap. It sleeps until the
earliest deadline or until a new job is pushed, whichever comes first,
and exits once the heap is empty; the next ``put`` starts it again.
"""

import asyncio
import heapq
import itertools
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from .models import DeliveryJob, utcnow

logger = logging.getLogger(__name__)

JobHandler = Callable[[DeliveryJob], Awaitable[None]]


class DeliveryQueue:
    """Deadline-ordered job queue with a single self-restarting worker.

    Example:
        queue = DeliveryQueue(handler=process_job)
        queue.put(job)        # starts the worker if idle
        await queue.join()    # wait until everything (incl. retries) is done
    """

    def __init__(self, handler: JobHandler, clock: Callable[[], datetime] = utcnow):
        """Initialize queue.

        Args:
            handler: Awaited once per dequeued job. Exceptions are logged and
                do not stop the worker.
            clock: Source of the current time, compared against
                ``next_attempt_at``.
        """
        self._handler = handler
        self._clock = clock
        self._heap: List[Tuple[datetime, int, DeliveryJob]] = []
        self._sequence = itertools.count()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._worker: Optional[asyncio.Task] = None
        self._processing = False
        self.worker_starts = 0

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def is_idle(self) -> bool:
        return not self._heap and not self._processing

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def put(self, job: DeliveryJob) -> None:
        """Enqueue a job and make sure the worker is running.

        Must be called from within the event loop that runs the worker.
        """
        heapq.heappush(self._heap, (job.next_attempt_at, next(self._sequence), job))
        self._idle.clear()
        self._wakeup.set()
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        # no await between the check and create_task, so this is atomic within the loop
        if self.is_running:
            return
        self.worker_starts += 1
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name="webhook-delivery-worker"
        )

    async def _run(self) -> None:
        logger.debug("Delivery worker started")
        try:
            while self._heap:
                due_at = self._heap[0][0]
                delay = (due_at - self._clock()).total_seconds()
                if delay > 0:
                    await self._sleep(delay)
                    continue

                _, _, job = heapq.heappop(self._heap)
                self._processing = True
                try:
                    await self._handler(job)
                except Exception as e:
                    logger.error(f"Delivery job {job.job_id} raised: {e}", exc_info=True)
                finally:
                    self._processing = False
        finally:
            if not self._heap:
                self._idle.set()
            logger.debug("Delivery worker idle")

    async def _sleep(self, delay: float) -> None:
        """Wait for ``delay`` seconds or until a new job is pushed."""
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def join(self) -> None:
        """Wait until the queue is empty and no job is being processed."""
        await self._idle.wait()

    async def close(self) -> int:
        """Stop the worker.

        Returns:
            Number of queued jobs that were abandoned.
        """
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

        abandoned = len(self._heap)
        if abandoned:
            logger.warning(f"Delivery queue closed with {abandoned} pending job(s)")
        self._heap.clear()
        self._idle.set()
        return abandoned
