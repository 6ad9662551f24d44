"""In-process work queue: named lanes, bounded retries, uniqueness leases.

A job exposes ``queue``, ``tries``, ``unique_for``, ``unique_id()``,
``handle(attempt)`` and ``failed(exc, attempts)``. ``handle`` raising an error
whose ``recoverable`` flag is false ends the job immediately; otherwise the
queue retries with exponential backoff until ``tries`` is reached.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from toolserver.config import settings
from toolserver.engine.locks import LockStore, create_lock_store

logger = logging.getLogger(__name__)


class QueueJob(Protocol):
    queue: str
    tries: int
    unique_for: int

    def unique_id(self) -> str | None: ...

    async def handle(self, attempt: int) -> None: ...

    async def failed(self, exc: Exception, attempts: int) -> None: ...


class AsyncioWorkQueue:
    def __init__(
        self,
        locks: LockStore | None = None,
        concurrency: int | None = None,
        backoff_seconds: float | None = None,
    ):
        self.locks = locks or create_lock_store()
        self.concurrency = concurrency or settings.worker_concurrency
        self.backoff_seconds = settings.job_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._lanes: dict[str, asyncio.Queue[tuple[QueueJob, str | None]]] = {}
        self._workers: list[asyncio.Task] = []
        self._running = False

    # ── Producer side ────────────────────────────────────────────

    async def enqueue(self, job: QueueJob, queue_name: str | None = None) -> bool:
        """Schedule ``job``; returns False when an identical job is already held."""
        acquired, token = await self._acquire(job)
        if not acquired:
            return False
        lane = self._lane(queue_name or job.queue)
        await lane.put((job, token))
        logger.debug(f"Enqueued job {job.unique_id()} on '{queue_name or job.queue}'")
        return True

    async def run_now(self, job: QueueJob) -> bool:
        """Run ``job`` with its full retry policy on the caller's task."""
        acquired, token = await self._acquire(job)
        if not acquired:
            return False
        await self._process(job, token)
        return True

    async def _acquire(self, job: QueueJob) -> tuple[bool, str | None]:
        key = job.unique_id()
        if key is None:
            return True, None
        token = await self.locks.acquire(key, job.unique_for)
        if token is not None:
            return True, token
        logger.warning(f"Job {key} is already queued or running; skipping duplicate")
        return False, None

    # ── Consumer side ────────────────────────────────────────────

    def _lane(self, name: str) -> asyncio.Queue[tuple[QueueJob, str | None]]:
        lane = self._lanes.get(name)
        if lane is None:
            lane = asyncio.Queue()
            self._lanes[name] = lane
            if self._running:
                self._spawn(name, lane)
        return lane

    def _spawn(self, name: str, lane: asyncio.Queue[tuple[QueueJob, str | None]]) -> None:
        for i in range(self.concurrency):
            self._workers.append(asyncio.create_task(self._work(lane), name=f"{name}-worker-{i}"))

    async def start(self, lanes: tuple[str, ...] = ()) -> None:
        if self._running:
            return
        self._running = True
        for name in lanes:
            self._lane(name)
        for name, lane in self._lanes.items():
            self._spawn(name, lane)
        logger.info(f"Work queue started: lanes={list(self._lanes)} concurrency={self.concurrency}")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await asyncio.gather(*(lane.join() for lane in self._lanes.values()))

    async def stop(self) -> None:
        self._running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        await self.locks.close()
        logger.info("Work queue stopped")

    async def _work(self, lane: asyncio.Queue[tuple[QueueJob, str | None]]) -> None:
        while True:
            job, token = await lane.get()
            try:
                await self._process(job, token)
            except Exception:
                logger.exception(f"Worker crashed while processing job {job.unique_id()}")
            finally:
                lane.task_done()

    async def _process(self, job: QueueJob, token: str | None = None) -> None:
        key = job.unique_id()
        try:
            for attempt in range(1, job.tries + 1):
                try:
                    await job.handle(attempt)
                    return
                except Exception as exc:
                    final = attempt >= job.tries or not getattr(exc, "recoverable", True)
                    if final:
                        logger.error(f"Job {key} failed permanently after {attempt} attempt(s): {exc}")
                        try:
                            await job.failed(exc, attempt)
                        except Exception:
                            logger.exception(f"Failure handler of job {key} raised")
                        return
                    delay = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(f"Job {key} attempt {attempt}/{job.tries} failed: {exc}; retrying in {delay:g}s")
                    if delay:
                        await asyncio.sleep(delay)
        finally:
            if key is not None:
                await self.locks.release(key, token)


_queue: AsyncioWorkQueue | None = None


def get_work_queue() -> AsyncioWorkQueue:
    global _queue
    if _queue is None:
        _queue = AsyncioWorkQueue()
    return _queue
