# src/queues/worker.py
# Воркер очереди: тянет задачи из JobQueue и выполняет их с ограниченной
# конкурентностью. Ошибки изолированы по задачам: упавшая задача уходит в
# ретрай/failed, цикл продолжает работать.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from src.queues.job_queue import Job, JobQueue

log = logging.getLogger(__name__)

Processor = Callable[[Job], Awaitable[Any]]


class Worker:
    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        *,
        concurrency: int = 10,
        poll_interval: float = 0.5,
        log_completed: bool = True,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.queue = queue
        self._processor = processor
        self.concurrency = concurrency
        self._poll_interval = poll_interval
        self._log_completed = log_completed

        self._semaphore = asyncio.Semaphore(concurrency)
        self._inflight: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Запускает цикл опроса в текущем event loop."""
        if self.running:
            return
        self._stopping.clear()
        self._loop_task = asyncio.get_running_loop().create_task(self._run())
        log.info("Worker for %s started (concurrency=%s)", self.queue.name, self.concurrency)

    async def close(self) -> None:
        """Прекращает брать новые задачи и дожидается уже взятых."""
        self._stopping.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        log.info("Worker for %s closed", self.queue.name)

    async def _next_job(self) -> Optional[Job]:
        await self.queue.promote_delayed()
        return await self.queue.fetch_next()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _run(self) -> None:
        while not self._stopping.is_set():
            await self._semaphore.acquire()
            if self._stopping.is_set():
                self._semaphore.release()
                break
            try:
                job = await self._next_job()
            except Exception:
                self._semaphore.release()
                log.exception("Worker for %s could not fetch a job", self.queue.name)
                await self._idle()
                continue

            if job is None:
                self._semaphore.release()
                await self._idle()
                continue

            task = asyncio.create_task(self._handle(job))
            self._inflight.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        self._semaphore.release()

    async def process_next(self) -> bool:
        """
        Выполнить одну доступную задачу прямо сейчас (без пула).
        Возвращает False, если очередь пуста.
        """
        job = await self._next_job()
        if job is None:
            return False
        await self._handle(job)
        return True

    async def _handle(self, job: Job) -> None:
        try:
            result = await self._processor(job)
        except Exception as exc:
            log.error("%s job %s failed: %s", self.queue.name, job.id, exc)
            try:
                outcome = await self.queue.fail(job, exc)
            except Exception:
                log.exception("%s job %s: could not record failure", self.queue.name, job.id)
                return
            if outcome == "failed":
                log.error(
                    "%s job %s exhausted %s attempts",
                    self.queue.name,
                    job.id,
                    job.opts.attempts,
                )
            return

        try:
            await self.queue.complete(job, result)
        except Exception:
            log.exception("%s job %s: could not mark completed", self.queue.name, job.id)
            return
        if self._log_completed:
            log.debug("%s job %s completed", self.queue.name, job.id)
