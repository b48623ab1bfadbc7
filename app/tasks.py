import asyncio
import collections
import time
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from app.logs import get_logger, log_event
from app.telemetry import ANALYSIS_QUEUE_DEPTH, ANALYSIS_TASKS_TOTAL

logger = get_logger("tasks")

JobFactory = Callable[[], Awaitable[Any]]
Job = Tuple[str, str, JobFactory, float]


class AnalysisTaskQueue:
    """In-process queue of fire-and-forget analysis jobs.

    ``submit`` never raises and never blocks the request that enqueued the job.
    Workers are started and stopped by the app lifespan; when no worker is
    running (e.g. a bare script) jobs run as detached tasks instead. Failures
    are logged, counted and kept in a bounded list for inspection.
    """

    def __init__(self, concurrency: int = 2, failures_kept: int = 50):
        self.concurrency = max(1, int(concurrency))
        self.failures: Deque[Dict[str, Any]] = collections.deque(maxlen=max(1, failures_kept))
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._detached: set = set()

    @property
    def started(self) -> bool:
        return bool(self._workers)

    def qsize(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue()
        for i in range(self.concurrency):
            self._workers.append(asyncio.create_task(self._worker(i)))
        log_event(logger, "analysis_worker_config", workerConcurrency=self.concurrency)

    async def stop(self) -> None:
        tasks = self._workers + list(self._detached)
        self._workers = []
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._detached.clear()

    def submit(self, name: str, session_id: str, factory: JobFactory) -> None:
        try:
            job: Job = (name, session_id, factory, time.perf_counter())
            if self._queue is not None and self._workers:
                self._queue.put_nowait(job)
                ANALYSIS_QUEUE_DEPTH.set(self._queue.qsize())
            else:
                t = asyncio.get_running_loop().create_task(self._run(job, worker_index=-1))
                self._detached.add(t)
                t.add_done_callback(self._detached.discard)
            ANALYSIS_TASKS_TOTAL.labels(status="submitted").inc()
            log_event(logger, "analysis_task_submitted", task=name, sessionId=session_id, queueDepth=self.qsize())
        except Exception as e:
            self._record_failure(name, session_id, e)

    async def join(self) -> None:
        """Wait until every queued and detached job has finished."""
        if self._queue is not None and self._workers:
            await self._queue.join()
        while self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    async def _worker(self, worker_index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                ANALYSIS_QUEUE_DEPTH.set(queue.qsize())
                await self._run(job, worker_index)
            finally:
                queue.task_done()

    async def _run(self, job: Job, worker_index: int) -> None:
        name, session_id, factory, enqueued = job
        started = time.perf_counter()
        try:
            await factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(name, session_id, e)
            return
        ANALYSIS_TASKS_TOTAL.labels(status="success").inc()
        log_event(
            logger,
            "analysis_task_done",
            task=name,
            sessionId=session_id,
            workerIndex=worker_index,
            queueLatencyMs=int((started - enqueued) * 1000),
            durationMs=int((time.perf_counter() - started) * 1000),
        )

    def _record_failure(self, name: str, session_id: str, err: Exception) -> None:
        ANALYSIS_TASKS_TOTAL.labels(status="failure").inc()
        self.failures.append({
            "task": name,
            "sessionId": session_id,
            "error": f"{type(err).__name__}: {err}",
            "at": time.time(),
        })
        log_event(logger, "analysis_task_error", task=name, sessionId=session_id, error=str(err), errorType=type(err).__name__)
