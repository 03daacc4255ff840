"""In-memory job registry for the HTTP surface.

Each job is one orchestration running as an asyncio task on the server's
event loop. Jobs live only as long as the process; nothing is persisted.
Progress and status changes are fanned out to per-job asyncio queues for
WebSocket subscribers.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from reelworks.services.orchestrator import TaskOrchestrator, TaskResult, TaskStatus
from reelworks.services.progress import PHASE_SUBMITTED, ProgressEstimate

logger = logging.getLogger(__name__)

JobFactory = Callable[[str], Awaitable[TaskResult]]


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


_RESULT_TO_JOB = {
    TaskStatus.SUCCEEDED: JobStatus.SUCCEEDED,
    TaskStatus.FAILED: JobStatus.FAILED,
    TaskStatus.CANCELLED: JobStatus.CANCELLED,
}


@dataclass
class JobRecord:
    id: str
    feature: str
    status: JobStatus = JobStatus.QUEUED
    message: str = ""
    progress: ProgressEstimate = field(default_factory=lambda: ProgressEstimate(0.0, PHASE_SUBMITTED))
    result: TaskResult | None = None
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    cancel_requested: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)
    subscribers: set[asyncio.Queue] = field(default_factory=set, repr=False)

    def snapshot(self) -> dict[str, Any]:
        failure = self.result.failure if self.result else None
        return {
            "job_id": self.id,
            "feature": self.feature,
            "status": self.status.value,
            "message": self.message,
            "progress": self.progress.value,
            "phase": self.progress.phase,
            "error_kind": failure.kind.value if failure else None,
            "has_artifact": bool(self.result and self.result.data is not None),
        }


class JobRegistry:
    """Owns one :class:`TaskOrchestrator` and the jobs started through it.

    Finished jobs hold their artifact bytes, so only the newest
    ``max_finished`` of them are retained (0 keeps all). Older ones are
    dropped as new jobs finish.
    """

    def __init__(
        self,
        orchestrator: TaskOrchestrator | None = None,
        *,
        max_finished: int | None = None,
        **orchestrator_kwargs: Any,
    ):
        self._jobs: dict[str, JobRecord] = {}
        if orchestrator is None:
            orchestrator = TaskOrchestrator(**orchestrator_kwargs)
        orchestrator.on_status = self._on_status
        orchestrator.on_progress = self._on_progress
        self.orchestrator = orchestrator
        if max_finished is None:
            max_finished = orchestrator.settings.MAX_FINISHED_JOBS
        self.max_finished = max(max_finished, 0)

    def __len__(self) -> int:
        return len(self._jobs)

    def get(self, job_id: str) -> JobRecord:
        """Raises KeyError for unknown ids."""
        return self._jobs[job_id]

    def jobs(self) -> list[JobRecord]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at)

    # ---- lifecycle ----

    def submit(self, feature: str, factory: JobFactory) -> JobRecord:
        """Start ``factory(job_id)`` as a background task on the running loop."""
        job = JobRecord(id=uuid.uuid4().hex, feature=feature)
        self._jobs[job.id] = job
        job.task = asyncio.get_running_loop().create_task(self._run(job, factory))
        logger.info("Job %s queued (feature=%s)", job.id, feature)
        return job

    async def _run(self, job: JobRecord, factory: JobFactory) -> None:
        if job.cancel_requested:
            job.status = JobStatus.CANCELLED
            job.message = "Cancelled."
            job.finished_at = time.time()
            self._notify(job)
            self._evict_finished()
            return

        job.status = JobStatus.RUNNING
        self._notify(job)
        try:
            result = await factory(job.id)
        except Exception as exc:
            logger.error("Job %s crashed: %s", job.id, exc, exc_info=True)
            job.status = JobStatus.FAILED
            job.message = str(exc) or type(exc).__name__
        else:
            job.result = result
            job.status = _RESULT_TO_JOB[result.status]
            job.message = result.message
            job.progress = ProgressEstimate(result.progress, job.progress.phase)
        job.finished_at = time.time()
        logger.info("Job %s finished: %s", job.id, job.status.value)
        self._notify(job)
        self._evict_finished()

    def _evict_finished(self) -> None:
        if not self.max_finished:
            return
        finished = sorted(
            (j for j in self._jobs.values() if j.finished_at is not None),
            key=lambda j: j.finished_at,
        )
        excess = len(finished) - self.max_finished
        for job in finished[:max(excess, 0)]:
            logger.info("Job %s evicted from registry", job.id)
            self._forget(job)

    def _forget(self, job: JobRecord) -> None:
        self._jobs.pop(job.id, None)
        for queue in job.subscribers:
            queue.put_nowait(None)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation; a finished job is left untouched."""
        job = self.get(job_id)
        if job.status.terminal:
            return False
        job.cancel_requested = True
        self.orchestrator.cancel(job_id)
        return True

    async def discard(self, job_id: str) -> None:
        """Cancel if still running, wait for it to settle, then forget it."""
        job = self.get(job_id)
        self.cancel(job_id)
        if job.task is not None and not job.task.done():
            await asyncio.gather(job.task, return_exceptions=True)
        self._forget(job)

    async def shutdown(self) -> None:
        """Cancel running jobs, drop every record and close the client."""
        for job_id in list(self._jobs):
            if not self._jobs[job_id].status.terminal:
                self.cancel(job_id)
        tasks = [j.task for j in self._jobs.values() if j.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for job in list(self._jobs.values()):
            self._forget(job)
        await self.orchestrator.aclose()

    # ---- fan-out ----

    def subscribe(self, job_id: str) -> asyncio.Queue:
        job = self.get(job_id)
        queue: asyncio.Queue = asyncio.Queue()
        job.subscribers.add(queue)
        queue.put_nowait(job.snapshot())
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            job.subscribers.discard(queue)

    def _notify(self, job: JobRecord) -> None:
        if not job.subscribers:
            return
        message = job.snapshot()
        for queue in job.subscribers:
            queue.put_nowait(message)

    def _on_status(self, slot: str, message: str) -> None:
        job = self._jobs.get(slot)
        if job is not None:
            job.message = message
            self._notify(job)

    def _on_progress(self, slot: str, estimate: ProgressEstimate) -> None:
        job = self._jobs.get(slot)
        if job is not None:
            job.progress = estimate
            self._notify(job)


_registry: JobRegistry | None = None


def get_job_registry() -> JobRegistry:
    """Return the process-wide registry (lazy init)."""
    global _registry
    if _registry is None:
        _registry = JobRegistry()
    return _registry


def set_job_registry(registry: JobRegistry | None) -> None:
    """Install *registry* as the process-wide one (None resets to lazy init)."""
    global _registry
    _registry = registry
