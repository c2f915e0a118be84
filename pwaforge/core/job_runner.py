"""In-process job runner for generation requests.

``submit`` queues a request on a thread pool and returns a handle;
``observe`` yields every update for that job (any number of observers,
each sees the full sequence) ending with exactly one terminal update;
``cancel`` sets the job's cancel event, which the pipeline checks between
steps and during retry waits.  Jobs do not survive the process; only the
most recent ``max_finished_jobs`` finished jobs stay observable.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum

from pydantic import BaseModel, ConfigDict

from pwaforge.core.pipeline import GenerationPipeline
from pwaforge.models.generation import (
    ErrorKind,
    GenerationOutcome,
    GenerationRequest,
    GenerationState,
    StateTransition,
)

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    PROGRESS = "progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED})

DEFAULT_MAX_FINISHED_JOBS = 256


class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    request: GenerationRequest


class JobUpdate(BaseModel):
    """One event in a job's life."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus
    state: GenerationState | None = None
    message: str = ""
    outcome: GenerationOutcome | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class _Job:
    def __init__(self, handle: JobHandle) -> None:
        self.handle = handle
        self.cancel_event = threading.Event()
        self.updates: list[JobUpdate] = []
        self.condition = threading.Condition()
        self.future: Future[GenerationOutcome] | None = None

    @property
    def finished(self) -> bool:
        return bool(self.updates) and self.updates[-1].is_terminal

    def publish(self, update: JobUpdate) -> None:
        with self.condition:
            if self.finished:
                return
            self.updates.append(update)
            self.condition.notify_all()


class UnknownJobError(KeyError):
    """Raised for a handle this runner did not issue."""


class JobRunner:
    """Runs generation jobs on a bounded thread pool.

    Parameters
    ----------
    pipeline:
        Executes each job.
    max_workers:
        Jobs running at once; the rest wait in QUEUED.
    max_finished_jobs:
        Finished jobs kept for late observers; older ones are forgotten.
    """

    def __init__(
        self,
        pipeline: GenerationPipeline,
        max_workers: int = 2,
        *,
        max_finished_jobs: int = DEFAULT_MAX_FINISHED_JOBS,
    ) -> None:
        self._pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="pwaforge-job")
        self._jobs: dict[str, _Job] = {}
        self._finished: deque[str] = deque()
        self._max_finished = max(1, max_finished_jobs)
        self._lock = threading.Lock()

    def _job(self, handle: JobHandle) -> _Job:
        with self._lock:
            job = self._jobs.get(handle.job_id)
        if job is None:
            raise UnknownJobError(handle.job_id)
        return job

    def _retire(self, job: _Job) -> None:
        """Record *job* as finished and forget the oldest beyond the limit."""
        with self._lock:
            self._finished.append(job.handle.job_id)
            while len(self._finished) > self._max_finished:
                self._jobs.pop(self._finished.popleft(), None)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, job: _Job) -> GenerationOutcome:
        job_id = job.handle.job_id
        job.publish(JobUpdate(job_id=job_id, status=JobStatus.RUNNING))

        def on_transition(record: StateTransition) -> None:
            job.publish(
                JobUpdate(job_id=job_id, status=JobStatus.PROGRESS, state=record.to_state, message=record.detail)
            )

        try:
            outcome = self._pipeline.run(job.handle.request, cancel=job.cancel_event, observer=on_transition)
        except Exception as exc:
            logger.exception("Job %s crashed", job_id)
            outcome = GenerationOutcome(
                success=False,
                state=GenerationState.FAILED,
                error_kind=ErrorKind.UNEXPECTED,
                message=f"Unexpected error: {exc}",
            )

        if outcome.success:
            status = JobStatus.SUCCEEDED
        elif outcome.error_kind == ErrorKind.CANCELLED:
            status = JobStatus.CANCELLED
        else:
            status = JobStatus.FAILED
        job.publish(JobUpdate(job_id=job_id, status=status, message=outcome.message, outcome=outcome))
        self._retire(job)
        return outcome

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, request: GenerationRequest) -> JobHandle:
        """Queue *request* and return its handle."""
        handle = JobHandle(job_id=uuid.uuid4().hex, request=request)
        job = _Job(handle)
        with self._lock:
            self._jobs[handle.job_id] = job
        job.publish(JobUpdate(job_id=handle.job_id, status=JobStatus.QUEUED))
        job.future = self._executor.submit(self._execute, job)
        logger.info("Job %s queued (%s)", handle.job_id, request.kind.value)
        return handle

    def observe(self, handle: JobHandle, timeout: float | None = None) -> Iterator[JobUpdate]:
        """Yield the job's updates in order, ending with the terminal one.

        Raises
        ------
        TimeoutError
            If *timeout* seconds pass without a new update.
        """
        job = self._job(handle)
        index = 0
        while True:
            with job.condition:
                if index >= len(job.updates):
                    if not job.condition.wait_for(lambda: index < len(job.updates), timeout=timeout):
                        raise TimeoutError(f"No update for job {handle.job_id} within {timeout}s")
                pending = job.updates[index:]
            for update in pending:
                index += 1
                yield update
                if update.is_terminal:
                    return

    def cancel(self, handle: JobHandle) -> bool:
        """Request cancellation; False if the job already finished."""
        job = self._job(handle)
        if job.finished:
            return False
        job.cancel_event.set()
        if job.future is not None and job.future.cancel():
            # Never started: nothing else will publish a terminal update
            job.publish(
                JobUpdate(job_id=handle.job_id, status=JobStatus.CANCELLED, message="Generation cancelled.")
            )
            self._retire(job)
        logger.info("Job %s cancellation requested", handle.job_id)
        return True

    def result(self, handle: JobHandle, timeout: float | None = None) -> GenerationOutcome | None:
        """Block until the job ends; None if it was cancelled before starting."""
        for update in self.observe(handle, timeout=timeout):
            if update.is_terminal:
                return update.outcome
        return None

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            if not job.finished:
                self.cancel(job.handle)
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, *exc: object) -> None:
        self.shutdown()
