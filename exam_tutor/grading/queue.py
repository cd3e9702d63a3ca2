"""
Grading Queue - Background worker handoff for post-submission grading.

Submitting returns a GradingJob handle immediately. Workers run the
orchestrator, retry failed runs, and record the outcome on the job so
failures stay observable. Only the most recent finished jobs are kept.
"""
import queue
import threading
import time
import uuid
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from dataclasses import dataclass, field

from config import GradingConfig
from .orchestrator import GradingOrchestrator, GradingRun, RUN_FAILED

logger = logging.getLogger(__name__)

KIND_GRADE = "grade"
KIND_REGRADE = "regrade"


class JobStatus(Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class GradingJob:
    """Handle for one queued grading request."""
    session_id: str
    kind: str = KIND_GRADE
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    error: Optional[str] = None
    result: Optional[GradingRun] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    _done: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job finishes; False on timeout."""
        return self._done.wait(timeout)

    def _finish(self, status: JobStatus):
        self.status = status
        self.finished_at = datetime.now(timezone.utc)
        self._done.set()


class GradingQueue:
    """
    Worker threads consuming grading jobs.

    Usage:
        with GradingQueue(orchestrator) as grading_queue:
            job = grading_queue.submit(session_id)
            job.wait()
    """

    def __init__(
        self,
        orchestrator: GradingOrchestrator,
        workers: int = GradingConfig.QUEUE_WORKERS,
        max_attempts: int = GradingConfig.JOB_MAX_ATTEMPTS,
        retry_delay: float = 0.0,
        job_history: int = GradingConfig.JOB_HISTORY
    ):
        self.orchestrator = orchestrator
        self.workers = max(1, workers)
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.job_history = max(0, job_history)

        self._queue: "queue.Queue[Optional[GradingJob]]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self._jobs: "OrderedDict[str, GradingJob]" = OrderedDict()
        self._jobs_lock = threading.Lock()

    def start(self):
        if self._threads:
            return
        for i in range(self.workers):
            thread = threading.Thread(target=self._worker, name=f"grading-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Grading queue started with {self.workers} worker(s)")

    def stop(self, wait: bool = True):
        """Stop workers after the jobs already queued."""
        for _ in self._threads:
            self._queue.put(None)
        if wait:
            for thread in self._threads:
                thread.join()
        self._threads = []

    def __enter__(self) -> "GradingQueue":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop(wait=True)

    def submit(self, session_id: str, kind: str = KIND_GRADE) -> GradingJob:
        """Queue a session for grading and return immediately."""
        job = GradingJob(session_id=session_id, kind=kind)
        with self._jobs_lock:
            self._jobs[job.job_id] = job
        self._queue.put(job)
        logger.info(f"Queued {kind} job {job.job_id} for session {session_id}")
        return job

    def submit_regrade(self, session_id: str) -> GradingJob:
        return self.submit(session_id, kind=KIND_REGRADE)

    def get(self, job_id: str) -> Optional[GradingJob]:
        with self._jobs_lock:
            return self._jobs.get(job_id)

    def jobs(self, session_id: Optional[str] = None) -> List[GradingJob]:
        with self._jobs_lock:
            jobs = list(self._jobs.values())
        if session_id is not None:
            jobs = [j for j in jobs if j.session_id == session_id]
        return jobs

    def join(self):
        """Block until every queued job has been processed."""
        self._queue.join()

    def _worker(self):
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._process(job)
                self._prune()
            finally:
                self._queue.task_done()

    def _prune(self):
        """Drop the oldest finished jobs beyond job_history; pending jobs stay."""
        with self._jobs_lock:
            finished = [job_id for job_id, job in self._jobs.items() if job.done]
            for job_id in finished[:max(0, len(finished) - self.job_history)]:
                del self._jobs[job_id]

    def _process(self, job: GradingJob):
        job.status = JobStatus.RUNNING
        run_once = (
            self.orchestrator.regrade if job.kind == KIND_REGRADE
            else self.orchestrator.trigger_grading
        )

        while job.attempts < self.max_attempts:
            job.attempts += 1
            try:
                run = run_once(job.session_id)
            except Exception as e:
                logger.exception(f"Job {job.job_id} attempt {job.attempts} crashed")
                job.error = str(e)
            else:
                job.result = run
                if run.skipped:
                    job._finish(JobStatus.SKIPPED)
                    return
                if run.status != RUN_FAILED:
                    job.error = None
                    job._finish(JobStatus.SUCCEEDED)
                    return
                job.error = "; ".join(run.errors) or run.reason or "no question could be graded"
                logger.warning(
                    f"⚠️ Job {job.job_id} attempt {job.attempts}/{self.max_attempts} failed: {job.error}"
                )

            if job.attempts < self.max_attempts and self.retry_delay:
                time.sleep(self.retry_delay)

        logger.error(f"❌ Job {job.job_id} for session {job.session_id} failed: {job.error}")
        job._finish(JobStatus.FAILED)
