"""Background job management for index and review jobs."""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Coroutine, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

# Per-subscriber backlog; events beyond this are dropped for that subscriber
SUBSCRIBER_QUEUE_SIZE = 256

CANCELLED_MESSAGE = "Cancelled by user"


class JobKind(str, Enum):
    """Kinds of background jobs."""

    INDEX = "index"
    REVIEW = "review"


class JobPhase(str, Enum):
    """Job phases. Index and review jobs each use their own subset plus the shared ones."""

    QUEUED = "queued"
    # index
    CLONING = "cloning"
    DETECTING_FRAMEWORK = "detecting-framework"
    PARSING = "parsing"
    BUILDING_GRAPH = "building-graph"
    GENERATING_EMBEDDINGS = "generating-embeddings"
    # review
    FETCHING_PR = "fetching-pr"
    BUILDING_CONTEXT = "building-context"
    RUNNING_AGENTS = "running-agents"
    SYNTHESIZING = "synthesizing"
    POSTING_COMMENTS = "posting-comments"
    # shared
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"


TERMINAL_PHASES = frozenset({JobPhase.COMPLETE, JobPhase.FAILED, JobPhase.CANCELLED})
SHARED_PHASES = frozenset({JobPhase.QUEUED, JobPhase.CANCELLING}) | TERMINAL_PHASES
TERMINAL_PHASE_VALUES = frozenset(phase.value for phase in TERMINAL_PHASES)


def is_terminal_event(event: Dict[str, Any]) -> bool:
    """True for a status event that ends a job's event stream."""
    return event.get("type") == "status" and event.get("phase") in TERMINAL_PHASE_VALUES


INDEX_PHASES = [
    JobPhase.QUEUED,
    JobPhase.CLONING,
    JobPhase.DETECTING_FRAMEWORK,
    JobPhase.PARSING,
    JobPhase.BUILDING_GRAPH,
    JobPhase.GENERATING_EMBEDDINGS,
    JobPhase.COMPLETE,
]
REVIEW_PHASES = [
    JobPhase.QUEUED,
    JobPhase.FETCHING_PR,
    JobPhase.BUILDING_CONTEXT,
    JobPhase.RUNNING_AGENTS,
    JobPhase.SYNTHESIZING,
    JobPhase.POSTING_COMMENTS,
    JobPhase.COMPLETE,
]
PHASES_BY_KIND = {
    JobKind.INDEX: frozenset(INDEX_PHASES) | SHARED_PHASES,
    JobKind.REVIEW: frozenset(REVIEW_PHASES) | SHARED_PHASES,
}


class JobCancelledError(Exception):
    """Raised inside a job body when its cancellation token fires."""

    def __init__(self, message: str = CANCELLED_MESSAGE):
        super().__init__(message)


class CancellationToken:
    """Cooperative cancellation flag, safe to check from worker threads."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError()


@dataclass
class JobProgress:
    """Counters reported while a job runs."""

    files_processed: int = 0
    total_files: int = 0
    functions_indexed: int = 0
    current_file: Optional[str] = None
    agents_running: List[str] = field(default_factory=list)


@dataclass
class Job:
    """Represents an index or review job."""

    job_id: str
    kind: JobKind
    phase: JobPhase = JobPhase.QUEUED
    percentage: int = 0
    repo_id: Optional[str] = None
    repo_url: Optional[str] = None
    branch: Optional[str] = None
    framework: Optional[str] = None
    pr_url: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    error: Optional[str] = None
    progress: JobProgress = field(default_factory=JobProgress)
    findings: List[Dict[str, Any]] = field(default_factory=list)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    task: Optional[asyncio.Task] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def label(self) -> str:
        return "Index" if self.kind == JobKind.INDEX else "Review"


class JobManager:
    """Owns every job, serializes status updates, and fans snapshots out to subscribers."""

    def __init__(self):
        """Initialize job manager."""
        self.jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}

    def create_job(self, kind: JobKind, **fields: Any) -> Job:
        """Create a queued job.

        Args:
            kind: Index or review
            **fields: Initial Job attributes (repo_id, repo_url, branch, ...)

        Returns:
            Created job
        """
        job = Job(job_id=str(uuid.uuid4()), kind=kind, **fields)
        self.jobs[job.job_id] = job
        logger.info(f"Created {kind.value} job {job.job_id}")
        return job

    def start(self, job: Job, body: Coroutine) -> asyncio.Task:
        """Run a job body as an independent task."""
        job.task = asyncio.create_task(body, name=f"{job.kind.value}-{job.job_id}")
        return job.task

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get job by ID.

        Args:
            job_id: Job identifier

        Returns:
            Job if found, None otherwise
        """
        return self.jobs.get(job_id)

    def list_jobs(
        self, kind: Optional[JobKind] = None, limit: int = 20, offset: int = 0
    ) -> Tuple[List[Job], int]:
        """List jobs newest first.

        Returns:
            The requested page and the total number of matching jobs
        """
        jobs = [j for j in self.jobs.values() if kind is None or j.kind == kind]
        jobs.sort(key=lambda j: j.started_at, reverse=True)
        return jobs[offset:offset + limit], len(jobs)

    def phase_counts(self, kind: Optional[JobKind] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for job in self.jobs.values():
            if kind is None or job.kind == kind:
                counts[job.phase.value] = counts.get(job.phase.value, 0) + 1
        return counts

    async def update_status(
        self,
        job_id: str,
        phase: Optional[JobPhase] = None,
        percentage: Optional[int] = None,
        error: Optional[str] = None,
        findings: Optional[List[Dict[str, Any]]] = None,
        **progress: Any,
    ) -> Optional[Dict[str, Any]]:
        """Apply a status update and broadcast the resulting snapshot.

        Updates to terminal jobs are ignored, as are non-terminal updates while a
        job is cancelling. Percentage never decreases.

        Args:
            job_id: Job identifier
            phase: New phase
            percentage: New percentage (0-100)
            error: Error message for failed or cancelled jobs
            findings: Replaces the review findings collected so far
            **progress: JobProgress fields to overwrite

        Returns:
            The new snapshot, or None if the update was ignored
        """
        async with self._lock:
            job = self.jobs.get(job_id)
            if not job:
                return None
            if job.is_terminal:
                logger.debug(f"Ignoring update for {job.phase.value} job {job_id}")
                return None
            if job.phase == JobPhase.CANCELLING and phase not in TERMINAL_PHASES:
                return None
            if phase is not None and phase not in PHASES_BY_KIND[job.kind]:
                logger.warning(f"Ignoring phase {phase.value} for {job.kind.value} job {job_id}")
                return None

            if phase is not None:
                job.phase = phase
            if percentage is not None:
                job.percentage = max(job.percentage, min(int(percentage), 100))
            for name, value in progress.items():
                if not hasattr(job.progress, name):
                    raise AttributeError(f"Unknown progress field: {name}")
                setattr(job.progress, name, value)
            if error is not None:
                job.error = error
            if findings is not None:
                job.findings = list(findings)

            if job.phase in TERMINAL_PHASES:
                job.completed_at = time.time()
                if job.phase == JobPhase.COMPLETE:
                    job.percentage = 100
                if job.phase == JobPhase.FAILED:
                    logger.error(f"Job {job_id} failed: {job.error}")
                else:
                    logger.info(f"Job {job_id} {job.phase.value}")

            snapshot = self.get_status_dict(job)
            self._publish_locked(job_id, {"type": "status", **snapshot})
            return snapshot

    async def mark_failed(self, job_id: str, error: str) -> None:
        await self.update_status(job_id, phase=JobPhase.FAILED, error=error)

    async def mark_cancelled(self, job_id: str) -> None:
        await self.update_status(job_id, phase=JobPhase.CANCELLED, error=CANCELLED_MESSAGE)

    async def publish_event(self, job_id: str, event_type: str, **payload: Any) -> None:
        """Broadcast a typed event (e.g. ``agent`` or ``finding``) for a running job."""
        async with self._lock:
            job = self.jobs.get(job_id)
            if not job or job.is_terminal:
                return
            if event_type == "finding" and "finding" in payload:
                job.findings.append(payload["finding"])
            event = {"type": event_type, "phase": job.phase.value, "percentage": job.percentage}
            event.update(payload)
            self._publish_locked(job_id, event)

    async def cancel_job(self, job_id: str) -> Optional[str]:
        """Request cancellation of a job.

        Queued jobs end immediately; running jobs move to ``cancelling`` and stop
        at their next cancellation check.

        Returns:
            Message describing the outcome, or None if the job does not exist
        """
        async with self._lock:
            job = self.jobs.get(job_id)
            if not job:
                return None
            if job.is_terminal:
                return f"{job.label} job already {job.phase.value}"

            job.cancel_token.cancel()
            if job.phase == JobPhase.QUEUED:
                job.phase = JobPhase.CANCELLED
                job.error = CANCELLED_MESSAGE
                job.completed_at = time.time()
            else:
                job.phase = JobPhase.CANCELLING
            logger.info(f"Cancellation requested for job {job_id} ({job.phase.value})")
            self._publish_locked(job_id, {"type": "status", **self.get_status_dict(job)})
            return f"{job.label} job cancelled"

    async def subscribe(self, job_id: str) -> Optional[asyncio.Queue]:
        """Subscribe to a job's events.

        The returned queue already holds the current snapshot, so no update
        between reading the snapshot and attaching can be missed.

        Returns:
            Event queue, or None if the job does not exist
        """
        async with self._lock:
            job = self.jobs.get(job_id)
            if not job:
                return None
            queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
            queue.put_nowait({"type": "status", **self.get_status_dict(job)})
            self._subscribers.setdefault(job_id, set()).add(queue)
            return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(job_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[job_id]

    def _publish_locked(self, job_id: str, event: Dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(job_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                if not is_terminal_event(event):
                    logger.debug(f"Dropping event for slow subscriber of job {job_id}")
                    continue
                # The terminal event ends the stream, so it replaces the oldest one
                queue.get_nowait()
                queue.put_nowait(event)

    def get_status_dict(self, job: Job) -> Dict[str, Any]:
        """Convert job to its wire snapshot.

        Args:
            job: Job to convert

        Returns:
            Dictionary representation
        """
        result: Dict[str, Any] = {
            "id": job.job_id,
            "kind": job.kind.value,
            "phase": job.phase.value,
            "percentage": job.percentage,
            "repoId": job.repo_id,
            "startedAt": job.started_at,
        }

        if job.kind == JobKind.INDEX:
            result.update(
                {
                    "repoUrl": job.repo_url,
                    "branch": job.branch,
                    "framework": job.framework,
                    "filesProcessed": job.progress.files_processed,
                    "totalFiles": job.progress.total_files,
                    "functionsIndexed": job.progress.functions_indexed,
                }
            )
        else:
            result.update(
                {
                    "prUrl": job.pr_url,
                    "findings": list(job.findings),
                    "currentFile": job.progress.current_file,
                    "agentsRunning": list(job.progress.agents_running),
                }
            )

        if job.completed_at:
            result["completedAt"] = job.completed_at
            result["totalSeconds"] = round(job.completed_at - job.started_at, 2)
        elif job.phase != JobPhase.QUEUED:
            result["elapsedSeconds"] = round(time.time() - job.started_at, 2)

        if job.error:
            result["error"] = job.error

        return result
