"""
Processing Queue

Ordered collection of analysis jobs with a strict state machine:

    pending -> processing -> completed
                          -> failed -> pending   (retry)
    processing -> pending                        (requeue on reload / quota pause)

At most one job is `processing`, and `current_job_id` points at it.
Only the QueueDriver mutates a ProcessingQueue.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from config import MAX_PHOTOS_PER_JOB
from pipeline.pricing_engine import AnalysisResult
from services.exceptions import (
    InvalidPhotosError,
    InvalidTransitionError,
    JobNotFoundError,
)

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass
class QueuedJob:
    """One photographed item waiting for (or done with) analysis"""
    id: str
    position: int
    photos: Tuple[bytes, ...]
    status: JobStatus = JobStatus.PENDING
    result: Optional[AnalysisResult] = None
    error_message: Optional[str] = None
    counted_against_quota: bool = False
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def has_result(self) -> bool:
        return self.result is not None

    def to_dict(self, include_result: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "position": self.position,
            "status": self.status.value,
            "photo_count": len(self.photos),
            "has_result": self.has_result,
            "error_message": self.error_message,
            "counted_against_quota": self.counted_against_quota,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_result:
            data["result"] = self.result.to_dict() if self.result else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], photos: Sequence[bytes]) -> "QueuedJob":
        status = JobStatus(data["status"])
        result = AnalysisResult.from_dict(data["result"]) if data.get("result") else None
        if status == JobStatus.COMPLETED and result is None:
            # A completed job must carry a result
            status = JobStatus.PENDING
        return cls(
            id=data["id"],
            position=int(data["position"]),
            photos=tuple(photos),
            status=status,
            result=result if status == JobStatus.COMPLETED else None,
            error_message=data.get("error_message") if status == JobStatus.FAILED else None,
            counted_against_quota=bool(data.get("counted_against_quota", False)),
            created_at=data.get("created_at") or _now(),
            updated_at=data.get("updated_at") or _now(),
        )


class ProcessingQueue:
    """
    Queue aggregate. Every state change goes through a transition method that
    validates the source state.

    Usage:
        queue = ProcessingQueue()
        job_id = queue.enqueue([photo_bytes])
        job = queue.next_pending()
        queue.mark_processing(job.id)
        queue.mark_completed(job.id, result)
    """

    def __init__(self, max_photos: int = MAX_PHOTOS_PER_JOB):
        self.max_photos = max_photos
        self._jobs: Dict[str, QueuedJob] = {}  # insertion ordered
        self.is_running = False
        self.current_job_id: Optional[str] = None
        self.rate_limit_hit = False
        self._next_position = 1

    # ============================================================
    # Read access
    # ============================================================

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[QueuedJob]:
        return iter(list(self._jobs.values()))

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    @property
    def jobs(self) -> List[QueuedJob]:
        return list(self._jobs.values())

    def get(self, job_id: str) -> QueuedJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def jobs_with_status(self, status: JobStatus) -> List[QueuedJob]:
        return [job for job in self._jobs.values() if job.status == status]

    def next_pending(self) -> Optional[QueuedJob]:
        """First pending job in insertion order (FIFO, no priorities)"""
        for job in self._jobs.values():
            if job.status == JobStatus.PENDING:
                return job
        return None

    @property
    def current_job(self) -> Optional[QueuedJob]:
        if self.current_job_id is None:
            return None
        return self._jobs.get(self.current_job_id)

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        counts["total"] = len(self._jobs)
        return counts

    def progress(self) -> float:
        """Fraction of jobs in a terminal state"""
        if not self._jobs:
            return 0.0
        counts = self.counts()
        return (counts["completed"] + counts["failed"]) / counts["total"]

    # ============================================================
    # Transitions
    # ============================================================

    def _require(self, job: QueuedJob, expected: JobStatus, target: JobStatus) -> None:
        if job.status != expected:
            raise InvalidTransitionError(job.id, job.status.value, target.value)

    def _touch(self, job: QueuedJob) -> None:
        job.updated_at = _now()

    def enqueue(self, photos: Sequence[bytes], job_id: Optional[str] = None) -> str:
        """Append a new pending job and return its id"""
        photos = tuple(photos)
        if not 1 <= len(photos) <= self.max_photos:
            raise InvalidPhotosError(len(photos), self.max_photos)

        job_id = job_id or uuid.uuid4().hex
        if job_id in self._jobs:
            raise InvalidTransitionError(job_id, "existing", JobStatus.PENDING.value, "duplicate job id")

        job = QueuedJob(id=job_id, position=self._next_position, photos=photos)
        self._next_position += 1
        self._jobs[job_id] = job
        logger.debug(f"[QUEUE] Enqueued job {job_id[:8]} at position {job.position}")
        return job_id

    def mark_processing(self, job_id: str) -> QueuedJob:
        job = self.get(job_id)
        self._require(job, JobStatus.PENDING, JobStatus.PROCESSING)
        if self.current_job_id is not None:
            raise InvalidTransitionError(
                job_id, job.status.value, JobStatus.PROCESSING.value,
                f"job '{self.current_job_id}' is already processing",
            )
        job.status = JobStatus.PROCESSING
        self.current_job_id = job_id
        self._touch(job)
        return job

    def mark_completed(self, job_id: str, result: AnalysisResult) -> QueuedJob:
        job = self.get(job_id)
        self._require(job, JobStatus.PROCESSING, JobStatus.COMPLETED)
        if result is None:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.COMPLETED.value, "result required")
        job.status = JobStatus.COMPLETED
        job.result = result
        job.error_message = None
        job.counted_against_quota = True
        self._release(job_id)
        self._touch(job)
        return job

    def mark_failed(self, job_id: str, error_message: str, counted_against_quota: bool) -> QueuedJob:
        job = self.get(job_id)
        self._require(job, JobStatus.PROCESSING, JobStatus.FAILED)
        if not error_message:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.FAILED.value, "error message required")
        job.status = JobStatus.FAILED
        job.result = None
        job.error_message = error_message
        job.counted_against_quota = counted_against_quota
        self._release(job_id)
        self._touch(job)
        return job

    def retry(self, job_id: str) -> QueuedJob:
        """failed -> pending. The job keeps its place in line."""
        job = self.get(job_id)
        self._require(job, JobStatus.FAILED, JobStatus.PENDING)
        job.status = JobStatus.PENDING
        job.error_message = None
        job.counted_against_quota = False
        self._touch(job)
        return job

    def requeue(self, job_id: str) -> QueuedJob:
        """processing -> pending, for work interrupted through no fault of the job"""
        job = self.get(job_id)
        self._require(job, JobStatus.PROCESSING, JobStatus.PENDING)
        job.status = JobStatus.PENDING
        self._release(job_id)
        self._touch(job)
        return job

    def remove(self, job_id: str) -> QueuedJob:
        job = self._jobs.pop(job_id, None)
        if job is None:
            raise JobNotFoundError(job_id)
        self._release(job_id)
        return job

    def clear(self) -> int:
        """Drop every job. Only allowed while the driver is stopped."""
        if self.is_running:
            raise InvalidTransitionError("*", "running", "cleared", "stop the queue before clearing")
        count = len(self._jobs)
        self._jobs.clear()
        self.current_job_id = None
        return count

    def _release(self, job_id: str) -> None:
        if self.current_job_id == job_id:
            self.current_job_id = None

    def reset_after_restart(self) -> List[str]:
        """
        Idle the queue after loading persisted state. Any job caught
        mid-flight goes back to pending; nothing resumes on its own.
        """
        requeued = []
        for job in self._jobs.values():
            if job.status == JobStatus.PROCESSING:
                job.status = JobStatus.PENDING
                self._touch(job)
                requeued.append(job.id)
        self.is_running = False
        self.current_job_id = None
        return requeued

    # ============================================================
    # Snapshot
    # ============================================================

    def to_dict(self, include_results: bool = True) -> Dict[str, Any]:
        return {
            "jobs": [job.to_dict(include_result=include_results) for job in self._jobs.values()],
            "is_running": self.is_running,
            "current_job_id": self.current_job_id,
            "rate_limit_hit": self.rate_limit_hit,
            "counts": self.counts(),
            "progress": round(self.progress(), 3),
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        photos: Dict[str, Sequence[bytes]],
        max_photos: int = MAX_PHOTOS_PER_JOB,
    ) -> "ProcessingQueue":
        """
        Inverse of to_dict(). Photos travel separately, keyed by job id;
        jobs whose photos are missing are dropped.
        """
        jobs = []
        for item in sorted(data.get("jobs", []), key=lambda j: j["position"]):
            job_photos = photos.get(item["id"])
            if not job_photos:
                logger.warning(f"[QUEUE] Job {item['id'][:8]} has no photos - dropping")
                continue
            jobs.append(QueuedJob.from_dict(item, job_photos))
        return cls.restore(jobs, rate_limit_hit=bool(data.get("rate_limit_hit")), max_photos=max_photos)

    @classmethod
    def restore(
        cls,
        jobs: Sequence[QueuedJob],
        rate_limit_hit: bool = False,
        max_photos: int = MAX_PHOTOS_PER_JOB,
    ) -> "ProcessingQueue":
        """Rebuild from persisted jobs (already in insertion order), reset to idle"""
        queue = cls(max_photos=max_photos)
        for job in jobs:
            queue._jobs[job.id] = job
        queue._next_position = max((job.position for job in jobs), default=0) + 1
        queue.rate_limit_hit = rate_limit_hit
        requeued = queue.reset_after_restart()
        if requeued:
            logger.info(f"[QUEUE] Requeued {len(requeued)} job(s) interrupted by restart")
        return queue
