"""
BatchJob model for the batchmeter engine.
Job record, continuation metadata and the aggregation rules that derive a
job's counters and status from its items.
"""

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from .batch_item import BatchItem, ItemStatus


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class ContinuationStrategy(str, Enum):
    STRICT = "strict"
    SKIP_FAILED = "skip_failed"


@dataclass
class ContinuationInfo:
    """
    Describes a batch that resumes a previous, incomplete batch.
    The range is given as first and last (scene, shot) of the batch.
    """

    strategy: ContinuationStrategy = ContinuationStrategy.STRICT
    range_start_scene: int = 0
    range_start_shot: int = 0
    range_end_scene: int = 0
    range_end_shot: int = 0
    remaining_count: int = 0
    all_done: bool = False

    def range_label(self) -> str:
        return (
            f"S{self.range_start_scene}.{self.range_start_shot} → "
            f"S{self.range_end_scene}.{self.range_end_shot}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "range_start_scene": self.range_start_scene,
            "range_start_shot": self.range_start_shot,
            "range_end_scene": self.range_end_scene,
            "range_end_shot": self.range_end_shot,
            "remaining_count": self.remaining_count,
            "all_done": self.all_done,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContinuationInfo":
        return cls(
            strategy=ContinuationStrategy(data.get("strategy", ContinuationStrategy.STRICT.value)),
            range_start_scene=data.get("range_start_scene", 0),
            range_start_shot=data.get("range_start_shot", 0),
            range_end_scene=data.get("range_end_scene", 0),
            range_end_shot=data.get("range_end_shot", 0),
            remaining_count=data.get("remaining_count", 0),
            all_done=data.get("all_done", False),
        )


@dataclass
class BatchJob:
    """
    BatchJob represents one batch of items drained by the batch runner.
    Counters always satisfy ``done == succeeded + failed`` and ``done <= total``.
    """

    id: str = field(default_factory=lambda: str(uuid4()))
    project_id: str = ""
    user_id: str = ""
    type: str = "gen_images"

    total: int = 0
    done: int = 0
    succeeded: int = 0
    failed: int = 0
    concurrency: int = 1

    status: JobStatus = JobStatus.PENDING
    continuation: Optional[ContinuationInfo] = None

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def apply_counters(self, counters: "JobCounters") -> None:
        self.done = counters.done
        self.succeeded = counters.succeeded
        self.failed = counters.failed

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for serialization."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "type": self.type,
            "total": self.total,
            "done": self.done,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "concurrency": self.concurrency,
            "status": self.status.value,
            "continuation": self.continuation.to_dict() if self.continuation else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchJob":
        """Create job from dictionary."""
        job = cls(
            id=data.get("id") or str(uuid4()),
            project_id=data.get("project_id", ""),
            user_id=data.get("user_id", ""),
            type=data.get("type", "gen_images"),
            total=data.get("total", 0),
            done=data.get("done", 0),
            succeeded=data.get("succeeded", 0),
            failed=data.get("failed", 0),
            concurrency=data.get("concurrency", 1),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
        )
        if data.get("continuation"):
            job.continuation = ContinuationInfo.from_dict(data["continuation"])
        if data.get("created_at"):
            job.created_at = datetime.fromisoformat(data["created_at"])
        if data.get("updated_at"):
            job.updated_at = datetime.fromisoformat(data["updated_at"])
        return job

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BatchJob":
        """Create job from database row."""
        job = cls(
            id=row["id"],
            project_id=row.get("project_id", ""),
            user_id=row.get("user_id", ""),
            type=row.get("type", "gen_images"),
            total=row.get("total", 0),
            done=row.get("done", 0),
            succeeded=row.get("succeeded", 0),
            failed=row.get("failed", 0),
            concurrency=row.get("concurrency", 1),
            status=JobStatus(row.get("status", JobStatus.PENDING.value)),
            created_at=row.get("created_at") or datetime.now(),
            updated_at=row.get("updated_at") or datetime.now(),
        )

        continuation_value = row.get("continuation")
        if continuation_value:
            continuation_data = (
                json.loads(continuation_value)
                if isinstance(continuation_value, str)
                else continuation_value
            )
            job.continuation = ContinuationInfo.from_dict(continuation_data)

        return job


@dataclass
class BatchSnapshot:
    """
    Point-in-time copy of a job and its items, as served by the status read API.
    """

    job: BatchJob
    items: List[BatchItem] = field(default_factory=list)

    def copy(self) -> "BatchSnapshot":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True)
class JobCounters:
    done: int = 0
    succeeded: int = 0
    failed: int = 0
    queued: int = 0
    running: int = 0
    cancelled: int = 0


def count_items(items: Iterable[BatchItem]) -> JobCounters:
    """
    Aggregate item statuses into job counters.

    :raises ValueError: If an item carries a status this function does not know.
    """
    counts = {status: 0 for status in ItemStatus}
    for item in items:
        status = ItemStatus(item.status)
        if status is ItemStatus.QUEUED:
            counts[status] += 1
        elif status is ItemStatus.RUNNING:
            counts[status] += 1
        elif status is ItemStatus.SUCCEEDED:
            counts[status] += 1
        elif status is ItemStatus.FAILED:
            counts[status] += 1
        elif status is ItemStatus.CANCELLED:
            counts[status] += 1
        else:
            raise ValueError(f"unhandled item status {status!r}")

    succeeded = counts[ItemStatus.SUCCEEDED]
    failed = counts[ItemStatus.FAILED]
    return JobCounters(
        done=succeeded + failed,
        succeeded=succeeded,
        failed=failed,
        queued=counts[ItemStatus.QUEUED],
        running=counts[ItemStatus.RUNNING],
        cancelled=counts[ItemStatus.CANCELLED],
    )


def derive_job_status(
    items: Iterable[BatchItem], cancel_requested: bool, finished: bool
) -> JobStatus:
    """
    Derive a job's status from its items.

    While workers are still draining (``finished`` is False) the job is running,
    or pending if no item has been claimed yet. Once all workers stopped:
    cancellation wins, then all-failed means failed, anything else completed.
    """
    counters = count_items(items)

    if not finished:
        if counters.running == 0 and counters.done == 0 and counters.cancelled == 0:
            return JobStatus.PENDING
        return JobStatus.RUNNING

    if cancel_requested:
        return JobStatus.CANCELLED
    if counters.failed > 0 and counters.succeeded == 0:
        return JobStatus.FAILED
    return JobStatus.COMPLETED
