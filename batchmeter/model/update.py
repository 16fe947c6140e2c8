"""
Progress events published by the batch runner and the rate-limited queue.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class QueueUpdate:
    """
    State change of one task in the rate-limited queue.
    ``position`` is 0 for the running task and 1.. for waiting tasks.
    """

    id: str
    status: TaskStatus
    position: int = 0
    attempt: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "position": self.position,
            "attempt": self.attempt,
            "message": self.message,
        }


@dataclass(frozen=True)
class BatchUpdate:
    """State change of a batch job, optionally caused by one of its items."""

    job_id: str
    job_status: str
    done: int
    succeeded: int
    failed: int
    total: int
    item_id: Optional[str] = None
    item_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "item_id": self.item_id,
            "item_status": self.item_status,
            "job_status": self.job_status,
            "done": self.done,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total": self.total,
        }
