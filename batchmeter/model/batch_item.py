"""
BatchItem model for the batchmeter engine.
One atomic unit of work inside a batch job.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from ..helper.error import BatchMeterError


class ItemStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in (ItemStatus.SUCCEEDED, ItemStatus.FAILED, ItemStatus.CANCELLED)


# Forward-only transitions. FAILED -> QUEUED only happens through reset_for_retry.
_ALLOWED_TRANSITIONS = {
    ItemStatus.QUEUED: {ItemStatus.RUNNING, ItemStatus.CANCELLED},
    ItemStatus.RUNNING: {ItemStatus.SUCCEEDED, ItemStatus.FAILED, ItemStatus.CANCELLED},
    ItemStatus.SUCCEEDED: set(),
    ItemStatus.FAILED: set(),
    ItemStatus.CANCELLED: set(),
}


@dataclass
class BatchItem:
    """
    BatchItem represents one payload inside a batch job.

    ``payload_key`` identifies what to produce (for example a shot id) and
    ``payload`` carries whatever else the executor needs to find it.
    """

    job_id: str = ""
    payload_key: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    position: int = 0

    status: ItemStatus = ItemStatus.QUEUED
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def _transition(self, status: ItemStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise BatchMeterError(
                "changing item status",
                ValueError(
                    f"item {self.id} cannot move from {self.status.value} to {status.value}"
                ),
            )
        self.status = status

    def mark_running(self) -> None:
        self._transition(ItemStatus.RUNNING)
        self.started_at = datetime.now()

    def mark_succeeded(self, result: Any) -> None:
        self._transition(ItemStatus.SUCCEEDED)
        self.result = normalize_result(result)
        self.completed_at = datetime.now()

    def mark_failed(self, error: str) -> None:
        self._transition(ItemStatus.FAILED)
        self.error = error or "Unknown error"
        self.completed_at = datetime.now()

    def mark_cancelled(self) -> None:
        self._transition(ItemStatus.CANCELLED)

    def mark_abandoned(self, error: str) -> None:
        """Fail an item its workers stopped on before it settled, queued or running."""
        if self.status.is_terminal():
            raise BatchMeterError(
                "abandoning item",
                ValueError(f"item {self.id} already settled as {self.status.value}"),
            )
        self.status = ItemStatus.FAILED
        self.error = error or "Unknown error"
        self.completed_at = datetime.now()

    def reset_for_retry(self) -> None:
        """Move a failed item back to queued and blank everything it produced."""
        if self.status != ItemStatus.FAILED:
            raise BatchMeterError(
                "resetting item",
                ValueError(f"only failed items can be retried, item {self.id} is {self.status.value}"),
            )
        self.status = ItemStatus.QUEUED
        self.result = None
        self.error = None
        self.started_at = None
        self.completed_at = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "position": self.position,
            "payload_key": self.payload_key,
            "payload": self.payload,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchItem":
        item = cls(
            job_id=data.get("job_id", ""),
            payload_key=data.get("payload_key", ""),
            payload=data.get("payload") or {},
            id=data.get("id") or str(uuid4()),
            position=data.get("position", 0),
            status=ItemStatus(data.get("status", ItemStatus.QUEUED.value)),
            result=data.get("result"),
            error=data.get("error"),
        )
        if data.get("started_at"):
            item.started_at = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            item.completed_at = datetime.fromisoformat(data["completed_at"])
        return item

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BatchItem":
        """Create item from database row. JSONB columns may arrive decoded or as text."""
        payload = row.get("payload") or {}
        if isinstance(payload, str):
            payload = json.loads(payload)
        result = row.get("result")
        if isinstance(result, str):
            result = json.loads(result)

        return cls(
            job_id=row.get("job_id", ""),
            payload_key=row.get("payload_key", ""),
            payload=payload,
            id=row["id"],
            position=row.get("position", 0),
            status=ItemStatus(row.get("status", ItemStatus.QUEUED.value)),
            result=result,
            error=row.get("error"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )


def normalize_result(result: Any) -> Optional[Dict[str, Any]]:
    """Executors may return a mapping, None or a bare reference (url, id)."""
    if result is None:
        return None
    if isinstance(result, dict):
        return dict(result)
    return {"value": result}
