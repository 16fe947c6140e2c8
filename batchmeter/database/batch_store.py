"""
Batch registry: storage contract for jobs and their items, plus the
in-memory implementation used by default.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..model.batch_item import BatchItem
from ..model.batch_job import BatchJob, BatchSnapshot


class BatchStore(ABC):
    """
    Keyed storage of batch jobs and their items.
    Implementations must hand out copies, never live objects.
    """

    @abstractmethod
    def insert_job(self, job: BatchJob, items: List[BatchItem]) -> BatchSnapshot:
        """Store a new job together with all of its items."""

    @abstractmethod
    def update_job(self, job: BatchJob) -> Optional[BatchJob]:
        """Replace the stored job record. Returns None if the job is unknown."""

    @abstractmethod
    def update_item(self, item: BatchItem) -> Optional[BatchItem]:
        """Replace one stored item. Returns None if the item or its job is unknown."""

    @abstractmethod
    def select_job(self, job_id: str) -> Optional[BatchSnapshot]:
        """Return a snapshot of the job and its items, ordered by position."""

    @abstractmethod
    def select_all_jobs(self) -> List[BatchJob]:
        """Return all jobs, newest first."""

    @abstractmethod
    def delete_job(self, job_id: str) -> bool:
        """Evict a job and its items. Returns False if the job is unknown."""


class InMemoryBatchStore(BatchStore):
    """
    Process-local batch store. Every read and write goes through deep copies,
    so callers never observe half-applied updates.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[str, BatchJob] = {}
        self._items: Dict[str, Dict[str, BatchItem]] = {}

    def insert_job(self, job: BatchJob, items: List[BatchItem]) -> BatchSnapshot:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job {job.id} already exists")

            stored_items: Dict[str, BatchItem] = {}
            for position, item in enumerate(items):
                stored = copy.deepcopy(item)
                stored.job_id = job.id
                stored.position = position
                stored_items[stored.id] = stored

            self._jobs[job.id] = copy.deepcopy(job)
            self._items[job.id] = stored_items
            return self._snapshot(job.id)

    def update_job(self, job: BatchJob) -> Optional[BatchJob]:
        with self._lock:
            if job.id not in self._jobs:
                return None
            self._jobs[job.id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    def update_item(self, item: BatchItem) -> Optional[BatchItem]:
        with self._lock:
            items = self._items.get(item.job_id)
            if items is None or item.id not in items:
                return None
            items[item.id] = copy.deepcopy(item)
            return copy.deepcopy(item)

    def select_job(self, job_id: str) -> Optional[BatchSnapshot]:
        with self._lock:
            if job_id not in self._jobs:
                return None
            return self._snapshot(job_id)

    def select_all_jobs(self) -> List[BatchJob]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
            return copy.deepcopy(jobs)

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            if job_id not in self._jobs:
                return False
            del self._jobs[job_id]
            self._items.pop(job_id, None)
            return True

    def _snapshot(self, job_id: str) -> BatchSnapshot:
        items = sorted(self._items[job_id].values(), key=lambda i: i.position)
        return BatchSnapshot(
            job=copy.deepcopy(self._jobs[job_id]),
            items=copy.deepcopy(items),
        )
