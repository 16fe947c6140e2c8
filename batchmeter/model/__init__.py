"""
Model package for batchmeter.

Contains the data models of jobs, items, reservations and updates.
"""

from .batch_item import BatchItem, ItemStatus
from .batch_job import (
    BatchJob,
    BatchSnapshot,
    ContinuationInfo,
    ContinuationStrategy,
    JobCounters,
    JobStatus,
    count_items,
    derive_job_status,
)
from .executor import Executor, TaskExecutor, new_executor
from .options_rate_limit import RateLimitOptions
from .reservation import Reservation, ReservationState
from .settings import BatchMeterSettings
from .update import BatchUpdate, QueueUpdate, TaskStatus

__all__ = [
    # Batch related
    "BatchItem",
    "ItemStatus",
    "BatchJob",
    "BatchSnapshot",
    "ContinuationInfo",
    "ContinuationStrategy",
    "JobCounters",
    "JobStatus",
    "count_items",
    "derive_job_status",
    # Executor
    "Executor",
    "TaskExecutor",
    "new_executor",
    # Ledger
    "Reservation",
    "ReservationState",
    # Options
    "RateLimitOptions",
    "BatchMeterSettings",
    # Updates
    "BatchUpdate",
    "QueueUpdate",
    "TaskStatus",
]
