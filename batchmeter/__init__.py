"""
batchmeter - metered batch execution engine

Runs batches of paid provider calls with bounded concurrency and settles
their cost against a credit ledger:
- Reserve the full cost up front, refund what was not produced
- Per-item status tracking with live progress updates
- Cooperative cancellation and retry of failed items
- Continuation batches over scene/shot ordered content
- A paced, rate-limit aware lane for single provider calls
- In-memory or PostgreSQL backed jobs and credits
"""

from ._version import __version__

# Core exports
from .batchmeter import (
    BatchMeter,
    new_batch_meter,
    new_batch_meter_with_db,
)

from .helper.database import (
    DatabaseConfiguration,
)

from .model.batch_item import (
    BatchItem,
    ItemStatus,
)

from .model.batch_job import (
    BatchJob,
    BatchSnapshot,
    ContinuationInfo,
    ContinuationStrategy,
    JobStatus,
)

from .model.reservation import (
    Reservation,
    ReservationState,
)

from .model.options_rate_limit import (
    RateLimitOptions,
)

from .model.settings import (
    BatchMeterSettings,
)

from .model.update import (
    BatchUpdate,
    QueueUpdate,
    TaskStatus,
)

from .core.settlement import (
    SettlementHandle,
    SettlementOutcome,
    SettlementResult,
)

from .database.ledger import (
    InMemoryLedger,
    Ledger,
)

from .helper.error import (
    BatchMeterError,
    ReservationDenied,
    RateLimitExceeded,
    TerminalRateLimit,
)

# Import submodules for direct access
from . import core
from . import database
from . import helper
from . import model

__all__ = [
    # Core classes
    "BatchMeter",
    "new_batch_meter",
    "new_batch_meter_with_db",
    # Configuration
    "DatabaseConfiguration",
    "BatchMeterSettings",
    "RateLimitOptions",
    # Models
    "BatchItem",
    "ItemStatus",
    "BatchJob",
    "BatchSnapshot",
    "ContinuationInfo",
    "ContinuationStrategy",
    "JobStatus",
    "Reservation",
    "ReservationState",
    "BatchUpdate",
    "QueueUpdate",
    "TaskStatus",
    # Settlement
    "SettlementHandle",
    "SettlementOutcome",
    "SettlementResult",
    # Ledgers
    "Ledger",
    "InMemoryLedger",
    # Exceptions
    "BatchMeterError",
    "ReservationDenied",
    "RateLimitExceeded",
    "TerminalRateLimit",
    # Submodules
    "core",
    "database",
    "helper",
    "model",
    # Version info
    "__version__",
]
