"""
Helper package: error types and logging, plus database and SQL helpers.
"""

from .error import (
    BatchMeterError,
    CancellationRequested,
    ItemExecutionFailure,
    RateLimitExceeded,
    ReservationDenied,
    SettlementReconciliationFailure,
    TerminalRateLimit,
    is_rate_limit_error,
)

from .database import (
    Database,
    DatabaseConfiguration,
    new_database,
    new_database_from_env,
)

from .logging import (
    BatchMeterLogger,
    ColorFormatter,
    get_logger,
    setup_logging,
)

__all__ = [
    # Error handling
    "BatchMeterError",
    "CancellationRequested",
    "ItemExecutionFailure",
    "RateLimitExceeded",
    "ReservationDenied",
    "SettlementReconciliationFailure",
    "TerminalRateLimit",
    "is_rate_limit_error",
    # Database utilities
    "Database",
    "DatabaseConfiguration",
    "new_database",
    "new_database_from_env",
    # Logging utilities
    "BatchMeterLogger",
    "ColorFormatter",
    "get_logger",
    "setup_logging",
]
