"""
Database package: batch stores and credit ledgers, in memory or on PostgreSQL.
"""

# Import from helper for core database functionality
from ..helper.database import (
    Database,
    DatabaseConfiguration,
    new_database,
    new_database_from_env,
)

from ..helper.sql import (
    SQLLoader,
)

from .batch_store import (
    BatchStore,
    InMemoryBatchStore,
)

from .db_batch import (
    PostgresBatchStore,
)

from .ledger import (
    Ledger,
    InMemoryLedger,
)

from .db_ledger import (
    PostgresLedger,
)

__all__ = [
    # Core database classes (from helper)
    "Database",
    "DatabaseConfiguration",
    "new_database",
    "new_database_from_env",
    "SQLLoader",
    # Batch stores
    "BatchStore",
    "InMemoryBatchStore",
    "PostgresBatchStore",
    # Ledgers
    "Ledger",
    "InMemoryLedger",
    "PostgresLedger",
]
