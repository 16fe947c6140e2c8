"""
Main BatchMeter class: metered batch execution plus a rate-limited lane for
single provider calls.
"""

from typing import Optional

from .database.batch_store import BatchStore, InMemoryBatchStore
from .database.db_batch import PostgresBatchStore
from .database.db_ledger import PostgresLedger
from .database.ledger import Ledger
from .helper.database import DatabaseConfiguration, new_database
from .helper.logging import get_logger
from .model.options_rate_limit import RateLimitOptions
from .model.settings import BatchMeterSettings
from .batchmeter_job import BatchMeterJobMixin
from .batchmeter_provider import BatchMeterProviderMixin

logger = get_logger(__name__)


def new_batch_meter(
    ledger: Ledger,
    settings: Optional[BatchMeterSettings] = None,
    rate_limit_options: Optional[RateLimitOptions] = None,
) -> "BatchMeter":
    """
    Create a BatchMeter keeping jobs in memory.
    Settings and rate limit options default to the BATCHMETER_* environment.
    """
    return BatchMeter(
        ledger,
        InMemoryBatchStore(),
        settings if settings is not None else BatchMeterSettings.from_env(),
        rate_limit_options if rate_limit_options is not None else RateLimitOptions.from_env(),
    )


def new_batch_meter_with_db(
    user_id: str,
    db_config: Optional[DatabaseConfiguration] = None,
    settings: Optional[BatchMeterSettings] = None,
    rate_limit_options: Optional[RateLimitOptions] = None,
) -> "BatchMeter":
    """
    Create a BatchMeter backed by Postgres for both jobs and credits.
    If db_config is None, the connection is taken from BATCHMETER_DB_* variables.

    :param user_id: Account charged for the batches.
    """
    if db_config is None:
        db_config = DatabaseConfiguration.from_env()

    # Separate connections so ledger commits never interleave with store transactions
    store_database = new_database("batchmeter-store", db_config, logger)
    ledger_database = new_database("batchmeter-ledger", db_config, logger)
    store = PostgresBatchStore(store_database, db_config.with_table_drop)
    ledger = PostgresLedger(ledger_database, user_id, db_config.with_table_drop)

    batch_meter = BatchMeter(
        ledger,
        store,
        settings if settings is not None else BatchMeterSettings.from_env(),
        rate_limit_options if rate_limit_options is not None else RateLimitOptions.from_env(),
    )
    batch_meter.databases = [store_database, ledger_database]
    return batch_meter


class BatchMeter(BatchMeterJobMixin, BatchMeterProviderMixin):
    """
    Metered batch execution engine.

    :param ledger: Ledger of the paying account.
    :param store: Where jobs live, in memory by default.
    :param settings: Concurrency cap and settlement polling.
    :param rate_limit_options: Pacing and retries of the provider lane.
    """

    def __init__(
        self,
        ledger: Ledger,
        store: Optional[BatchStore] = None,
        settings: Optional[BatchMeterSettings] = None,
        rate_limit_options: Optional[RateLimitOptions] = None,
    ):
        super().__init__()

        super().initialise(
            ledger=ledger,
            store=store,
            settings=settings,
            rate_limit_options=rate_limit_options,
        )

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Wait for the provider lane to drain and close owned database connections.
        Running batch drains are left alone.
        """
        if not self.provider_queue.join(timeout=timeout):
            logger.warning("provider queue still busy on close", size=self.provider_queue_size())

        for database in self.databases:
            database.close()
        self.databases = []
