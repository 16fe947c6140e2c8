from typing import List, Optional

from .core.batch_runner import BatchRunner
from .core.rate_limited_queue import RateLimitedQueue
from .core.settlement import CreditSettlement
from .database.batch_store import BatchStore
from .database.ledger import Ledger
from .helper.database import Database
from .helper.logging import get_logger
from .model.options_rate_limit import RateLimitOptions
from .model.settings import BatchMeterSettings

logger = get_logger()


class BatchMeterGlobalMixin:
    def __init__(self):
        # Set by initialise
        self.settings: BatchMeterSettings
        self.ledger: Ledger
        self.runner: BatchRunner
        self.settlement: CreditSettlement
        self.provider_queue: RateLimitedQueue

        # Connections opened by the engine itself, closed on close()
        self.databases: List[Database] = []

    def initialise(
        self,
        ledger: Ledger,
        store: Optional[BatchStore] = None,
        settings: Optional[BatchMeterSettings] = None,
        rate_limit_options: Optional[RateLimitOptions] = None,
    ):
        self.settings = settings if settings is not None else BatchMeterSettings()
        self.ledger = ledger

        self.runner = BatchRunner(store=store, item_timeout=self.settings.item_timeout)
        self.settlement = CreditSettlement(
            ledger,
            self.runner,
            poll_interval=self.settings.settlement_poll_interval,
            max_poll_attempts=self.settings.settlement_max_polls,
        )
        self.provider_queue = RateLimitedQueue(rate_limit_options)

        logger.info(
            "batchmeter initialised",
            store=type(self.runner.store).__name__,
            ledger=type(ledger).__name__,
            max_concurrency=self.settings.max_concurrency,
        )
