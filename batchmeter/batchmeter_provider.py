"""
Single provider call methods of the BatchMeter facade.
"""

from concurrent.futures import Future
from typing import Any, Callable

from .batchmeter_global import BatchMeterGlobalMixin
from .model.update import QueueUpdate


class BatchMeterProviderMixin(BatchMeterGlobalMixin):
    """
    Mixin routing interactive provider calls through the rate-limited queue,
    outside of any batch.
    """

    def __init__(self):
        super().__init__()

    def submit_provider_call(self, task_id: str, fn: Callable[[], Any]) -> Future:
        """
        Queue a single provider call.

        :param task_id: Id reported in queue updates.
        :param fn: Sync or async callable without arguments.
        :returns: Future resolved with the call's result, or with
            ``TerminalRateLimit`` once all retries are used.
        """
        return self.provider_queue.add(task_id, fn)

    def provider_queue_size(self) -> int:
        return self.provider_queue.size()

    def on_provider_update(self, listener: Callable[[QueueUpdate], None]) -> str:
        return self.provider_queue.subscribe(listener)

    def off_provider_update(self, subscription_id: str) -> bool:
        return self.provider_queue.unsubscribe(subscription_id)
