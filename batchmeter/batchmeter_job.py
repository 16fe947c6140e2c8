"""
Batch job methods of the BatchMeter facade.
"""

from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union

from .core.batch_runner import ItemInput
from .core.settlement import BatchRequest, SettlementHandle
from .helper.continuation import ContinuationPlan, select_next_batch
from .helper.logging import get_logger
from .model.batch_job import BatchJob, BatchSnapshot, ContinuationStrategy
from .model.executor import Executor, ExecutorLike
from .model.update import BatchUpdate
from .batchmeter_global import BatchMeterGlobalMixin

logger = get_logger(__name__)


class BatchMeterJobMixin(BatchMeterGlobalMixin):
    """
    Mixin with the metered batch operations of the BatchMeter.
    """

    def __init__(self):
        super().__init__()

    def start_batch(
        self,
        items: Sequence[ItemInput],
        executor: Union[ExecutorLike, Executor],
        cost_per_item: int,
        concurrency: Optional[int] = None,
        project_id: str = "",
        user_id: str = "",
        bypass: bool = False,
        ref_type: str = "batch-image",
        job_type: str = "gen_images",
    ) -> SettlementHandle:
        """
        Reserve credits for a batch and start it.

        :param items: Payload keys, payload dicts or BatchItems.
        :param executor: Called once per item with ``(item, job)``.
        :param cost_per_item: Credits charged per succeeded item.
        :param concurrency: Requested workers, capped at ``settings.max_concurrency``.
        :param bypass: Skip the ledger for quota-exempt accounts.
        :returns: Handle with the pending job and the settlement result.
        :raises ValueError: If there are no items or the cost is negative.
        :raises ReservationDenied: If the balance does not cover the batch.
        """
        if not items:
            raise ValueError("batch needs at least one item")
        if cost_per_item < 0:
            raise ValueError("cost per item cannot be negative")

        request = BatchRequest(
            items=list(items),
            cost_per_item=cost_per_item,
            concurrency=self.settings.clamp_concurrency(concurrency),
            project_id=project_id,
            user_id=user_id,
            ref_type=ref_type,
            job_type=job_type,
        )
        handle = self.settlement.start(request, executor, bypass=bypass)

        logger.info(
            "batch started",
            job_id=handle.job.id,
            items=len(request.items),
            concurrency=request.concurrency,
            bypassed=handle.bypassed,
        )
        return handle

    def continue_batch(
        self,
        shots: Sequence[Any],
        shots_with_results: Iterable[str],
        executor: Union[ExecutorLike, Executor],
        cost_per_item: int,
        count: int = 100,
        strategy: Union[ContinuationStrategy, str] = ContinuationStrategy.STRICT,
        concurrency: Optional[int] = None,
        project_id: str = "",
        user_id: str = "",
        bypass: bool = False,
    ) -> Tuple[ContinuationPlan, Optional[SettlementHandle]]:
        """
        Start the next batch of shots that have no result yet.

        :returns: The selection plan and the settlement handle, or no handle
            when every shot already has a result.
        """
        if not shots:
            raise ValueError("continuation needs at least one shot")

        plan = select_next_batch(shots, shots_with_results, count, strategy)
        if plan.all_done:
            logger.info("continuation has nothing left", project_id=project_id)
            return plan, None

        request = BatchRequest(
            items=plan.items(),
            cost_per_item=cost_per_item,
            concurrency=self.settings.clamp_concurrency(concurrency),
            project_id=project_id,
            user_id=user_id,
            ref_type="batch-image-continue",
            job_type="gen_images_continue",
            continuation=plan.info(),
        )
        handle = self.settlement.start(request, executor, bypass=bypass)

        logger.info(
            "continuation batch started",
            job_id=handle.job.id,
            strategy=plan.strategy.value,
            range=plan.info().range_label(),
            remaining=plan.remaining_count,
        )
        return plan, handle

    def get_job(self, job_id: str) -> Optional[BatchSnapshot]:
        return self.runner.status(job_id)

    def cancel_job(self, job_id: str) -> bool:
        return self.runner.cancel(job_id)

    def retry_job(self, job_id: str, executor: Union[ExecutorLike, Executor]) -> bool:
        """Requeue the failed items of a job. Retries are not charged again."""
        return self.runner.retry(job_id, executor)

    def remove_job(self, job_id: str) -> bool:
        return self.runner.remove(job_id)

    def list_jobs(self) -> List[BatchJob]:
        return self.runner.list_jobs()

    def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[BatchSnapshot]:
        """Block until the current drain of a job has ended."""
        return self.runner.wait(job_id, timeout=timeout)

    def on_batch_update(self, listener: Callable[[BatchUpdate], None]) -> str:
        """
        Register a listener for job and item transitions.

        :returns: Subscription id for ``off_batch_update``.
        """
        return self.runner.subscribe(listener)

    def off_batch_update(self, subscription_id: str) -> bool:
        return self.runner.unsubscribe(subscription_id)
