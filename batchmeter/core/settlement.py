"""
Credit-batch settlement.

Reserves the full cost of a batch before any work starts, then watches the job
in the background and, once it is terminal, refunds what was not produced and
finalizes the rest. Ledger failures after the job ran are logged and recorded,
they never change the job.
"""

import asyncio
import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union

from ..database.ledger import Ledger
from ..helper.error import BatchMeterError, ReservationDenied, SettlementReconciliationFailure
from ..helper.logging import get_logger
from ..model.batch_job import BatchJob, ContinuationInfo, JobStatus
from ..model.executor import Executor, ExecutorLike
from .batch_runner import BatchRunner, ItemInput
from .runner import SmallRunner, go_func

logger = get_logger(__name__)


class SettlementOutcome(str, Enum):
    SETTLED = "settled"
    TIMED_OUT = "timed_out"
    JOB_MISSING = "job_missing"
    BYPASSED = "bypassed"


@dataclass
class BatchRequest:
    """
    A metered batch: what to run, for whom, and what each item costs.
    ``ref_type`` names the reservation kind, ``job_type`` defaults to ``gen_images``.
    """

    items: Sequence[ItemInput]
    cost_per_item: int
    concurrency: int = 3
    project_id: str = ""
    user_id: str = ""
    ref_type: str = "batch-image"
    ref_id: Optional[str] = None
    job_type: str = "gen_images"
    job_id: Optional[str] = None
    continuation: Optional[ContinuationInfo] = None

    @property
    def total_cost(self) -> int:
        return self.cost_per_item * len(self.items)


@dataclass
class SettlementResult:
    outcome: SettlementOutcome
    job_status: Optional[JobStatus] = None
    refunded_amount: int = 0
    finalized: bool = False
    errors: List[SettlementReconciliationFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "job_status": self.job_status.value if self.job_status else None,
            "refunded_amount": self.refunded_amount,
            "finalized": self.finalized,
            "errors": [str(e) for e in self.errors],
        }


@dataclass
class SettlementHandle:
    """Returned by CreditSettlement.start; wait() blocks for the reconciliation result."""

    job: BatchJob
    ref_type: str
    ref_id: str
    total_cost: int
    cost_per_item: int
    bypassed: bool = False
    poller: Optional[SmallRunner] = None

    def wait(self, timeout: Optional[float] = None) -> Optional[SettlementResult]:
        """
        :returns: The settlement result, or None if it is not available within ``timeout``.
        """
        if self.bypassed or self.poller is None:
            return SettlementResult(outcome=SettlementOutcome.BYPASSED)
        try:
            return self.poller.get_results(timeout=timeout)
        except TimeoutError:
            return None


def new_reference_id(ref_type: str) -> str:
    """Reservation reference of the form ``<ref_type>:<epoch ms>:<random>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=10))
    return f"{ref_type}:{int(time.time() * 1000)}:{suffix}"


class CreditSettlement:
    """
    Couples the ledger to the batch runner.

    :param ledger: Ledger bound to the paying account.
    :param runner: Runner that executes the batches.
    :param poll_interval: Seconds between job status polls.
    :param max_poll_attempts: Polls before giving up and leaving the reservation held.
    """

    def __init__(
        self,
        ledger: Ledger,
        runner: BatchRunner,
        poll_interval: float = 3.0,
        max_poll_attempts: int = 600,
    ):
        if poll_interval <= 0:
            raise ValueError("poll interval must be positive")
        if max_poll_attempts < 1:
            raise ValueError("max poll attempts must be at least 1")

        self.ledger = ledger
        self.runner = runner
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts

    def start(
        self,
        request: BatchRequest,
        executor: Union[ExecutorLike, Executor],
        bypass: bool = False,
    ) -> SettlementHandle:
        """
        Reserve the batch's total cost and start it.

        :param bypass: Skip the ledger for quota-exempt accounts. Always audited.
        :raises ReservationDenied: If the balance does not cover the batch. No job is created.
        :raises BatchMeterError: If the ledger could not be asked.
        """
        total_cost = request.total_cost

        if bypass:
            logger.warning(
                "credit reservation bypassed",
                user_id=request.user_id,
                project_id=request.project_id,
                ref_type=request.ref_type,
                total_cost=total_cost,
            )
            job = self._create_job(request, executor)
            return SettlementHandle(
                job=job,
                ref_type=request.ref_type,
                ref_id="",
                total_cost=total_cost,
                cost_per_item=request.cost_per_item,
                bypassed=True,
            )

        ref_id = request.ref_id or new_reference_id(request.ref_type)

        try:
            granted = self.ledger.reserve(total_cost, request.ref_type, ref_id)
        except Exception as e:
            logger.error("credit verification failed", error=e, ref_id=ref_id)
            raise BatchMeterError("credit verification failed", e)

        if not granted:
            logger.info(
                "reservation denied",
                user_id=request.user_id,
                ref_type=request.ref_type,
                needed=total_cost,
            )
            raise ReservationDenied(total_cost, request.ref_type, ref_id)

        try:
            job = self._create_job(request, executor)
        except Exception as e:
            logger.error("creating batch failed, releasing reservation", error=e, ref_id=ref_id)
            try:
                self.ledger.refund(total_cost, request.ref_type, ref_id)
            except Exception as refund_error:
                logger.error(
                    "releasing reservation failed", error=refund_error, ref_id=ref_id
                )
            raise

        logger.info(
            "credits reserved",
            job_id=job.id,
            ref_type=request.ref_type,
            ref_id=ref_id,
            total_cost=total_cost,
        )

        handle = SettlementHandle(
            job=job,
            ref_type=request.ref_type,
            ref_id=ref_id,
            total_cost=total_cost,
            cost_per_item=request.cost_per_item,
        )
        handle.poller = go_func(self._reconcile, handle, name=f"settlement-{job.id}")
        return handle

    def _create_job(
        self, request: BatchRequest, executor: Union[ExecutorLike, Executor]
    ) -> BatchJob:
        return self.runner.create(
            request.items,
            request.concurrency,
            executor,
            project_id=request.project_id,
            user_id=request.user_id,
            job_type=request.job_type,
            job_id=request.job_id,
            continuation=request.continuation,
        )

    async def _reconcile(self, handle: SettlementHandle) -> SettlementResult:
        job_id = handle.job.id

        for _ in range(self.max_poll_attempts):
            await asyncio.sleep(self.poll_interval)

            snapshot = self.runner.status(job_id)
            if snapshot is None:
                logger.warning(
                    "job vanished before settlement, reservation left held",
                    job_id=job_id,
                    ref_id=handle.ref_id,
                )
                return SettlementResult(outcome=SettlementOutcome.JOB_MISSING)

            if snapshot.job.status.is_terminal():
                return await self._settle(handle, snapshot.job)

        logger.warning(
            "settlement timed out, reservation left held",
            job_id=job_id,
            ref_id=handle.ref_id,
            polls=self.max_poll_attempts,
        )
        return SettlementResult(outcome=SettlementOutcome.TIMED_OUT)

    async def _settle(self, handle: SettlementHandle, job: BatchJob) -> SettlementResult:
        result = SettlementResult(outcome=SettlementOutcome.SETTLED, job_status=job.status)

        unfulfilled = job.total - job.succeeded
        if unfulfilled > 0:
            refund_amount = unfulfilled * handle.cost_per_item
            try:
                await asyncio.to_thread(
                    self.ledger.refund, refund_amount, handle.ref_type, handle.ref_id
                )
                result.refunded_amount = refund_amount
            except Exception as e:
                failure = SettlementReconciliationFailure("refunding", handle.ref_type, handle.ref_id, e)
                logger.error("partial refund failed", error=failure, job_id=job.id)
                result.errors.append(failure)

        try:
            result.finalized = bool(
                await asyncio.to_thread(self.ledger.finalize, handle.ref_type, handle.ref_id)
            )
        except Exception as e:
            failure = SettlementReconciliationFailure("finalizing", handle.ref_type, handle.ref_id, e)
            logger.error("finalize failed", error=failure, job_id=job.id)
            result.errors.append(failure)

        logger.info(
            "batch settled",
            job_id=job.id,
            status=job.status.value,
            refunded=result.refunded_amount,
            finalized=result.finalized,
        )
        return result
