"""
Batch runner: drains the items of a job under bounded concurrency.

Every drain runs on its own SmallRunner thread with a private event loop.
Workers inside a drain are asyncio tasks sharing one cursor, which is only
advanced while holding the drain lock, so no item is ever claimed twice.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union
from uuid import uuid4

from ..database.batch_store import BatchStore, InMemoryBatchStore
from ..helper.error import BatchMeterError, CancellationRequested, ItemExecutionFailure
from ..helper.logging import get_logger
from ..model.batch_item import BatchItem, ItemStatus
from ..model.batch_job import (
    BatchJob,
    BatchSnapshot,
    ContinuationInfo,
    JobStatus,
    count_items,
    derive_job_status,
)
from ..model.executor import Executor, ExecutorLike, new_executor
from ..model.update import BatchUpdate
from .broadcaster import new_broadcaster
from .runner import SmallRunner, go_func

logger = get_logger(__name__)

ItemInput = Union[BatchItem, Dict[str, Any], str]


@dataclass
class _JobControl:
    cancel_requested: threading.Event = field(default_factory=threading.Event)
    drain: Optional[SmallRunner] = None


class BatchRunner:
    """
    Runs batch jobs against an injected BatchStore.

    :param store: Where jobs and items live. Defaults to an InMemoryBatchStore.
    :param item_timeout: Optional limit in seconds for a single executor call.
    """

    def __init__(
        self, store: Optional[BatchStore] = None, item_timeout: Optional[float] = None
    ):
        self.store: BatchStore = store if store is not None else InMemoryBatchStore()
        self.item_timeout = item_timeout

        self._controls: Dict[str, _JobControl] = {}
        self._controls_lock = threading.RLock()

        self.update_broadcaster = new_broadcaster("batch.update")

    def create(
        self,
        items: Iterable[ItemInput],
        concurrency: int,
        executor: Union[ExecutorLike, Executor],
        project_id: str = "",
        user_id: str = "",
        job_type: str = "gen_images",
        job_id: Optional[str] = None,
        continuation: Optional[ContinuationInfo] = None,
    ) -> BatchJob:
        """
        Create a job with all items queued and start draining it in the background.

        :returns: A copy of the created job, still pending.
        :raises BatchMeterError: If the job could not be stored.
        """
        batch_executor = new_executor(executor)
        batch_items = [to_batch_item(item) for item in items]

        job = BatchJob(
            id=job_id or str(uuid4()),
            project_id=project_id,
            user_id=user_id,
            type=job_type,
            total=len(batch_items),
            concurrency=max(1, int(concurrency or 1)),
            continuation=continuation,
        )

        try:
            snapshot = self.store.insert_job(job, batch_items)
        except Exception as e:
            raise BatchMeterError("inserting batch job", e)

        control = self._control(job.id)
        logger.info(
            "batch job created",
            job_id=job.id,
            type=job.type,
            total=job.total,
            concurrency=job.concurrency,
        )
        self._publish(snapshot.job)

        self._start_drain(job.id, [item.id for item in snapshot.items], batch_executor, control)
        return snapshot.job

    def status(self, job_id: str) -> Optional[BatchSnapshot]:
        """Return a point-in-time copy of the job and its items."""
        return self.store.select_job(job_id)

    def cancel(self, job_id: str) -> bool:
        """
        Request cooperative cancellation. Items already running finish, no new
        item is claimed.

        :returns: False if the job is unknown, completed or already cancelled.
        """
        snapshot = self.store.select_job(job_id)
        if snapshot is None:
            return False
        if snapshot.job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
            return False

        self._control(job_id).cancel_requested.set()
        logger.info("batch job cancellation requested", job_id=job_id)
        return True

    def retry(self, job_id: str, executor: Union[ExecutorLike, Executor]) -> bool:
        """
        Requeue every failed item of a job and drain only those again.

        :returns: False if the job is unknown, running or has no failed items.
        """
        batch_executor = new_executor(executor)

        with self._controls_lock:
            snapshot = self.store.select_job(job_id)
            if snapshot is None:
                return False
            if snapshot.job.status == JobStatus.RUNNING:
                return False

            failed_items = [i for i in snapshot.items if i.status == ItemStatus.FAILED]
            if not failed_items:
                return False

            for item in failed_items:
                item.reset_for_retry()
                self.store.update_item(item)

            job = snapshot.job
            job.apply_counters(count_items(snapshot.items))
            job.status = JobStatus.PENDING
            job.touch()
            self.store.update_job(job)

            control = self._control(job_id)
            control.cancel_requested.clear()

            logger.info("batch job retry", job_id=job_id, retried=len(failed_items))
            self._publish(job)
            self._start_drain(job_id, [i.id for i in failed_items], batch_executor, control)
            return True

    def remove(self, job_id: str) -> bool:
        """Evict a job and its items. A drain still running stops at its next claim."""
        with self._controls_lock:
            control = self._controls.pop(job_id, None)
        if control is not None:
            control.cancel_requested.set()
        return self.store.delete_job(job_id)

    def list_jobs(self) -> List[BatchJob]:
        return self.store.select_all_jobs()

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[BatchSnapshot]:
        """
        Block until the current drain of a job has ended.

        :raises TimeoutError: If the drain is still running after ``timeout`` seconds.
        """
        with self._controls_lock:
            control = self._controls.get(job_id)
        drain = control.drain if control else None

        if drain is not None:
            drain.join(timeout=timeout)
            if drain.is_alive():
                raise TimeoutError(
                    f"batch job {job_id} still draining after {timeout} seconds"
                )

        return self.status(job_id)

    def subscribe(self, listener: Callable[[BatchUpdate], None]) -> str:
        return self.update_broadcaster.subscribe(listener)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.update_broadcaster.unsubscribe(subscription_id)

    # Internal

    def _control(self, job_id: str) -> _JobControl:
        with self._controls_lock:
            control = self._controls.get(job_id)
            if control is None:
                control = _JobControl()
                self._controls[job_id] = control
            return control

    def _start_drain(
        self,
        job_id: str,
        item_ids: List[str],
        executor: Executor,
        control: _JobControl,
    ) -> None:
        control.drain = go_func(
            self._drain,
            job_id,
            item_ids,
            executor,
            control.cancel_requested,
            name=f"batch-drain-{job_id}",
        )

    async def _drain(
        self,
        job_id: str,
        item_ids: List[str],
        executor: Executor,
        cancel_requested: threading.Event,
    ) -> Optional[JobStatus]:
        snapshot = self.store.select_job(job_id)
        if snapshot is None:
            return None

        cursor: Iterator[str] = iter(item_ids)
        lock = asyncio.Lock()

        async def work(worker_index: int) -> None:
            while True:
                try:
                    claimed = await self._claim(job_id, cursor, lock, cancel_requested)
                except CancellationRequested as e:
                    logger.debug(str(e), worker=worker_index)
                    return
                except Exception as e:
                    # The cursor already moved past the item, it is swept up in _finish
                    logger.error(
                        "claiming batch item failed", error=e, job_id=job_id, worker=worker_index
                    )
                    continue
                if claimed is None:
                    return

                item, job = claimed
                try:
                    await self._execute(job, item, executor, lock, cancel_requested)
                except Exception as e:
                    logger.error(
                        "settling batch item failed", error=e, job_id=job_id, item_id=item.id
                    )

        results = await asyncio.gather(
            *(work(i) for i in range(snapshot.job.concurrency)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error("batch worker stopped unexpectedly", error=result, job_id=job_id)

        async with lock:
            return self._finish(job_id, item_ids, cancel_requested.is_set())

    async def _claim(
        self,
        job_id: str,
        cursor: Iterator[str],
        lock: asyncio.Lock,
        cancel_requested: threading.Event,
    ) -> Optional[Tuple[BatchItem, BatchJob]]:
        async with lock:
            if cancel_requested.is_set():
                raise CancellationRequested(job_id)

            for item_id in cursor:
                snapshot = self.store.select_job(job_id)
                if snapshot is None:
                    return None

                item = next((i for i in snapshot.items if i.id == item_id), None)
                if item is None or item.status != ItemStatus.QUEUED:
                    continue

                item.mark_running()
                self.store.update_item(item)
                job = self._refresh(snapshot, item, cancel_requested.is_set())
                return item, job

            return None

    async def _execute(
        self,
        job: BatchJob,
        item: BatchItem,
        executor: Executor,
        lock: asyncio.Lock,
        cancel_requested: threading.Event,
    ) -> None:
        failure: Optional[ItemExecutionFailure] = None
        result: Any = None
        try:
            result = await executor.call(item, job, timeout=self.item_timeout)
        except asyncio.TimeoutError as e:
            if self.item_timeout is not None and not str(e):
                failure = ItemExecutionFailure(
                    item.id, TimeoutError(f"timed out after {self.item_timeout} seconds")
                )
            else:
                failure = ItemExecutionFailure(item.id, e)
        except Exception as e:
            failure = ItemExecutionFailure(item.id, e)

        async with lock:
            snapshot = self.store.select_job(job.id)
            if snapshot is None:
                return

            if failure is None:
                item.mark_succeeded(result)
            else:
                item.mark_failed(str(failure.original))
                logger.warning(
                    "batch item failed",
                    job_id=job.id,
                    item_id=item.id,
                    payload_key=item.payload_key,
                    error=item.error,
                )

            try:
                self.store.update_item(item)
                self._refresh(snapshot, item, cancel_requested.is_set())
            except Exception as e:
                logger.error(
                    "recording batch item failed", error=e, job_id=job.id, item_id=item.id
                )
                self._abandon(
                    job.id, item.id, f"recording result failed: {e}", cancel_requested.is_set()
                )

    def _abandon(self, job_id: str, item_id: str, error: str, cancel_requested: bool) -> None:
        """Fail an item whose outcome could not be stored, from its stored state."""
        snapshot = self.store.select_job(job_id)
        if snapshot is None:
            return
        stored = next((i for i in snapshot.items if i.id == item_id), None)
        if stored is None:
            return

        if not stored.status.is_terminal():
            stored.mark_abandoned(error)
            self.store.update_item(stored)
        self._refresh(snapshot, stored, cancel_requested)

    def _refresh(
        self, snapshot: BatchSnapshot, changed: BatchItem, cancel_requested: bool
    ) -> BatchJob:
        items = [changed if i.id == changed.id else i for i in snapshot.items]

        job = snapshot.job
        job.apply_counters(count_items(items))
        job.status = derive_job_status(items, cancel_requested, finished=False)
        job.touch()
        self.store.update_job(job)

        self._publish(job, changed)
        return job

    def _finish(
        self, job_id: str, item_ids: List[str], cancel_requested: bool
    ) -> Optional[JobStatus]:
        snapshot = self.store.select_job(job_id)
        if snapshot is None:
            return None

        drained = set(item_ids)
        for item in snapshot.items:
            if item.id not in drained or item.status.is_terminal():
                continue
            if cancel_requested and item.status == ItemStatus.QUEUED:
                item.mark_cancelled()
            else:
                # All workers stopped, nothing will settle this item anymore
                item.mark_abandoned("worker stopped before the item settled")
                logger.warning(
                    "batch item abandoned",
                    job_id=job_id,
                    item_id=item.id,
                    payload_key=item.payload_key,
                )
            self.store.update_item(item)

        job = snapshot.job
        job.apply_counters(count_items(snapshot.items))
        job.status = derive_job_status(snapshot.items, cancel_requested, finished=True)
        job.touch()
        self.store.update_job(job)

        logger.info(
            "batch job finished",
            job_id=job.id,
            status=job.status.value,
            succeeded=job.succeeded,
            failed=job.failed,
            total=job.total,
        )
        self._publish(job)
        return job.status

    def _publish(self, job: BatchJob, item: Optional[BatchItem] = None) -> None:
        self.update_broadcaster.broadcast(
            BatchUpdate(
                job_id=job.id,
                job_status=job.status.value,
                done=job.done,
                succeeded=job.succeeded,
                failed=job.failed,
                total=job.total,
                item_id=item.id if item else None,
                item_status=item.status.value if item else None,
            )
        )


def to_batch_item(item: ItemInput) -> BatchItem:
    """
    Build a fresh queued item from a BatchItem, a payload dict or a bare payload key.
    A dict may name its key under ``payload_key`` or ``id``.
    """
    if isinstance(item, BatchItem):
        return BatchItem(payload_key=item.payload_key, payload=dict(item.payload))
    if isinstance(item, dict):
        payload = dict(item)
        payload_key = payload.get("payload_key") or payload.get("id") or ""
        return BatchItem(payload_key=str(payload_key), payload=payload)
    if isinstance(item, str):
        return BatchItem(payload_key=item)

    raise ValueError(f"unsupported batch item type {type(item).__name__}")
