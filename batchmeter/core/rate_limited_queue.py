"""
Rate-limited retry queue for single interactive provider calls.

One serial lane: tasks start strictly one after another, paced by a minimum
gap after the last successful call. Rate-limit errors are retried with
exponential backoff and the retried task goes back to the front of the deque,
ahead of tasks that arrived after it.
"""

import asyncio
import inspect
import math
import threading
import time
from collections import deque
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Optional

from ..helper.error import TerminalRateLimit, is_rate_limit_error
from ..helper.logging import get_logger
from ..model.options_rate_limit import RateLimitOptions
from ..model.update import QueueUpdate, TaskStatus
from .broadcaster import new_broadcaster
from .runner import SmallRunner, go_func

logger = get_logger(__name__)


@dataclass
class _QueuedTask:
    id: str
    fn: Callable[[], Any]
    future: Future = field(default_factory=Future)
    attempt: int = 0


class RateLimitedQueue:
    """
    Serial, paced queue for calls against a provider with a strict
    per-account rate limit.

    :param options: Pacing and retry options, defaults to RateLimitOptions().
    :param name: Name used for the update broadcaster and the lane thread.
    """

    def __init__(self, options: Optional[RateLimitOptions] = None, name: str = "provider"):
        self.options = options if options is not None else RateLimitOptions()
        if not self.options.is_valid():
            raise ValueError("invalid rate limit options")
        self.name = name

        self._lock = threading.Lock()
        self._pending: Deque[_QueuedTask] = deque()
        self._current: Optional[_QueuedTask] = None
        self._processing = False
        self._last_success: Optional[float] = None
        self._lane: Optional[SmallRunner] = None

        self.update_broadcaster = new_broadcaster(f"{name}.queue")

    def add(self, task_id: str, fn: Callable[[], Any]) -> Future:
        """
        Queue a call. ``fn`` takes no arguments and may be sync or async.

        :returns: A concurrent.futures.Future resolved with the call's result.
            Use ``asyncio.wrap_future`` to await it from a coroutine.
        """
        if not callable(fn):
            raise ValueError("task must be callable")

        task = _QueuedTask(id=task_id, fn=fn)
        with self._lock:
            self._pending.append(task)
            start_lane = not self._processing
            self._processing = True

        logger.debug("provider task queued", task_id=task_id, queue=self.name)
        self._emit_positions()

        if start_lane:
            self._lane = go_func(self._process, name=f"{self.name}-lane")
        return task.future

    def size(self) -> int:
        """Number of tasks waiting or running."""
        with self._lock:
            return len(self._pending) + (1 if self._current is not None else 0)

    def subscribe(self, listener: Callable[[QueueUpdate], None]) -> str:
        return self.update_broadcaster.subscribe(listener)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.update_broadcaster.unsubscribe(subscription_id)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the lane to drain. Returns False if it is still busy."""
        lane = self._lane
        if lane is None:
            return True
        lane.join(timeout=timeout)
        return not lane.is_alive()

    async def _process(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._processing = False
                        self._current = None
                        return
                    task = self._pending.popleft()
                    self._current = task

                if task.future.cancelled():
                    logger.debug("provider task cancelled before start", task_id=task.id)
                    with self._lock:
                        self._current = None
                    self._emit_positions()
                    continue

                self._emit_positions()
                await self._pace()
                await self._run(task)

                with self._lock:
                    self._current = None
        except BaseException:
            # Let the next add() start a fresh lane
            with self._lock:
                self._processing = False
                self._current = None
            raise

    async def _pace(self) -> None:
        if self._last_success is None:
            return
        wait = self.options.min_gap - (time.monotonic() - self._last_success)
        if wait > 0:
            await asyncio.sleep(wait)

    async def _run(self, task: _QueuedTask) -> None:
        task.attempt += 1
        self._emit(task, TaskStatus.RUNNING)

        try:
            result = await self._call(task.fn)
        except Exception as err:
            await self._handle_error(task, err)
            return

        self._last_success = time.monotonic()
        self._emit(task, TaskStatus.DONE)
        self._resolve(task, result=result)

    async def _call(self, fn: Callable[[], Any]) -> Any:
        if inspect.iscoroutinefunction(fn):
            awaitable = fn()
        else:
            awaitable = asyncio.to_thread(fn)

        if self.options.task_timeout is not None:
            result = await asyncio.wait_for(awaitable, timeout=self.options.task_timeout)
        else:
            result = await awaitable

        if inspect.isawaitable(result):
            result = await result
        return result

    async def _handle_error(self, task: _QueuedTask, err: Exception) -> None:
        rate_limited = is_rate_limit_error(err)

        if rate_limited and task.attempt <= self.options.max_retries:
            backoff = self.options.backoff(task.attempt)
            logger.warning(
                "provider rate limited, backing off",
                task_id=task.id,
                attempt=task.attempt,
                backoff=backoff,
            )
            self._emit(
                task,
                TaskStatus.RETRYING,
                message=f"WAITING (retry in {math.ceil(backoff)}s)",
            )
            await asyncio.sleep(backoff)

            with self._lock:
                if self._current is task:
                    self._current = None
                self._pending.appendleft(task)
            self._emit_positions()
            return

        if rate_limited:
            failure: Exception = TerminalRateLimit()
            failure.__cause__ = err
        else:
            failure = err

        logger.error(
            "provider task failed", error=failure, task_id=task.id, attempt=task.attempt
        )
        self._emit(task, TaskStatus.FAILED, message=str(failure))
        self._resolve(task, error=failure)

    def _resolve(
        self, task: _QueuedTask, result: Any = None, error: Optional[Exception] = None
    ) -> None:
        if task.future.done():
            logger.debug("provider task already cancelled, dropping outcome", task_id=task.id)
            return
        try:
            if error is not None:
                task.future.set_exception(error)
            else:
                task.future.set_result(result)
        except InvalidStateError:
            logger.debug("provider task already cancelled, dropping outcome", task_id=task.id)

    def _emit(self, task: _QueuedTask, status: TaskStatus, message: str = "") -> None:
        self.update_broadcaster.broadcast(
            QueueUpdate(
                id=task.id,
                status=status,
                position=0,
                attempt=task.attempt,
                message=message,
            )
        )

    def _emit_positions(self) -> None:
        with self._lock:
            waiting = list(self._pending)
        for index, task in enumerate(waiting):
            self.update_broadcaster.broadcast(
                QueueUpdate(
                    id=task.id,
                    status=TaskStatus.QUEUED,
                    position=index + 1,
                    attempt=task.attempt,
                )
            )
