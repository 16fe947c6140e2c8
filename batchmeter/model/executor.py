"""
Executor model for the batch runner.
An executor performs the paid generation call for one item.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from .batch_item import BatchItem
from .batch_job import BatchJob


@runtime_checkable
class TaskExecutor(Protocol):
    """Object form of an executor. Must be safe to invoke concurrently."""

    def execute(self, item: BatchItem, job: BatchJob) -> Union[Any, Awaitable[Any]]: ...


ExecutorLike = Union[TaskExecutor, Callable[[BatchItem, BatchJob], Any]]


@dataclass
class Executor:
    """
    Executor wraps a sync or async callable (or a TaskExecutor object)
    behind one awaitable ``call``.
    """

    function: Callable[..., Any]
    name: str = ""
    is_async: bool = field(init=False, default=False)

    def __post_init__(self):
        if not self.name:
            self.name = get_executor_name(self.function)
        self.is_async = inspect.iscoroutinefunction(self.function)

    async def call(
        self, item: BatchItem, job: BatchJob, timeout: Optional[float] = None
    ) -> Any:
        """
        Run the executor for one item.
        Sync executors run in a worker thread so they never block the drain loop.

        :raises asyncio.TimeoutError: If ``timeout`` is set and exceeded.
        """
        if self.is_async:
            awaitable = self.function(item, job)
        else:
            awaitable = asyncio.to_thread(self.function, item, job)

        if timeout is not None:
            result = await asyncio.wait_for(awaitable, timeout=timeout)
        else:
            result = await awaitable

        # sync callables may still hand back a coroutine
        if inspect.isawaitable(result):
            result = await result
        return result


def get_executor_name(executor: Any) -> str:
    if hasattr(executor, "__name__"):
        return executor.__name__
    elif hasattr(executor, "__self__"):
        return executor.__self__.__class__.__name__
    elif hasattr(executor, "__class__"):
        return executor.__class__.__name__
    else:
        return str(executor)


def new_executor(executor: Union[ExecutorLike, Executor]) -> Executor:
    """
    Create an Executor from a callable ``(item, job) -> result`` or an object
    with an ``execute(item, job)`` method.

    :raises ValueError: If the executor is neither.
    """
    if isinstance(executor, Executor):
        return executor
    if executor is None:
        raise ValueError("executor must not be None")

    execute = getattr(executor, "execute", None)
    if execute is not None and callable(execute):
        return Executor(execute, name=executor.__class__.__name__)
    if callable(executor):
        return Executor(executor)

    raise ValueError(f"executor must be callable, got {type(executor).__name__}")
