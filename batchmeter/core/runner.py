"""
Thread runner - Go-like background execution with a result channel.
Async tasks get a private event loop on the runner thread.
"""

import asyncio
import inspect
import queue
import threading
from typing import Any, Callable, Optional

from ..helper.logging import get_logger

logger = get_logger(__name__)


class SmallRunner(threading.Thread):
    """
    A lightweight, thread-based runner sharing the parent process's state.
    Drains, settlement pollers and the provider lane each run on one.

    :param task: The synchronous or asynchronous function to execute.
    :param args: Arguments to pass to the task function.
    """

    def __init__(
        self,
        task: Callable[..., Any],
        *args: Any,
        name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(name=name or task.__name__, daemon=True)
        self.task = task
        self.args = args
        self.kwargs = kwargs
        self.is_async = inspect.iscoroutinefunction(task)
        self._result_queue: queue.Queue[Any] = queue.Queue(maxsize=1)

    def go(self) -> None:
        """Starts the SmallRunner thread in the background."""
        self.start()

    def run(self) -> None:
        loop: Optional[asyncio.AbstractEventLoop] = None

        try:
            if self.is_async:
                loop = asyncio.new_event_loop()
                asyncio.set_event_loop(loop)
                result = loop.run_until_complete(self.task(*self.args, **self.kwargs))
            else:
                result = self.task(*self.args, **self.kwargs)

            self._result_queue.put(result)

        except Exception as e:
            logger.error(f"SmallRunner {self.name} task failed", error=e)
            self._result_queue.put(e)
        finally:
            if loop is not None and not loop.is_closed():
                try:
                    pending_tasks = asyncio.all_tasks(loop)
                    for task in pending_tasks:
                        task.cancel()
                    if pending_tasks:
                        loop.run_until_complete(
                            asyncio.gather(*pending_tasks, return_exceptions=True)
                        )
                    loop.run_until_complete(loop.shutdown_default_executor())
                    loop.close()
                except Exception as cleanup_error:
                    logger.debug(f"error cleaning SmallRunner loop {cleanup_error}")

    def get_results(self, timeout: Optional[float] = None) -> Any:
        """
        Waits for the thread to complete and returns the result.

        :param timeout: Time in seconds to wait for the result. If None, waits indefinitely.
        :returns: The result returned by the executed task function.
        :raises TimeoutError: If the result is not available within the specified timeout.
        :raises Exception: If the task execution in the thread failed.
        """
        self.join(timeout=timeout)

        if self.is_alive():
            raise TimeoutError(f"small runner timed out after {timeout} seconds")

        try:
            result = self._result_queue.get(block=False)
        except queue.Empty:
            return None

        if isinstance(result, Exception):
            raise result

        return result


def go_func(func: Callable[..., Any], *args: Any, **kwargs: Any) -> SmallRunner:
    """
    Go-like function execution: start ``func`` on a SmallRunner and return it.

    :param func: The function to execute.
    :param args: Positional arguments for the function.
    :param kwargs: Keyword arguments for the function.
    :returns: A running SmallRunner instance.
    """
    runner = SmallRunner(func, *args, **kwargs)
    runner.go()
    return runner
