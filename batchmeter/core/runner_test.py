"""Test cases for the thread runner."""

import asyncio
import threading
import time
import unittest

from .runner import SmallRunner, go_func


async def task_async(a, b):
    """Async task returning the sum and waiting for <a> seconds."""
    await asyncio.sleep(a)
    return a + b


def task_sync(a, b):
    """Sync task returning the sum and waiting for <a> seconds."""
    time.sleep(a)
    return a + b


async def failing_task_async():
    raise ValueError("This task always fails")


def failing_task_sync():
    raise ValueError("This task always fails")


async def loop_identity():
    return id(asyncio.get_running_loop())


class TestSmallRunner(unittest.TestCase):
    """Test the thread-based runner."""

    def test_successful_task(self):
        runner = SmallRunner(task_async, 0.1, 3)
        runner.go()
        self.assertEqual(runner.get_results(timeout=2.0), 3.1)

        runner2 = SmallRunner(task_sync, 0.1, 2)
        runner2.go()
        self.assertEqual(runner2.get_results(timeout=2.0), 2.1)

    def test_failed_task(self):
        runner = SmallRunner(failing_task_async)
        runner.go()
        with self.assertRaises(ValueError) as context:
            runner.get_results(timeout=2.0)
        self.assertEqual(str(context.exception), "This task always fails")

        runner2 = SmallRunner(failing_task_sync)
        runner2.go()
        with self.assertRaises(ValueError):
            runner2.get_results(timeout=2.0)

    def test_timeout(self):
        runner = SmallRunner(task_sync, 0.5, 0)
        runner.go()
        with self.assertRaises(TimeoutError):
            runner.get_results(timeout=0.05)
        self.assertEqual(runner.get_results(timeout=2.0), 0.5)

    def test_custom_name(self):
        runner = SmallRunner(task_sync, 0, 0, name="batch-drain-1")
        self.assertEqual(runner.name, "batch-drain-1")
        self.assertTrue(runner.daemon)

    def test_private_event_loops(self):
        """Every async runner drives its own loop."""
        runners = [SmallRunner(loop_identity) for _ in range(3)]
        for runner in runners:
            runner.go()
        loop_ids = [runner.get_results(timeout=2.0) for runner in runners]
        self.assertEqual(len(set(loop_ids)), 3)

    def test_multiple_concurrent_tasks(self):
        start = time.time()
        runners = [SmallRunner(task_async, 0.2, i) for i in range(5)]
        for runner in runners:
            runner.go()
        results = [runner.get_results(timeout=3.0) for runner in runners]

        self.assertEqual(results, [0.2 + i for i in range(5)])
        self.assertLess(time.time() - start, 1.0)


class TestGoFunc(unittest.TestCase):
    def test_go_func_threading(self):
        runner = go_func(task_sync, 0.05, 1)
        self.assertIsInstance(runner, SmallRunner)
        self.assertIsInstance(runner, threading.Thread)
        self.assertAlmostEqual(runner.get_results(timeout=2.0), 1.05)

    def test_go_func_kwargs(self):
        runner = go_func(task_async, a=0.01, b=2)
        self.assertAlmostEqual(runner.get_results(timeout=2.0), 2.01)


if __name__ == "__main__":
    unittest.main()
