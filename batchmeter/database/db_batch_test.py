"""
Test for the Postgres batch store using testcontainers.
"""

import unittest

from ..core.batch_runner import BatchRunner
from ..helper.error import BatchMeterError
from ..helper.test_database import DatabaseTestMixin
from ..model.batch_item import BatchItem, ItemStatus
from ..model.batch_job import BatchJob, ContinuationInfo, ContinuationStrategy, JobStatus
from .db_batch import PostgresBatchStore


def _new_job(n: int = 3, **kwargs):
    job = BatchJob(project_id="p1", user_id="u1", total=n, **kwargs)
    items = [BatchItem(payload_key=f"shot-{i}", payload={"prompt": f"p{i}"}) for i in range(n)]
    return job, items


class TestPostgresBatchStore(DatabaseTestMixin, unittest.TestCase):
    """PostgresBatchStore against a real database."""

    @classmethod
    def setUpClass(cls):
        super().setup_class()

    @classmethod
    def tearDownClass(cls):
        super().teardown_class()

    def setUp(self):
        super().setup_method()
        self.store = PostgresBatchStore(self.db, with_table_drop=True)

    def tearDown(self):
        super().teardown_method()

    def test_tables_exist(self):
        self.assertTrue(self.store.check_table_existance())

    def test_drop_table(self):
        self.store.drop_table()
        self.assertFalse(self.store.check_table_existance())

    def test_insert_and_select(self):
        continuation = ContinuationInfo(
            strategy=ContinuationStrategy.SKIP_FAILED,
            range_start_scene=1,
            range_start_shot=2,
            range_end_scene=3,
            range_end_shot=4,
            remaining_count=5,
        )
        job, items = _new_job(3, type="gen_images_continue", continuation=continuation)

        snapshot = self.store.insert_job(job, items)

        self.assertEqual(snapshot.job.id, job.id)
        self.assertEqual(snapshot.job.type, "gen_images_continue")
        self.assertEqual(snapshot.job.status, JobStatus.PENDING)
        self.assertEqual(snapshot.job.continuation, continuation)
        self.assertEqual([i.payload_key for i in snapshot.items], ["shot-0", "shot-1", "shot-2"])
        self.assertEqual([i.position for i in snapshot.items], [0, 1, 2])
        self.assertEqual(snapshot.items[1].payload, {"prompt": "p1"})
        self.assertTrue(all(i.job_id == job.id for i in snapshot.items))

    def test_insert_duplicate_raises(self):
        job, items = _new_job()
        self.store.insert_job(job, items)

        with self.assertRaises(BatchMeterError):
            self.store.insert_job(job, [BatchItem(payload_key="other")])

    def test_update_item_and_job(self):
        job, items = _new_job()
        snapshot = self.store.insert_job(job, items)

        item = snapshot.items[0]
        item.mark_running()
        item.mark_succeeded({"image_url": "https://cdn.example/0.png"})
        updated_item = self.store.update_item(item)
        self.assertEqual(updated_item.status, ItemStatus.SUCCEEDED)

        snapshot.job.done = 1
        snapshot.job.succeeded = 1
        snapshot.job.status = JobStatus.RUNNING
        updated_job = self.store.update_job(snapshot.job)
        self.assertEqual(updated_job.status, JobStatus.RUNNING)

        fresh = self.store.select_job(job.id)
        self.assertEqual(fresh.job.done, 1)
        self.assertEqual(fresh.items[0].result, {"image_url": "https://cdn.example/0.png"})
        self.assertIsNotNone(fresh.items[0].completed_at)

    def test_update_unknown_returns_none(self):
        job, _ = _new_job()
        self.assertIsNone(self.store.update_job(job))
        self.assertIsNone(self.store.update_item(BatchItem(job_id=job.id)))
        self.assertIsNone(self.store.select_job(job.id))

    def test_select_all_and_delete(self):
        first, first_items = _new_job(1)
        second, second_items = _new_job(2)
        self.store.insert_job(first, first_items)
        self.store.insert_job(second, second_items)

        jobs = self.store.select_all_jobs()
        self.assertEqual({j.id for j in jobs}, {first.id, second.id})

        self.assertTrue(self.store.delete_job(first.id))
        self.assertFalse(self.store.delete_job(first.id))
        self.assertIsNone(self.store.select_job(first.id))

    def test_runner_on_postgres(self):
        runner = BatchRunner(store=self.store)

        def execute(item: BatchItem, job: BatchJob):
            if item.payload_key == "shot-2":
                raise RuntimeError("provider rejected shot-2")
            return {"image_url": f"https://cdn.example/{item.payload_key}.png"}

        job = runner.create([f"shot-{i}" for i in range(4)], 2, execute)
        snapshot = runner.wait(job.id, timeout=10.0)

        self.assertEqual(snapshot.job.status, JobStatus.COMPLETED)
        self.assertEqual(snapshot.job.succeeded, 3)
        self.assertEqual(snapshot.job.failed, 1)
        self.assertEqual(snapshot.items[2].error, "provider rejected shot-2")


if __name__ == "__main__":
    unittest.main()
