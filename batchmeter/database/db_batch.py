"""
Postgres batch store.
Jobs live in ``batch_job``, their items in ``batch_job_item``; tables come from
the ``init_batch`` SQL function.
"""

import threading
from typing import List, Optional

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..helper.database import Database
from ..helper.error import BatchMeterError
from ..helper.sql import SQLLoader, run_ddl
from ..model.batch_item import BatchItem
from ..model.batch_job import BatchJob, BatchSnapshot
from .batch_store import BatchStore

_JOB_COLUMNS = (
    "id, project_id, user_id, type, total, done, succeeded, failed, status, "
    "concurrency, continuation, created_at, updated_at"
)
_ITEM_COLUMNS = (
    "id, job_id, position, payload_key, payload, status, result, error, "
    "started_at, completed_at"
)


class PostgresBatchStore(BatchStore):
    """
    BatchStore over a single psycopg connection.
    Drains write from their own threads, so every statement and its commit run
    under one lock.
    """

    def __init__(self, db_connection: Database, with_table_drop: bool = False):
        self.db: Database = db_connection
        self._lock = threading.RLock()

        if self.db.instance is None:
            raise ValueError("Database connection is not established")

        sql_loader: SQLLoader = SQLLoader()
        sql_loader.load_batch_sql(self.db.instance, force=with_table_drop)

        if with_table_drop:
            self.drop_table()

        self.create_table()

    def check_table_existance(self) -> bool:
        return self.db.check_table_existence("batch_job") and self.db.check_table_existence(
            "batch_job_item"
        )

    def create_table(self) -> None:
        if self.db.instance is None:
            raise ValueError("Database connection is not established")

        run_ddl(self.db.instance, "SELECT init_batch();")

    def drop_table(self) -> None:
        if self.db.instance is None:
            raise ValueError("Database connection is not established")

        run_ddl(
            self.db.instance,
            "DROP TABLE IF EXISTS batch_job_item CASCADE; DROP TABLE IF EXISTS batch_job CASCADE;",
        )

    def insert_job(self, job: BatchJob, items: List[BatchItem]) -> BatchSnapshot:
        conn = self._conn()

        with self._lock:
            try:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        INSERT INTO batch_job ({_JOB_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
                        """,
                        self._job_params(job),
                    )
                    for position, item in enumerate(items):
                        cur.execute(
                            f"""
                            INSERT INTO batch_job_item ({_ITEM_COLUMNS})
                            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
                            """,
                            (
                                item.id,
                                job.id,
                                position,
                                item.payload_key,
                                Jsonb(item.payload),
                                item.status.value,
                                Jsonb(item.result) if item.result is not None else None,
                                item.error,
                                item.started_at,
                                item.completed_at,
                            ),
                        )
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise BatchMeterError(f"inserting batch job {job.id}", e)

            snapshot = self.select_job(job.id)
            if snapshot is None:
                raise RuntimeError(f"Failed to insert batch job {job.id}")
            return snapshot

    def update_job(self, job: BatchJob) -> Optional[BatchJob]:
        conn = self._conn()

        with self._lock:
            try:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE batch_job
                        SET total = %s, done = %s, succeeded = %s, failed = %s,
                            status = %s, concurrency = %s, continuation = %s,
                            updated_at = %s
                        WHERE id = %s
                        RETURNING {_JOB_COLUMNS};
                        """,
                        (
                            job.total,
                            job.done,
                            job.succeeded,
                            job.failed,
                            job.status.value,
                            job.concurrency,
                            Jsonb(job.continuation.to_dict()) if job.continuation else None,
                            job.updated_at,
                            job.id,
                        ),
                    )
                    row = cur.fetchone()
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise BatchMeterError(f"updating batch job {job.id}", e)

            return BatchJob.from_row(row) if row else None

    def update_item(self, item: BatchItem) -> Optional[BatchItem]:
        conn = self._conn()

        with self._lock:
            try:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE batch_job_item
                        SET status = %s, result = %s, error = %s,
                            started_at = %s, completed_at = %s
                        WHERE id = %s AND job_id = %s
                        RETURNING {_ITEM_COLUMNS};
                        """,
                        (
                            item.status.value,
                            Jsonb(item.result) if item.result is not None else None,
                            item.error,
                            item.started_at,
                            item.completed_at,
                            item.id,
                            item.job_id,
                        ),
                    )
                    row = cur.fetchone()
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise BatchMeterError(f"updating batch item {item.id}", e)

            return BatchItem.from_row(row) if row else None

    def select_job(self, job_id: str) -> Optional[BatchSnapshot]:
        conn = self._conn()

        with self._lock:
            try:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        f"SELECT {_JOB_COLUMNS} FROM batch_job WHERE id = %s;", (job_id,)
                    )
                    job_row = cur.fetchone()
                    if job_row is None:
                        conn.commit()
                        return None

                    cur.execute(
                        f"""
                        SELECT {_ITEM_COLUMNS} FROM batch_job_item
                        WHERE job_id = %s
                        ORDER BY position ASC;
                        """,
                        (job_id,),
                    )
                    item_rows = cur.fetchall()
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise BatchMeterError(f"selecting batch job {job_id}", e)

        return BatchSnapshot(
            job=BatchJob.from_row(job_row),
            items=[BatchItem.from_row(row) for row in item_rows],
        )

    def select_all_jobs(self) -> List[BatchJob]:
        conn = self._conn()

        with self._lock:
            try:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        f"SELECT {_JOB_COLUMNS} FROM batch_job ORDER BY created_at DESC;"
                    )
                    rows = cur.fetchall()
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise BatchMeterError("selecting batch jobs", e)

        return [BatchJob.from_row(row) for row in rows]

    def delete_job(self, job_id: str) -> bool:
        conn = self._conn()

        with self._lock:
            try:
                with conn.cursor() as cur:
                    cur.execute("DELETE FROM batch_job WHERE id = %s;", (job_id,))
                    deleted = cur.rowcount > 0
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise BatchMeterError(f"deleting batch job {job_id}", e)

        return deleted

    def _conn(self):
        if self.db.instance is None:
            raise ValueError("Database connection is not established")
        return self.db.instance

    @staticmethod
    def _job_params(job: BatchJob) -> tuple:
        return (
            job.id,
            job.project_id,
            job.user_id,
            job.type,
            job.total,
            job.done,
            job.succeeded,
            job.failed,
            job.status.value,
            job.concurrency,
            Jsonb(job.continuation.to_dict()) if job.continuation else None,
            job.created_at,
            job.updated_at,
        )
