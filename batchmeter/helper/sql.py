"""
SQL loading for the Postgres store and ledger.
DDL runs under a process lock and SQL functions are only (re)loaded when missing.
"""

import os
import threading
import time
from pathlib import Path
from typing import List, Optional

from psycopg import Connection, errors

from .logging import get_logger

logger = get_logger(__name__)

# Global lock for DDL operations to prevent concurrent DDL deadlocks
_DDL_LOCK = threading.RLock()


def run_ddl(conn: Connection, sql_statement: str, max_retries: int = 3) -> None:
    """
    Executes DDL under a process lock, retrying on deadlocks or serialization errors.

    :param conn: The Psycopg 3 connection object.
    :param sql_statement: The DDL to execute (e.g., CREATE TABLE, CREATE FUNCTION).
    """

    with _DDL_LOCK:
        for attempt in range(max_retries):
            try:
                conn.rollback()
                with conn.cursor() as cur:
                    cur.execute(sql_statement.encode("utf-8"))
                conn.commit()
                return
            except (errors.DeadlockDetected, errors.SerializationFailure) as e:
                if attempt < max_retries - 1:
                    logger.warning(f"ddl lock, attempt {attempt + 1}/{max_retries}")
                    time.sleep(0.5)
                else:
                    logger.error(f"ddl failed after {max_retries} retries: {e}")
                    raise
            except Exception as e:
                conn.rollback()
                raise e


class SQLLoader:
    """
    Loads the SQL function files shipped in the ``sql`` directory.
    """

    BATCH_FUNCTIONS: List[str] = [
        "init_batch",
    ]
    LEDGER_FUNCTIONS: List[str] = [
        "init_ledger",
        "reserve_credits",
        "finalize_reserve",
        "refund_reserve",
    ]

    def __init__(self, sql_base_path: Optional[str] = None):
        """
        :param sql_base_path: Base path to SQL files. If None, defaults to the package sql directory.
        """
        if sql_base_path is None:
            current_dir = Path(__file__).parent.parent
            sql_base_path = str(current_dir / "sql")
        self.sql_base_path = sql_base_path

    def load_sql_file(self, file_path: str) -> str:
        """
        Load SQL content from file.

        :raises ValueError: If the file does not exist.
        """
        try:
            with open(file_path, "r") as f:
                return f.read()
        except FileNotFoundError:
            raise ValueError(f"SQL file not found: {file_path}")

    def execute_sql_file(self, connection: Connection, file_path: str) -> None:
        sql_content: str = self.load_sql_file(file_path)
        run_ddl(connection, sql_content)

    def check_functions(self, connection: Connection, sql_functions: List[str]) -> bool:
        """
        Check if all SQL functions exist.

        :returns: True if all functions exist, False otherwise.
        """
        for func_name in sql_functions:
            with connection.cursor() as cur:
                cur.execute(
                    "SELECT EXISTS(SELECT 1 FROM pg_proc WHERE proname = %s);",
                    (func_name,),
                )
                one = cur.fetchone()
                if one is None or not one[0]:
                    return False
        return True

    def _load(
        self,
        connection: Connection,
        file_name: str,
        sql_functions: List[str],
        force: bool,
    ) -> None:
        if not force and self.check_functions(connection, sql_functions):
            return

        self.execute_sql_file(connection, os.path.join(self.sql_base_path, file_name))

        if not self.check_functions(connection, sql_functions):
            raise RuntimeError(f"Not all required SQL functions of {file_name} were created")

    def load_batch_sql(self, connection: Connection, force: bool = False) -> None:
        """
        Load batch store SQL functions.

        :raises RuntimeError: If not all required functions were created.
        """
        self._load(connection, "batch.sql", self.BATCH_FUNCTIONS, force)

    def load_ledger_sql(self, connection: Connection, force: bool = False) -> None:
        """
        Load ledger SQL functions.

        :raises RuntimeError: If not all required functions were created.
        """
        self._load(connection, "ledger.sql", self.LEDGER_FUNCTIONS, force)
