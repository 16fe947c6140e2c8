"""
Postgres ledger.
Balance checks and holds happen inside the ``reserve_credits``,
``finalize_reserve`` and ``refund_reserve`` SQL functions, so concurrent
callers, even from other processes, serialize on the account row.
"""

import threading
from typing import Optional

from psycopg.rows import dict_row

from ..helper.database import Database
from ..helper.error import BatchMeterError
from ..helper.logging import get_logger
from ..helper.sql import SQLLoader, run_ddl
from ..model.reservation import Reservation
from .ledger import Ledger

logger = get_logger(__name__)


class PostgresLedger(Ledger):
    """
    Ledger bound to one account in ``credit_account``.

    :param db_connection: Connected database.
    :param user_id: Account whose credits are reserved.
    :param with_table_drop: Drop and recreate the ledger tables.
    """

    def __init__(self, db_connection: Database, user_id: str, with_table_drop: bool = False):
        if not user_id:
            raise ValueError("user id is required")

        self.db: Database = db_connection
        self.user_id = user_id
        self._lock = threading.RLock()

        if self.db.instance is None:
            raise ValueError("Database connection is not established")

        sql_loader: SQLLoader = SQLLoader()
        sql_loader.load_ledger_sql(self.db.instance, force=with_table_drop)

        if with_table_drop:
            self.drop_table()

        self.create_table()

    def check_table_existance(self) -> bool:
        return self.db.check_table_existence("credit_account") and self.db.check_table_existence(
            "credit_reservation"
        )

    def create_table(self) -> None:
        if self.db.instance is None:
            raise ValueError("Database connection is not established")

        run_ddl(self.db.instance, "SELECT init_ledger();")

    def drop_table(self) -> None:
        if self.db.instance is None:
            raise ValueError("Database connection is not established")

        run_ddl(
            self.db.instance,
            "DROP TABLE IF EXISTS credit_reservation CASCADE; DROP TABLE IF EXISTS credit_account CASCADE;",
        )

    def top_up(self, amount: int) -> int:
        """Add credits to the account, creating it on first use. Returns the new balance."""
        if amount <= 0:
            raise ValueError("top up amount must be positive")

        row = self._fetch_one(
            """
            INSERT INTO credit_account (user_id, credits)
            VALUES (%s, %s)
            ON CONFLICT (user_id) DO UPDATE
            SET credits = credit_account.credits + EXCLUDED.credits,
                updated_at = now()
            RETURNING credits;
            """,
            (self.user_id, amount),
            "topping up credits",
        )
        return int(row["credits"])

    def get_balance(self) -> int:
        """Credits available for new reservations, 0 for an unknown account."""
        row = self._fetch_one(
            "SELECT credits FROM credit_account WHERE user_id = %s;",
            (self.user_id,),
            "reading balance",
        )
        return int(row["credits"]) if row else 0

    def get_reserved(self) -> int:
        row = self._fetch_one(
            "SELECT credits_reserved FROM credit_account WHERE user_id = %s;",
            (self.user_id,),
            "reading reserved credits",
        )
        return int(row["credits_reserved"]) if row else 0

    def reserve(self, amount: int, ref_type: str, ref_id: str) -> bool:
        if amount < 0:
            raise ValueError("reservation amount cannot be negative")

        row = self._fetch_one(
            "SELECT reserve_credits(%s, %s, %s, %s) AS ok;",
            (self.user_id, amount, ref_type, ref_id),
            f"reserving {ref_type}:{ref_id}",
        )
        granted = bool(row and row["ok"])
        if not granted:
            logger.debug(
                "reservation denied", ref_type=ref_type, ref_id=ref_id, needed=amount
            )
        return granted

    def finalize(self, ref_type: str, ref_id: str) -> bool:
        row = self._fetch_one(
            "SELECT finalize_reserve(%s, %s, %s) AS ok;",
            (self.user_id, ref_type, ref_id),
            f"finalizing {ref_type}:{ref_id}",
        )
        return bool(row and row["ok"])

    def refund(self, amount: int, ref_type: str, ref_id: str) -> bool:
        row = self._fetch_one(
            "SELECT refund_reserve(%s, %s, %s, %s) AS ok;",
            (self.user_id, amount, ref_type, ref_id),
            f"refunding {ref_type}:{ref_id}",
        )
        return bool(row and row["ok"])

    def get_reservation(self, ref_type: str, ref_id: str) -> Optional[Reservation]:
        row = self._fetch_one(
            """
            SELECT user_id, ref_type, ref_id, amount, refunded, status, created_at, updated_at
            FROM credit_reservation
            WHERE user_id = %s AND ref_type = %s AND ref_id = %s;
            """,
            (self.user_id, ref_type, ref_id),
            f"selecting reservation {ref_type}:{ref_id}",
        )
        return Reservation.from_row(row) if row else None

    def _fetch_one(self, query: str, params: tuple, trace: str) -> Optional[dict]:
        if self.db.instance is None:
            raise ValueError("Database connection is not established")

        conn = self.db.instance
        with self._lock:
            try:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
                conn.commit()
                return row
            except Exception as e:
                conn.rollback()
                raise BatchMeterError(trace, e)
