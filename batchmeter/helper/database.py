"""
Database helper functions for the batchmeter engine.
Connection configuration and a thin psycopg connection wrapper shared by the
Postgres batch store and the Postgres ledger.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Union

import psycopg
from psycopg import Connection, ConnectionInfo

from .error import BatchMeterError
from .logging import BatchMeterLogger


@dataclass
class DatabaseConfiguration:
    """
    Database configuration class.
    """

    host: str
    port: int
    database: str
    username: str
    password: str
    schema: str = "public"
    sslmode: str = "require"
    with_table_drop: bool = False

    @classmethod
    def from_env(cls) -> "DatabaseConfiguration":
        """Create configuration from environment variables."""
        host = os.getenv("BATCHMETER_DB_HOST", "localhost")
        port = int(os.getenv("BATCHMETER_DB_PORT", "5432"))
        database = os.getenv("BATCHMETER_DB_DATABASE", "batchmeter")
        username = os.getenv("BATCHMETER_DB_USERNAME", "postgres")
        password = os.getenv("BATCHMETER_DB_PASSWORD", "")
        schema = os.getenv("BATCHMETER_DB_SCHEMA", "public")
        sslmode = os.getenv("BATCHMETER_DB_SSLMODE", "require")
        with_table_drop = (
            os.getenv("BATCHMETER_DB_WITH_TABLE_DROP", "false").lower() == "true"
        )

        if not all(
            [
                host.strip(),
                database.strip(),
                username.strip(),
                schema.strip(),
            ]
        ):
            raise ValueError(
                "Required environment variables missing: "
                "BATCHMETER_DB_HOST, BATCHMETER_DB_DATABASE, "
                "BATCHMETER_DB_USERNAME, BATCHMETER_DB_SCHEMA must be set"
            )

        return cls(
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            schema=schema,
            sslmode=sslmode,
            with_table_drop=with_table_drop,
        )

    def connection_string(self) -> str:
        """Get connection string for psycopg3."""
        return (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.database} "
            f"user={self.username} "
            f"password={self.password} "
            f"sslmode={self.sslmode} "
            f"application_name=batchmeter "
            f"options='-c search_path={self.schema}'"
        )


class Database:
    """
    Database service wrapper around a single psycopg connection.
    """

    def __init__(
        self,
        name: str,
        config: Optional[DatabaseConfiguration] = None,
        logger: Optional[Union[BatchMeterLogger, logging.Logger]] = None,
        auto_connect: bool = True,
    ):
        self.name = name
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.instance: Optional[Connection] = None

        if config and auto_connect:
            self.connect_to_database()

    def connect_to_database(self) -> None:
        """
        Connect to the database using the configuration.
        """
        if not self.config:
            raise BatchMeterError(
                "Database configuration is required for connection",
                ValueError("No config provided"),
            )

        try:
            self.instance = psycopg.connect(
                self.config.connection_string(), autocommit=False
            )
            self.instance.execute("SELECT 1")
            self.instance.commit()
            self.logger.info(f"Connected to database: {self.config.database}")
        except Exception as e:
            raise BatchMeterError("Failed to connect to database", e)

    def check_table_existence(self, table_name: str) -> bool:
        """
        Check if a table exists in the current schema.
        """
        if not self.instance:
            raise BatchMeterError("Database connection not established")

        try:
            with self.instance.cursor() as cur:
                cur.execute(
                    """
                    SELECT EXISTS (
                        SELECT 1
                        FROM information_schema.tables
                        WHERE table_schema = current_schema()
                        AND table_name = %s
                    );
                """,
                    (table_name,),
                )
                result = cur.fetchone()
                return result[0] if result else False
        except Exception as e:
            raise BatchMeterError(f"Failed to check table existence for {table_name}", e)

    def health(self) -> Dict[str, str]:
        """
        Check the health of the database connection.
        """
        stats: Dict[str, str] = {}

        if not self.instance:
            stats["status"] = "down"
            stats["error"] = "No database connection"
            return stats

        try:
            with self.instance.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()

            stats["status"] = "up"
            stats["message"] = "It's healthy"

            info: ConnectionInfo = self.instance.info
            stats["server_version"] = str(info.server_version)
            stats["backend_pid"] = str(info.backend_pid)
        except Exception as e:
            stats["status"] = "down"
            stats["error"] = f"Database health check failed: {str(e)}"
            self.logger.error(f"Database health check failed: {e}")

        return stats

    def close(self) -> None:
        """Close the database connection."""
        if self.instance:
            self.instance.close()
            self.instance = None
            self.logger.info("Database connection closed")


def new_database(
    name: str,
    config: DatabaseConfiguration,
    logger: Optional[BatchMeterLogger] = None,
    auto_connect: bool = True,
) -> Database:
    """
    Create a new Database instance.
    """
    return Database(name, config, logger, auto_connect)


def new_database_from_env(
    name: str = "batchmeter",
    logger: Optional[BatchMeterLogger] = None,
    auto_connect: bool = False,
) -> Database:
    """
    Create a new Database instance from environment variables.
    """
    config = DatabaseConfiguration.from_env()
    return Database(name, config, logger, auto_connect)
