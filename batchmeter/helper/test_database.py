"""
Database test utilities: a PostgreSQL testcontainer shared per test class.
Classes using the mixin are skipped when no container runtime is available.
"""

import os
import threading
import time
import unittest
from typing import Any

import psutil
from testcontainers.postgres import PostgresContainer

from .database import Database, DatabaseConfiguration
from .logging import get_logger


logger = get_logger(__name__)


class DatabaseTestMixin:
    """
    Mixin for test cases that need a PostgreSQL database container.
    The container is only started in setup_class, never during test discovery.
    """

    @classmethod
    def setup_class(cls):
        """Start the PostgreSQL container for the entire test class."""
        if hasattr(cls, "_container_initialized"):
            return

        cls.container: PostgresContainer = PostgresContainer(
            "postgres:16-alpine",
            dbname="test_db",
            username="test_user",
            password="test_password",
        )
        try:
            cls.container.start()
        except Exception as e:
            logger.warning("postgres container unavailable, skipping", error=str(e))
            raise unittest.SkipTest(f"postgres container unavailable: {e}")

        cls._set_database_env_vars()

        cls.db_config = DatabaseConfiguration(
            host=cls.container.get_container_host_ip(),
            port=int(cls.container.get_exposed_port(5432)),
            database="test_db",
            username="test_user",
            password="test_password",
            schema="public",
            sslmode="disable",
            with_table_drop=True,
        )
        cls._container_initialized = True

    @classmethod
    def teardown_class(cls):
        """Stop the PostgreSQL container after all tests."""
        if getattr(cls, "container", None) is not None:
            try:
                cls.container.stop()
            except Exception as e:
                logger.warning("stopping postgres container failed", error=str(e))
        if hasattr(cls, "_container_initialized"):
            delattr(cls, "_container_initialized")

    def setup_method(self, method: Any = None):
        """Open a fresh database connection for each test method."""
        self.db = Database("test_db", self.db_config)

        self._initial_thread_count = threading.active_count()
        logger.debug("test setup", active_threads=self._initial_thread_count)

    def teardown_method(self, method: Any = None):
        """Close the connection and report leaked threads."""
        if getattr(self, "db", None) is not None and self.db.instance is not None:
            self.db.instance.rollback()
            self.db.close()

        # Give drains and pollers time to exit
        time.sleep(0.2)

        try:
            process = psutil.Process(os.getpid())
            memory_mb = process.memory_info().rss / 1024 / 1024
            connections = len(process.net_connections())
        except psutil.Error:
            logger.warning("process diagnostics not available")
            return

        final_thread_count = threading.active_count()
        logger.debug(
            "test cleanup",
            memory_mb=f"{memory_mb:.1f}",
            connections=connections,
            thread_increase=final_thread_count - getattr(self, "_initial_thread_count", 1),
        )
        for thread in threading.enumerate():
            if thread is not threading.main_thread():
                logger.debug("active thread", name=thread.name, type=type(thread).__name__)

    @classmethod
    def _set_database_env_vars(cls):
        """Expose the container through the BATCHMETER_DB_* variables."""
        os.environ["BATCHMETER_DB_HOST"] = cls.container.get_container_host_ip()
        os.environ["BATCHMETER_DB_PORT"] = str(cls.container.get_exposed_port(5432))
        os.environ["BATCHMETER_DB_DATABASE"] = "test_db"
        os.environ["BATCHMETER_DB_USERNAME"] = "test_user"
        os.environ["BATCHMETER_DB_PASSWORD"] = "test_password"
        os.environ["BATCHMETER_DB_SCHEMA"] = "public"
        os.environ["BATCHMETER_DB_SSLMODE"] = "disable"
        os.environ["BATCHMETER_DB_WITH_TABLE_DROP"] = "true"
