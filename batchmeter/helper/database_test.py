"""
Test cases for database configuration and utilities.
"""

import os
import unittest
from unittest.mock import MagicMock, Mock, patch

from .database import Database, DatabaseConfiguration, new_database
from .error import BatchMeterError


class TestDatabaseConfiguration(unittest.TestCase):
    """Test cases for DatabaseConfiguration class."""

    def test_init_with_defaults(self):
        """Test initialization with default values."""
        config = DatabaseConfiguration(
            host="localhost",
            port=5432,
            database="test",
            username="user",
            password="pass",
        )

        self.assertEqual(config.schema, "public")
        self.assertEqual(config.sslmode, "require")
        self.assertFalse(config.with_table_drop)

    @patch.dict(
        os.environ,
        {
            "BATCHMETER_DB_HOST": "test_host",
            "BATCHMETER_DB_PORT": "5433",
            "BATCHMETER_DB_DATABASE": "test_db",
            "BATCHMETER_DB_USERNAME": "test_user",
            "BATCHMETER_DB_PASSWORD": "test_pass",
            "BATCHMETER_DB_SCHEMA": "test_schema",
            "BATCHMETER_DB_SSLMODE": "disable",
            "BATCHMETER_DB_WITH_TABLE_DROP": "true",
        },
    )
    def test_from_env_all_variables(self):
        """Test creating configuration from environment variables."""
        config = DatabaseConfiguration.from_env()

        self.assertEqual(config.host, "test_host")
        self.assertEqual(config.port, 5433)
        self.assertEqual(config.database, "test_db")
        self.assertEqual(config.username, "test_user")
        self.assertEqual(config.password, "test_pass")
        self.assertEqual(config.schema, "test_schema")
        self.assertEqual(config.sslmode, "disable")
        self.assertTrue(config.with_table_drop)

    @patch.dict(os.environ, {}, clear=True)
    def test_from_env_defaults(self):
        """Test defaults when no environment variables are set."""
        config = DatabaseConfiguration.from_env()

        self.assertEqual(config.host, "localhost")
        self.assertEqual(config.port, 5432)
        self.assertEqual(config.database, "batchmeter")
        self.assertEqual(config.username, "postgres")
        self.assertFalse(config.with_table_drop)

    @patch.dict(os.environ, {"BATCHMETER_DB_HOST": "   "}, clear=True)
    def test_from_env_missing_required(self):
        """Test that blank required variables are rejected."""
        with self.assertRaises(ValueError):
            DatabaseConfiguration.from_env()

    def test_connection_string(self):
        """Test connection string generation."""
        config = DatabaseConfiguration(
            host="localhost",
            port=5432,
            database="credits",
            username="user",
            password="secret",
            schema="billing",
            sslmode="disable",
        )

        conn_str = config.connection_string()
        self.assertIn("host=localhost", conn_str)
        self.assertIn("dbname=credits", conn_str)
        self.assertIn("sslmode=disable", conn_str)
        self.assertIn("application_name=batchmeter", conn_str)
        self.assertIn("options='-c search_path=billing'", conn_str)


class TestDatabase(unittest.TestCase):
    """Test cases for Database class."""

    def setUp(self):
        self.config = DatabaseConfiguration(
            host="localhost",
            port=5432,
            database="test",
            username="user",
            password="pass",
        )

    def test_init_minimal(self):
        """Test initialization without config does not connect."""
        db = Database("test")
        self.assertIsNone(db.instance)
        self.assertIsNone(db.config)

    @patch("batchmeter.helper.database.psycopg.connect")
    def test_connect_to_database_success(self, mock_connect: Mock):
        """Test successful connection."""
        mock_connection = MagicMock()
        mock_connect.return_value = mock_connection

        db = Database("test", self.config)

        mock_connect.assert_called_once_with(
            self.config.connection_string(), autocommit=False
        )
        self.assertIs(db.instance, mock_connection)

    @patch("batchmeter.helper.database.psycopg.connect")
    def test_connect_to_database_failure(self, mock_connect: Mock):
        """Test that connection failures are wrapped."""
        mock_connect.side_effect = Exception("connection refused")

        with self.assertRaises(BatchMeterError) as cm:
            Database("test", self.config)

        self.assertIn("connection refused", str(cm.exception))

    def test_connect_to_database_without_config(self):
        """Test connecting without configuration."""
        db = Database("test")
        with self.assertRaises(BatchMeterError):
            db.connect_to_database()

    def test_auto_connect_disabled(self):
        db = Database("test", self.config, auto_connect=False)
        self.assertIsNone(db.instance)

    def test_health_without_connection(self):
        db = Database("test")
        stats = db.health()
        self.assertEqual(stats["status"], "down")

    def test_close(self):
        db = Database("test")
        connection = MagicMock()
        db.instance = connection

        db.close()

        connection.close.assert_called_once()
        self.assertIsNone(db.instance)

    def test_new_database_creates_instance(self):
        db = new_database("test", self.config, auto_connect=False)
        self.assertIsInstance(db, Database)
        self.assertEqual(db.name, "test")


if __name__ == "__main__":
    unittest.main()
