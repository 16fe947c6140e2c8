"""
Test cases for logging utilities.
"""

import io
import logging
import unittest

from .logging import BatchMeterLogger, ColorFormatter, get_logger, setup_logging


class TestColorFormatter(unittest.TestCase):
    """Test cases for ColorFormatter class."""

    def test_init_without_colors(self):
        """Test ColorFormatter initialization with colors disabled."""
        formatter = ColorFormatter(use_colors=False, include_timestamp=False)
        self.assertFalse(formatter.use_colors)
        self.assertFalse(formatter.include_timestamp)

    def test_format_with_timestamp(self):
        """Test formatting with timestamp."""
        formatter = ColorFormatter(use_colors=False, include_timestamp=True)
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="Job created",
            args=(),
            exc_info=None,
        )

        formatted = formatter.format(record)
        self.assertIn("INFO: Job created", formatted)
        self.assertRegex(formatted, r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}")

    def test_format_without_timestamp(self):
        """Test formatting without timestamp."""
        formatter = ColorFormatter(use_colors=False, include_timestamp=False)
        record = logging.LogRecord(
            name="test",
            level=logging.ERROR,
            pathname="",
            lineno=0,
            msg="Refund failed",
            args=(),
            exc_info=None,
        )

        self.assertEqual(formatter.format(record), "ERROR: Refund failed")


class TestBatchMeterLogger(unittest.TestCase):
    """Test cases for BatchMeterLogger class."""

    def setUp(self):
        self.stream = io.StringIO()

    def test_init_default(self):
        logger = BatchMeterLogger(stream=self.stream)
        self.assertEqual(logger.logger.name, "batchmeter")
        self.assertEqual(logger.logger.level, logging.INFO)

    def test_error_logging_with_exception(self):
        """Test error logging with exception."""
        logger = BatchMeterLogger(stream=self.stream)
        logger.error("Finalize failed", error=ValueError("db down"))

        self.assertIn("ERROR: Finalize failed: db down", self.stream.getvalue())

    def test_logging_with_context(self):
        """Test logging with context information."""
        logger = BatchMeterLogger(stream=self.stream)
        logger.info("Batch settled", job_id="123", refunded=12)

        self.assertIn(
            "INFO: Batch settled | job_id=123 refunded=12", self.stream.getvalue()
        )

    def test_set_level(self):
        """Test setting log level."""
        logger = BatchMeterLogger(level=logging.INFO, stream=self.stream)

        logger.debug("Debug message")
        self.assertEqual(self.stream.getvalue(), "")

        logger.set_level(logging.DEBUG)
        logger.debug("Debug message")
        self.assertIn("DEBUG: Debug message", self.stream.getvalue())

    def test_no_duplicate_handlers(self):
        """Test that no duplicate handlers are added."""
        logger1 = BatchMeterLogger(name="test", stream=self.stream)
        logger2 = BatchMeterLogger(name="test", stream=self.stream)

        self.assertEqual(len(logger1.logger.handlers), len(logger2.logger.handlers))


class TestLoggerFunctions(unittest.TestCase):
    """Test cases for module-level logger functions."""

    def test_get_logger_default(self):
        logger = get_logger()
        self.assertIsInstance(logger, BatchMeterLogger)
        self.assertEqual(logger.logger.name, "batchmeter")

    def test_get_logger_cached_per_name(self):
        """Test that get_logger returns the same instance per name."""
        self.assertIs(get_logger("runner"), get_logger("runner"))
        self.assertIsNot(get_logger("runner"), get_logger("ledger"))

    def test_setup_logging_replaces_cached_logger(self):
        new_logger = setup_logging(level=logging.DEBUG, use_colors=False, name="setup_test")

        self.assertIs(new_logger, get_logger("setup_test"))
        self.assertEqual(new_logger.logger.level, logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
