"""
Test cases for the RateLimitOptions model.
"""

import json
import os
from unittest.mock import patch

import pytest

from .options_rate_limit import RateLimitOptions


class TestRateLimitOptions:
    """Test cases for rate limit options."""

    def test_default_options(self):
        opts = RateLimitOptions()
        assert opts.min_gap == 15.0
        assert opts.max_retries == 4
        assert opts.base_delay == 30.0
        assert opts.task_timeout is None
        assert opts.is_valid()

    def test_validation_negative_min_gap(self):
        with pytest.raises(ValueError, match="min gap cannot be negative"):
            RateLimitOptions(min_gap=-1.0)

    def test_validation_negative_max_retries(self):
        with pytest.raises(ValueError, match="max retries cannot be negative"):
            RateLimitOptions(max_retries=-1)

    def test_validation_negative_base_delay(self):
        with pytest.raises(ValueError, match="base delay cannot be negative"):
            RateLimitOptions(base_delay=-0.5)

    def test_validation_task_timeout(self):
        with pytest.raises(ValueError, match="task timeout must be positive"):
            RateLimitOptions(task_timeout=0)

    def test_is_valid_returns_false_for_invalid(self):
        opts = RateLimitOptions()
        opts.base_delay = -1.0
        assert not opts.is_valid()

    def test_backoff_doubles(self):
        opts = RateLimitOptions(base_delay=30.0)
        assert [opts.backoff(a) for a in (1, 2, 3, 4)] == [30.0, 60.0, 120.0, 240.0]

    def test_json_round_trip(self):
        opts = RateLimitOptions(min_gap=1.0, max_retries=2, base_delay=0.5, task_timeout=10.0)

        data = json.loads(opts.to_json())
        assert data == {
            "min_gap": 1.0,
            "max_retries": 2,
            "base_delay": 0.5,
            "task_timeout": 10.0,
        }
        assert RateLimitOptions.from_json(opts.to_json()).to_dict() == opts.to_dict()

    def test_from_dict_defaults(self):
        opts = RateLimitOptions.from_dict({})
        assert opts.to_dict() == RateLimitOptions().to_dict()

    @patch.dict(
        os.environ,
        {
            "BATCHMETER_RATE_MIN_GAP": "2",
            "BATCHMETER_RATE_MAX_RETRIES": "1",
            "BATCHMETER_RATE_BASE_DELAY": "0.25",
            "BATCHMETER_RATE_TASK_TIMEOUT": "5",
        },
    )
    def test_from_env(self):
        opts = RateLimitOptions.from_env()
        assert opts.min_gap == 2.0
        assert opts.max_retries == 1
        assert opts.base_delay == 0.25
        assert opts.task_timeout == 5.0

    @patch.dict(os.environ, {}, clear=True)
    def test_from_env_defaults(self):
        opts = RateLimitOptions.from_env()
        assert opts.to_dict() == RateLimitOptions().to_dict()
