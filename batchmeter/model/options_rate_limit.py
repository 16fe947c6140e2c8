"""
Options for the rate-limited provider queue.
"""

import json
import os
from typing import Any, Dict, Optional


class RateLimitOptions:
    """Pacing and retry options for calls against a rate-limited provider."""

    def __init__(
        self,
        min_gap: float = 15.0,
        max_retries: int = 4,
        base_delay: float = 30.0,
        task_timeout: Optional[float] = None,
    ):
        """Initialize RateLimitOptions.

        Args:
            min_gap: Minimum seconds between the last successful call and the next start
            max_retries: Retries allowed after a rate-limit error
            base_delay: Backoff in seconds before the first retry, doubled on every further retry
            task_timeout: Optional time limit in seconds for a single call
        """
        if min_gap < 0:
            raise ValueError("min gap cannot be negative")
        if max_retries < 0:
            raise ValueError("max retries cannot be negative")
        if base_delay < 0:
            raise ValueError("base delay cannot be negative")
        if task_timeout is not None and task_timeout <= 0:
            raise ValueError("task timeout must be positive")

        self.min_gap = min_gap
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.task_timeout = task_timeout

    def is_valid(self) -> bool:
        if self.min_gap < 0:
            return False
        if self.max_retries < 0:
            return False
        if self.base_delay < 0:
            return False
        if self.task_timeout is not None and self.task_timeout <= 0:
            return False
        return True

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.base_delay * 2 ** (attempt - 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_gap": self.min_gap,
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "task_timeout": self.task_timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitOptions":
        return cls(
            min_gap=data.get("min_gap", 15.0),
            max_retries=data.get("max_retries", 4),
            base_delay=data.get("base_delay", 30.0),
            task_timeout=data.get("task_timeout"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> "RateLimitOptions":
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def from_env(cls) -> "RateLimitOptions":
        """
        Read options from BATCHMETER_RATE_MIN_GAP, BATCHMETER_RATE_MAX_RETRIES,
        BATCHMETER_RATE_BASE_DELAY and BATCHMETER_RATE_TASK_TIMEOUT.
        """
        task_timeout = os.getenv("BATCHMETER_RATE_TASK_TIMEOUT", "").strip()
        return cls(
            min_gap=float(os.getenv("BATCHMETER_RATE_MIN_GAP", "15")),
            max_retries=int(os.getenv("BATCHMETER_RATE_MAX_RETRIES", "4")),
            base_delay=float(os.getenv("BATCHMETER_RATE_BASE_DELAY", "30")),
            task_timeout=float(task_timeout) if task_timeout else None,
        )
