"""
Engine settings for the batchmeter facade.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class BatchMeterSettings:
    """
    Settings shared by the runner and the settlement poller.
    """

    max_concurrency: int = 3  # Upper bound for workers per job
    default_concurrency: int = 3
    settlement_poll_interval: float = 3.0  # Seconds between settlement polls
    settlement_max_polls: int = 600
    item_timeout: Optional[float] = None  # Seconds, None waits forever

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max concurrency must be at least 1")
        if self.default_concurrency < 1:
            raise ValueError("default concurrency must be at least 1")
        if self.settlement_poll_interval <= 0:
            raise ValueError("settlement poll interval must be positive")
        if self.settlement_max_polls < 1:
            raise ValueError("settlement max polls must be at least 1")
        if self.item_timeout is not None and self.item_timeout <= 0:
            raise ValueError("item timeout must be positive")

    def clamp_concurrency(self, requested: Optional[int]) -> int:
        if requested is None:
            requested = self.default_concurrency
        return max(1, min(requested, self.max_concurrency))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchMeterSettings":
        """
        Create BatchMeterSettings instance from dictionary.

        :param data: Dictionary containing settings data
        :return: BatchMeterSettings instance
        """
        return cls(
            max_concurrency=data.get("max_concurrency", 3),
            default_concurrency=data.get("default_concurrency", 3),
            settlement_poll_interval=data.get("settlement_poll_interval", 3.0),
            settlement_max_polls=data.get("settlement_max_polls", 600),
            item_timeout=data.get("item_timeout"),
        )

    @classmethod
    def from_env(cls) -> "BatchMeterSettings":
        """
        Create settings from BATCHMETER_MAX_CONCURRENCY, BATCHMETER_DEFAULT_CONCURRENCY,
        BATCHMETER_SETTLEMENT_POLL_INTERVAL, BATCHMETER_SETTLEMENT_MAX_POLLS and
        BATCHMETER_ITEM_TIMEOUT.
        """
        item_timeout = os.getenv("BATCHMETER_ITEM_TIMEOUT", "").strip()
        return cls(
            max_concurrency=int(os.getenv("BATCHMETER_MAX_CONCURRENCY", "3")),
            default_concurrency=int(os.getenv("BATCHMETER_DEFAULT_CONCURRENCY", "3")),
            settlement_poll_interval=float(
                os.getenv("BATCHMETER_SETTLEMENT_POLL_INTERVAL", "3.0")
            ),
            settlement_max_polls=int(os.getenv("BATCHMETER_SETTLEMENT_MAX_POLLS", "600")),
            item_timeout=float(item_timeout) if item_timeout else None,
        )
