"""
Core components: background runners, update broadcasting, the batch runner,
credit settlement and the rate-limited provider queue.
"""

from .broadcaster import Broadcaster, new_broadcaster
from .runner import SmallRunner, go_func
from .batch_runner import BatchRunner
from .settlement import BatchRequest, CreditSettlement, SettlementHandle
from .rate_limited_queue import RateLimitedQueue

__all__ = [
    "Broadcaster",
    "new_broadcaster",
    "SmallRunner",
    "go_func",
    "BatchRunner",
    "BatchRequest",
    "CreditSettlement",
    "SettlementHandle",
    "RateLimitedQueue",
]
