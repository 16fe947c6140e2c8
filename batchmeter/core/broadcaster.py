"""
Broadcaster for thread-safe progress notifications.

Listeners are plain callables registered under a subscription id. Messages are
delivered synchronously on the publishing thread, so listeners must be quick.
"""

import threading
import uuid
from typing import Callable, Dict, Generic, TypeVar

from ..helper.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class Broadcaster(Generic[T]):
    """A broadcaster that manages listeners and broadcasts messages."""

    def __init__(self, name: str):
        self.name = name
        self.listeners: Dict[str, Callable[[T], None]] = {}
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable[[T], None]) -> str:
        """Register a listener and return its subscription id."""
        if not callable(listener):
            raise ValueError("listener must be callable")

        subscription_id = str(uuid.uuid4())
        with self._lock:
            self.listeners[subscription_id] = listener
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a listener. Returns False if the id was unknown."""
        with self._lock:
            return self.listeners.pop(subscription_id, None) is not None

    def broadcast(self, message: T) -> None:
        """Broadcast a message to all subscribers."""
        with self._lock:
            current_listeners = list(self.listeners.items())

        # Deliver without holding the lock, a listener may unsubscribe itself
        for subscription_id, listener in current_listeners:
            try:
                listener(message)
            except Exception as e:
                logger.warning(
                    f"listener failed on {self.name}: {e}", subscription=subscription_id
                )

    def __len__(self) -> int:
        with self._lock:
            return len(self.listeners)


def new_broadcaster(name: str) -> Broadcaster:
    """Create a broadcaster with the given name."""
    return Broadcaster(name)
