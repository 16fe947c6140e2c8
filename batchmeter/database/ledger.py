"""
Reservation ledger contract and the in-memory ledger.

A ledger instance is bound to one account. Reservations are keyed by
``(ref_type, ref_id)`` and move held -> finalized | refunded.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..helper.logging import get_logger
from ..model.reservation import Reservation, ReservationState

logger = get_logger(__name__)


class Ledger(ABC):
    @abstractmethod
    def reserve(self, amount: int, ref_type: str, ref_id: str) -> bool:
        """
        Atomically hold ``amount`` credits if the balance suffices.
        Returns False without side effects otherwise. Replaying an existing
        key returns True without holding twice.
        """

    @abstractmethod
    def finalize(self, ref_type: str, ref_id: str) -> bool:
        """
        Commit a held reservation as spent. Already settled reservations are a
        no-op returning True. Unknown keys return False.
        """

    @abstractmethod
    def refund(self, amount: int, ref_type: str, ref_id: str) -> bool:
        """
        Release ``amount`` (clamped to what is still held) back to the balance.
        A reservation accepts a single refund; replays are no-ops.
        """

    @abstractmethod
    def get_reservation(self, ref_type: str, ref_id: str) -> Optional[Reservation]:
        """Return a copy of the reservation or None."""


class InMemoryLedger(Ledger):
    """
    Process-local ledger. Reserve is a compare-and-decrement under a lock.
    """

    def __init__(self, balance: int = 0, user_id: str = ""):
        if balance < 0:
            raise ValueError("balance cannot be negative")
        self.user_id = user_id
        self._balance = balance
        self._lock = threading.Lock()
        self._reservations: Dict[Tuple[str, str], Reservation] = {}

    @property
    def balance(self) -> int:
        """Credits available for new reservations."""
        with self._lock:
            return self._balance

    @property
    def reserved(self) -> int:
        """Credits currently held by open reservations."""
        with self._lock:
            return sum(r.held for r in self._reservations.values())

    def top_up(self, amount: int) -> int:
        if amount <= 0:
            raise ValueError("top up amount must be positive")
        with self._lock:
            self._balance += amount
            return self._balance

    def reserve(self, amount: int, ref_type: str, ref_id: str) -> bool:
        if amount < 0:
            raise ValueError("reservation amount cannot be negative")

        key = (ref_type, ref_id)
        with self._lock:
            if key in self._reservations:
                return True
            if self._balance < amount:
                logger.debug(
                    "reservation denied",
                    ref_type=ref_type,
                    ref_id=ref_id,
                    needed=amount,
                    balance=self._balance,
                )
                return False

            self._balance -= amount
            self._reservations[key] = Reservation(
                ref_type=ref_type, ref_id=ref_id, amount=amount, user_id=self.user_id
            )
            return True

    def finalize(self, ref_type: str, ref_id: str) -> bool:
        with self._lock:
            reservation = self._reservations.get((ref_type, ref_id))
            if reservation is None:
                return False
            if reservation.state != ReservationState.HELD:
                return True

            reservation.state = ReservationState.FINALIZED
            reservation.updated_at = datetime.now()
            return True

    def refund(self, amount: int, ref_type: str, ref_id: str) -> bool:
        with self._lock:
            reservation = self._reservations.get((ref_type, ref_id))
            if reservation is None:
                return False
            if reservation.state != ReservationState.HELD or reservation.refunded > 0:
                return True
            if amount <= 0:
                return True

            refund_amount = min(amount, reservation.held)
            reservation.refunded = refund_amount
            self._balance += refund_amount

            if reservation.refunded >= reservation.amount:
                reservation.state = ReservationState.REFUNDED
            reservation.updated_at = datetime.now()
            return True

    def get_reservation(self, ref_type: str, ref_id: str) -> Optional[Reservation]:
        with self._lock:
            reservation = self._reservations.get((ref_type, ref_id))
            if reservation is None:
                return None
            return Reservation(**vars(reservation))
