"""
Reservation model for the credit ledger.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ReservationState(str, Enum):
    HELD = "held"
    FINALIZED = "finalized"
    REFUNDED = "refunded"


@dataclass
class Reservation:
    """
    Reservation represents credits held against one unit of work, keyed by
    ``(ref_type, ref_id)``. ``refunded`` is the part already given back.
    """

    ref_type: str
    ref_id: str
    amount: int
    refunded: int = 0
    state: ReservationState = ReservationState.HELD
    user_id: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return f"{self.ref_type}:{self.ref_id}"

    @property
    def held(self) -> int:
        """Credits still held by the reservation."""
        if self.state != ReservationState.HELD:
            return 0
        return self.amount - self.refunded

    @property
    def spent(self) -> int:
        """Credits actually consumed, only known once the reservation is finalized."""
        if self.state != ReservationState.FINALIZED:
            return 0
        return self.amount - self.refunded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref_type": self.ref_type,
            "ref_id": self.ref_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "refunded": self.refunded,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Reservation":
        return cls(
            ref_type=row["ref_type"],
            ref_id=row["ref_id"],
            amount=row.get("amount", 0),
            refunded=row.get("refunded", 0),
            state=ReservationState(row.get("status", ReservationState.HELD.value)),
            user_id=row.get("user_id", ""),
            created_at=row.get("created_at") or datetime.now(),
            updated_at=row.get("updated_at"),
        )
