"""
Error handling utilities for the batchmeter engine.
Keeps a trace chain on wrapped errors and defines the engine's error taxonomy.
"""

import inspect
from types import FrameType
from typing import Any, Optional


class BatchMeterError(Exception):
    """
    Enhanced error class with trace information.
    Wrapping another BatchMeterError extends its trace instead of nesting it.
    """

    def __init__(self, trace: str, original: Optional[Exception] = None):
        """Initialize BatchMeterError with original error and trace."""
        traceWithFunction = trace
        current_frame = inspect.currentframe()

        frame: Optional[FrameType] = None
        if current_frame is not None:
            frame = current_frame.f_back
            # Skip constructors of subclasses so the trace names the caller.
            while frame is not None and frame.f_code.co_name == "__init__":
                frame = frame.f_back

        if frame:
            traceWithFunction = f"{frame.f_code.co_name} - {trace}"

        if original is None:
            original = Exception(trace)

        if isinstance(original, BatchMeterError):
            self.original = original.original
            self.trace = original.trace + [traceWithFunction]
        else:
            self.original = original
            self.trace = [traceWithFunction]

        super().__init__(str(self.original))

    def __str__(self) -> str:
        """Return formatted error message with trace."""
        return f"{str(self.original)} | Trace: {', '.join(self.trace)}"


class ReservationDenied(BatchMeterError):
    """Insufficient balance for a batch reservation. Never retried."""

    code = "INSUFFICIENT_CREDITS"

    def __init__(self, needed: Any, ref_type: str = "", ref_id: str = ""):
        self.needed = needed
        self.ref_type = ref_type
        self.ref_id = ref_id
        super().__init__(
            "reserving credits",
            Exception(f"Insufficient credits: {needed} needed"),
        )

    def to_dict(self) -> dict:
        """Rejection body for client-facing APIs."""
        return {
            "error": "Insufficient credits",
            "code": self.code,
            "needed": self.needed,
        }


class ItemExecutionFailure(BatchMeterError):
    """A single item failed. Recorded on the item, never raised to the job caller."""

    def __init__(self, item_id: str, original: Exception):
        self.item_id = item_id
        super().__init__(f"executing item {item_id}", original)


class RateLimitExceeded(Exception):
    """The provider rejected a call because of its per-account rate limit."""

    status = 429

    def __init__(self, message: str = "429 Too Many Requests"):
        super().__init__(message)


class TerminalRateLimit(RateLimitExceeded):
    """Rate limit still hit after all retries were used."""

    MESSAGE = "RATE LIMITED: Please wait a few minutes or upgrade credits, then retry."

    def __init__(self, message: str = MESSAGE):
        super().__init__(message)


class CancellationRequested(Exception):
    """Marks that a job stopped claiming items because it was cancelled."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"cancellation requested for job {job_id}")


class SettlementReconciliationFailure(BatchMeterError):
    """A refund or finalize call failed after the job reached a terminal status."""

    def __init__(self, step: str, ref_type: str, ref_id: str, original: Exception):
        self.step = step
        self.ref_type = ref_type
        self.ref_id = ref_id
        super().__init__(f"{step} reservation {ref_type}:{ref_id}", original)


def is_rate_limit_error(err: BaseException) -> bool:
    """
    Check whether an error signals a provider rate limit.

    Matches RateLimitExceeded, a 429 status on the error or on its response,
    and messages mentioning 429 or throttling.
    """
    if isinstance(err, RateLimitExceeded):
        return True

    status = getattr(err, "status", None) or getattr(err, "status_code", None)
    response = getattr(err, "response", None)
    if status is None and response is not None:
        status = getattr(response, "status_code", None) or getattr(
            response, "status", None
        )
    if status == 429:
        return True

    message = str(err)
    return "429" in message or "throttle" in message.lower()
