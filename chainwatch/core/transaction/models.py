"""
Transaction Tracking Models

Data models for a single tracked transfer and its state history.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import uuid4

if TYPE_CHECKING:  # pragma: no cover
    from ..recovery.errors import ClassifiedError


class TransactionStatus(str, Enum):
    """Lifecycle states of a tracked transaction."""

    PENDING = "pending"          # Submitted, nothing observed yet
    CONFIRMING = "confirming"    # Included, collecting confirmations
    CONFIRMED = "confirmed"      # Terminal: final
    FAILED = "failed"            # Terminal: reverted or rejected
    TIMED_OUT = "timed_out"      # Terminal: no verdict within the deadline


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.CONFIRMED, TransactionStatus.FAILED, TransactionStatus.TIMED_OUT}
)


class TransitionTrigger(str, Enum):
    """What caused a state transition."""

    SUBMIT = "submit"
    RECEIPT = "receipt"
    POLL = "poll"
    ESTIMATE = "estimate"
    TIMEOUT = "timeout"
    ERROR = "error"
    RESET = "reset"


@dataclass
class TrackedTransaction:
    """Observed lifecycle of one transfer."""

    reference: str
    chain_id: int
    status: TransactionStatus = TransactionStatus.PENDING
    confirmations: int = 0
    required_confirmations: int = 1
    progress_percent: int = 0
    estimated_time_remaining_ms: float = 0
    started_at: float = 0.0  # scheduler clock, ms
    completed_at: Optional[float] = None
    block_ref: Optional[str] = None
    last_error: Optional["ClassifiedError"] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "chainId": self.chain_id,
            "status": self.status.value,
            "confirmations": self.confirmations,
            "requiredConfirmations": self.required_confirmations,
            "progressPercent": self.progress_percent,
            "estimatedTimeRemainingMs": self.estimated_time_remaining_ms,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "blockRef": self.block_ref,
            "lastError": self.last_error.to_dict() if self.last_error else None,
        }


@dataclass
class StateTransition:
    """Record of a state transition."""

    id: str = field(default_factory=lambda: str(uuid4()))
    from_state: TransactionStatus = TransactionStatus.PENDING
    to_state: TransactionStatus = TransactionStatus.PENDING
    trigger: TransitionTrigger = TransitionTrigger.SUBMIT
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fromState": self.from_state.value,
            "toState": self.to_state.value,
            "trigger": self.trigger.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "errorKind": self.error_kind,
        }


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        from_state: TransactionStatus,
        to_state: TransactionStatus,
        message: Optional[str] = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.message = message or f"Cannot transition from {from_state.value} to {to_state.value}"
        super().__init__(self.message)
