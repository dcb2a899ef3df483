"""Single-transfer lifecycle tracking."""

from .models import (
    TERMINAL_STATUSES,
    InvalidTransitionError,
    StateTransition,
    TrackedTransaction,
    TransactionStatus,
    TransitionTrigger,
)
from .state_machine import TransactionStateMachine

__all__ = [
    "TERMINAL_STATUSES",
    "InvalidTransitionError",
    "StateTransition",
    "TrackedTransaction",
    "TransactionStatus",
    "TransitionTrigger",
    "TransactionStateMachine",
]
