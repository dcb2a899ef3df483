"""
Error Recovery Module

Error classification and bounded retry for calls to chain collaborators.
"""

from .errors import (
    RECOVERY_STRATEGIES,
    ClassifiedError,
    ErrorKind,
    ErrorSeverity,
    RecoveryStrategy,
    classify,
    describe,
    get_recovery_strategy,
    is_retryable,
)
from .retry import RetryEngine, RetryPolicy, compute_backoff_delay

__all__ = [
    # Errors
    "ClassifiedError",
    "ErrorKind",
    "ErrorSeverity",
    "RecoveryStrategy",
    "RECOVERY_STRATEGIES",
    "classify",
    "describe",
    "get_recovery_strategy",
    "is_retryable",
    # Retry
    "RetryEngine",
    "RetryPolicy",
    "compute_backoff_delay",
]
