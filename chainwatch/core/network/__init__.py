"""Active chain mismatch detection and switching."""

from .guard import (
    IN_FLIGHT_STATES,
    NetworkGuard,
    NetworkSwitchRequest,
    SwitchState,
    SwitchValidationError,
)

__all__ = [
    "IN_FLIGHT_STATES",
    "NetworkGuard",
    "NetworkSwitchRequest",
    "SwitchState",
    "SwitchValidationError",
]
