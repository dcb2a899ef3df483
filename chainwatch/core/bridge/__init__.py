"""Cross-chain order tracking against the bridging service."""

from .models import (
    TERMINAL_ORDER_STATUSES,
    SwapOrder,
    SwapOrderStatus,
    normalize_order_status,
)
from .poller import SwapOrderPoller

__all__ = [
    "TERMINAL_ORDER_STATUSES",
    "SwapOrder",
    "SwapOrderPoller",
    "SwapOrderStatus",
    "normalize_order_status",
]
