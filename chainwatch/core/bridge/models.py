"""Typed models used by the bridge subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class SwapOrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset(
    {SwapOrderStatus.COMPLETED, SwapOrderStatus.FAILED, SwapOrderStatus.CANCELLED}
)

_STATUS_ALIASES: Dict[str, SwapOrderStatus] = {
    "pending": SwapOrderStatus.PENDING,
    "created": SwapOrderStatus.PENDING,
    "waiting": SwapOrderStatus.PENDING,
    "processing": SwapOrderStatus.PROCESSING,
    "in_progress": SwapOrderStatus.PROCESSING,
    "bridging": SwapOrderStatus.PROCESSING,
    "completed": SwapOrderStatus.COMPLETED,
    "complete": SwapOrderStatus.COMPLETED,
    "success": SwapOrderStatus.COMPLETED,
    "done": SwapOrderStatus.COMPLETED,
    "failed": SwapOrderStatus.FAILED,
    "refunded": SwapOrderStatus.FAILED,
    "expired": SwapOrderStatus.FAILED,
    "cancelled": SwapOrderStatus.CANCELLED,
    "canceled": SwapOrderStatus.CANCELLED,
}


def normalize_order_status(value: Any) -> SwapOrderStatus:
    """Map a remote status string onto SwapOrderStatus; unknown means pending."""
    if isinstance(value, SwapOrderStatus):
        return value
    key = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    return _STATUS_ALIASES.get(key, SwapOrderStatus.PENDING)


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


@dataclass
class SwapOrder:
    """A cross-chain order tracked against the bridging service."""

    order_id: str
    source_chain_id: Optional[int] = None
    dest_chain_id: Optional[int] = None
    status: SwapOrderStatus = SwapOrderStatus.PENDING
    poll_interval_ms: float = 5000
    amount: Optional[str] = None
    source_tx_ref: Optional[str] = None
    dest_tx_ref: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    @classmethod
    def from_payload(cls, payload: Any) -> "SwapOrder":
        """Build an order from a bridging-service response body."""
        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, Mapping):
            raise TypeError(f"Unexpected swap order payload: {payload!r}")
        body = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload

        order_id = _first(body, "order_id", "orderId", "swapId", "swap_id", "id")
        if order_id is None:
            raise ValueError("Swap order payload has no order id")
        source = _first(body, "source_chain_id", "sourceChainId", "fromChainId")
        dest = _first(body, "dest_chain_id", "destChainId", "toChainId")
        amount = _first(body, "amount", "amountIn")
        return cls(
            order_id=str(order_id),
            source_chain_id=int(source) if source is not None else None,
            dest_chain_id=int(dest) if dest is not None else None,
            status=normalize_order_status(body.get("status")),
            amount=str(amount) if amount is not None else None,
            source_tx_ref=_first(body, "source_tx_ref", "sourceTxHash", "depositTxHash"),
            dest_tx_ref=_first(body, "dest_tx_ref", "destTxHash", "outputTxHash"),
            raw=dict(payload),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "sourceChainId": self.source_chain_id,
            "destChainId": self.dest_chain_id,
            "status": self.status.value,
            "pollIntervalMs": self.poll_interval_ms,
            "amount": self.amount,
            "sourceTxRef": self.source_tx_ref,
            "destTxRef": self.dest_tx_ref,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
