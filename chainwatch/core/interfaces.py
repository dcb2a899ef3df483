"""
Collaborator contracts.

The resilience layer never signs, broadcasts or talks to a wallet itself.
These protocols describe what it expects from the objects that do.
Collaborators may return the result dataclasses below or plain dicts with
the same keys; `from_payload` normalizes both.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from .bridge.models import SwapOrder


def _get(payload: Any, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if isinstance(payload, Mapping):
            if key in payload and payload[key] is not None:
                return payload[key]
        else:
            value = getattr(payload, key, None)
            if value is not None:
                return value
    return default


@dataclass
class ReceiptResult:
    """Outcome of waiting for a transaction receipt."""

    success: bool
    block_ref: Optional[str] = None
    confirmations: int = 0
    status: Optional[str] = None
    revert_reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def reverted(self) -> bool:
        return bool(self.revert_reason) or (self.status or "").lower() == "reverted"

    @classmethod
    def from_payload(cls, payload: Any) -> "ReceiptResult":
        if isinstance(payload, cls):
            return payload
        status = _get(payload, "status")
        success = _get(payload, "success")
        if success is None:
            success = str(status).lower() in ("success", "confirmed", "1")
        block = _get(payload, "block_ref", "blockRef", "blockNumber", "block_number")
        return cls(
            success=bool(success),
            block_ref=str(block) if block is not None else None,
            confirmations=int(_get(payload, "confirmations", default=0) or 0),
            status=str(status) if status is not None else None,
            revert_reason=_get(payload, "revert_reason", "revertReason", "reason"),
            raw=dict(payload) if isinstance(payload, Mapping) else {},
        )


@dataclass
class TransactionStatusResult:
    """One observation of a transaction from a status-poll endpoint."""

    status: str = "pending"
    confirmations: int = 0
    block_ref: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_confirmed(self) -> bool:
        return self.success is True or self.status == "confirmed"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed" or self.success is False

    @classmethod
    def from_payload(cls, payload: Any) -> "TransactionStatusResult":
        if isinstance(payload, cls):
            return payload
        block = _get(payload, "block_ref", "blockRef", "blockNumber", "block_number")
        return cls(
            status=str(_get(payload, "status", default="pending")).lower(),
            confirmations=int(_get(payload, "confirmations", default=0) or 0),
            block_ref=str(block) if block is not None else None,
            success=_get(payload, "success"),
            error=_get(payload, "error", "message"),
            raw=dict(payload) if isinstance(payload, Mapping) else {},
        )


ReceiptPayload = Union[ReceiptResult, Dict[str, Any]]
StatusPayload = Union[TransactionStatusResult, Dict[str, Any]]


class ReceiptWaiter(Protocol):
    async def wait_for_receipt(self, reference: str, chain_id: int) -> ReceiptPayload:
        ...


class StatusPoller(Protocol):
    async def get_transaction_status(self, reference: str) -> StatusPayload:
        ...


class ChainSwitcher(Protocol):
    async def switch_active_chain(self, chain_id: int) -> Any:
        ...


class ActiveChainReader(Protocol):
    async def __call__(self) -> Optional[int]:
        ...


class BridgeService(Protocol):
    async def initiate_order(self, params: Dict[str, Any]) -> SwapOrder:
        ...

    async def get_order_status(self, order_id: str) -> SwapOrder:
        ...

    async def cancel_order(self, order_id: str) -> Any:
        ...
