"""Bounded in-memory sink for classified errors."""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional, Protocol

import structlog

from ..config import settings

if TYPE_CHECKING:  # pragma: no cover
    from ..core.recovery.errors import ClassifiedError

logger = logging.getLogger(__name__)
_slog = structlog.stdlib.get_logger("chainwatch.telemetry")


class TelemetrySink(Protocol):
    def record(self, error: ClassifiedError, raw: Any = None) -> None:
        ...


@dataclass
class ErrorRecord:
    kind: str
    severity: str
    chain_id: Optional[int]
    message: str
    raw_message: str
    error_code: Any = None
    revert_reason: Optional[str] = None
    raw_type: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "errorType": self.kind,
            "severity": self.severity,
            "chainId": self.chain_id,
            "message": self.message,
            "rawMessage": self.raw_message,
            "errorCode": self.error_code,
            "revertReason": self.revert_reason,
            "rawType": self.raw_type,
        }


class RingBufferTelemetrySink:
    """Keeps the most recent `capacity` errors and drops the oldest."""

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = max(1, capacity or settings.telemetry_buffer_size)
        self._records: Deque[ErrorRecord] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._records)

    def record(self, error: ClassifiedError, raw: Any = None) -> None:
        entry = ErrorRecord(
            kind=error.kind.value,
            severity=error.severity.value,
            chain_id=error.chain_id,
            message=error.message,
            raw_message=error.raw_message,
            error_code=error.error_code,
            revert_reason=error.revert_reason,
            raw_type=type(raw).__name__ if raw is not None else None,
        )
        self._records.append(entry)
        _slog.info(
            "chain_error_recorded",
            kind=entry.kind,
            severity=entry.severity,
            chain_id=entry.chain_id,
            raw_message=entry.raw_message,
        )

    def entries(self, limit: Optional[int] = None) -> List[ErrorRecord]:
        items = list(self._records)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self) -> None:
        self._records.clear()

    def stats(self) -> Dict[str, Any]:
        """Counts by kind, severity and chain over the retained window."""
        return {
            "total": len(self._records),
            "byKind": dict(Counter(r.kind for r in self._records)),
            "bySeverity": dict(Counter(r.severity for r in self._records)),
            "byChain": dict(Counter(r.chain_id for r in self._records)),
        }


class NullTelemetrySink:
    def record(self, error: ClassifiedError, raw: Any = None) -> None:
        return None


def record_error(sink: Optional[TelemetrySink], error: ClassifiedError, raw: Any = None) -> None:
    """Forward an error to a sink; a failing sink never breaks the caller."""
    if sink is None:
        return
    try:
        sink.record(error, raw)
    except Exception:
        logger.warning("Telemetry sink %r failed to record error", sink, exc_info=True)
