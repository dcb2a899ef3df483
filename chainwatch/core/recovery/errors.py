"""
Error Classification

Maps the many shapes a chain error can take (JSON-RPC payloads, wallet
rejections, HTTP failures, plain exceptions) onto one taxonomy. The result
is a ClassifiedError carrying a kind, a severity, a retry decision and a
user-facing recovery hint.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..chains import ChainProfile, ChainType, error_message, error_title

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Canonical error kinds."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    RPC_ERROR = "rpc_error"
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    USER_REJECTED = "user_rejected"
    INVALID_ADDRESS = "invalid_address"
    EXECUTION_REVERTED = "execution_reverted"
    NONCE_TOO_LOW = "nonce_too_low"
    NONCE_TOO_HIGH = "nonce_too_high"
    GAS_PRICE_TOO_LOW = "gas_price_too_low"
    TRANSACTION_FAILED = "transaction_failed"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class RecoveryStrategy:
    """How a kind of error should be handled."""

    retry: bool = False
    retry_delay_ms: int = 0
    max_retries: int = 0
    action: str = "Please try again."


RECOVERY_STRATEGIES: Dict[ErrorKind, RecoveryStrategy] = {
    ErrorKind.NETWORK_ERROR: RecoveryStrategy(
        retry=True,
        retry_delay_ms=2000,
        max_retries=3,
        action="Check your internet connection and try again.",
    ),
    ErrorKind.RPC_ERROR: RecoveryStrategy(
        retry=True,
        retry_delay_ms=1000,
        max_retries=3,
        action="The network may be busy. Please try again in a moment.",
    ),
    ErrorKind.RATE_LIMITED: RecoveryStrategy(
        retry=True,
        retry_delay_ms=5000,
        max_retries=1,
        action="Rate limit reached. Please wait a few minutes before trying again.",
    ),
    ErrorKind.TIMEOUT: RecoveryStrategy(
        retry=True,
        retry_delay_ms=3000,
        max_retries=2,
        action="Request timed out. Please try again.",
    ),
    ErrorKind.GAS_PRICE_TOO_LOW: RecoveryStrategy(
        retry=True,
        retry_delay_ms=1000,
        max_retries=1,
        action="Gas price is too low. The transaction will be retried with a higher gas price.",
    ),
    ErrorKind.NONCE_TOO_LOW: RecoveryStrategy(
        retry=True,
        retry_delay_ms=1000,
        max_retries=1,
        action="Nonce error detected. The transaction will be retried.",
    ),
    ErrorKind.INSUFFICIENT_BALANCE: RecoveryStrategy(
        action="Please ensure you have sufficient balance for this transaction.",
    ),
    ErrorKind.USER_REJECTED: RecoveryStrategy(
        action="Transaction was cancelled. You can try again when ready.",
    ),
    ErrorKind.EXECUTION_REVERTED: RecoveryStrategy(
        action="Review transaction parameters before resubmitting.",
    ),
    ErrorKind.INVALID_ADDRESS: RecoveryStrategy(
        action="Check the address format for this chain and try again.",
    ),
}

DEFAULT_RECOVERY = RecoveryStrategy()

_SEVERITY_BY_KIND: Dict[ErrorKind, ErrorSeverity] = {
    ErrorKind.USER_REJECTED: ErrorSeverity.LOW,
    ErrorKind.INVALID_ADDRESS: ErrorSeverity.LOW,
    ErrorKind.INSUFFICIENT_BALANCE: ErrorSeverity.MEDIUM,
    ErrorKind.TIMEOUT: ErrorSeverity.MEDIUM,
    ErrorKind.NETWORK_ERROR: ErrorSeverity.HIGH,
    ErrorKind.RPC_ERROR: ErrorSeverity.HIGH,
    ErrorKind.TRANSACTION_FAILED: ErrorSeverity.HIGH,
    ErrorKind.EXECUTION_REVERTED: ErrorSeverity.CRITICAL,
}


def get_recovery_strategy(kind: ErrorKind) -> RecoveryStrategy:
    return RECOVERY_STRATEGIES.get(kind, DEFAULT_RECOVERY)


def severity_for(kind: ErrorKind, matched_by_code: bool = False) -> ErrorSeverity:
    """Severity follows from the kind; a node-level rate limit is critical."""
    if kind == ErrorKind.RATE_LIMITED and matched_by_code:
        return ErrorSeverity.CRITICAL
    return _SEVERITY_BY_KIND.get(kind, ErrorSeverity.MEDIUM)


class ClassifiedError(Exception):
    """
    Canonical, chain-agnostic error.

    This is the only error type the retry engine lets escape, so callers can
    rely on `kind`, `retryable` and `recovery_action` without inspecting the
    raw payload. The raw error, when there is one, is kept in `__cause__`.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        *,
        severity: Optional[ErrorSeverity] = None,
        retryable: Optional[bool] = None,
        recovery_action: Optional[str] = None,
        chain_id: Optional[int] = None,
        raw_message: Optional[str] = None,
        error_code: Any = None,
        revert_reason: Optional[str] = None,
    ):
        strategy = get_recovery_strategy(kind)
        self.kind = kind
        self.message = message or raw_message or kind.value
        self.severity = severity or severity_for(kind)
        self.retryable = strategy.retry if retryable is None else retryable
        self.recovery_action = recovery_action or strategy.action
        self.chain_id = chain_id
        self.raw_message = raw_message or self.message
        self.error_code = error_code
        self.revert_reason = revert_reason
        self.retry_delay_ms = strategy.retry_delay_ms
        self.max_retries = strategy.max_retries
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self.kind.value!r}, severity={self.severity.value!r}, "
            f"retryable={self.retryable}, chain_id={self.chain_id!r}, message={self.message!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "recoveryAction": self.recovery_action,
            "chainId": self.chain_id,
            "message": self.message,
            "rawMessage": self.raw_message,
            "errorCode": self.error_code,
            "revertReason": self.revert_reason,
            "retryDelayMs": self.retry_delay_ms,
            "maxRetries": self.max_retries,
            "timestamp": self.timestamp.isoformat(),
        }


# ---------------------------------------------------------------------------
# Pattern tables
# ---------------------------------------------------------------------------

REJECTION_PATTERNS = (
    "user rejected",
    "user denied",
    "user cancelled",
    "user canceled",
    "rejected the request",
)

BALANCE_PATTERNS: Dict[ChainType, Tuple[str, ...]] = {
    ChainType.ACCOUNT_BASED: ("insufficient funds", "insufficient balance"),
    ChainType.RESOURCE_METERED: ("insufficient balance", "insufficient funds"),
    ChainType.SLOT_BASED: ("insufficient funds", "insufficient lamports"),
    ChainType.UTXO: ("insufficient funds", "insufficient balance"),
}

RATE_LIMIT_PATTERNS: Dict[ChainType, Tuple[str, ...]] = {
    ChainType.ACCOUNT_BASED: ("rate limit", "too many requests"),
    ChainType.RESOURCE_METERED: ("rate limit", "too many requests", "bandwidth limit", "energy limit"),
    ChainType.SLOT_BASED: ("rate limit", "too many requests"),
    ChainType.UTXO: ("rate limit", "too many requests"),
}

NETWORK_PATTERNS = (
    "network",
    "connection",
    "fetch",
    "econnrefused",
    "econnreset",
    "unreachable",
)

TIMEOUT_PATTERNS: Dict[ChainType, Tuple[str, ...]] = {
    ChainType.ACCOUNT_BASED: ("timeout", "timed out", "etimedout", "econnaborted"),
    ChainType.RESOURCE_METERED: ("timeout", "timed out", "etimedout", "econnaborted", "transaction expired"),
    ChainType.SLOT_BASED: (
        "timeout",
        "timed out",
        "etimedout",
        "econnaborted",
        "transaction expired",
        "blockhash not found",
    ),
    ChainType.UTXO: ("timeout", "timed out", "etimedout", "econnaborted"),
}

CHAIN_PATTERNS: Dict[ChainType, List[Tuple[str, ErrorKind]]] = {
    ChainType.ACCOUNT_BASED: [
        ("execution reverted", ErrorKind.EXECUTION_REVERTED),
        ("nonce too low", ErrorKind.NONCE_TOO_LOW),
        ("nonce too high", ErrorKind.NONCE_TOO_HIGH),
        ("replacement transaction underpriced", ErrorKind.GAS_PRICE_TOO_LOW),
        ("transaction underpriced", ErrorKind.GAS_PRICE_TOO_LOW),
        ("gas price too low", ErrorKind.GAS_PRICE_TOO_LOW),
        ("invalid address", ErrorKind.INVALID_ADDRESS),
    ],
    ChainType.RESOURCE_METERED: [
        ("account not found", ErrorKind.INVALID_ADDRESS),
        ("contract validate error", ErrorKind.TRANSACTION_FAILED),
        ("duplicate transaction", ErrorKind.TRANSACTION_FAILED),
    ],
    ChainType.SLOT_BASED: [
        ("account not found", ErrorKind.INVALID_ADDRESS),
    ],
    ChainType.UTXO: [
        ("invalid address", ErrorKind.INVALID_ADDRESS),
        ("transaction too large", ErrorKind.TRANSACTION_FAILED),
        ("fee too low", ErrorKind.GAS_PRICE_TOO_LOW),
    ],
}

# JSON-RPC codes, AccountBased chains only
RPC_ERROR_CODES: Dict[int, ErrorKind] = {
    -32000: ErrorKind.EXECUTION_REVERTED,
    -32003: ErrorKind.TRANSACTION_FAILED,
    -32005: ErrorKind.RATE_LIMITED,
    -32600: ErrorKind.RPC_ERROR,  # invalid request
    -32601: ErrorKind.RPC_ERROR,  # method not found
    -32602: ErrorKind.RPC_ERROR,  # invalid params
    -32603: ErrorKind.RPC_ERROR,  # internal error
    -32700: ErrorKind.RPC_ERROR,  # parse error
}

USER_REJECTED_CODE = 4001
RATE_LIMIT_STATUS = 429
NETWORK_STATUSES = (502, 503, 504)


# ---------------------------------------------------------------------------
# Raw error extraction
# ---------------------------------------------------------------------------

@dataclass
class RawErrorInfo:
    """Normalized view of whatever was thrown or returned."""

    message: str = ""
    code: Any = None
    revert_reason: Optional[str] = None
    http_status: Optional[int] = None
    is_transport: bool = False
    is_timeout: bool = False

    @property
    def numeric_code(self) -> Optional[int]:
        if isinstance(self.code, bool):
            return None
        if isinstance(self.code, int):
            return self.code
        if isinstance(self.code, str):
            try:
                return int(self.code.strip())
            except ValueError:
                return None
        return None

    @property
    def haystack(self) -> str:
        parts = [self.message, self.revert_reason or ""]
        if isinstance(self.code, str) and self.numeric_code is None:
            parts.append(self.code)
        return " ".join(p for p in parts if p).lower()


def _lookup(source: Any, key: str) -> Any:
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return str(value)


def extract_error_info(raw: Any) -> RawErrorInfo:
    """Pull message, code and revert reason out of a raw error."""
    if raw is None:
        return RawErrorInfo(message="An unknown error occurred")
    if isinstance(raw, str):
        return RawErrorInfo(message=raw)

    info = RawErrorInfo()

    if isinstance(raw, BaseException):
        info.message = str(raw) or type(raw).__name__
    else:
        info.message = _text(_lookup(raw, "message")) or ""

    nested = _lookup(raw, "error")
    data = _lookup(raw, "data")

    if not info.message and nested is not None:
        info.message = _text(_lookup(nested, "message")) or ""
    if not info.message:
        info.message = "An unknown error occurred"

    for source in (raw, nested, data):
        if source is None:
            continue
        code = _lookup(source, "code")
        if code is not None:
            info.code = code
            break

    info.revert_reason = (
        _text(_lookup(raw, "reason"))
        or (_text(_lookup(data, "message")) if data is not None else None)
        or (_text(_lookup(nested, "message")) if nested is not None else None)
    )

    if isinstance(raw, httpx.HTTPStatusError):
        info.http_status = raw.response.status_code
    elif isinstance(raw, dict) and isinstance(raw.get("status"), int):
        info.http_status = raw["status"]

    if isinstance(raw, (httpx.TimeoutException, asyncio.TimeoutError)):
        info.is_timeout = True
    elif isinstance(raw, (httpx.TransportError, ConnectionError)):
        info.is_transport = True

    return info


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _first_match(text: str, patterns: Tuple[str, ...]) -> bool:
    return any(p in text for p in patterns)


def _match_kind(info: RawErrorInfo, chain_type: ChainType) -> Tuple[ErrorKind, bool]:
    """Return (kind, matched_by_code) using the fixed priority order."""
    text = info.haystack
    code = info.numeric_code

    if _first_match(text, REJECTION_PATTERNS) or code == USER_REJECTED_CODE:
        return ErrorKind.USER_REJECTED, False

    if _first_match(text, BALANCE_PATTERNS[chain_type]):
        return ErrorKind.INSUFFICIENT_BALANCE, False

    if _first_match(text, RATE_LIMIT_PATTERNS[chain_type]) or info.http_status == RATE_LIMIT_STATUS:
        return ErrorKind.RATE_LIMITED, False

    if info.is_transport or info.http_status in NETWORK_STATUSES or _first_match(text, NETWORK_PATTERNS):
        return ErrorKind.NETWORK_ERROR, False

    if info.is_timeout or _first_match(text, TIMEOUT_PATTERNS[chain_type]):
        return ErrorKind.TIMEOUT, False

    for pattern, kind in CHAIN_PATTERNS[chain_type]:
        if pattern in text:
            return kind, False

    if chain_type == ChainType.ACCOUNT_BASED and code in RPC_ERROR_CODES:
        return RPC_ERROR_CODES[code], True

    return ErrorKind.UNKNOWN, False


def _build(raw: Any, profile: Optional[ChainProfile]) -> ClassifiedError:
    chain_type = profile.chain_type if profile else ChainType.ACCOUNT_BASED
    chain_name = profile.chain_name if profile else None

    info = extract_error_info(raw)
    kind, by_code = _match_kind(info, chain_type)

    message = error_message(chain_name, kind)
    if info.revert_reason and info.revert_reason != info.message:
        message = f"{message} Reason: {info.revert_reason}"

    return ClassifiedError(
        kind,
        message,
        severity=severity_for(kind, matched_by_code=by_code),
        chain_id=profile.chain_id if profile else None,
        raw_message=info.message,
        error_code=info.code,
        revert_reason=info.revert_reason,
    )


def classify(raw_error: Any, profile: Optional[ChainProfile] = None) -> ClassifiedError:
    """
    Classify a raw error against a chain profile.

    Never raises. An already classified error is returned unchanged, and
    anything that cannot be inspected falls back to UNKNOWN.
    """
    if isinstance(raw_error, ClassifiedError):
        return raw_error
    try:
        return _build(raw_error, profile)
    except Exception:
        logger.debug("Failed to inspect error %r", raw_error, exc_info=True)
        return ClassifiedError(
            ErrorKind.UNKNOWN,
            error_message(profile.chain_name if profile else None, ErrorKind.UNKNOWN),
            chain_id=profile.chain_id if profile else None,
            raw_message=repr(raw_error),
        )


def is_retryable(raw_error: Any, profile: Optional[ChainProfile] = None) -> bool:
    return classify(raw_error, profile).retryable


def describe(error: ClassifiedError, chain_name: Optional[str] = None) -> Dict[str, Any]:
    """Display payload for an error toast or banner."""
    strategy = get_recovery_strategy(error.kind)
    message = error.message
    if error.revert_reason and error.revert_reason not in message:
        message = f"{message} Reason: {error.revert_reason}"
    return {
        "title": error_title(error.kind, chain_name),
        "message": message,
        "suggestion": error.recovery_action,
        "severity": error.severity.value,
        "canRetry": error.retryable,
        "retryDelayMs": strategy.retry_delay_ms,
        "maxRetries": strategy.max_retries,
        "chainName": chain_name or "Unknown Chain",
        "chainId": error.chain_id,
        "errorType": error.kind.value,
    }
