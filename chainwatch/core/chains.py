"""
Chain profiles and metadata.

A ChainProfile describes everything the resilience layer needs to know about a
ledger: its architecture, its block cadence, how many confirmations count as
final and how long we are prepared to wait. Profiles are immutable; the
ChainRegistry is the read-only lookup the rest of the package consumes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..config import Settings, settings


class ChainType(str, Enum):
    """Ledger architecture families."""

    ACCOUNT_BASED = "account_based"        # EVM style balance accounts
    RESOURCE_METERED = "resource_metered"  # bandwidth/energy metered (Tron)
    SLOT_BASED = "slot_based"              # slot/epoch ledgers (Solana)
    UTXO = "utxo"                          # unspent outputs (Bitcoin)


class UnsupportedChainError(LookupError):
    """Raised when a chain id has no registered profile."""

    def __init__(self, chain_id: Any):
        self.chain_id = chain_id
        super().__init__(f"Chain {chain_id} is not supported")


@dataclass(frozen=True)
class TimeoutProfile:
    """Timing limits applied to every operation on a chain."""

    transaction_timeout_ms: int = 300_000
    rpc_timeout_ms: int = 10_000
    retry_attempts: int = 3
    retry_base_delay_ms: int = 1_000

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "TimeoutProfile":
        config = config or settings
        return cls(
            transaction_timeout_ms=config.transaction_timeout_ms,
            rpc_timeout_ms=config.rpc_timeout_ms,
            retry_attempts=config.retry_attempts,
            retry_base_delay_ms=config.retry_base_delay_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionTimeoutMs": self.transaction_timeout_ms,
            "rpcTimeoutMs": self.rpc_timeout_ms,
            "retryAttempts": self.retry_attempts,
            "retryBaseDelayMs": self.retry_base_delay_ms,
        }


@dataclass(frozen=True)
class ChainProfile:
    """Immutable description of a supported chain."""

    chain_id: int
    chain_type: ChainType = ChainType.ACCOUNT_BASED
    block_time_seconds: float = 2
    confirmations_required: int = 1
    timeout_profile: TimeoutProfile = field(default_factory=TimeoutProfile)

    chain_name: str = "Unknown Chain"
    native_symbol: str = ""
    network_name: Optional[str] = None

    @property
    def block_time_ms(self) -> float:
        return self.block_time_seconds * 1000

    @property
    def uses_push_receipts(self) -> bool:
        """AccountBased chains deliver receipts; everything else is polled."""
        return self.chain_type == ChainType.ACCOUNT_BASED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "chainType": self.chain_type.value,
            "chainName": self.chain_name,
            "blockTimeSeconds": self.block_time_seconds,
            "confirmationsRequired": self.confirmations_required,
            "timeoutProfile": self.timeout_profile.to_dict(),
            "networkName": self.network_name,
        }


# Built-in chains. block_time is seconds per block; confirmations is what we
# treat as final for UI purposes.
CHAIN_METADATA: Dict[int, Dict[str, Any]] = {
    1: {
        "name": "Ethereum",
        "type": ChainType.ACCOUNT_BASED,
        "native_symbol": "ETH",
        "block_time": 12,
        "confirmations": 3,
        "network": "ethereum",
    },
    8453: {
        "name": "Base",
        "type": ChainType.ACCOUNT_BASED,
        "native_symbol": "ETH",
        "block_time": 2,
        "confirmations": 1,
        "network": "base",
    },
    42161: {
        "name": "Arbitrum",
        "type": ChainType.ACCOUNT_BASED,
        "native_symbol": "ETH",
        "block_time": 1,
        "confirmations": 1,
        "network": "arbitrum",
    },
    137: {
        "name": "Polygon",
        "type": ChainType.ACCOUNT_BASED,
        "native_symbol": "POL",
        "block_time": 2,
        "confirmations": 5,
        "network": "polygon",
    },
    10: {
        "name": "Optimism",
        "type": ChainType.ACCOUNT_BASED,
        "native_symbol": "ETH",
        "block_time": 2,
        "confirmations": 1,
        "network": "optimism",
    },
    56: {
        "name": "BNB Smart Chain",
        "type": ChainType.ACCOUNT_BASED,
        "native_symbol": "BNB",
        "block_time": 3,
        "confirmations": 3,
        "network": "bsc",
    },
    43114: {
        "name": "Avalanche",
        "type": ChainType.ACCOUNT_BASED,
        "native_symbol": "AVAX",
        "block_time": 2,
        "confirmations": 1,
        "network": "avalanche",
    },
    728126428: {
        "name": "Tron",
        "type": ChainType.RESOURCE_METERED,
        "native_symbol": "TRX",
        "block_time": 3,
        "confirmations": 19,
        "network": "tron",
    },
    501111: {
        "name": "Solana",
        "type": ChainType.SLOT_BASED,
        "native_symbol": "SOL",
        "block_time": 1,
        "confirmations": 1,
        "network": "solana",
    },
    0: {
        "name": "Bitcoin",
        "type": ChainType.UTXO,
        "native_symbol": "BTC",
        "block_time": 600,
        "confirmations": 2,
        "network": "bitcoin",
    },
}

ADDRESS_PATTERNS: Dict[ChainType, List[re.Pattern]] = {
    ChainType.ACCOUNT_BASED: [re.compile(r"^0x[a-fA-F0-9]{40}$")],
    ChainType.RESOURCE_METERED: [re.compile(r"^T[A-Za-z1-9]{33}$")],
    ChainType.SLOT_BASED: [re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")],
    ChainType.UTXO: [
        re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$"),
        re.compile(r"^bc1[a-z0-9]{39,59}$"),
    ],
}

# Keyed by ErrorKind value
ERROR_MESSAGES: Dict[str, str] = {
    "network_error": "Network error on {chain}. Please check your connection.",
    "transaction_failed": "Transaction failed on {chain}. Please try again.",
    "execution_reverted": "Transaction reverted on {chain}.",
    "insufficient_balance": "Insufficient balance on {chain}.",
    "user_rejected": "Transaction rejected by user on {chain}.",
    "timeout": "Transaction timeout on {chain}. Please try again.",
    "invalid_address": "Invalid address format for {chain}.",
    "rpc_error": "RPC error on {chain}. Please try again later.",
    "unsupported_chain": "{chain} is not supported.",
}

ERROR_TITLES: Dict[str, str] = {
    "network_error": "Network Error on {chain}",
    "transaction_failed": "Transaction Failed on {chain}",
    "insufficient_balance": "Insufficient Balance on {chain}",
    "user_rejected": "Transaction Cancelled",
    "timeout": "Request Timeout on {chain}",
    "invalid_address": "Invalid Address",
    "rpc_error": "RPC Error on {chain}",
    "rate_limited": "Rate Limited on {chain}",
    "execution_reverted": "Transaction Reverted on {chain}",
}


def _kind_key(kind: Any) -> str:
    return str(getattr(kind, "value", kind))


def error_message(chain_name: Optional[str], kind: Any) -> str:
    """User-facing message for an error kind on a chain."""
    chain = chain_name or "Unknown Chain"
    template = ERROR_MESSAGES.get(_kind_key(kind), "Error on {chain}")
    return template.format(chain=chain)


def error_title(kind: Any, chain_name: Optional[str] = None) -> str:
    chain = chain_name or "Network"
    template = ERROR_TITLES.get(_kind_key(kind), "Error on {chain}")
    return template.format(chain=chain)


def validate_address(chain_type: ChainType, address: Optional[str]) -> bool:
    """Check an address against the format used by a chain family."""
    if not address or not isinstance(address, str):
        return False
    candidate = address.strip()
    return any(p.match(candidate) for p in ADDRESS_PATTERNS.get(chain_type, []))


def _profile_from_metadata(
    chain_id: int,
    meta: Dict[str, Any],
    timeouts: TimeoutProfile,
) -> ChainProfile:
    return ChainProfile(
        chain_id=chain_id,
        chain_type=meta.get("type", ChainType.ACCOUNT_BASED),
        block_time_seconds=meta.get("block_time") or 2,
        confirmations_required=meta.get("confirmations") or 1,
        timeout_profile=timeouts,
        chain_name=meta.get("name", "Unknown Chain"),
        native_symbol=meta.get("native_symbol", ""),
        network_name=meta.get("network"),
    )


class ChainRegistry:
    """Read-only lookup of chain profiles, seeded from CHAIN_METADATA."""

    def __init__(
        self,
        profiles: Optional[Iterable[ChainProfile]] = None,
        timeouts: Optional[TimeoutProfile] = None,
    ):
        self._timeouts = timeouts or TimeoutProfile.from_settings()
        self._profiles: Dict[int, ChainProfile] = {}
        if profiles is None:
            for chain_id, meta in CHAIN_METADATA.items():
                self._profiles[chain_id] = _profile_from_metadata(chain_id, meta, self._timeouts)
        else:
            for profile in profiles:
                self._profiles[profile.chain_id] = profile

    def register(self, profile: ChainProfile) -> None:
        self._profiles[profile.chain_id] = profile

    def is_supported(self, chain_id: Any) -> bool:
        return isinstance(chain_id, int) and chain_id in self._profiles

    def get_chain_profile(self, chain_id: int) -> ChainProfile:
        try:
            return self._profiles[chain_id]
        except (KeyError, TypeError):
            raise UnsupportedChainError(chain_id) from None

    def chain_name(self, chain_id: Any) -> str:
        profile = self._profiles.get(chain_id) if isinstance(chain_id, int) else None
        return profile.chain_name if profile else "Unknown Chain"

    def network_name_for(self, chain_id: int) -> Optional[str]:
        return self.get_chain_profile(chain_id).network_name

    def chain_id_for_network(self, network_name: str) -> Optional[int]:
        key = (network_name or "").strip().lower()
        for profile in self._profiles.values():
            if profile.network_name == key:
                return profile.chain_id
        return None

    def supported_chain_ids(self) -> List[int]:
        return sorted(self._profiles)


_default_registry: Optional[ChainRegistry] = None


def get_registry() -> ChainRegistry:
    """Process-wide registry built lazily from settings."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ChainRegistry()
    return _default_registry


def get_chain_profile(chain_id: int) -> ChainProfile:
    return get_registry().get_chain_profile(chain_id)
