"""
Network Guard

Detects when the active wallet context is on a different chain than the one
an operation needs, and serializes requests to switch it. Validation
problems (no wallet, bad or unsupported chain id) are kept apart from
transient switch failures: they survive a resolved mismatch and are only
cleared by a successful switch or an explicit clear_validation_error().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ...telemetry.sink import TelemetrySink, record_error
from ..chains import ChainRegistry, error_message, get_registry
from ..interfaces import ActiveChainReader, ChainSwitcher
from ..recovery.errors import (
    ClassifiedError,
    ErrorKind,
    ErrorSeverity,
    classify,
    extract_error_info,
)


class SwitchState(str, Enum):
    IDLE = "idle"
    SWITCHING = "switching"      # waiting on the wallet prompt
    CONFIRMING = "confirming"    # wallet accepted, checking the active chain
    SUCCEEDED = "succeeded"
    FAILED = "failed"


IN_FLIGHT_STATES = frozenset({SwitchState.SWITCHING, SwitchState.CONFIRMING})

CHAIN_NOT_ADDED_CODE = 4902
CHAIN_NOT_ADDED_PATTERNS = (
    "unrecognized chain",
    "chain not added",
    "not been added",
    "unknown chain",
    "try adding the chain",
)

SWITCH_REJECTED_ACTION = "Network switch was cancelled. Approve the switch in your wallet to continue."
SWITCH_IN_PROGRESS_ACTION = "A network switch is already in progress. Confirm it in your wallet."


class SwitchValidationError(Exception):
    """A switch request that cannot be attempted at all."""

    WALLET_NOT_CONNECTED = "wallet_not_connected"
    INVALID_CHAIN_ID = "invalid_chain_id"
    CHAIN_NOT_SUPPORTED = "chain_not_supported"

    def __init__(self, code: str, message: str, chain_id: Any = None):
        self.code = code
        self.message = message
        self.chain_id = chain_id
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "chainId": self.chain_id}


@dataclass
class NetworkSwitchRequest:
    """Snapshot of the guard's switch state."""

    current_chain_id: Optional[int]
    required_chain_id: Optional[int]
    is_mismatch: bool
    switch_state: SwitchState = SwitchState.IDLE
    target_chain_id: Optional[int] = None
    error: Optional[ClassifiedError] = None
    validation_error: Optional[SwitchValidationError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentChainId": self.current_chain_id,
            "requiredChainId": self.required_chain_id,
            "isMismatch": self.is_mismatch,
            "switchState": self.switch_state.value,
            "targetChainId": self.target_chain_id,
            "error": self.error.to_dict() if self.error else None,
            "validationError": self.validation_error.to_dict() if self.validation_error else None,
        }


class NetworkGuard:
    """Mediates between the active wallet chain and the chain an action requires."""

    def __init__(
        self,
        switcher: ChainSwitcher,
        *,
        registry: Optional[ChainRegistry] = None,
        telemetry: Optional[TelemetrySink] = None,
        logger: Optional[logging.Logger] = None,
        current_chain_id: Optional[int] = None,
        required_chain_id: Optional[int] = None,
        connected: bool = True,
        active_chain_reader: Optional[ActiveChainReader] = None,
    ):
        """
        Args:
            switcher: Wallet that performs the switch
            active_chain_reader: Reads the wallet's chain after a switch; when
                omitted the switcher's return value is trusted
        """
        self.switcher = switcher
        self.active_chain_reader = active_chain_reader
        self.registry = registry or get_registry()
        self.telemetry = telemetry
        self.logger = logger or logging.getLogger(__name__)

        self._current_chain_id = current_chain_id
        self._required_chain_id = required_chain_id
        self._connected = connected
        self._state = SwitchState.IDLE
        self._target: Optional[int] = None
        self._switch_error: Optional[ClassifiedError] = None
        self._validation_error: Optional[SwitchValidationError] = None

    @staticmethod
    def is_mismatch(current: Optional[int], required: Optional[int]) -> bool:
        return required is not None and current != required

    @property
    def mismatch(self) -> bool:
        return self.is_mismatch(self._current_chain_id, self._required_chain_id)

    @property
    def switch_state(self) -> SwitchState:
        return self._state

    @property
    def validation_error(self) -> Optional[SwitchValidationError]:
        return self._validation_error

    @property
    def switch_error(self) -> Optional[ClassifiedError]:
        return self._switch_error

    @property
    def request(self) -> NetworkSwitchRequest:
        return NetworkSwitchRequest(
            current_chain_id=self._current_chain_id,
            required_chain_id=self._required_chain_id,
            is_mismatch=self.mismatch,
            switch_state=self._state,
            target_chain_id=self._target,
            error=self._switch_error,
            validation_error=self._validation_error,
        )

    def update_context(self, current_chain_id: Optional[int], connected: bool = True) -> NetworkSwitchRequest:
        """Record what the wallet reports. A resolved mismatch clears transient errors only."""
        self._current_chain_id = current_chain_id
        self._connected = connected
        if not self.mismatch and self._state not in IN_FLIGHT_STATES:
            self._switch_error = None
        return self.request

    def set_required_chain(self, chain_id: Optional[int]) -> NetworkSwitchRequest:
        self._required_chain_id = chain_id
        return self.request

    def clear_validation_error(self) -> None:
        self._validation_error = None

    async def request_switch(self, target: int, strict: bool = False) -> NetworkSwitchRequest:
        """
        Ask the wallet to switch to `target`.

        While another switch is in flight the existing request is returned
        untouched and the wallet is not prompted again; with strict=True a
        ClassifiedError is raised instead.
        """
        if self._state in IN_FLIGHT_STATES:
            self.logger.info(
                f"Switch to {target} ignored; switch to {self._target} already in progress"
            )
            if strict:
                raise ClassifiedError(
                    ErrorKind.UNKNOWN,
                    "Network switch already in progress",
                    severity=ErrorSeverity.LOW,
                    retryable=False,
                    recovery_action=SWITCH_IN_PROGRESS_ACTION,
                    chain_id=self._target,
                )
            return self.request

        problem = self._validate(target)
        if problem is not None:
            self._validation_error = problem
            self._state = SwitchState.FAILED
            self._target = target if isinstance(target, int) else None
            self.logger.warning(f"Switch request rejected: {problem.message}")
            return self.request

        self._target = target
        self._switch_error = None

        if self._current_chain_id == target:
            self._state = SwitchState.SUCCEEDED
            self._validation_error = None
            self.logger.info(f"Already on chain {target}; no switch needed")
            return self.request

        self._state = SwitchState.SWITCHING
        self.logger.info(f"Switching active chain {self._current_chain_id} -> {target}")

        try:
            result = await self.switcher.switch_active_chain(target)
            if result is False:
                raise RuntimeError("Network switch was not completed")

            self._state = SwitchState.CONFIRMING
            active = await self._confirm_active_chain(result, target)
            if active != target:
                raise ConnectionError(f"Wallet is on chain {active} instead of {target}")
        except asyncio.CancelledError:
            self._state = SwitchState.IDLE
            self.logger.info(f"Switch to {target} abandoned by caller")
            raise
        except Exception as exc:
            error = self._classify_switch_error(exc, target)
            record_error(self.telemetry, error, exc)
            self._switch_error = error
            self._state = SwitchState.FAILED
            self.logger.warning(f"Switch to {target} failed ({error.kind.value}): {error.raw_message}")
            return self.request

        self._current_chain_id = target
        self._state = SwitchState.SUCCEEDED
        self._switch_error = None
        self._validation_error = None
        self.logger.info(f"Active chain is now {target}")
        return self.request

    def _validate(self, target: Any) -> Optional[SwitchValidationError]:
        if not self._connected:
            return SwitchValidationError(
                SwitchValidationError.WALLET_NOT_CONNECTED, "Wallet not connected", target
            )
        if isinstance(target, bool) or not isinstance(target, int) or target < 0:
            return SwitchValidationError(
                SwitchValidationError.INVALID_CHAIN_ID, "Invalid chain ID", target
            )
        if not self.registry.is_supported(target):
            return SwitchValidationError(
                SwitchValidationError.CHAIN_NOT_SUPPORTED, "Chain not supported", target
            )
        return None

    async def _confirm_active_chain(self, result: Any, target: int) -> Optional[int]:
        if self.active_chain_reader is not None:
            return await self.active_chain_reader()
        if isinstance(result, Mapping):
            reported = result.get("chainId", result.get("chain_id"))
            return int(reported) if reported is not None else target
        if isinstance(result, int) and not isinstance(result, bool):
            return result
        return target

    def _classify_switch_error(self, exc: Exception, target: int) -> ClassifiedError:
        profile = self.registry.get_chain_profile(target)
        classified = classify(exc, profile)
        info = extract_error_info(exc)

        if classified.kind == ErrorKind.USER_REJECTED:
            return ClassifiedError(
                ErrorKind.USER_REJECTED,
                classified.message,
                chain_id=target,
                raw_message=classified.raw_message,
                error_code=classified.error_code,
                recovery_action=SWITCH_REJECTED_ACTION,
            )

        if info.numeric_code == CHAIN_NOT_ADDED_CODE or any(
            p in info.haystack for p in CHAIN_NOT_ADDED_PATTERNS
        ):
            return ClassifiedError(
                ErrorKind.UNKNOWN,
                f"{profile.chain_name} is not added to your wallet.",
                retryable=False,
                chain_id=target,
                raw_message=classified.raw_message,
                error_code=classified.error_code,
                recovery_action=f"Add {profile.chain_name} to your wallet, then try switching again.",
            )

        return ClassifiedError(
            classified.kind,
            error_message(profile.chain_name, ErrorKind.NETWORK_ERROR),
            severity=classified.severity,
            chain_id=target,
            raw_message=classified.raw_message,
            error_code=classified.error_code,
        )
