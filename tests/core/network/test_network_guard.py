"""
Tests for the Network Guard

Switch requests are serialized, validation errors are sticky and wallet
failures carry switch-specific recovery hints.
"""

import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from chainwatch.core.chains import ChainRegistry
from chainwatch.core.network import NetworkGuard, SwitchState, SwitchValidationError
from chainwatch.core.network.guard import SWITCH_IN_PROGRESS_ACTION, SWITCH_REJECTED_ACTION
from chainwatch.core.recovery import ClassifiedError, ErrorKind
from chainwatch.telemetry import RingBufferTelemetrySink


class WalletError(Exception):
    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class FakeSwitcher:
    """Wallet stand-in; optionally blocks until `gate` is set."""

    def __init__(self, error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None):
        self.error = error
        self.gate = gate
        self.calls: List[int] = []

    async def switch_active_chain(self, chain_id: int):
        self.calls.append(chain_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return {"chainId": chain_id}


@pytest.fixture
def registry() -> ChainRegistry:
    return ChainRegistry()


# =============================================================================
# Mismatch detection
# =============================================================================

class TestMismatch:

    @pytest.mark.parametrize(
        "current,required,expected",
        [
            (1, None, False),
            (1, 1, False),
            (1, 8453, True),
            (None, 1, True),
            (None, None, False),
        ],
    )
    def test_is_mismatch(self, current, required, expected):
        assert NetworkGuard.is_mismatch(current, required) is expected

    def test_request_snapshot(self, registry):
        guard = NetworkGuard(FakeSwitcher(), registry=registry, current_chain_id=1, required_chain_id=8453)
        request = guard.request

        assert request.is_mismatch is True
        assert request.switch_state == SwitchState.IDLE
        assert request.to_dict()["requiredChainId"] == 8453


# =============================================================================
# Switching
# =============================================================================

class TestSwitching:
    """Tests for request_switch."""

    @pytest.mark.asyncio
    async def test_successful_switch(self, registry):
        switcher = FakeSwitcher()
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1, required_chain_id=8453)

        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.SUCCEEDED
        assert request.current_chain_id == 8453
        assert request.is_mismatch is False
        assert request.error is None
        assert switcher.calls == [8453]

    @pytest.mark.asyncio
    async def test_duplicate_request_does_not_prompt_again(self, registry):
        gate = asyncio.Event()
        switcher = FakeSwitcher(gate=gate)
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1, required_chain_id=8453)

        first = asyncio.create_task(guard.request_switch(8453))
        await asyncio.sleep(0)
        assert guard.switch_state == SwitchState.SWITCHING

        second = await guard.request_switch(8453)
        assert second.switch_state == SwitchState.SWITCHING
        assert switcher.calls == [8453]

        gate.set()
        result = await asyncio.wait_for(first, timeout=1)

        assert result.switch_state == SwitchState.SUCCEEDED
        assert switcher.calls == [8453]

    @pytest.mark.asyncio
    async def test_duplicate_request_strict_raises(self, registry):
        gate = asyncio.Event()
        guard = NetworkGuard(FakeSwitcher(gate=gate), registry=registry, current_chain_id=1)

        first = asyncio.create_task(guard.request_switch(8453))
        await asyncio.sleep(0)

        with pytest.raises(ClassifiedError) as exc_info:
            await guard.request_switch(137, strict=True)

        assert exc_info.value.recovery_action == SWITCH_IN_PROGRESS_ACTION
        gate.set()
        await asyncio.wait_for(first, timeout=1)

    @pytest.mark.asyncio
    async def test_user_rejection(self, registry):
        sink = RingBufferTelemetrySink(capacity=5)
        switcher = FakeSwitcher(error=WalletError("User rejected the request.", code=4001))
        guard = NetworkGuard(switcher, registry=registry, telemetry=sink, current_chain_id=1)

        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.FAILED
        assert request.error.kind == ErrorKind.USER_REJECTED
        assert request.error.recovery_action == SWITCH_REJECTED_ACTION
        assert request.current_chain_id == 1
        assert len(sink) == 1

    @pytest.mark.asyncio
    async def test_chain_not_added(self, registry):
        switcher = FakeSwitcher(error=WalletError('Unrecognized chain ID "0x2105".', code=4902))
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1)

        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.FAILED
        assert request.error.message == "Base is not added to your wallet."
        assert request.error.recovery_action == "Add Base to your wallet, then try switching again."
        assert request.error.recovery_action != SWITCH_REJECTED_ACTION

    @pytest.mark.asyncio
    async def test_other_wallet_error(self, registry):
        switcher = FakeSwitcher(error=WalletError("Internal JSON-RPC error.", code=-32603))
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1)

        request = await guard.request_switch(8453)

        assert request.error.kind == ErrorKind.RPC_ERROR
        assert request.error.message == "Network error on Base. Please check your connection."

    @pytest.mark.asyncio
    async def test_wallet_reports_other_chain(self, registry):
        reader = AsyncMock(return_value=1)
        guard = NetworkGuard(
            FakeSwitcher(), registry=registry, current_chain_id=1, active_chain_reader=reader
        )

        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.FAILED
        assert request.error.kind == ErrorKind.NETWORK_ERROR
        reader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mock_switcher_result_is_trusted(self, registry):
        switcher = AsyncMock()
        switcher.switch_active_chain.return_value = None
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1)

        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.SUCCEEDED
        assert request.current_chain_id == 8453

    @pytest.mark.asyncio
    async def test_already_on_target_skips_wallet(self, registry):
        switcher = AsyncMock()
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=8453, required_chain_id=8453)

        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.SUCCEEDED
        assert request.error is None
        assert switcher.switch_active_chain.await_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_releases_switch(self, registry):
        gate = asyncio.Event()
        switcher = FakeSwitcher(gate=gate)
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1)

        pending = asyncio.create_task(guard.request_switch(8453))
        await asyncio.sleep(0)
        assert guard.switch_state == SwitchState.SWITCHING

        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert guard.switch_state == SwitchState.IDLE

        gate.set()
        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.SUCCEEDED
        assert switcher.calls == [8453, 8453]

    @pytest.mark.asyncio
    async def test_can_retry_after_failure(self, registry):
        switcher = FakeSwitcher(error=WalletError("User rejected the request.", code=4001))
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1)

        await guard.request_switch(8453)
        switcher.error = None
        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.SUCCEEDED
        assert request.error is None


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    """Validation errors survive a resolved mismatch."""

    @pytest.mark.asyncio
    async def test_wallet_not_connected(self, registry):
        switcher = FakeSwitcher()
        guard = NetworkGuard(switcher, registry=registry, connected=False)

        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.FAILED
        assert request.validation_error.code == SwitchValidationError.WALLET_NOT_CONNECTED
        assert request.validation_error.message == "Wallet not connected"
        assert switcher.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", ["8453", -1, None, True])
    async def test_invalid_chain_id(self, registry, target):
        guard = NetworkGuard(FakeSwitcher(), registry=registry, current_chain_id=1)

        request = await guard.request_switch(target)

        assert request.validation_error.message == "Invalid chain ID"

    @pytest.mark.asyncio
    async def test_unsupported_chain(self, registry):
        guard = NetworkGuard(FakeSwitcher(), registry=registry, current_chain_id=1)

        request = await guard.request_switch(999_999)

        assert request.validation_error.code == SwitchValidationError.CHAIN_NOT_SUPPORTED
        assert request.validation_error.message == "Chain not supported"

    @pytest.mark.asyncio
    async def test_validation_error_is_sticky(self, registry):
        guard = NetworkGuard(FakeSwitcher(), registry=registry, current_chain_id=1, required_chain_id=8453)

        await guard.request_switch(999_999)
        request = guard.update_context(8453)

        assert request.is_mismatch is False
        assert request.validation_error is not None

        guard.clear_validation_error()
        assert guard.validation_error is None

    @pytest.mark.asyncio
    async def test_switch_error_cleared_when_mismatch_resolves(self, registry):
        switcher = FakeSwitcher(error=WalletError("User rejected the request.", code=4001))
        guard = NetworkGuard(switcher, registry=registry, current_chain_id=1, required_chain_id=8453)

        await guard.request_switch(8453)
        assert guard.switch_error is not None

        guard.update_context(8453)
        assert guard.switch_error is None

    @pytest.mark.asyncio
    async def test_successful_switch_clears_validation_error(self, registry):
        guard = NetworkGuard(FakeSwitcher(), registry=registry, current_chain_id=1)

        await guard.request_switch(999_999)
        request = await guard.request_switch(8453)

        assert request.switch_state == SwitchState.SUCCEEDED
        assert request.validation_error is None
