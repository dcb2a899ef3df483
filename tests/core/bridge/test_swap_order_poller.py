"""
Tests for the Swap Order Poller
"""

import asyncio
from typing import Any, Dict, List

import httpx
import pytest

from chainwatch.core.bridge import (
    SwapOrder,
    SwapOrderPoller,
    SwapOrderStatus,
    normalize_order_status,
)
from chainwatch.core.recovery import ClassifiedError, ErrorKind, RetryEngine, RetryPolicy
from chainwatch.telemetry import RingBufferTelemetrySink


class FakeBridge:
    """In-memory bridging service with scripted status responses."""

    def __init__(self, statuses: List[Any] = None, initiate_error: Exception = None,
                 cancel_error: Exception = None):
        self.statuses = list(statuses or [])
        self.initiate_error = initiate_error
        self.cancel_error = cancel_error
        self.status_calls = 0
        self.cancel_calls: List[str] = []

    async def initiate_order(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.initiate_error:
            raise self.initiate_error
        return {
            "orderId": "ord-1",
            "sourceChainId": params["fromChainId"],
            "destChainId": params["toChainId"],
            "status": "pending",
        }

    async def get_order_status(self, order_id: str) -> Any:
        self.status_calls += 1
        if self.statuses:
            item = self.statuses.pop(0)
        else:
            item = {"status": "processing"}
        if isinstance(item, Exception):
            raise item
        return item

    async def cancel_order(self, order_id: str) -> Dict[str, Any]:
        self.cancel_calls.append(order_id)
        if self.cancel_error:
            raise self.cancel_error
        return {"success": True}


PARAMS = {"fromChainId": 1, "toChainId": 728126428, "amount": "100"}


def _no_retry() -> RetryEngine:
    return RetryEngine(policy=RetryPolicy(max_retries=0, base_delay_ms=1))


# =============================================================================
# Status normalization
# =============================================================================

class TestStatusNormalization:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("completed", SwapOrderStatus.COMPLETED),
            ("SUCCESS", SwapOrderStatus.COMPLETED),
            ("refunded", SwapOrderStatus.FAILED),
            ("canceled", SwapOrderStatus.CANCELLED),
            ("in-progress", SwapOrderStatus.PROCESSING),
            ("something-new", SwapOrderStatus.PENDING),
            (None, SwapOrderStatus.PENDING),
        ],
    )
    def test_aliases(self, raw, expected):
        assert normalize_order_status(raw) == expected

    def test_from_payload_unwraps_data(self):
        order = SwapOrder.from_payload({"data": {"swapId": "s-9", "status": "processing", "fromChainId": "1"}})

        assert order.order_id == "s-9"
        assert order.status == SwapOrderStatus.PROCESSING
        assert order.source_chain_id == 1

    def test_from_payload_requires_id(self):
        with pytest.raises(ValueError):
            SwapOrder.from_payload({"status": "pending"})


# =============================================================================
# Polling
# =============================================================================

class TestPolling:
    """Tests for following orders to a terminal status."""

    @pytest.mark.asyncio
    async def test_polls_until_completed(self):
        bridge = FakeBridge(statuses=[{"status": "processing"}, {"status": "completed", "destTxHash": "0xdest"}])
        updates = []
        poller = SwapOrderPoller(
            bridge,
            poll_interval_ms=5,
            retry_engine=_no_retry(),
            on_update=lambda order: updates.append(order.status),
        )

        order = await poller.initiate(PARAMS)
        assert order.order_id == "ord-1"
        assert order.status == SwapOrderStatus.PENDING
        assert poller.is_polling("ord-1")

        final = await asyncio.wait_for(poller.wait("ord-1"), timeout=2)

        assert final.status == SwapOrderStatus.COMPLETED
        assert final.dest_tx_ref == "0xdest"
        assert updates == [SwapOrderStatus.PROCESSING, SwapOrderStatus.COMPLETED]
        assert bridge.status_calls == 2
        assert poller.is_polling("ord-1") is False
        assert poller.active_orders == []

    @pytest.mark.asyncio
    async def test_stops_on_failure(self):
        bridge = FakeBridge(statuses=[{"status": "refunded"}])
        poller = SwapOrderPoller(bridge, poll_interval_ms=5, retry_engine=_no_retry())

        await poller.initiate(PARAMS)
        final = await asyncio.wait_for(poller.wait("ord-1"), timeout=2)
        await asyncio.sleep(0.03)

        assert final.status == SwapOrderStatus.FAILED
        assert bridge.status_calls == 1

    @pytest.mark.asyncio
    async def test_poll_error_skips_tick(self):
        bridge = FakeBridge(statuses=[ConnectionError("connection reset"), {"status": "completed"}])
        poller = SwapOrderPoller(bridge, poll_interval_ms=5, retry_engine=_no_retry())

        await poller.initiate(PARAMS)
        final = await asyncio.wait_for(poller.wait("ord-1"), timeout=2)

        assert final.status == SwapOrderStatus.COMPLETED
        assert bridge.status_calls == 2

    @pytest.mark.asyncio
    async def test_payload_without_status_keeps_current_status(self):
        bridge = FakeBridge(statuses=[
            {"status": "processing"},
            {"sourceTxHash": "0xsrc"},
            {"status": "completed"},
        ])
        updates = []
        poller = SwapOrderPoller(
            bridge,
            poll_interval_ms=5,
            retry_engine=_no_retry(),
            on_update=lambda order: updates.append(order.status),
        )

        await poller.initiate(PARAMS)
        final = await asyncio.wait_for(poller.wait("ord-1"), timeout=2)

        assert updates == [
            SwapOrderStatus.PROCESSING,
            SwapOrderStatus.PROCESSING,
            SwapOrderStatus.COMPLETED,
        ]
        assert final.source_tx_ref == "0xsrc"

    @pytest.mark.asyncio
    async def test_default_interval_from_settings(self):
        poller = SwapOrderPoller(FakeBridge())
        assert poller.poll_interval_ms == 5000

    @pytest.mark.asyncio
    async def test_async_update_callback(self):
        bridge = FakeBridge(statuses=[{"status": "completed"}])
        seen = []

        async def on_update(order):
            seen.append(order.order_id)

        poller = SwapOrderPoller(bridge, poll_interval_ms=5, retry_engine=_no_retry(), on_update=on_update)
        await poller.initiate(PARAMS)
        await asyncio.wait_for(poller.wait("ord-1"), timeout=2)

        assert seen == ["ord-1"]


# =============================================================================
# Initiation and cancellation
# =============================================================================

class TestInitiateAndCancel:

    @pytest.mark.asyncio
    async def test_initiate_failure_is_classified(self):
        sink = RingBufferTelemetrySink(capacity=5)
        poller = SwapOrderPoller(
            FakeBridge(initiate_error=ConnectionError("connection refused")),
            telemetry=sink,
        )

        with pytest.raises(ClassifiedError) as exc_info:
            await poller.initiate(PARAMS)

        assert exc_info.value.kind == ErrorKind.NETWORK_ERROR
        assert len(sink) == 1

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self):
        bridge = FakeBridge()
        poller = SwapOrderPoller(bridge, poll_interval_ms=5, retry_engine=_no_retry())

        await poller.initiate(PARAMS)
        await asyncio.sleep(0.02)
        order = await poller.cancel("ord-1")
        calls_at_cancel = bridge.status_calls
        await asyncio.sleep(0.03)

        assert order.status == SwapOrderStatus.CANCELLED
        assert bridge.cancel_calls == ["ord-1"]
        assert poller.is_polling("ord-1") is False
        assert bridge.status_calls == calls_at_cancel
        assert poller.get_order("ord-1").status == SwapOrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_survives_remote_failure(self):
        sink = RingBufferTelemetrySink(capacity=5)
        bridge = FakeBridge(cancel_error=httpx.ConnectError("connect failed"))
        poller = SwapOrderPoller(bridge, poll_interval_ms=1000, telemetry=sink)

        await poller.initiate(PARAMS)
        order = await poller.cancel("ord-1")

        assert order.status == SwapOrderStatus.CANCELLED
        assert sink.entries()[-1].kind == "network_error"

    @pytest.mark.asyncio
    async def test_cancel_terminal_order_is_noop(self):
        bridge = FakeBridge(statuses=[{"status": "completed"}])
        poller = SwapOrderPoller(bridge, poll_interval_ms=5, retry_engine=_no_retry())

        await poller.initiate(PARAMS)
        await asyncio.wait_for(poller.wait("ord-1"), timeout=2)
        order = await poller.cancel("ord-1")

        assert order.status == SwapOrderStatus.COMPLETED
        assert bridge.cancel_calls == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_order(self):
        poller = SwapOrderPoller(FakeBridge())

        with pytest.raises(KeyError):
            await poller.cancel("missing")

    @pytest.mark.asyncio
    async def test_close_stops_all_loops(self):
        poller = SwapOrderPoller(FakeBridge(), poll_interval_ms=5, retry_engine=_no_retry())

        await poller.initiate(PARAMS)
        await poller.close()

        assert poller.is_polling("ord-1") is False
