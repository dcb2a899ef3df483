"""
Tests for the HTTP collaborators, using httpx.MockTransport.
"""

import json

import httpx
import pytest

from chainwatch.core.bridge import SwapOrderStatus
from chainwatch.core.recovery import ErrorKind, classify
from chainwatch.providers import BridgeServiceClient, TransactionStatusClient


BASE_URL = "https://bridge.test"


def _client(handler) -> BridgeServiceClient:
    return BridgeServiceClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


class TestBridgeServiceClient:

    @pytest.mark.asyncio
    async def test_initiate_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"swapId": "s-1", "status": "pending"})

        order = await _client(handler).initiate_order({"fromChainId": 1, "toChainId": 728126428, "amount": "5"})

        assert seen["method"] == "POST"
        assert seen["path"] == "/api/v1/swap/cross-chain"
        assert seen["body"]["amount"] == "5"
        assert order.order_id == "s-1"
        assert order.status == SwapOrderStatus.PENDING
        assert order.source_chain_id == 1
        assert order.dest_chain_id == 728126428

    @pytest.mark.asyncio
    async def test_get_order_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/swap/s-1/status"
            return httpx.Response(200, json={"status": "completed"})

        assert await _client(handler).get_order_status("s-1") == {"status": "completed"}

    @pytest.mark.asyncio
    async def test_cancel_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        await _client(handler).cancel_order("s-1")

        assert seen["path"] == "/api/v1/swap/cancel"
        assert seen["body"] == {"swapId": "s-1"}

    @pytest.mark.asyncio
    async def test_get_routes(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["fromChainId"] == "1"
            assert request.url.params["toChainId"] == "8453"
            return httpx.Response(200, json={"routes": [{"bridge": "relay"}]})

        assert await _client(handler).get_routes(1, 8453) == [{"bridge": "relay"}]

    @pytest.mark.asyncio
    async def test_server_error_classifies_as_network(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "unavailable"})

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await _client(handler).get_order_status("s-1")

        assert classify(exc_info.value).kind == ErrorKind.NETWORK_ERROR


class TestTransactionStatusClient:

    @pytest.mark.asyncio
    async def test_reads_wrapped_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/tron/dex/transaction/abc123"
            return httpx.Response(
                200,
                json={"data": {"status": "confirmed", "confirmations": 19, "blockNumber": 123}},
            )

        client = TransactionStatusClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        result = await client.get_transaction_status("abc123")

        assert result.is_confirmed is True
        assert result.confirmations == 19
        assert result.block_ref == "123"

    @pytest.mark.asyncio
    async def test_custom_path(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/status/xyz"
            return httpx.Response(200, json={"status": "failed", "error": "out of energy"})

        client = TransactionStatusClient(
            base_url=BASE_URL,
            path_template="/status/{reference}",
            transport=httpx.MockTransport(handler),
        )
        result = await client.get_transaction_status("xyz")

        assert result.is_failed is True
        assert result.error == "out of energy"
