"""Async client for the cross-chain swap endpoints of the bridging API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.bridge.models import SwapOrder


class BridgeServiceClient:
    """Thin wrapper around the /api/v1/swap endpoints."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.bridge_api_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": "chainwatch/0.1",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, json=json, params=params, headers=self._headers())
            response.raise_for_status()
            return response

    async def initiate_order(self, params: Dict[str, Any]) -> SwapOrder:
        """Create a cross-chain swap.

        `params` follows the bridging API schema (fromChainId, toChainId,
        tokenIn, tokenOut, amount, recipient, ...).
        """
        resp = await self._request("POST", "/api/v1/swap/cross-chain", json=params)
        order = SwapOrder.from_payload(resp.json())
        if order.source_chain_id is None:
            order.source_chain_id = params.get("fromChainId") or params.get("sourceChainId")
        if order.dest_chain_id is None:
            order.dest_chain_id = params.get("toChainId") or params.get("destChainId")
        return order

    async def get_order_status(self, order_id: str) -> Dict[str, Any]:
        resp = await self._request("GET", f"/api/v1/swap/{order_id}/status")
        return resp.json()

    async def cancel_order(self, order_id: str) -> Dict[str, Any]:
        resp = await self._request("POST", "/api/v1/swap/cancel", json={"swapId": order_id})
        return resp.json()

    async def get_routes(self, from_chain_id: int, to_chain_id: int) -> List[Dict[str, Any]]:
        resp = await self._request(
            "GET",
            "/api/v1/swap/routes",
            params={"fromChainId": from_chain_id, "toChainId": to_chain_id},
        )
        body = resp.json()
        if isinstance(body, dict):
            return body.get("routes") or body.get("data") or []
        return body

    async def estimate(self, params: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request("GET", "/api/v1/swap/estimate", params=params)
        return resp.json()
