"""Status-poll client for chains whose transactions are followed by polling."""

from __future__ import annotations

from typing import Dict, Optional

import httpx

from ..config import settings
from ..core.interfaces import TransactionStatusResult


class TransactionStatusClient:
    """Reads transaction status from the API's DEX transaction endpoint."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        path_template: str = "/api/v1/tron/dex/transaction/{reference}",
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.bridge_api_base_url).rstrip("/")
        self.path_template = path_template
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {"accept": "application/json", "user-agent": "chainwatch/0.1"}

    async def get_transaction_status(self, reference: str) -> TransactionStatusResult:
        path = self.path_template.format(reference=reference)
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
        ) as client:
            response = await client.get(path, headers=self._headers())
            response.raise_for_status()
            body = response.json()
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        return TransactionStatusResult.from_payload(body)
