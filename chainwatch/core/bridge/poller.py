"""
Swap Order Poller

Starts cross-chain orders on the bridging service and follows each one until
it completes, fails or is cancelled.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

import structlog

from ...config import settings
from ...telemetry.sink import TelemetrySink, record_error
from ..recovery.errors import ClassifiedError, classify
from ..recovery.retry import RetryEngine, RetryPolicy
from ..scheduler import Scheduler, default_scheduler
from .models import SwapOrder, SwapOrderStatus, normalize_order_status

if TYPE_CHECKING:  # pragma: no cover
    from ..interfaces import BridgeService

_slog = structlog.stdlib.get_logger("chainwatch.bridge")

OrderCallback = Callable[[SwapOrder], Any]


class SwapOrderPoller:
    """Polls the bridging service for the status of every order it started."""

    def __init__(
        self,
        bridge: BridgeService,
        *,
        retry_engine: Optional[RetryEngine] = None,
        scheduler: Optional[Scheduler] = None,
        poll_interval_ms: Optional[float] = None,
        on_update: Optional[OrderCallback] = None,
        telemetry: Optional[TelemetrySink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.bridge = bridge
        self.scheduler = scheduler or default_scheduler
        self.telemetry = telemetry
        self.logger = logger or logging.getLogger(__name__)
        self.poll_interval_ms = poll_interval_ms or settings.swap_poll_interval_ms
        self.retry_engine = retry_engine or RetryEngine(
            policy=RetryPolicy(
                max_retries=settings.retry_attempts,
                base_delay_ms=settings.retry_base_delay_ms,
                max_delay_ms=settings.retry_max_delay_ms,
            ),
            scheduler=self.scheduler,
            telemetry=telemetry,
            logger=self.logger,
        )
        self.on_update = on_update

        self._orders: Dict[str, SwapOrder] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Optional[SwapOrder]:
        order = self._orders.get(order_id)
        return dataclasses.replace(order) if order else None

    @property
    def active_orders(self) -> List[SwapOrder]:
        return [dataclasses.replace(o) for o in self._orders.values() if not o.is_terminal]

    def is_polling(self, order_id: str) -> bool:
        task = self._tasks.get(order_id)
        return task is not None and not task.done()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def initiate(self, params: Dict[str, Any]) -> SwapOrder:
        """Create an order and start following it.

        Raises:
            ClassifiedError: If the bridging service rejects the request
        """
        try:
            payload = await self.bridge.initiate_order(params)
        except ClassifiedError as error:
            record_error(self.telemetry, error, None)
            raise
        except Exception as exc:
            error = classify(exc)
            record_error(self.telemetry, error, exc)
            raise error from exc

        order = SwapOrder.from_payload(payload)
        order.poll_interval_ms = self.poll_interval_ms
        self._orders[order.order_id] = order

        _slog.info(
            "swap_order_initiated",
            order_id=order.order_id,
            source_chain_id=order.source_chain_id,
            dest_chain_id=order.dest_chain_id,
            status=order.status.value,
        )

        if not order.is_terminal:
            self._tasks[order.order_id] = self.scheduler.spawn(
                self._poll_loop(order.order_id),
                name=f"swap-order-{order.order_id}",
            )
        return dataclasses.replace(order)

    async def cancel(self, order_id: str) -> SwapOrder:
        """Stop polling and mark the order cancelled, whatever the remote says."""
        order = self._orders.get(order_id)
        if order is None:
            raise KeyError(f"Unknown swap order {order_id}")

        self._stop(order_id)
        if order.is_terminal:
            return dataclasses.replace(order)

        order.status = SwapOrderStatus.CANCELLED
        order.updated_at = datetime.now(timezone.utc)
        _slog.info("swap_order_cancelled", order_id=order_id)

        try:
            await self.bridge.cancel_order(order_id)
        except Exception as exc:
            error = classify(exc)
            record_error(self.telemetry, error, exc)
            self.logger.warning(
                "Remote cancel for swap order %s failed: %s",
                order_id,
                error.raw_message,
            )

        await self._notify(order)
        return dataclasses.replace(order)

    async def wait(self, order_id: str) -> Optional[SwapOrder]:
        """Wait for the polling loop of an order to finish."""
        task = self._tasks.get(order_id)
        if task is not None:
            await asyncio.wait({task})
        return self.get_order(order_id)

    async def close(self) -> None:
        """Stop every polling loop."""
        tasks = list(self._tasks.values())
        for order_id in list(self._tasks):
            self._stop(order_id)
        if tasks:
            await asyncio.wait(tasks)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stop(self, order_id: str) -> None:
        task = self._tasks.pop(order_id, None)
        self.scheduler.cancel_task(task)

    async def _poll_loop(self, order_id: str) -> None:
        while True:
            await self.scheduler.sleep(self.poll_interval_ms)
            order = self._orders.get(order_id)
            if order is None or order.is_terminal:
                return

            try:
                payload = await self.retry_engine.execute(
                    lambda: self.bridge.get_order_status(order_id)
                )
            except ClassifiedError as error:
                self.logger.warning(
                    "Swap order %s status poll failed: %s",
                    order_id,
                    error.raw_message,
                    exc_info=True,
                )
                continue

            if order.is_terminal:
                # Cancelled while the request was in flight
                return

            self._apply(order, payload)
            await self._notify(order)

            if order.is_terminal:
                _slog.info(
                    "swap_order_finished",
                    order_id=order_id,
                    status=order.status.value,
                )
                self._tasks.pop(order_id, None)
                return

    def _apply(self, order: SwapOrder, payload: Any) -> None:
        if isinstance(payload, SwapOrder):
            order.status = payload.status
            order.source_tx_ref = payload.source_tx_ref or order.source_tx_ref
            order.dest_tx_ref = payload.dest_tx_ref or order.dest_tx_ref
        elif isinstance(payload, Mapping):
            body = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
            if body.get("status") is not None:
                order.status = normalize_order_status(body.get("status"))
            order.source_tx_ref = body.get("sourceTxHash") or order.source_tx_ref
            order.dest_tx_ref = body.get("destTxHash") or order.dest_tx_ref
            order.raw = dict(payload)
        else:
            order.status = normalize_order_status(payload)
        order.updated_at = datetime.now(timezone.utc)

    async def _notify(self, order: SwapOrder) -> None:
        if self.on_update is None:
            return
        try:
            result = self.on_update(dataclasses.replace(order))
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            self.logger.warning("Swap order callback failed: %s", exc, exc_info=True)
