"""
Transaction State Machine

Tracks one submitted transfer until it is confirmed, fails or runs out of
time. AccountBased chains are observed through a receipt collaborator;
every other chain type is polled. The timeout deadline runs on its own task
so a stalled collaborator can never stretch the tracked lifetime.
"""

import asyncio
import dataclasses
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from ..chains import ChainProfile, error_message
from ..confirmation import estimate_confirmations, track
from ..interfaces import ReceiptResult, ReceiptWaiter, StatusPoller, TransactionStatusResult
from ..recovery.errors import ClassifiedError, ErrorKind, ErrorSeverity
from ..recovery.retry import RetryEngine
from ..scheduler import Scheduler, default_scheduler
from ...config import settings
from ...telemetry.sink import TelemetrySink, record_error
from .models import (
    TERMINAL_STATUSES,
    InvalidTransitionError,
    StateTransition,
    TrackedTransaction,
    TransactionStatus,
    TransitionTrigger,
)


# Terminal callbacks receive a snapshot; they may be plain functions or coroutines
TerminalCallback = Callable[[TrackedTransaction], Any]
TransitionCallback = Callable[[StateTransition, TrackedTransaction], Any]


class TransactionStateMachine:
    """
    Drives a TrackedTransaction through its lifecycle.

    Features:
    - Validates transitions against an allowed transition map
    - Push (receipt) or pull (polling) observation chosen from the chain type
    - Independent wall-clock timeout armed on entry to PENDING
    - Exactly one terminal callback per terminal transition
    - Explicit cancel() and reset()
    """

    TRANSITIONS: Dict[TransactionStatus, Set[TransactionStatus]] = {
        TransactionStatus.PENDING: {
            TransactionStatus.CONFIRMING,
            TransactionStatus.CONFIRMED,
            TransactionStatus.FAILED,
            TransactionStatus.TIMED_OUT,
        },
        TransactionStatus.CONFIRMING: {
            TransactionStatus.CONFIRMED,
            TransactionStatus.FAILED,
            TransactionStatus.TIMED_OUT,
        },
        TransactionStatus.CONFIRMED: set(),
        TransactionStatus.FAILED: set(),
        TransactionStatus.TIMED_OUT: set(),
    }

    def __init__(
        self,
        profile: ChainProfile,
        *,
        receipt_waiter: Optional[ReceiptWaiter] = None,
        status_poller: Optional[StatusPoller] = None,
        scheduler: Optional[Scheduler] = None,
        telemetry: Optional[TelemetrySink] = None,
        retry_engine: Optional[RetryEngine] = None,
        on_confirmed: Optional[TerminalCallback] = None,
        on_failed: Optional[TerminalCallback] = None,
        on_timeout: Optional[TerminalCallback] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            profile: Chain the transaction lives on
            receipt_waiter: Required for AccountBased chains
            status_poller: Required for every other chain type
            scheduler: Clock and task spawner
            telemetry: Sink for classified errors
            retry_engine: Defaults to one built from the profile's timeout profile
            on_confirmed / on_failed / on_timeout: Terminal callbacks
            logger: Optional logger
        """
        if profile.uses_push_receipts and receipt_waiter is None:
            raise ValueError(f"{profile.chain_name} needs a receipt waiter")
        if not profile.uses_push_receipts and status_poller is None:
            raise ValueError(f"{profile.chain_name} needs a status poller")

        self.profile = profile
        self.receipt_waiter = receipt_waiter
        self.status_poller = status_poller
        self.scheduler = scheduler or default_scheduler
        self.telemetry = telemetry
        self.logger = logger or logging.getLogger(__name__)
        self.retry_engine = retry_engine or RetryEngine.from_profile(
            profile,
            scheduler=self.scheduler,
            telemetry=telemetry,
            logger=self.logger,
        )

        self._callbacks: Dict[TransactionStatus, Optional[TerminalCallback]] = {
            TransactionStatus.CONFIRMED: on_confirmed,
            TransactionStatus.FAILED: on_failed,
            TransactionStatus.TIMED_OUT: on_timeout,
        }
        self._transition_callbacks: List[TransitionCallback] = []

        self._tx: Optional[TrackedTransaction] = None
        self._history: List[StateTransition] = []
        self._stopped = False
        self._done: Optional[asyncio.Event] = None

        self._timeout_task: Optional[asyncio.Task] = None
        self._observer_task: Optional[asyncio.Task] = None
        self._estimator_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Optional[TrackedTransaction]:
        """Copy of the tracked transaction, or None before submit()."""
        return dataclasses.replace(self._tx) if self._tx else None

    @property
    def status(self) -> Optional[TransactionStatus]:
        return self._tx.status if self._tx else None

    @property
    def is_terminal(self) -> bool:
        return bool(self._tx and self._tx.is_terminal)

    @property
    def is_cancelled(self) -> bool:
        return self._stopped

    @property
    def history(self) -> List[StateTransition]:
        return list(self._history)

    @property
    def poll_interval_ms(self) -> float:
        return max(self.profile.block_time_ms, settings.min_poll_interval_ms)

    def register_transition_callback(self, callback: TransitionCallback) -> None:
        """Register a callback to be called on any transition."""
        self._transition_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def submit(self, reference: str) -> TrackedTransaction:
        """Start tracking `reference`."""
        if self._tx is not None:
            raise InvalidTransitionError(
                from_state=self._tx.status,
                to_state=TransactionStatus.PENDING,
                message="A transaction is already being tracked; reset() first",
            )
        self._start(reference, TransitionTrigger.SUBMIT, None)
        return self.snapshot

    async def poll(self) -> Optional[TransactionStatusResult]:
        """Run one status poll. Returns None when nothing was applied."""
        tx = self._tx
        if tx is None or tx.is_terminal or self._stopped or self.status_poller is None:
            return None

        try:
            payload = await self.retry_engine.execute(
                lambda: self.status_poller.get_transaction_status(tx.reference)
            )
        except ClassifiedError as error:
            if not self._is_live(tx):
                return None
            tx.last_error = error
            if error.severity == ErrorSeverity.CRITICAL:
                await self._fail(tx, error, TransitionTrigger.POLL)
            else:
                self.logger.warning(
                    f"Status poll for {tx.reference} failed ({error.kind.value}); "
                    f"retrying on next tick"
                )
            return None

        if not self._is_live(tx):
            return None

        result = TransactionStatusResult.from_payload(payload)
        await self._apply_status(tx, result)
        return result

    def cancel(self) -> None:
        """Stop tracking. Timers are cleared before this returns."""
        if self._tx is None or self._stopped:
            return
        self._stopped = True
        self._cancel_timeout()
        self._cancel_observers()
        if self._done is not None:
            self._done.set()
        self.logger.info(f"Transaction {self._tx.reference}: tracking cancelled")

    async def reset(self) -> TrackedTransaction:
        """Clear derived fields and start again from PENDING."""
        tx = self._tx
        if tx is None:
            raise InvalidTransitionError(
                from_state=TransactionStatus.PENDING,
                to_state=TransactionStatus.PENDING,
                message="Nothing to reset; submit() first",
            )
        if not (tx.is_terminal or self._stopped):
            raise InvalidTransitionError(
                from_state=tx.status,
                to_state=TransactionStatus.PENDING,
                message="Can only reset from terminal states",
            )

        self._cancel_timeout()
        self._cancel_observers()
        self._start(tx.reference, TransitionTrigger.RESET, tx.status)
        return self.snapshot

    async def wait_until_terminal(self) -> TrackedTransaction:
        """Block until a terminal state is reached or tracking is cancelled."""
        if self._done is None:
            raise InvalidTransitionError(
                from_state=TransactionStatus.PENDING,
                to_state=TransactionStatus.PENDING,
                message="Nothing is being tracked; submit() first",
            )
        await self._done.wait()
        return self.snapshot

    # ------------------------------------------------------------------
    # Lifecycle internals
    # ------------------------------------------------------------------

    def _start(
        self,
        reference: str,
        trigger: TransitionTrigger,
        previous: Optional[TransactionStatus],
    ) -> None:
        tx = TrackedTransaction(
            reference=reference,
            chain_id=self.profile.chain_id,
            required_confirmations=self.profile.confirmations_required,
            started_at=self.scheduler.now_ms(),
        )
        self._set_confirmations(tx, 0)
        self._tx = tx
        self._stopped = False
        self._done = asyncio.Event()

        self._history.append(
            StateTransition(
                from_state=previous or TransactionStatus.PENDING,
                to_state=TransactionStatus.PENDING,
                trigger=trigger,
                reason="Tracking started" if previous is None else f"Reset from {previous.value}",
            )
        )

        self._arm_timeout(tx)
        if self.profile.uses_push_receipts:
            self._observer_task = self.scheduler.spawn(self._await_receipt(tx))
            self._estimator_task = self.scheduler.spawn(self._estimate_progress(tx))
        else:
            self._observer_task = self.scheduler.spawn(self._poll_loop(tx))

        self.logger.info(
            f"Transaction {reference}: tracking on {self.profile.chain_name} "
            f"({'receipt' if self.profile.uses_push_receipts else 'polling'})"
        )

    def _is_live(self, tx: TrackedTransaction) -> bool:
        return tx is self._tx and not self._stopped and not tx.is_terminal

    def _arm_timeout(self, tx: TrackedTransaction) -> None:
        self._cancel_timeout()
        self._timeout_task = self.scheduler.spawn(self._expire(tx))

    def _cancel_timeout(self) -> None:
        self.scheduler.cancel_task(self._timeout_task)
        self._timeout_task = None

    def _cancel_observers(self) -> None:
        self.scheduler.cancel_task(self._observer_task)
        self.scheduler.cancel_task(self._estimator_task)
        self._observer_task = None
        self._estimator_task = None

    async def _expire(self, tx: TrackedTransaction) -> None:
        limit = self.profile.timeout_profile.transaction_timeout_ms
        remaining = tx.started_at + limit - self.scheduler.now_ms()
        await self.scheduler.sleep(remaining)
        if not self._is_live(tx):
            return

        error = ClassifiedError(
            ErrorKind.TIMEOUT,
            error_message(self.profile.chain_name, ErrorKind.TIMEOUT),
            chain_id=self.profile.chain_id,
            raw_message=f"Transaction {tx.reference} not final after {limit}ms",
        )
        record_error(self.telemetry, error, None)
        tx.last_error = error
        await self._transition(tx, TransactionStatus.TIMED_OUT, TransitionTrigger.TIMEOUT, error=error)

    async def _await_receipt(self, tx: TrackedTransaction) -> None:
        while True:
            try:
                payload = await self.retry_engine.execute(
                    lambda: self.receipt_waiter.wait_for_receipt(tx.reference, tx.chain_id)
                )
                break
            except ClassifiedError as error:
                if not self._is_live(tx):
                    return
                tx.last_error = error
                if not error.retryable or error.severity == ErrorSeverity.CRITICAL:
                    await self._fail(tx, error, TransitionTrigger.RECEIPT)
                    return
                # Transient; the deadline task bounds how long we keep waiting
                self.logger.warning(
                    f"Receipt wait for {tx.reference} failed ({error.kind.value}); waiting again"
                )
                await self.scheduler.sleep(self.poll_interval_ms)
                if not self._is_live(tx):
                    return

        if not self._is_live(tx):
            return

        receipt = ReceiptResult.from_payload(payload)
        if receipt.block_ref:
            tx.block_ref = receipt.block_ref

        if receipt.success:
            self._set_confirmations(tx, tx.required_confirmations)
            await self._transition(
                tx,
                TransactionStatus.CONFIRMED,
                TransitionTrigger.RECEIPT,
                reason="Receipt reported success",
            )
            return

        kind = ErrorKind.EXECUTION_REVERTED if receipt.reverted else ErrorKind.TRANSACTION_FAILED
        error = self._outcome_error(
            kind,
            receipt.revert_reason or ("Transaction reverted" if receipt.reverted else "Transaction failed"),
            receipt.revert_reason,
        )
        await self._fail(tx, error, TransitionTrigger.RECEIPT)

    async def _estimate_progress(self, tx: TrackedTransaction) -> None:
        # Display only; the receipt decides the outcome
        interval = max(self.profile.block_time_ms, 1)
        while True:
            await self.scheduler.sleep(interval)
            if not self._is_live(tx):
                return
            estimate = estimate_confirmations(self.profile, self.scheduler.now_ms() - tx.started_at)
            if estimate > tx.confirmations:
                self._set_confirmations(tx, estimate)
                if tx.status == TransactionStatus.PENDING:
                    await self._transition(tx, TransactionStatus.CONFIRMING, TransitionTrigger.ESTIMATE)

    async def _poll_loop(self, tx: TrackedTransaction) -> None:
        interval = self.poll_interval_ms
        while self._is_live(tx):
            await self.poll()
            if not self._is_live(tx):
                return
            await self.scheduler.sleep(interval)

    async def _apply_status(self, tx: TrackedTransaction, result: TransactionStatusResult) -> None:
        required = tx.required_confirmations
        if result.block_ref:
            tx.block_ref = result.block_ref

        if result.is_confirmed:
            reported = result.confirmations if result.confirmations > 0 else required
            self._set_confirmations(tx, reported)
            await self._transition(
                tx,
                TransactionStatus.CONFIRMED,
                TransitionTrigger.POLL,
                reason="Remote reported confirmed",
            )
        elif result.is_failed:
            self._set_confirmations(tx, result.confirmations)
            error = self._outcome_error(
                ErrorKind.TRANSACTION_FAILED,
                result.error or "Transaction failed",
            )
            await self._fail(tx, error, TransitionTrigger.POLL)
        elif result.confirmations > 0:
            self._set_confirmations(tx, result.confirmations)
            if tx.status == TransactionStatus.PENDING:
                await self._transition(tx, TransactionStatus.CONFIRMING, TransitionTrigger.POLL)

    def _set_confirmations(self, tx: TrackedTransaction, confirmations: int) -> None:
        value = min(max(confirmations, tx.confirmations, 0), tx.required_confirmations)
        progress = track(self.profile, value)
        tx.confirmations = value
        tx.progress_percent = progress.progress_percent
        tx.estimated_time_remaining_ms = progress.estimated_time_remaining_ms

    def _outcome_error(
        self,
        kind: ErrorKind,
        raw_message: str,
        revert_reason: Optional[str] = None,
    ) -> ClassifiedError:
        message = error_message(self.profile.chain_name, kind)
        if revert_reason:
            message = f"{message} Reason: {revert_reason}"
        error = ClassifiedError(
            kind,
            message,
            chain_id=self.profile.chain_id,
            raw_message=raw_message,
            revert_reason=revert_reason,
        )
        record_error(self.telemetry, error, None)
        return error

    async def _fail(
        self,
        tx: TrackedTransaction,
        error: ClassifiedError,
        trigger: TransitionTrigger,
    ) -> None:
        tx.last_error = error
        await self._transition(
            tx,
            TransactionStatus.FAILED,
            trigger,
            reason=error.raw_message,
            error=error,
        )

    async def _transition(
        self,
        tx: TrackedTransaction,
        to_state: TransactionStatus,
        trigger: TransitionTrigger,
        reason: Optional[str] = None,
        error: Optional[ClassifiedError] = None,
    ) -> Optional[StateTransition]:
        """
        Move `tx` to `to_state`.

        State is updated before any await so a concurrent timer or poll sees
        the new status immediately.

        Raises:
            InvalidTransitionError: If transition is not allowed
        """
        if tx is not self._tx or self._stopped:
            return None

        from_state = tx.status
        if from_state in TERMINAL_STATUSES and to_state == TransactionStatus.TIMED_OUT:
            return None
        if to_state not in self.TRANSITIONS.get(from_state, set()):
            raise InvalidTransitionError(
                from_state=from_state,
                to_state=to_state,
                message=f"Invalid transition from {from_state.value} to {to_state.value}. "
                        f"Allowed: {[s.value for s in self.TRANSITIONS.get(from_state, set())]}",
            )

        tx.status = to_state
        transition = StateTransition(
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            reason=reason,
            error_kind=error.kind.value if error else None,
        )
        self._history.append(transition)

        terminal = to_state in TERMINAL_STATUSES
        if terminal:
            tx.completed_at = self.scheduler.now_ms()
            self._cancel_timeout()
            self._cancel_observers()

        self.logger.info(
            f"Transaction {tx.reference}: {from_state.value} -> {to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )

        done = self._done
        snapshot = dataclasses.replace(tx)
        for callback in self._transition_callbacks:
            await self._invoke(callback, transition, snapshot)

        if terminal:
            callback = self._callbacks.get(to_state)
            # cancel() or reset() during the transition callbacks silences the terminal one
            if callback is not None and tx is self._tx and not self._stopped:
                await self._invoke(callback, snapshot)
            done.set()

        return transition

    async def _invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error(f"Transaction callback error: {e}", exc_info=True)
