"""
Retry Engine

Single bounded exponential-backoff executor used by every component that
talks to a remote collaborator. Retry decisions default to the error
classifier so only transient failures are retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Optional, TypeVar

from ...config import settings
from ...telemetry.sink import TelemetrySink, record_error
from ..chains import ChainProfile, error_message
from ..scheduler import CancellationToken, Scheduler, default_scheduler
from .errors import ClassifiedError, ErrorKind, classify

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
ShouldRetry = Callable[[Exception], bool]
OnRetry = Callable[[int, ClassifiedError, float], None]


def compute_backoff_delay(
    attempt: int,
    base_delay_ms: float = 1000,
    max_delay_ms: float = 30000,
) -> float:
    """Delay before retry number `attempt` (0-indexed): min(base * 2^n, max)."""
    attempt = max(attempt, 0)
    return min(base_delay_ms * (RetryPolicy.BACKOFF_MULTIPLIER ** attempt), max_delay_ms)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits. The backoff multiplier is fixed at 2."""

    max_retries: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 30000

    BACKOFF_MULTIPLIER: ClassVar[int] = 2

    def get_delay(self, attempt: int) -> float:
        return compute_backoff_delay(attempt, self.base_delay_ms, self.max_delay_ms)

    @property
    def max_attempts(self) -> int:
        return max(self.max_retries, 0) + 1

    @classmethod
    def from_profile(
        cls,
        profile: ChainProfile,
        max_delay_ms: Optional[float] = None,
    ) -> "RetryPolicy":
        timeouts = profile.timeout_profile
        return cls(
            max_retries=timeouts.retry_attempts,
            base_delay_ms=timeouts.retry_base_delay_ms,
            max_delay_ms=max_delay_ms if max_delay_ms is not None else settings.retry_max_delay_ms,
        )


def _discard_result(task: "asyncio.Task[Any]") -> None:
    # Nobody awaits an abandoned run; consume its outcome
    if not task.cancelled():
        task.exception()


class RetryEngine:
    """
    Executes async operations with bounded exponential backoff.

    Errors that should not be retried, and the last error once retries are
    exhausted, are raised as ClassifiedError chained to the raw error.
    """

    def __init__(
        self,
        profile: Optional[ChainProfile] = None,
        *,
        policy: Optional[RetryPolicy] = None,
        scheduler: Optional[Scheduler] = None,
        telemetry: Optional[TelemetrySink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.profile = profile
        self.policy = policy or (RetryPolicy.from_profile(profile) if profile else RetryPolicy())
        self.scheduler = scheduler or default_scheduler
        self.telemetry = telemetry
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_profile(cls, profile: ChainProfile, **kwargs: Any) -> "RetryEngine":
        return cls(profile, policy=RetryPolicy.from_profile(profile), **kwargs)

    def should_retry(self, error: Exception) -> bool:
        return classify(error, self.profile).retryable

    async def execute(
        self,
        operation: Operation[T],
        policy: Optional[RetryPolicy] = None,
        should_retry: Optional[ShouldRetry] = None,
        on_retry: Optional[OnRetry] = None,
        token: Optional[CancellationToken] = None,
    ) -> T:
        """
        Run `operation` until it succeeds or retrying stops.

        Args:
            operation: Zero-argument coroutine factory
            policy: Overrides the engine's default policy
            should_retry: Predicate on the raw error (default: classifier)
            on_retry: Called with (retry_number, error, delay_ms) before each backoff
            token: Stop signal; no new attempt starts once it is cancelled

        Raises:
            ClassifiedError: For the last error seen
        """
        policy = policy or self.policy
        decide = should_retry or self.should_retry
        attempt = 0

        while True:
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                classified = classify(exc, self.profile)
                record_error(self.telemetry, classified, exc)

                stopped = token is not None and token.cancelled
                if stopped or attempt >= policy.max_retries or not decide(exc):
                    if classified is exc:
                        raise
                    raise classified from exc

                delay = policy.get_delay(attempt)
                self.logger.warning(
                    f"Attempt {attempt + 1}/{policy.max_attempts} failed "
                    f"({classified.kind.value}): {classified.raw_message}. "
                    f"Retrying in {delay:.0f}ms"
                )
                if on_retry:
                    on_retry(attempt + 1, classified, delay)

                if token is not None:
                    if await token.wait(delay):
                        raise classified from exc
                else:
                    await self.scheduler.sleep(delay)
                attempt += 1

    async def execute_with_timeout(
        self,
        operation: Operation[T],
        timeout_ms: float,
        policy: Optional[RetryPolicy] = None,
        should_retry: Optional[ShouldRetry] = None,
        on_retry: Optional[OnRetry] = None,
    ) -> T:
        """
        Race the retrying operation against a wall-clock timer.

        When the timer wins a TIMEOUT ClassifiedError is raised. The attempt
        already in flight is left to finish on its own and its result is
        dropped; no further attempts are started.
        """
        token = CancellationToken()
        run = self.scheduler.spawn(
            self.execute(operation, policy, should_retry, on_retry, token=token)
        )
        timer = self.scheduler.spawn(self.scheduler.sleep(timeout_ms))

        try:
            await asyncio.wait({run, timer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            token.cancel()
            run.cancel()
            timer.cancel()
            raise

        if run.done():
            timer.cancel()
            return run.result()

        token.cancel()
        run.add_done_callback(_discard_result)

        raw_message = f"Operation timed out after {timeout_ms:g}ms"
        error = ClassifiedError(
            ErrorKind.TIMEOUT,
            error_message(self.profile.chain_name if self.profile else None, ErrorKind.TIMEOUT),
            chain_id=self.profile.chain_id if self.profile else None,
            raw_message=raw_message,
        )
        record_error(self.telemetry, error, None)
        self.logger.warning(raw_message)
        raise error
