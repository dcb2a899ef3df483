"""
Confirmation tracking.

Pure helpers that turn a confirmation count and a chain profile into
progress, an ETA and a status line. Nothing here keeps state, so callers may
invoke them on every tick.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .chains import ChainProfile


@dataclass(frozen=True)
class ConfirmationProgress:
    progress_percent: int
    estimated_time_remaining_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "progressPercent": self.progress_percent,
            "estimatedTimeRemainingMs": self.estimated_time_remaining_ms,
        }


@dataclass(frozen=True)
class ConfirmationStatus:
    message: str
    variant: str  # success | warning | info
    is_complete: bool
    remaining_confirmations: int = 0
    estimated_time_remaining_ms: float = 0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def progress_percent(confirmations: int, required: int) -> int:
    if required <= 0:
        return 100
    confirmations = max(confirmations, 0)
    return min(100, _round_half_up(confirmations / required * 100))


def track(profile: ChainProfile, confirmations: int) -> ConfirmationProgress:
    """Progress and remaining time for `confirmations` on a chain."""
    required = profile.confirmations_required
    confirmations = max(confirmations or 0, 0)
    remaining = max(0, required - confirmations)
    return ConfirmationProgress(
        progress_percent=progress_percent(confirmations, required),
        estimated_time_remaining_ms=remaining * profile.block_time_seconds * 1000,
    )


def estimate_confirmations(profile: ChainProfile, elapsed_ms: float) -> int:
    """Confirmations implied by elapsed time, for chains where we only wait on a receipt."""
    block_ms = profile.block_time_seconds * 1000
    if block_ms <= 0:
        return profile.confirmations_required
    estimate = int(max(elapsed_ms, 0) // block_ms)
    return min(estimate, profile.confirmations_required)


def total_confirmation_time_ms(profile: ChainProfile) -> float:
    return profile.confirmations_required * profile.block_time_seconds * 1000


def format_estimated_time(ms: Optional[float]) -> str:
    """Render a duration as "45s", "2m 5s" or "1h 10m"; zero is "Complete"."""
    if not ms or ms <= 0:
        return "Complete"

    seconds = ms / 1000
    if seconds < 60:
        return f"{math.ceil(seconds)}s"

    minutes = int(seconds // 60)
    remaining_seconds = seconds % 60
    if minutes < 60:
        if remaining_seconds > 0:
            return f"{minutes}m {math.ceil(remaining_seconds)}s"
        return f"{minutes}m"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m" if remaining_minutes else f"{hours}h"


def confirmation_status(profile: ChainProfile, confirmations: int) -> ConfirmationStatus:
    required = profile.confirmations_required
    chain = profile.chain_name or "this chain"

    if confirmations >= required:
        return ConfirmationStatus(
            message=f"Confirmed ({confirmations}/{required})",
            variant="success",
            is_complete=True,
        )

    if confirmations <= 0:
        return ConfirmationStatus(
            message=f"Waiting for confirmations on {chain} (0/{required})",
            variant="warning",
            is_complete=False,
            remaining_confirmations=required,
            estimated_time_remaining_ms=track(profile, 0).estimated_time_remaining_ms,
        )

    eta = track(profile, confirmations).estimated_time_remaining_ms
    return ConfirmationStatus(
        message=(
            f"Confirming on {chain} ({confirmations}/{required}) - "
            f"~{format_estimated_time(eta)} remaining"
        ),
        variant="info",
        is_complete=False,
        remaining_confirmations=required - confirmations,
        estimated_time_remaining_ms=eta,
    )
