"""Error telemetry."""

from .sink import (
    ErrorRecord,
    NullTelemetrySink,
    RingBufferTelemetrySink,
    TelemetrySink,
    record_error,
)

__all__ = [
    "ErrorRecord",
    "NullTelemetrySink",
    "RingBufferTelemetrySink",
    "TelemetrySink",
    "record_error",
]
