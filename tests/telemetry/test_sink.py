"""Tests for the in-memory telemetry sink."""

from unittest.mock import MagicMock

from chainwatch.core.recovery import ClassifiedError, ErrorKind, ErrorSeverity
from chainwatch.telemetry import NullTelemetrySink, RingBufferTelemetrySink, record_error


def _error(kind=ErrorKind.NETWORK_ERROR, chain_id=1) -> ClassifiedError:
    return ClassifiedError(kind, f"{kind.value} happened", chain_id=chain_id)


class TestRingBufferTelemetrySink:

    def test_drops_oldest_when_full(self):
        sink = RingBufferTelemetrySink(capacity=3)
        for chain_id in range(5):
            sink.record(_error(chain_id=chain_id))

        assert len(sink) == 3
        assert [r.chain_id for r in sink.entries()] == [2, 3, 4]

    def test_entries_limit(self):
        sink = RingBufferTelemetrySink(capacity=10)
        for chain_id in range(4):
            sink.record(_error(chain_id=chain_id))

        assert [r.chain_id for r in sink.entries(limit=2)] == [2, 3]
        assert sink.entries(limit=0) == []

    def test_record_fields(self):
        sink = RingBufferTelemetrySink(capacity=2)
        sink.record(_error(ErrorKind.EXECUTION_REVERTED), ValueError("reverted"))

        entry = sink.entries()[0]
        assert entry.kind == "execution_reverted"
        assert entry.severity == ErrorSeverity.CRITICAL.value
        assert entry.raw_type == "ValueError"
        assert entry.to_dict()["errorType"] == "execution_reverted"

    def test_stats(self):
        sink = RingBufferTelemetrySink(capacity=10)
        sink.record(_error(ErrorKind.NETWORK_ERROR, chain_id=1))
        sink.record(_error(ErrorKind.NETWORK_ERROR, chain_id=8453))
        sink.record(_error(ErrorKind.USER_REJECTED, chain_id=1))

        stats = sink.stats()
        assert stats["total"] == 3
        assert stats["byKind"] == {"network_error": 2, "user_rejected": 1}
        assert stats["bySeverity"] == {"high": 2, "low": 1}
        assert stats["byChain"] == {1: 2, 8453: 1}

    def test_clear(self):
        sink = RingBufferTelemetrySink(capacity=2)
        sink.record(_error())
        sink.clear()

        assert len(sink) == 0

    def test_default_capacity_from_settings(self):
        assert RingBufferTelemetrySink().capacity == 50


class TestRecordError:

    def test_none_sink_is_ignored(self):
        record_error(None, _error())

    def test_null_sink(self):
        record_error(NullTelemetrySink(), _error())

    def test_failing_sink_does_not_raise(self):
        sink = MagicMock()
        sink.record.side_effect = RuntimeError("disk full")

        record_error(sink, _error(), None)

        sink.record.assert_called_once()
