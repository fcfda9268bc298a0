"""
Tests for state.py — peer status tracking and the transfer ledger.
"""

import threading

import pytest

from lanshare.state import (
    Direction,
    Outcome,
    PeerStatusTracker,
    TransferLedger,
    TransferRecord,
)


class TestPeerStatusTracker:
    def test_offline_after_threshold(self):
        tracker = PeerStatusTracker(threshold=3)
        tracker.mark_online("10.0.0.2:5000")

        assert tracker.record_failure("10.0.0.2:5000") == (1, None)
        assert tracker.record_failure("10.0.0.2:5000") == (2, None)
        count, snapshot = tracker.record_failure("10.0.0.2:5000")

        assert count == 3
        assert snapshot == {"10.0.0.2:5000": False}
        assert tracker.is_online("10.0.0.2:5000") is False

    def test_success_resets_counter(self):
        tracker = PeerStatusTracker(threshold=3)
        for _ in range(3):
            tracker.record_failure("h:1")
        assert tracker.mark_online("h:1") == {"h:1": True}
        assert tracker.failures("h:1") == 0

        # Needs a full run of failures again to go offline
        tracker.record_failure("h:1")
        tracker.record_failure("h:1")
        assert tracker.is_online("h:1") is True

    def test_status_change_reported_once(self):
        tracker = PeerStatusTracker(threshold=1)
        assert tracker.record_failure("h:1")[1] == {"h:1": False}
        assert tracker.record_failure("h:1")[1] is None

    def test_endpoints_are_independent(self):
        tracker = PeerStatusTracker(threshold=2)
        tracker.record_failure("a:1")
        tracker.record_failure("b:1")
        assert tracker.snapshot() == {}
        tracker.record_failure("a:1")
        assert tracker.snapshot() == {"a:1": False}

    def test_snapshot_is_a_copy(self):
        tracker = PeerStatusTracker()
        snap = tracker.mark_online("h:1")
        snap["h:1"] = False
        assert tracker.is_online("h:1") is True


class TestTransferLedger:
    def test_append_returns_snapshot(self):
        ledger = TransferLedger()
        first = TransferRecord("a.txt", Direction.UPLOAD, Outcome.SUCCESS, "10.0.0.2")
        history = ledger.append(first)
        assert history == [first]
        history.clear()
        assert len(ledger) == 1

    def test_chronological_order(self):
        ledger = TransferLedger()
        records = [
            TransferRecord(f"f{i}", Direction.DOWNLOAD, Outcome.FAILED, "h:1")
            for i in range(5)
        ]
        for r in records:
            ledger.append(r)
        assert ledger.snapshot() == records

    def test_concurrent_appends(self):
        ledger = TransferLedger()

        def worker(n):
            for i in range(100):
                ledger.append(
                    TransferRecord(f"{n}-{i}", Direction.UPLOAD, Outcome.SUCCESS, "h")
                )

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(ledger) == 800

    def test_record_is_immutable_and_timestamped(self):
        record = TransferRecord("a.txt", Direction.UPLOAD, Outcome.SUCCESS, "h")
        assert len(record.timestamp) == len("2024-01-01 00:00:00")
        with pytest.raises(AttributeError):
            record.file_name = "b.txt"
        assert record.file_name == "a.txt"
        assert "UPLOAD" in str(record)
