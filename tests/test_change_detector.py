"""Unit tests for ChangeDetector."""
import random
from datetime import date

from processor.change_detector import ChangeDetector


class TestFingerprint:
    """Test cases for the event-set fingerprint."""

    def test_order_independent(self, make_event):
        """Test that shuffling the events leaves the fingerprint unchanged."""
        events = [
            make_event(uid=f'uid-{i}', check_in=date(2025, 6, i + 1), check_out=date(2025, 6, i + 2))
            for i in range(10)
        ]
        expected = ChangeDetector.fingerprint(events)

        shuffled = list(events)
        random.Random(42).shuffle(shuffled)

        assert ChangeDetector.fingerprint(shuffled) == expected

    def test_date_change_changes_fingerprint(self, make_event):
        before = ChangeDetector.fingerprint([make_event()])
        after = ChangeDetector.fingerprint([make_event(check_out=date(2025, 6, 6))])
        assert before != after

    def test_summary_change_changes_fingerprint(self, make_event):
        before = ChangeDetector.fingerprint([make_event()])
        after = ChangeDetector.fingerprint([make_event(summary='Reserved - Kam S.')])
        assert before != after

    def test_empty_set_is_stable(self):
        assert ChangeDetector.fingerprint([]) == ChangeDetector.fingerprint([])


class TestChangeDetector:
    """Test cases for comparing against the stored fingerprint."""

    def test_first_sync_is_a_change(self, fingerprint_store, make_event):
        detector = ChangeDetector(fingerprint_store)
        fingerprint = detector.fingerprint([make_event()])
        assert detector.has_changed('prop-1', fingerprint) is True

    def test_record_then_unchanged(self, fingerprint_store, make_event):
        """Test that a recorded fingerprint suppresses the next identical pull."""
        detector = ChangeDetector(fingerprint_store, clock=lambda: 1700000000)
        fingerprint = detector.fingerprint([make_event()])

        stored = detector.record('prop-1', fingerprint, event_count=1)

        assert stored.computed_at == 1700000000
        assert fingerprint_store.get('prop-1').checksum == fingerprint
        assert fingerprint_store.get('prop-1').event_count == 1
        assert detector.has_changed('prop-1', fingerprint) is False
        assert detector.has_changed('prop-2', fingerprint) is True

    def test_record_overwrites(self, fingerprint_store):
        detector = ChangeDetector(fingerprint_store)
        detector.record('prop-1', 'aaa', 1)
        detector.record('prop-1', 'bbb', 2)
        assert fingerprint_store.get('prop-1').checksum == 'bbb'
        assert detector.has_changed('prop-1', 'aaa') is True
