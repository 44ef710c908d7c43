"""Checksum-based change detection for parsed feed events."""
import hashlib
import logging
import time
from typing import Callable, Iterable

from processor.models import ParsedEvent, SyncFingerprint

logger = logging.getLogger(__name__)


class ChangeDetector:
    """Fingerprints event sets and compares them with the last stored one."""

    def __init__(self, fingerprint_store, clock: Callable[[], float] = time.time):
        """
        Args:
            fingerprint_store: Store with get(property_id) and put(fingerprint)
            clock: Source of the current epoch time
        """
        self.fingerprint_store = fingerprint_store
        self.clock = clock

    @staticmethod
    def fingerprint(events: Iterable[ParsedEvent]) -> str:
        """
        Compute an order-independent SHA256 digest of an event set.

        Events are sorted by (uid, check_in, check_out, summary) before
        hashing, so a reordered feed yields the same fingerprint.

        Args:
            events: Parsed events, blocks included

        Returns:
            Hex digest
        """
        ordered = sorted(
            events,
            key=lambda e: (e.uid, e.check_in, e.check_out, e.summary, e.platform)
        )
        hash_obj = hashlib.sha256()
        for event in ordered:
            composite = '|'.join([
                event.uid,
                event.check_in.isoformat(),
                event.check_out.isoformat(),
                event.summary,
                event.platform,
                event.guest_name_hint or '',
                event.phone_last_four or '',
                'R' if event.is_reservation else 'B'
            ])
            hash_obj.update(composite.encode('utf-8'))
            hash_obj.update(b'\n')
        return hash_obj.hexdigest()

    def has_changed(self, property_id: str, fingerprint: str) -> bool:
        """Return True unless the stored fingerprint equals the new one."""
        stored = self.fingerprint_store.get(property_id)
        if stored is None:
            logger.info(f"No stored fingerprint for property {property_id}")
            return True
        return stored.checksum != fingerprint

    def record(self, property_id: str, fingerprint: str, event_count: int) -> SyncFingerprint:
        """Overwrite the stored fingerprint for a property."""
        stored = SyncFingerprint(
            property_id=property_id,
            checksum=fingerprint,
            computed_at=int(self.clock()),
            event_count=event_count
        )
        self.fingerprint_store.put(stored)
        return stored
