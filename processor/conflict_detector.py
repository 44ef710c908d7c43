"""Read-time conflict annotation for pending staging records."""
import logging
from typing import List

from processor.errors import StoreError
from processor.models import ConfirmedReservation, StagingRecord, StagingReview

logger = logging.getLogger(__name__)


def intervals_overlap(existing_in, existing_out, candidate_in, candidate_out) -> bool:
    """Half-open overlap: a stay ending the day another begins does not conflict."""
    return existing_in < candidate_out and existing_out > candidate_in


class ConflictDetector:
    """Finds confirmed reservations that overlap a staged candidate."""

    def __init__(self, staging_store, reservation_store):
        self.staging_store = staging_store
        self.reservation_store = reservation_store

    def find_conflicts(self, record: StagingRecord) -> List[ConfirmedReservation]:
        candidates = self.reservation_store.find_overlapping(
            record.property_id, record.check_in, record.check_out
        )
        # The store may pre-filter loosely; the half-open test is authoritative.
        return [
            reservation for reservation in candidates
            if reservation.status == 'confirmed'
            and reservation.reservation_id != record.reservation_id
            and intervals_overlap(
                reservation.check_in, reservation.check_out,
                record.check_in, record.check_out
            )
        ]

    def list_pending_staging(self, property_id: str) -> List[StagingReview]:
        """
        List pending staging records for review, annotated with conflicts.

        A failed conflict lookup leaves that record unannotated rather than
        failing the listing.
        """
        pending = sorted(
            self.staging_store.list_pending(property_id),
            key=lambda record: (record.check_in, record.check_out)
        )
        reviews = []

        for record in pending:
            try:
                conflicts = self.find_conflicts(record)
            except StoreError as e:
                logger.error(
                    f"Conflict lookup failed for staging record {record.staging_id}: {e}"
                )
                conflicts = []

            if conflicts:
                logger.info(
                    f"Staging record {record.staging_id} overlaps "
                    f"{len(conflicts)} confirmed reservation(s)"
                )
            reviews.append(StagingReview(record=record, conflicts=conflicts))

        return reviews
