"""Confirm/reject workflow promoting staging records into reservations."""
import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from processor.errors import (
    ConditionalWriteError, ConflictOnConfirmError, DuplicateReservationError,
    StagingNotFoundError
)
from processor.models import (
    CommercialFields, ConfirmedReservation, StageStatus, StagingRecord
)

logger = logging.getLogger(__name__)

CONFIRM = 'confirm'
REJECT = 'reject'

# Fixed namespace so a staging record always maps to the same reservation id.
RESERVATION_NAMESPACE = uuid.UUID('6f1d2c1e-9a57-4a0e-9a3c-3d1b8f6e2a41')


def reservation_id_for(staging_id: str) -> str:
    return str(uuid.uuid5(RESERVATION_NAMESPACE, staging_id))


class PromotionWorkflow:
    """
    State machine for staging decisions.

    pending -> confirmed and pending -> rejected are the only legal moves.
    Confirm is idempotent: the reservation id is derived from the staging
    id and written with a conditional put, so retries and concurrent
    double-clicks converge on a single reservation.
    """

    def __init__(
        self,
        staging_store,
        reservation_store,
        guest_store=None,
        clock: Callable[[], float] = time.time
    ):
        self.staging_store = staging_store
        self.reservation_store = reservation_store
        self.guest_store = guest_store
        self.clock = clock

    def decide(
        self,
        staging_id: str,
        action: str,
        commercial: Optional[CommercialFields] = None
    ) -> Union[StagingRecord, ConfirmedReservation]:
        """
        Apply a reviewer decision.

        Raises:
            ValueError: If the action is not 'confirm' or 'reject'
        """
        if action == CONFIRM:
            return self.confirm(staging_id, commercial or CommercialFields())
        if action == REJECT:
            return self.reject(staging_id)
        raise ValueError(f"Unknown staging action: {action!r}")

    def reject(self, staging_id: str) -> StagingRecord:
        record = self._load(staging_id)

        if record.stage_status == StageStatus.REJECTED:
            return record
        if record.stage_status != StageStatus.PENDING:
            raise ConflictOnConfirmError(staging_id, record.stage_status, REJECT)

        try:
            self.staging_store.mark_rejected(staging_id, int(self.clock()))
        except ConditionalWriteError:
            current = self._load(staging_id)
            if current.stage_status == StageStatus.REJECTED:
                return current
            raise ConflictOnConfirmError(staging_id, current.stage_status, REJECT)

        logger.info(f"Rejected staging record {staging_id}")
        return self._load(staging_id)

    def confirm(self, staging_id: str, commercial: CommercialFields) -> ConfirmedReservation:
        """
        Promote a pending staging record to a confirmed reservation.

        Raises:
            StagingNotFoundError: If the staging record does not exist
            ConflictOnConfirmError: If the record is not pending
        """
        record = self._load(staging_id)

        if record.reservation_id:
            logger.info(
                f"Staging record {staging_id} already promoted to {record.reservation_id}"
            )
            return self._existing_reservation(record.reservation_id)

        if record.stage_status != StageStatus.PENDING:
            raise ConflictOnConfirmError(staging_id, record.stage_status, CONFIRM)

        guest_id = None
        if commercial.guest_name and commercial.guest_name.strip() and self.guest_store:
            guest_id = self.guest_store.create_if_absent(commercial.guest_name)

        if not commercial.notes:
            imported_on = datetime.fromtimestamp(self.clock(), tz=timezone.utc).date()
            commercial = replace(
                commercial,
                notes=f"Imported from {record.platform} on {imported_on.isoformat()}"
            )

        reservation_id = reservation_id_for(staging_id)
        created = True
        try:
            reservation = self.reservation_store.create(
                record.property_id,
                record.check_in,
                record.check_out,
                guest_id,
                commercial,
                reservation_id=reservation_id,
                platform=record.platform,
                staging_id=staging_id
            )
        except DuplicateReservationError:
            created = False
            reservation = self._existing_reservation(reservation_id)

        try:
            self.staging_store.mark_confirmed(staging_id, reservation_id, int(self.clock()))
        except ConditionalWriteError:
            current = self._load(staging_id)
            if created:
                self.reservation_store.delete(reservation_id)
            logger.warning(
                f"Staging record {staging_id} changed to '{current.stage_status}' "
                f"while confirming"
            )
            raise ConflictOnConfirmError(staging_id, current.stage_status, CONFIRM)

        logger.info(
            f"Confirmed staging record {staging_id} as reservation {reservation_id}",
            extra={'property_id': record.property_id}
        )
        return reservation

    def _load(self, staging_id: str) -> StagingRecord:
        record = self.staging_store.get(staging_id)
        if record is None:
            raise StagingNotFoundError(f"Staging record {staging_id} not found")
        return record

    def _existing_reservation(self, reservation_id: str) -> ConfirmedReservation:
        reservation = self.reservation_store.get(reservation_id)
        if reservation is None:
            raise StagingNotFoundError(f"Reservation {reservation_id} not found")
        return reservation
