"""Confirmed-reservation and guest stores consumed by the staging workflow."""
import logging
import uuid
from datetime import date
from typing import List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.errors import DuplicateReservationError
from processor.models import CommercialFields, ConfirmedReservation
from storage.dynamodb_manager import (
    DynamoDBManager, drop_empty, is_conditional_failure, to_date, to_decimal, to_int
)
from storage.tables import PROPERTY_INDEX

logger = logging.getLogger(__name__)

CONFIRMED = 'confirmed'


class ReservationStore(DynamoDBManager):
    """Authoritative reservations, queried by property and date range."""

    def get(self, reservation_id: str) -> Optional[ConfirmedReservation]:
        item = self._get_item({'reservation_id': reservation_id})
        return self._item_to_reservation(item) if item else None

    def find_overlapping(
        self,
        property_id: str,
        check_in: date,
        check_out: date
    ) -> List[ConfirmedReservation]:
        """
        Find confirmed reservations overlapping [check_in, check_out).

        Uses the half-open test existing.check_in < check_out and
        existing.check_out > check_in, so back-to-back stays do not overlap.
        """
        items = self._query_all(
            IndexName=PROPERTY_INDEX,
            KeyConditionExpression=(
                Key('property_id').eq(property_id)
                & Key('check_in').lt(check_out.isoformat())
            ),
            FilterExpression=(
                Attr('check_out').gt(check_in.isoformat())
                & Attr('status').eq(CONFIRMED)
            )
        )
        return [self._item_to_reservation(item) for item in items]

    def create(
        self,
        property_id: str,
        check_in: date,
        check_out: date,
        guest_id: Optional[str],
        commercial: CommercialFields,
        reservation_id: Optional[str] = None,
        platform: Optional[str] = None,
        staging_id: Optional[str] = None
    ) -> ConfirmedReservation:
        """
        Create a confirmed reservation.

        Args:
            reservation_id: Caller-chosen id; a random one is generated if omitted

        Raises:
            DuplicateReservationError: If a reservation with that id already exists
        """
        reservation = ConfirmedReservation(
            reservation_id=reservation_id or str(uuid.uuid4()),
            property_id=property_id,
            check_in=check_in,
            check_out=check_out,
            status=CONFIRMED,
            guest_id=guest_id,
            platform=platform,
            total_price=to_decimal(commercial.total_price),
            cleaning_fee=to_decimal(commercial.cleaning_fee),
            guest_count=commercial.guest_count,
            notes=commercial.notes,
            staging_id=staging_id
        )
        try:
            self.table.put_item(
                Item=self._reservation_to_item(reservation),
                ConditionExpression=Attr('reservation_id').not_exists()
            )
        except ClientError as e:
            if is_conditional_failure(e):
                raise DuplicateReservationError(
                    f"Reservation {reservation.reservation_id} already exists",
                    operation='put_item'
                ) from e
            self._raise_store_error('put_item', e)

        logger.info(
            f"Created reservation {reservation.reservation_id} for property {property_id}",
            extra={'check_in': check_in.isoformat(), 'check_out': check_out.isoformat()}
        )
        return reservation

    def delete(self, reservation_id: str) -> None:
        try:
            self.table.delete_item(Key={'reservation_id': reservation_id})
        except ClientError as e:
            self._raise_store_error('delete_item', e)

    def _reservation_to_item(self, reservation: ConfirmedReservation) -> dict:
        return drop_empty({
            'reservation_id': reservation.reservation_id,
            'property_id': reservation.property_id,
            'check_in': reservation.check_in.isoformat(),
            'check_out': reservation.check_out.isoformat(),
            'status': reservation.status,
            'guest_id': reservation.guest_id,
            'platform': reservation.platform,
            'total_price': reservation.total_price,
            'cleaning_fee': reservation.cleaning_fee,
            'guest_count': reservation.guest_count,
            'notes': reservation.notes,
            'staging_id': reservation.staging_id
        })

    def _item_to_reservation(self, item: dict) -> ConfirmedReservation:
        return ConfirmedReservation(
            reservation_id=item['reservation_id'],
            property_id=item['property_id'],
            check_in=to_date(item['check_in']),
            check_out=to_date(item['check_out']),
            status=item.get('status', CONFIRMED),
            guest_id=item.get('guest_id'),
            platform=item.get('platform'),
            total_price=to_decimal(item.get('total_price')),
            cleaning_fee=to_decimal(item.get('cleaning_fee')),
            guest_count=to_int(item.get('guest_count')) or 0,
            notes=item.get('notes'),
            staging_id=item.get('staging_id')
        )


class GuestStore(DynamoDBManager):
    """Minimal guest registry keyed by normalised name."""

    def create_if_absent(self, name: str) -> str:
        """
        Return the guest id for a name, creating the guest on first use.

        Args:
            name: Guest display name

        Returns:
            Guest id
        """
        display_name = ' '.join(name.split())
        name_key = display_name.lower()
        guest_id = str(uuid.uuid4())

        try:
            self.table.put_item(
                Item={'name_key': name_key, 'guest_id': guest_id, 'name': display_name},
                ConditionExpression=Attr('name_key').not_exists()
            )
            logger.info(f"Created guest {guest_id} for '{display_name}'")
            return guest_id
        except ClientError as e:
            if not is_conditional_failure(e):
                self._raise_store_error('put_item', e)

        existing = self._get_item({'name_key': name_key})
        return existing['guest_id']
