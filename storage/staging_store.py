"""DynamoDB store for the reservation staging ledger."""
import logging
from typing import Dict, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.models import StageStatus, StagingRecord
from storage.dynamodb_manager import (
    DynamoDBManager, drop_empty, to_date, to_int
)
from storage.tables import PROPERTY_INDEX

logger = logging.getLogger(__name__)

# Fields copied from the feed on every sighting of a pending record.
MUTABLE_FIELDS = (
    'check_in',
    'check_out',
    'guest_name_hint',
    'status_text',
    'phone_last_four',
    'source_url',
    'reservation_url'
)


class StagingStore(DynamoDBManager):
    """Reads and writes StagingRecord items; state changes are conditional writes."""

    def get(self, staging_id: str) -> Optional[StagingRecord]:
        item = self._get_item({'staging_id': staging_id})
        return self._item_to_record(item) if item else None

    def get_staging_for_property(self, property_id: str) -> List[StagingRecord]:
        """Return every staging record of a property, ordered by check-in."""
        items = self._query_all(
            IndexName=PROPERTY_INDEX,
            KeyConditionExpression=Key('property_id').eq(property_id)
        )
        return [self._item_to_record(item) for item in items]

    def list_pending(self, property_id: str) -> List[StagingRecord]:
        items = self._query_all(
            IndexName=PROPERTY_INDEX,
            KeyConditionExpression=Key('property_id').eq(property_id),
            FilterExpression=Attr('stage_status').eq(StageStatus.PENDING)
        )
        return [self._item_to_record(item) for item in items]

    def insert(self, record: StagingRecord) -> StagingRecord:
        """
        Insert a new staging record.

        Raises:
            ConditionalWriteError: If the staging id is already taken
        """
        try:
            self.table.put_item(
                Item=self._record_to_item(record),
                ConditionExpression=Attr('staging_id').not_exists()
            )
        except ClientError as e:
            self._raise_store_error('put_item', e)
        return record

    def refresh_pending(self, record: StagingRecord, last_seen_at: int) -> None:
        """
        Copy feed fields onto a pending record and bump last_seen_at.

        Raises:
            ConditionalWriteError: If the record is no longer pending
        """
        fields = {name: getattr(record, name) for name in MUTABLE_FIELDS}
        fields['last_seen_at'] = last_seen_at
        self._update(
            record.staging_id,
            fields,
            condition=Attr('stage_status').eq(StageStatus.PENDING)
        )

    def mark_disappeared(self, staging_id: str, disappeared_at: int) -> None:
        self._update(
            staging_id,
            {
                'stage_status': StageStatus.DISAPPEARED,
                'disappeared_at': disappeared_at
            },
            condition=Attr('stage_status').eq(StageStatus.PENDING)
        )

    def mark_rejected(self, staging_id: str, decided_at: int) -> None:
        self._update(
            staging_id,
            {'stage_status': StageStatus.REJECTED, 'decided_at': decided_at},
            condition=Attr('stage_status').eq(StageStatus.PENDING)
        )

    def mark_confirmed(self, staging_id: str, reservation_id: str, decided_at: int) -> None:
        """
        Promote a pending record, or accept a repeat with the same reservation.

        Raises:
            ConditionalWriteError: If the record was decided differently meanwhile
        """
        condition = (
            (Attr('stage_status').eq(StageStatus.PENDING) & Attr('reservation_id').not_exists())
            | Attr('reservation_id').eq(reservation_id)
        )
        self._update(
            staging_id,
            {
                'stage_status': StageStatus.CONFIRMED,
                'reservation_id': reservation_id,
                'decided_at': decided_at
            },
            condition=condition
        )

    def set_missing_from_feed(self, staging_id: str, missing_since: Optional[int]) -> None:
        """Set or clear the missing-from-feed annotation on a decided record."""
        self._update(
            staging_id,
            {'missing_from_feed_at': missing_since},
            condition=Attr('staging_id').exists()
        )

    def _update(self, staging_id: str, fields: Dict[str, object], condition) -> None:
        set_parts = []
        remove_parts = []
        names = {}
        values = {}

        for index, (name, value) in enumerate(fields.items()):
            placeholder = f"#fld{index}"
            names[placeholder] = name
            if value is None:
                remove_parts.append(placeholder)
            else:
                values[f":val{index}"] = value.isoformat() if hasattr(value, 'isoformat') else value
                set_parts.append(f"{placeholder} = :val{index}")

        expression = ''
        if set_parts:
            expression += 'SET ' + ', '.join(set_parts)
        if remove_parts:
            expression += ' REMOVE ' + ', '.join(remove_parts)

        kwargs = {
            'Key': {'staging_id': staging_id},
            'UpdateExpression': expression.strip(),
            'ExpressionAttributeNames': names,
            'ConditionExpression': condition
        }
        if values:
            kwargs['ExpressionAttributeValues'] = values

        try:
            self.table.update_item(**kwargs)
        except ClientError as e:
            self._raise_store_error('update_item', e)

    def _record_to_item(self, record: StagingRecord) -> dict:
        return drop_empty({
            'staging_id': record.staging_id,
            'property_id': record.property_id,
            'platform': record.platform,
            'sync_uid': record.sync_uid,
            'check_in': record.check_in.isoformat(),
            'check_out': record.check_out.isoformat(),
            'guest_name_hint': record.guest_name_hint,
            'status_text': record.status_text,
            'phone_last_four': record.phone_last_four,
            'stage_status': record.stage_status,
            'first_seen_at': record.first_seen_at,
            'last_seen_at': record.last_seen_at,
            'source_url': record.source_url,
            'reservation_url': record.reservation_url,
            'reservation_id': record.reservation_id,
            'disappeared_at': record.disappeared_at,
            'decided_at': record.decided_at,
            'missing_from_feed_at': record.missing_from_feed_at
        })

    def _item_to_record(self, item: dict) -> StagingRecord:
        return StagingRecord(
            staging_id=item['staging_id'],
            property_id=item['property_id'],
            platform=item['platform'],
            sync_uid=item['sync_uid'],
            check_in=to_date(item['check_in']),
            check_out=to_date(item['check_out']),
            guest_name_hint=item.get('guest_name_hint'),
            status_text=item.get('status_text', ''),
            phone_last_four=item.get('phone_last_four'),
            stage_status=item['stage_status'],
            first_seen_at=to_int(item.get('first_seen_at')) or 0,
            last_seen_at=to_int(item.get('last_seen_at')) or 0,
            source_url=item.get('source_url'),
            reservation_url=item.get('reservation_url'),
            reservation_id=item.get('reservation_id'),
            disappeared_at=to_int(item.get('disappeared_at')),
            decided_at=to_int(item.get('decided_at')),
            missing_from_feed_at=to_int(item.get('missing_from_feed_at'))
        )
