"""Fingerprint and audit-log persistence for property syncs."""
import logging
import time
import uuid
from typing import List, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.models import FeedResult, SyncAudit, SyncFingerprint
from storage.dynamodb_manager import DynamoDBManager, drop_empty, to_int

logger = logging.getLogger(__name__)


class FingerprintStore(DynamoDBManager):
    """One SyncFingerprint row per property."""

    def get(self, property_id: str) -> Optional[SyncFingerprint]:
        item = self._get_item({'property_id': property_id})
        if not item:
            return None
        return SyncFingerprint(
            property_id=item['property_id'],
            checksum=item['checksum'],
            computed_at=to_int(item['computed_at']),
            event_count=to_int(item.get('event_count')) or 0
        )

    def put(self, fingerprint: SyncFingerprint) -> None:
        try:
            self.table.put_item(Item={
                'property_id': fingerprint.property_id,
                'checksum': fingerprint.checksum,
                'computed_at': fingerprint.computed_at,
                'event_count': fingerprint.event_count
            })
        except ClientError as e:
            self._raise_store_error('put_item', e)


class AuditLogStore(DynamoDBManager):
    """Append-only log of sync outcomes, newest last within a property."""

    def append(self, audit: SyncAudit) -> str:
        """
        Write an audit entry.

        Returns:
            The generated entry id (sort key)
        """
        # Sort key orders entries by write time even within one second.
        entry_id = f"{time.time_ns():020d}-{uuid.uuid4().hex[:8]}"
        item = {
            'property_id': audit.property_id,
            'entry_id': entry_id,
            'timestamp': audit.timestamp,
            'status': audit.status,
            'message': audit.message,
            'per_feed_results': [
                self._feed_result_to_item(result) for result in audit.per_feed_results
            ]
        }
        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            self._raise_store_error('put_item', e)
        return entry_id

    def list_for_property(self, property_id: str, limit: Optional[int] = None) -> List[SyncAudit]:
        """Return audit entries, most recent first."""
        kwargs = {
            'KeyConditionExpression': Key('property_id').eq(property_id),
            'ScanIndexForward': False
        }
        if limit:
            try:
                response = self.table.query(Limit=limit, **kwargs)
            except ClientError as e:
                self._raise_store_error('query', e)
            items = response.get('Items', [])
        else:
            items = self._query_all(**kwargs)
        return [self._item_to_audit(item) for item in items]

    def latest(self, property_id: str) -> Optional[SyncAudit]:
        entries = self.list_for_property(property_id, limit=1)
        return entries[0] if entries else None

    def _feed_result_to_item(self, result: FeedResult) -> dict:
        return drop_empty({
            'platform': result.platform,
            'url': result.url,
            'success': result.success,
            'events_found': result.events_found,
            'reservations_found': result.reservations_found,
            'dropped': result.dropped,
            'error': result.error
        })

    def _item_to_audit(self, item: dict) -> SyncAudit:
        return SyncAudit(
            property_id=item['property_id'],
            timestamp=to_int(item['timestamp']),
            status=item['status'],
            message=item.get('message', ''),
            per_feed_results=[
                FeedResult(
                    platform=result['platform'],
                    url=result['url'],
                    success=result['success'],
                    events_found=to_int(result.get('events_found')) or 0,
                    reservations_found=to_int(result.get('reservations_found')) or 0,
                    dropped=to_int(result.get('dropped')) or 0,
                    error=result.get('error')
                )
                for result in item.get('per_feed_results', [])
            ]
        )
