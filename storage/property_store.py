"""Feed-source configuration for properties."""
import logging
from typing import List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.models import FeedSource
from storage.dynamodb_manager import DynamoDBManager, drop_empty, to_int

logger = logging.getLogger(__name__)


class FeedSourceStore(DynamoDBManager):
    """One FeedSource item per (property, platform)."""

    def get_active_feed_sources(self, property_id: str) -> List[FeedSource]:
        items = self._query_all(
            KeyConditionExpression=Key('property_id').eq(property_id),
            FilterExpression=Attr('active').eq(True)
        )
        return [self._item_to_source(item) for item in items]

    def put_feed_source(self, source: FeedSource) -> None:
        try:
            self.table.put_item(Item=drop_empty({
                'property_id': source.property_id,
                'platform': source.platform,
                'url': source.url,
                'active': source.active,
                'last_sync_at': source.last_sync_at,
                'last_sync_status': source.last_sync_status,
                'last_error': source.last_error
            }))
        except ClientError as e:
            self._raise_store_error('put_item', e)

    def get(self, property_id: str, platform: str) -> Optional[FeedSource]:
        item = self._get_item({'property_id': property_id, 'platform': platform})
        return self._item_to_source(item) if item else None

    def update_sync_status(
        self,
        property_id: str,
        platform: str,
        status: str,
        synced_at: int,
        error: Optional[str] = None
    ) -> None:
        """Record the outcome of the latest pull of one feed."""
        update = 'SET last_sync_at = :at, last_sync_status = :status'
        values = {':at': synced_at, ':status': status}
        if error:
            update += ', last_error = :error'
            values[':error'] = error
        else:
            update += ' REMOVE last_error'

        try:
            self.table.update_item(
                Key={'property_id': property_id, 'platform': platform},
                UpdateExpression=update,
                ExpressionAttributeValues=values,
                ConditionExpression='attribute_exists(property_id)'
            )
        except ClientError as e:
            self._raise_store_error('update_item', e)

    def _item_to_source(self, item: dict) -> FeedSource:
        return FeedSource(
            property_id=item['property_id'],
            platform=item['platform'],
            url=item['url'],
            active=bool(item.get('active', True)),
            last_sync_at=to_int(item.get('last_sync_at')),
            last_sync_status=item.get('last_sync_status'),
            last_error=item.get('last_error')
        )
