"""Dashboard notifications raised by syncs."""
import logging
import time
import uuid
from typing import List

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.models import Notification
from storage.dynamodb_manager import DynamoDBManager, to_int
from storage.tables import PROPERTY_INDEX

logger = logging.getLogger(__name__)


class NotificationStore(DynamoDBManager):
    """Notification sink backed by an alerts table."""

    def raise_notification(
        self,
        kind: str,
        property_id: str,
        title: str,
        message: str,
        severity: str = 'info'
    ) -> Notification:
        notification = Notification(
            alert_id=str(uuid.uuid4()),
            kind=kind,
            severity=severity,
            property_id=property_id,
            title=title,
            message=message,
            created_at=int(time.time())
        )
        try:
            self.table.put_item(Item={
                'alert_id': notification.alert_id,
                'kind': notification.kind,
                'severity': notification.severity,
                'property_id': notification.property_id,
                'title': notification.title,
                'message': notification.message,
                'created_at': notification.created_at,
                'is_read': False
            })
        except ClientError as e:
            self._raise_store_error('put_item', e)

        logger.info(f"Raised {kind} notification for property {property_id}: {title}")
        return notification

    def list_for_property(self, property_id: str) -> List[Notification]:
        """Return notifications for a property, newest first."""
        items = self._query_all(
            IndexName=PROPERTY_INDEX,
            KeyConditionExpression=Key('property_id').eq(property_id),
            ScanIndexForward=False
        )
        return [
            Notification(
                alert_id=item['alert_id'],
                kind=item['kind'],
                severity=item['severity'],
                property_id=item['property_id'],
                title=item['title'],
                message=item['message'],
                created_at=to_int(item['created_at']),
                is_read=bool(item.get('is_read', False))
            )
            for item in items
        ]
