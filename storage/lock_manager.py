"""Lease-based lock serialising syncs of the same property."""
import logging
import time
import uuid
from contextlib import contextmanager

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.errors import SyncInProgressError
from storage.dynamodb_manager import DynamoDBManager, is_conditional_failure

logger = logging.getLogger(__name__)


class PropertyLock(DynamoDBManager):
    """
    Advisory lock stored as a DynamoDB item per property.

    A holder writes a lease with an expiry; another caller may take the
    lock only once the lease has expired, so a crashed sync cannot block
    its property for longer than the lease TTL.
    """

    def __init__(
        self,
        table_name: str,
        dynamodb=None,
        lease_seconds: int = 300,
        wait_seconds: float = 30,
        poll_interval: float = 0.5
    ):
        super().__init__(table_name, dynamodb)
        self.lease_seconds = lease_seconds
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval

    def acquire(self, property_id: str, wait_seconds: float = None) -> str:
        """
        Acquire the sync lock for a property, waiting up to wait_seconds.

        Returns:
            Owner token required to release the lock

        Raises:
            SyncInProgressError: If the lock is still held when the wait expires
        """
        wait = self.wait_seconds if wait_seconds is None else wait_seconds
        deadline = time.monotonic() + wait
        owner = uuid.uuid4().hex

        while True:
            if self._try_acquire(property_id, owner):
                logger.debug(f"Acquired sync lock for property {property_id}")
                return owner
            if time.monotonic() >= deadline:
                logger.warning(f"Sync lock for property {property_id} is held, giving up")
                raise SyncInProgressError(property_id)
            time.sleep(self.poll_interval)

    def release(self, property_id: str, owner: str) -> None:
        try:
            self.table.delete_item(
                Key={'lock_key': self._lock_key(property_id)},
                ConditionExpression=Attr('owner').eq(owner)
            )
        except ClientError as e:
            if is_conditional_failure(e):
                logger.warning(
                    f"Sync lock for property {property_id} expired before release"
                )
                return
            self._raise_store_error('delete_item', e)

    @contextmanager
    def hold(self, property_id: str, wait_seconds: float = None):
        owner = self.acquire(property_id, wait_seconds)
        try:
            yield owner
        finally:
            self.release(property_id, owner)

    def _try_acquire(self, property_id: str, owner: str) -> bool:
        now = int(time.time())
        try:
            self.table.put_item(
                Item={
                    'lock_key': self._lock_key(property_id),
                    'owner': owner,
                    'acquired_at': now,
                    'expires_at': now + self.lease_seconds
                },
                ConditionExpression=(
                    Attr('lock_key').not_exists() | Attr('expires_at').lt(now)
                )
            )
            return True
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            self._raise_store_error('put_item', e)

    @staticmethod
    def _lock_key(property_id: str) -> str:
        return f"sync#{property_id}"
