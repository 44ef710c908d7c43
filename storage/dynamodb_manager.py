"""Shared DynamoDB plumbing for the sync engine's stores."""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.errors import ConditionalWriteError, StoreError

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Base class wrapping one DynamoDB table."""

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional boto3 DynamoDB resource to share between stores
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.debug(f"Initialized {type(self).__name__} for table: {table_name}")

    def _query_all(self, **kwargs) -> List[dict]:
        """
        Run a Query and follow LastEvaluatedKey until all pages are read.

        Raises:
            StoreError: If DynamoDB rejects the query
        """
        try:
            response = self.table.query(**kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))

            return items

        except ClientError as e:
            self._raise_store_error('query', e)

    def _get_item(self, key: dict) -> Optional[dict]:
        try:
            response = self.table.get_item(Key=key, ConsistentRead=True)
        except ClientError as e:
            self._raise_store_error('get_item', e)
        return response.get('Item')

    def _raise_store_error(self, operation: str, error: ClientError):
        """Log a ClientError and re-raise it as a StoreError."""
        code = error.response.get('Error', {}).get('Code', '')
        if is_conditional_failure(error):
            logger.debug(f"Conditional {operation} rejected on {self.table_name}")
            raise ConditionalWriteError(
                f"Condition failed for {operation} on {self.table_name}",
                operation=operation
            ) from error

        logger.error(f"DynamoDB {operation} failed on {self.table_name}: {error}")
        raise StoreError(
            f"DynamoDB {operation} failed on {self.table_name}: {code or error}",
            operation=operation
        ) from error


def to_date(value) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def to_int(value) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def drop_empty(item: dict) -> dict:
    """Remove None attributes; DynamoDB index keys may not be null."""
    return {key: value for key, value in item.items() if value is not None}


def is_conditional_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'
