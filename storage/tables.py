"""DynamoDB table layouts used by the sync engine."""
import logging
from typing import Dict

logger = logging.getLogger(__name__)

STAGING = 'staging'
RESERVATIONS = 'reservations'
GUESTS = 'guests'
FEED_SOURCES = 'feed-sources'
FINGERPRINTS = 'fingerprints'
AUDIT = 'sync-audit'
NOTIFICATIONS = 'notifications'
LOCKS = 'locks'

PROPERTY_INDEX = 'property-index'


def _property_index(range_key: str) -> dict:
    return {
        'IndexName': PROPERTY_INDEX,
        'KeySchema': [
            {'AttributeName': 'property_id', 'KeyType': 'HASH'},
            {'AttributeName': range_key, 'KeyType': 'RANGE'}
        ],
        'Projection': {'ProjectionType': 'ALL'}
    }


TABLE_DEFINITIONS: Dict[str, dict] = {
    STAGING: {
        'KeySchema': [{'AttributeName': 'staging_id', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [
            {'AttributeName': 'staging_id', 'AttributeType': 'S'},
            {'AttributeName': 'property_id', 'AttributeType': 'S'},
            {'AttributeName': 'check_in', 'AttributeType': 'S'}
        ],
        'GlobalSecondaryIndexes': [_property_index('check_in')]
    },
    RESERVATIONS: {
        'KeySchema': [{'AttributeName': 'reservation_id', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [
            {'AttributeName': 'reservation_id', 'AttributeType': 'S'},
            {'AttributeName': 'property_id', 'AttributeType': 'S'},
            {'AttributeName': 'check_in', 'AttributeType': 'S'}
        ],
        'GlobalSecondaryIndexes': [_property_index('check_in')]
    },
    GUESTS: {
        'KeySchema': [{'AttributeName': 'name_key', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [
            {'AttributeName': 'name_key', 'AttributeType': 'S'}
        ]
    },
    FEED_SOURCES: {
        'KeySchema': [
            {'AttributeName': 'property_id', 'KeyType': 'HASH'},
            {'AttributeName': 'platform', 'KeyType': 'RANGE'}
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'property_id', 'AttributeType': 'S'},
            {'AttributeName': 'platform', 'AttributeType': 'S'}
        ]
    },
    FINGERPRINTS: {
        'KeySchema': [{'AttributeName': 'property_id', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [
            {'AttributeName': 'property_id', 'AttributeType': 'S'}
        ]
    },
    AUDIT: {
        'KeySchema': [
            {'AttributeName': 'property_id', 'KeyType': 'HASH'},
            {'AttributeName': 'entry_id', 'KeyType': 'RANGE'}
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'property_id', 'AttributeType': 'S'},
            {'AttributeName': 'entry_id', 'AttributeType': 'S'}
        ]
    },
    NOTIFICATIONS: {
        'KeySchema': [{'AttributeName': 'alert_id', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [
            {'AttributeName': 'alert_id', 'AttributeType': 'S'},
            {'AttributeName': 'property_id', 'AttributeType': 'S'},
            {'AttributeName': 'created_at', 'AttributeType': 'N'}
        ],
        'GlobalSecondaryIndexes': [_property_index('created_at')]
    },
    LOCKS: {
        'KeySchema': [{'AttributeName': 'lock_key', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [
            {'AttributeName': 'lock_key', 'AttributeType': 'S'}
        ]
    }
}


def table_name(prefix: str, suffix: str) -> str:
    return f"{prefix}-{suffix}"


def create_tables(dynamodb, prefix: str) -> Dict[str, object]:
    """
    Create every table for a deployment prefix (tests and local bootstrap).

    Args:
        dynamodb: boto3 DynamoDB service resource
        prefix: Table name prefix

    Returns:
        Dictionary mapping table suffix to the created Table resource
    """
    tables = {}
    for suffix, definition in TABLE_DEFINITIONS.items():
        name = table_name(prefix, suffix)
        tables[suffix] = dynamodb.create_table(
            TableName=name,
            BillingMode='PAY_PER_REQUEST',
            **definition
        )
        logger.info(f"Created table {name}")
    return tables
