"""AWS Lambda handler for rental calendar sync and reservation staging."""
import json
import logging
import os
import time
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, Optional

import boto3

from feeds.feed_fetcher import FeedFetcher
from feeds.ical_parser import FeedParser
from processor.change_detector import ChangeDetector
from processor.conflict_detector import ConflictDetector
from processor.errors import (
    InvalidTransitionError, StagingNotFoundError, SyncInProgressError
)
from processor.models import AuditStatus, CommercialFields
from processor.promotion import CONFIRM, REJECT, PromotionWorkflow
from processor.reconciler import StagingReconciler
from processor.sync_orchestrator import SyncOrchestrator
from storage import tables
from storage.lock_manager import PropertyLock
from storage.notification_store import NotificationStore
from storage.property_store import FeedSourceStore
from storage.reservation_store import GuestStore, ReservationStore
from storage.staging_store import StagingStore
from storage.sync_state_store import AuditLogStore, FingerprintStore

# LogRecord attributes that are not caller-supplied context
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging, including `extra=` fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Settings:
    """Runtime configuration read from environment variables."""
    table_prefix: str = 'rental-sync'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    max_retries: int = 3
    max_fetch_workers: int = 4
    lock_ttl_seconds: int = 300
    lock_wait_seconds: int = 30

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            table_prefix=os.environ.get('TABLE_PREFIX', 'rental-sync'),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
            max_retries=int(os.environ.get('MAX_RETRIES', '3')),
            max_fetch_workers=int(os.environ.get('MAX_FETCH_WORKERS', '4')),
            lock_ttl_seconds=int(os.environ.get('LOCK_TTL_SECONDS', '300')),
            lock_wait_seconds=int(os.environ.get('LOCK_WAIT_SECONDS', '30'))
        )


@dataclass
class Services:
    orchestrator: SyncOrchestrator
    conflict_detector: ConflictDetector
    promotion: PromotionWorkflow


def build_services(settings: Settings, dynamodb=None) -> Services:
    """
    Wire stores and processors against the DynamoDB tables for a prefix.

    Args:
        settings: Runtime configuration
        dynamodb: Optional boto3 DynamoDB resource shared by every store

    Returns:
        Services used by the handler actions
    """
    dynamodb = dynamodb or boto3.resource('dynamodb')

    def name(suffix: str) -> str:
        return tables.table_name(settings.table_prefix, suffix)

    staging_store = StagingStore(name(tables.STAGING), dynamodb)
    reservation_store = ReservationStore(name(tables.RESERVATIONS), dynamodb)

    orchestrator = SyncOrchestrator(
        feed_source_store=FeedSourceStore(name(tables.FEED_SOURCES), dynamodb),
        fetcher=FeedFetcher(timeout=settings.timeout_seconds, max_retries=settings.max_retries),
        parser=FeedParser(),
        change_detector=ChangeDetector(FingerprintStore(name(tables.FINGERPRINTS), dynamodb)),
        reconciler=StagingReconciler(staging_store),
        audit_store=AuditLogStore(name(tables.AUDIT), dynamodb),
        notifier=NotificationStore(name(tables.NOTIFICATIONS), dynamodb),
        lock=PropertyLock(
            name(tables.LOCKS),
            dynamodb,
            lease_seconds=settings.lock_ttl_seconds,
            wait_seconds=settings.lock_wait_seconds
        ),
        max_workers=settings.max_fetch_workers
    )

    return Services(
        orchestrator=orchestrator,
        conflict_detector=ConflictDetector(staging_store, reservation_store),
        promotion=PromotionWorkflow(
            staging_store,
            reservation_store,
            GuestStore(name(tables.GUESTS), dynamodb)
        )
    )


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body, default=str)
    }


def _require(event: Dict[str, Any], key: str) -> Any:
    value = event.get(key)
    if value in (None, ''):
        raise ValueError(f"Missing required field: {key}")
    return value


def _parse_commercial(payload: Optional[Dict[str, Any]]) -> CommercialFields:
    """
    Validate the commercial fields supplied with a confirm decision.

    Raises:
        ValueError: If a field is malformed or out of range
    """
    payload = payload or {}
    try:
        guest_count = int(payload.get('guest_count', 2))
        total_price = Decimal(str(payload.get('total_price', '0')))
        cleaning_fee = Decimal(str(payload.get('cleaning_fee', '0')))
    except (TypeError, ValueError, InvalidOperation) as e:
        raise ValueError(f"Invalid commercial fields: {e}") from e

    if guest_count < 1:
        raise ValueError("guest_count must be at least 1")
    if total_price < 0 or cleaning_fee < 0:
        raise ValueError("Prices must not be negative")

    return CommercialFields(
        guest_name=payload.get('guest_name') or None,
        guest_count=guest_count,
        total_price=total_price,
        cleaning_fee=cleaning_fee,
        notes=payload.get('notes') or None
    )


def handle_sync(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    force = bool(event.get('force', False))
    property_ids = event.get('property_ids')
    if property_ids is not None and (
        not isinstance(property_ids, list)
        or not all(isinstance(property_id, str) and property_id.strip() for property_id in property_ids)
    ):
        raise ValueError("property_ids must be a list of property id strings")

    if property_ids:
        outcomes = services.orchestrator.sync_properties(property_ids, force=force)
        results = {}
        failed = {}
        for property_id, outcome in outcomes.items():
            if isinstance(outcome, Exception):
                failed[property_id] = {'error': str(outcome), 'error_type': type(outcome).__name__}
            else:
                results[property_id] = asdict(outcome)
        return _response(200, {
            'message': f"Synced {len(results)} of {len(outcomes)} properties",
            'results': results,
            'failed': failed
        })

    result = services.orchestrator.trigger_sync(_require(event, 'property_id'), force=force)
    if result.status == AuditStatus.ERROR:
        return _response(502, {'message': 'All feed sources failed', 'result': asdict(result)})
    return _response(200, {'message': result.message, 'result': asdict(result)})


def handle_list_pending(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    reviews = services.conflict_detector.list_pending_staging(_require(event, 'property_id'))
    return _response(200, {
        'message': f"{len(reviews)} pending staging records",
        'pending': [
            dict(asdict(review), has_conflict=review.has_conflict)
            for review in reviews
        ]
    })


def handle_decide(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    staging_id = _require(event, 'staging_id')
    decision = _require(event, 'decision')
    if decision not in (CONFIRM, REJECT):
        raise ValueError(f"decision must be '{CONFIRM}' or '{REJECT}'")

    commercial = _parse_commercial(event.get('commercial')) if decision == CONFIRM else None
    outcome = services.promotion.decide(staging_id, decision, commercial)
    return _response(200, {
        'message': f"Staging record {staging_id} {decision}ed",
        'result': asdict(outcome)
    })


ACTIONS = {
    'sync': handle_sync,
    'list_pending': handle_list_pending,
    'decide': handle_decide
}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler.

    Args:
        event: Payload with an 'action' (sync, list_pending or decide; sync by default)
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    settings = Settings.from_env()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    event = event or {}
    action = event.get('action', 'sync')
    start_time = time.time()
    logger.info(
        f"Lambda execution started",
        extra={'action': action, 'table_prefix': settings.table_prefix}
    )

    def error_response(status_code: int, message: str, error: Exception) -> Dict[str, Any]:
        duration = time.time() - start_time
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"{message}: {error}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(error).__name__
            },
            exc_info=status_code >= 500
        )
        return _response(status_code, {
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(duration, 2)
        })

    handler = ACTIONS.get(action)
    if handler is None:
        return error_response(400, 'Invalid request', ValueError(f"Unknown action: {action!r}"))

    try:
        services = build_services(settings)
        response = handler(services, event)
    except ValueError as e:
        return error_response(400, 'Invalid request', e)
    except StagingNotFoundError as e:
        return error_response(404, 'Not found', e)
    except (InvalidTransitionError, SyncInProgressError) as e:
        return error_response(409, 'Conflict', e)
    except Exception as e:
        return error_response(500, f"{action} failed", e)

    logger.info(
        f"Lambda execution completed",
        extra={
            'action': action,
            'status_code': response['statusCode'],
            'duration_seconds': round(time.time() - start_time, 2)
        }
    )
    return response
