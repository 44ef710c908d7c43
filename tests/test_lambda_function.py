"""Integration tests for Lambda handler."""
import json
import logging
import os
from datetime import date
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from lambda_function import (
    JsonFormatter, Services, Settings, build_services, lambda_handler, setup_logging
)
from processor.errors import (
    ConflictOnConfirmError, StagingNotFoundError, StoreError, SyncInProgressError
)
from processor.models import (
    AuditStatus, CommercialFields, ConfirmedReservation, FeedResult,
    StageStatus, StagingRecord, StagingReview, SyncResult
)
from processor.sync_orchestrator import SyncOrchestrator


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'TABLE_PREFIX': 'test-rental-sync',
        'LOG_LEVEL': 'INFO',
        'TIMEOUT_SECONDS': '10',
        'MAX_RETRIES': '2',
        'MAX_FETCH_WORKERS': '3',
        'LOCK_TTL_SECONDS': '120',
        'LOCK_WAIT_SECONDS': '5'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def services():
    """Services with mocked collaborators."""
    return Services(orchestrator=Mock(), conflict_detector=Mock(), promotion=Mock())


@pytest.fixture
def sync_result():
    return SyncResult(
        property_id='prop-1',
        status=AuditStatus.CHANGES_DETECTED,
        has_changes=True,
        events_found=3,
        reservations_found=2,
        new_count=2,
        per_feed_results=[FeedResult('airbnb', 'https://a/1.ics', True, 3, 2)],
        message='Synced 2 reservations. 2 new reservations.',
        checksum='abc'
    )


@pytest.fixture
def staging_record():
    return StagingRecord(
        staging_id='stg-1',
        property_id='prop-1',
        platform='airbnb',
        sync_uid='airbnb:abc123',
        check_in=date(2025, 6, 4),
        check_out=date(2025, 6, 10),
        guest_name_hint='Kam Sangha',
        status_text='Reserved - Kam Sangha (1207)',
        phone_last_four='1207',
        stage_status=StageStatus.PENDING,
        first_seen_at=1,
        last_seen_at=1
    )


def _invoke(event, services, context):
    with patch('lambda_function.build_services', return_value=services):
        response = lambda_handler(event, context)
    return response['statusCode'], json.loads(response['body'])


class TestSyncAction:
    """Test cases for the sync action."""

    def test_sync_success(self, mock_env, mock_context, services, sync_result):
        services.orchestrator.trigger_sync.return_value = sync_result

        status, body = _invoke({'action': 'sync', 'property_id': 'prop-1'}, services, mock_context)

        assert status == 200
        assert body['result']['new_count'] == 2
        assert body['result']['per_feed_results'][0]['platform'] == 'airbnb'
        services.orchestrator.trigger_sync.assert_called_once_with('prop-1', force=False)

    def test_sync_is_default_action(self, mock_env, mock_context, services, sync_result):
        services.orchestrator.trigger_sync.return_value = sync_result
        status, _ = _invoke({'property_id': 'prop-1', 'force': True}, services, mock_context)
        assert status == 200
        services.orchestrator.trigger_sync.assert_called_once_with('prop-1', force=True)

    def test_sync_all_feeds_failed(self, mock_env, mock_context, services):
        services.orchestrator.trigger_sync.return_value = SyncResult(
            property_id='prop-1',
            status=AuditStatus.ERROR,
            has_changes=False,
            message='All 1 feed sources failed',
            degraded=True
        )
        status, body = _invoke({'action': 'sync', 'property_id': 'prop-1'}, services, mock_context)
        assert status == 502
        assert body['result']['degraded'] is True

    def test_sync_in_progress(self, mock_env, mock_context, services):
        services.orchestrator.trigger_sync.side_effect = SyncInProgressError('prop-1')
        status, body = _invoke({'action': 'sync', 'property_id': 'prop-1'}, services, mock_context)
        assert status == 409
        assert body['error_type'] == 'SyncInProgressError'
        assert 'duration_seconds' in body

    def test_sync_store_error(self, mock_env, mock_context, services):
        services.orchestrator.trigger_sync.side_effect = StoreError('DynamoDB put_item failed')
        status, body = _invoke({'action': 'sync', 'property_id': 'prop-1'}, services, mock_context)
        assert status == 500
        assert body['error'] == 'DynamoDB put_item failed'

    def test_sync_missing_property(self, mock_env, mock_context, services):
        status, body = _invoke({'action': 'sync'}, services, mock_context)
        assert status == 400
        assert 'property_id' in body['error']

    def test_sync_many_properties(self, mock_env, mock_context, services, sync_result):
        services.orchestrator.sync_properties.return_value = {
            'prop-1': sync_result,
            'prop-2': SyncInProgressError('prop-2')
        }
        status, body = _invoke(
            {'action': 'sync', 'property_ids': ['prop-1', 'prop-2']}, services, mock_context
        )
        assert status == 200
        assert body['results']['prop-1']['new_count'] == 2
        assert body['failed']['prop-2']['error_type'] == 'SyncInProgressError'

    @pytest.mark.parametrize('property_ids', ['prop-1', {'prop-1': True}, ['prop-1', 7], ['']])
    def test_sync_rejects_malformed_property_ids(self, mock_env, mock_context, services, property_ids):
        status, body = _invoke(
            {'action': 'sync', 'property_ids': property_ids}, services, mock_context
        )
        assert status == 400
        assert 'property_ids' in body['error']
        services.orchestrator.sync_properties.assert_not_called()
        services.orchestrator.trigger_sync.assert_not_called()


class TestListPendingAction:
    """Test cases for the list_pending action."""

    def test_list_pending(self, mock_env, mock_context, services, staging_record):
        conflict = ConfirmedReservation('res-1', 'prop-1', date(2025, 6, 1), date(2025, 6, 5))
        services.conflict_detector.list_pending_staging.return_value = [
            StagingReview(record=staging_record, conflicts=[conflict])
        ]

        status, body = _invoke(
            {'action': 'list_pending', 'property_id': 'prop-1'}, services, mock_context
        )

        assert status == 200
        pending = body['pending'][0]
        assert pending['has_conflict'] is True
        assert pending['record']['check_in'] == '2025-06-04'
        assert pending['conflicts'][0]['reservation_id'] == 'res-1'


class TestDecideAction:
    """Test cases for the decide action."""

    def test_confirm_passes_commercial_fields(self, mock_env, mock_context, services):
        services.promotion.decide.return_value = ConfirmedReservation(
            'res-1', 'prop-1', date(2025, 6, 4), date(2025, 6, 10), total_price=Decimal('500.00')
        )

        status, body = _invoke({
            'action': 'decide',
            'staging_id': 'stg-1',
            'decision': 'confirm',
            'commercial': {'guest_name': 'Kam Sangha', 'guest_count': 4, 'total_price': '500.00'}
        }, services, mock_context)

        assert status == 200
        assert body['result']['total_price'] == '500.00'
        staging_id, decision, commercial = services.promotion.decide.call_args.args
        assert (staging_id, decision) == ('stg-1', 'confirm')
        assert commercial == CommercialFields(
            guest_name='Kam Sangha', guest_count=4, total_price=Decimal('500.00')
        )

    def test_reject(self, mock_env, mock_context, services, staging_record):
        staging_record.stage_status = StageStatus.REJECTED
        services.promotion.decide.return_value = staging_record

        status, body = _invoke(
            {'action': 'decide', 'staging_id': 'stg-1', 'decision': 'reject'}, services, mock_context
        )

        assert status == 200
        assert body['result']['stage_status'] == 'rejected'
        services.promotion.decide.assert_called_once_with('stg-1', 'reject', None)

    @pytest.mark.parametrize('commercial', [
        {'guest_count': 0},
        {'total_price': '-1'},
        {'cleaning_fee': 'lots'},
        {'guest_count': 'two'}
    ])
    def test_invalid_commercial_fields(self, mock_env, mock_context, services, commercial):
        status, _ = _invoke({
            'action': 'decide', 'staging_id': 'stg-1', 'decision': 'confirm', 'commercial': commercial
        }, services, mock_context)
        assert status == 400
        services.promotion.decide.assert_not_called()

    def test_unknown_decision(self, mock_env, mock_context, services):
        status, _ = _invoke(
            {'action': 'decide', 'staging_id': 'stg-1', 'decision': 'maybe'}, services, mock_context
        )
        assert status == 400

    def test_not_found(self, mock_env, mock_context, services):
        services.promotion.decide.side_effect = StagingNotFoundError('Staging record x not found')
        status, _ = _invoke(
            {'action': 'decide', 'staging_id': 'x', 'decision': 'reject'}, services, mock_context
        )
        assert status == 404

    def test_conflict(self, mock_env, mock_context, services):
        services.promotion.decide.side_effect = ConflictOnConfirmError('stg-1', 'rejected', 'confirm')
        status, body = _invoke(
            {'action': 'decide', 'staging_id': 'stg-1', 'decision': 'confirm'}, services, mock_context
        )
        assert status == 409
        assert body['error_type'] == 'ConflictOnConfirmError'


class TestHandlerWiring:
    """Test cases for configuration, wiring and logging."""

    def test_unknown_action(self, mock_env, mock_context, services):
        status, body = _invoke({'action': 'explode'}, services, mock_context)
        assert status == 400
        assert 'explode' in body['error']

    def test_settings_from_env(self, mock_env):
        settings = Settings.from_env()
        assert settings.table_prefix == 'test-rental-sync'
        assert settings.timeout_seconds == 10
        assert settings.max_retries == 2
        assert settings.max_fetch_workers == 3
        assert settings.lock_ttl_seconds == 120
        assert settings.lock_wait_seconds == 5

    def test_settings_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        assert settings == Settings()
        assert settings.table_prefix == 'rental-sync'

    def test_build_services_uses_prefixed_tables(self, dynamodb, mock_env):
        built = build_services(Settings.from_env(), dynamodb)

        assert isinstance(built.orchestrator, SyncOrchestrator)
        assert built.orchestrator.feed_source_store.table_name == 'test-rental-sync-feed-sources'
        assert built.orchestrator.lock.lease_seconds == 120
        assert built.orchestrator.fetcher.max_retries == 2
        assert built.promotion.staging_store.table_name == 'test-rental-sync-staging'

    def test_end_to_end_list_pending(self, dynamodb, staging_store, mock_env, mock_context, staging_record):
        staging_store.insert(staging_record)

        with patch('lambda_function.boto3.resource', return_value=dynamodb):
            response = lambda_handler({'action': 'list_pending', 'property_id': 'prop-1'}, mock_context)

        body = json.loads(response['body'])
        assert response['statusCode'] == 200
        assert body['pending'][0]['record']['staging_id'] == 'stg-1'

    def test_setup_logging_sets_level(self):
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG
        setup_logging('INFO')

    def test_json_formatter_includes_extra(self):
        record = logging.LogRecord('test', logging.INFO, __file__, 1, 'hello %s', ('world',), None)
        record.property_id = 'prop-1'

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'hello world'
        assert data['level'] == 'INFO'
        assert data['property_id'] == 'prop-1'
