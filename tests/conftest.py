"""Shared fixtures: mocked DynamoDB tables, stores and feed builders."""
from datetime import date

import boto3
import pytest
from moto import mock_aws

from processor.models import ParsedEvent
from storage import tables
from storage.lock_manager import PropertyLock
from storage.notification_store import NotificationStore
from storage.property_store import FeedSourceStore
from storage.reservation_store import GuestStore, ReservationStore
from storage.staging_store import StagingStore
from storage.sync_state_store import AuditLogStore, FingerprintStore

TEST_PREFIX = 'test-rental-sync'


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb(aws_credentials):
    """Create every sync table in a mocked DynamoDB."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        tables.create_tables(resource, TEST_PREFIX)
        yield resource


def _name(suffix):
    return tables.table_name(TEST_PREFIX, suffix)


@pytest.fixture
def staging_store(dynamodb):
    return StagingStore(_name(tables.STAGING), dynamodb)


@pytest.fixture
def reservation_store(dynamodb):
    return ReservationStore(_name(tables.RESERVATIONS), dynamodb)


@pytest.fixture
def guest_store(dynamodb):
    return GuestStore(_name(tables.GUESTS), dynamodb)


@pytest.fixture
def feed_source_store(dynamodb):
    return FeedSourceStore(_name(tables.FEED_SOURCES), dynamodb)


@pytest.fixture
def fingerprint_store(dynamodb):
    return FingerprintStore(_name(tables.FINGERPRINTS), dynamodb)


@pytest.fixture
def audit_store(dynamodb):
    return AuditLogStore(_name(tables.AUDIT), dynamodb)


@pytest.fixture
def notification_store(dynamodb):
    return NotificationStore(_name(tables.NOTIFICATIONS), dynamodb)


@pytest.fixture
def property_lock(dynamodb):
    return PropertyLock(_name(tables.LOCKS), dynamodb, lease_seconds=60, wait_seconds=0)


@pytest.fixture
def make_event():
    """Factory for ParsedEvent objects with sensible defaults."""
    def _make(
        uid='abc123',
        check_in=date(2025, 6, 1),
        check_out=date(2025, 6, 5),
        summary='Reserved - Kam Sangha (1207)',
        platform='airbnb',
        guest_name_hint='Kam Sangha',
        phone_last_four='1207',
        is_reservation=True,
        source_url='https://www.airbnb.com/calendar/ical/1.ics'
    ):
        return ParsedEvent(
            uid=uid,
            platform=platform,
            check_in=check_in,
            check_out=check_out,
            summary=summary,
            guest_name_hint=guest_name_hint if is_reservation else None,
            phone_last_four=phone_last_four if is_reservation else None,
            is_reservation=is_reservation,
            source_url=source_url
        )
    return _make


def _date_line(name, value):
    if len(value) == 8 and value.isdigit():
        return f'{name};VALUE=DATE:{value}'
    return f'{name}:{value}'


@pytest.fixture
def ics_feed():
    """Build an iCalendar document from (uid, start, end, summary) tuples."""
    def _build(*events):
        lines = ['BEGIN:VCALENDAR', 'VERSION:2.0', 'PRODID:-//Test//Feed//EN']
        for uid, start, end, summary in events:
            lines.extend([
                'BEGIN:VEVENT',
                _date_line('DTSTART', start),
                _date_line('DTEND', end),
                f'UID:{uid}',
                f'SUMMARY:{summary}',
                'END:VEVENT'
            ])
        lines.append('END:VCALENDAR')
        return '\r\n'.join(lines) + '\r\n'
    return _build
