"""Data models for calendar sync and reservation staging."""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple


class StageStatus:
    """Lifecycle states of a staging record."""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    REJECTED = 'rejected'
    DISAPPEARED = 'disappeared'

    TERMINAL = frozenset({CONFIRMED, REJECTED})
    ALL = frozenset({PENDING, CONFIRMED, REJECTED, DISAPPEARED})


class AuditStatus:
    """Outcome recorded in the sync audit log."""
    NO_CHANGES = 'no_changes'
    CHANGES_DETECTED = 'changes_detected'
    ERROR = 'error'


@dataclass
class FeedSource:
    """External calendar configured for a property on one platform."""
    property_id: str
    platform: str
    url: str
    active: bool = True
    last_sync_at: Optional[int] = None
    last_sync_status: Optional[str] = None
    last_error: Optional[str] = None


@dataclass
class RawEvent:
    """VEVENT block from a feed, before validation and extraction."""
    uid: Optional[str]
    summary: str
    start: Optional[date]
    end: Optional[date]
    # property name -> list of (params, value)
    properties: Dict[str, List[Tuple[Dict[str, str], str]]]
    source_block: str
    errors: List[str] = field(default_factory=list)

    def first_value(self, name: str) -> Optional[str]:
        entries = self.properties.get(name.upper())
        if not entries:
            return None
        return entries[0][1]

    def first_params(self, name: str) -> Dict[str, str]:
        entries = self.properties.get(name.upper())
        if not entries:
            return {}
        return entries[0][0]


@dataclass
class ParsedEvent:
    """Structured calendar event produced by the feed parser."""
    uid: str
    platform: str
    check_in: date
    check_out: date
    summary: str
    guest_name_hint: Optional[str]
    phone_last_four: Optional[str]
    is_reservation: bool
    source_url: Optional[str]
    reservation_url: Optional[str] = None

    @property
    def sync_uid(self) -> str:
        return make_sync_uid(self.platform, self.uid)


@dataclass
class ParseResult:
    """Events parsed from one feed plus the number of dropped blocks."""
    events: List[ParsedEvent]
    dropped: int = 0
    blocks: int = 0

    @property
    def reservations(self) -> List[ParsedEvent]:
        return [event for event in self.events if event.is_reservation]


@dataclass
class StagingRecord:
    """Candidate reservation awaiting a human decision."""
    staging_id: str
    property_id: str
    platform: str
    sync_uid: str
    check_in: date
    check_out: date
    guest_name_hint: Optional[str]
    status_text: str
    phone_last_four: Optional[str]
    stage_status: str
    first_seen_at: int
    last_seen_at: int
    source_url: Optional[str] = None
    reservation_url: Optional[str] = None
    reservation_id: Optional[str] = None
    disappeared_at: Optional[int] = None
    decided_at: Optional[int] = None
    missing_from_feed_at: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage_status in StageStatus.TERMINAL


@dataclass
class SyncFingerprint:
    """Checksum of the last event set seen for a property."""
    property_id: str
    checksum: str
    computed_at: int
    event_count: int


@dataclass
class FeedResult:
    """Outcome of pulling a single feed source during a sync."""
    platform: str
    url: str
    success: bool
    events_found: int = 0
    reservations_found: int = 0
    dropped: int = 0
    error: Optional[str] = None


@dataclass
class SyncAudit:
    """Append-only audit log entry for one sync run."""
    property_id: str
    timestamp: int
    status: str
    message: str
    per_feed_results: List[FeedResult] = field(default_factory=list)


@dataclass
class CommercialFields:
    """Booking details the feed does not carry, supplied on confirm."""
    guest_name: Optional[str] = None
    guest_count: int = 2
    total_price: Decimal = Decimal('0')
    cleaning_fee: Decimal = Decimal('0')
    notes: Optional[str] = None


@dataclass
class ConfirmedReservation:
    """Authoritative reservation owned by the reservation store."""
    reservation_id: str
    property_id: str
    check_in: date
    check_out: date
    status: str = 'confirmed'
    guest_id: Optional[str] = None
    platform: Optional[str] = None
    total_price: Decimal = Decimal('0')
    cleaning_fee: Decimal = Decimal('0')
    guest_count: int = 2
    notes: Optional[str] = None
    staging_id: Optional[str] = None


@dataclass
class StagingReview:
    """Pending staging record annotated with overlapping reservations."""
    record: StagingRecord
    conflicts: List[ConfirmedReservation] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)


@dataclass
class Notification:
    """Alert raised for the dashboard."""
    alert_id: str
    kind: str
    severity: str
    property_id: str
    title: str
    message: str
    created_at: int
    is_read: bool = False


@dataclass
class ReconcileResult:
    """Per-record outcome of one reconciliation pass."""
    new: List[StagingRecord] = field(default_factory=list)
    updated: List[StagingRecord] = field(default_factory=list)
    rescheduled: List[StagingRecord] = field(default_factory=list)
    unchanged: int = 0
    terminal_seen: int = 0
    skipped: int = 0
    disappeared: List[StagingRecord] = field(default_factory=list)
    missing_confirmed: List[StagingRecord] = field(default_factory=list)


@dataclass
class SyncResult:
    """Summary returned by a property sync."""
    property_id: str
    status: str
    has_changes: bool
    events_found: int = 0
    reservations_found: int = 0
    new_count: int = 0
    updated_count: int = 0
    disappeared_count: int = 0
    per_feed_results: List[FeedResult] = field(default_factory=list)
    message: str = ''
    degraded: bool = False
    checksum: Optional[str] = None


def make_sync_uid(platform: str, uid: str) -> str:
    """Build the platform-scoped key used to match feed events to staging."""
    return f"{platform}:{uid}"
