"""Parser for iCalendar booking feeds published by rental platforms."""
import logging
import re
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple, Union

from icalendar import Calendar

from feeds.extractors import get_extractor
from processor.errors import ParseError
from processor.models import ParsedEvent, ParseResult, RawEvent

logger = logging.getLogger(__name__)

CALENDAR_MARKER = re.compile(r'^BEGIN:(?:VCALENDAR|VEVENT)\s*$', re.IGNORECASE | re.MULTILINE)


def to_feed_date(value) -> Optional[date]:
    """
    Reduce a decoded DTSTART/DTEND property to a calendar date.

    A date-time keeps the date it carries in the feed; no timezone shift is
    applied, since bookings are whole days.
    """
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return None
    if not isinstance(value, date):
        try:
            value = value.dt
        except (AttributeError, ValueError):
            # icalendar keeps an unparseable value as a broken text property
            return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _property_text(value) -> str:
    # vText and vCalAddress are str subclasses already unescaped by icalendar
    if isinstance(value, str):
        return str(value)
    return value.to_ical().decode('utf-8', errors='replace')


class FeedParser:
    """Turns an iCalendar feed into ParsedEvent objects."""

    def parse(
        self,
        text: Union[str, bytes],
        platform: str,
        source_url: Optional[str] = None
    ) -> ParseResult:
        """
        Parse a complete feed document.

        Malformed VEVENT blocks are dropped and counted; they never abort
        the whole parse.

        Args:
            text: Feed document
            platform: Platform tag used to pick the extractor
            source_url: URL the feed was fetched from

        Returns:
            ParseResult with events sorted by check-in date

        Raises:
            ParseError: If the document is not a readable calendar feed
        """
        if isinstance(text, bytes):
            text = text.decode('utf-8', errors='replace')
        if not CALENDAR_MARKER.search(text):
            raise ParseError("Document is not an iCalendar feed")

        try:
            components = Calendar.from_ical(text, multiple=True)
        except ValueError as e:
            raise ParseError(f"Unreadable iCalendar document: {e}") from e
        if not components:
            # every BEGIN was left open, e.g. a download cut off mid-feed
            raise ParseError("Feed has no complete calendar component")

        events = []
        blocks = 0
        dropped = 0

        for component in components:
            for vevent in component.walk('VEVENT'):
                blocks += 1
                raw = self.to_raw_event(vevent)
                try:
                    events.append(self._build_event(raw, platform, source_url))
                except ParseError as e:
                    dropped += 1
                    logger.warning(
                        f"Dropping malformed event (uid={raw.uid!r}) from {platform} feed: {e}"
                    )

        events.sort(key=lambda event: (event.check_in, event.uid))
        logger.info(
            f"Parsed {len(events)} events from {platform} feed, dropped {dropped}"
        )
        return ParseResult(events=events, dropped=dropped, blocks=blocks)

    def to_raw_event(self, vevent) -> RawEvent:
        """Flatten an icalendar VEVENT into a RawEvent for the extractors."""
        properties: Dict[str, List[Tuple[Dict[str, str], str]]] = {}
        for name, value in vevent.items():
            values = value if isinstance(value, list) else [value]
            properties[name.upper()] = [
                (dict(getattr(item, 'params', None) or {}), _property_text(item))
                for item in values
            ]

        uid = vevent.get('UID')
        return RawEvent(
            uid=str(uid).strip() if uid is not None else None,
            summary=str(vevent.get('SUMMARY', '')).strip(),
            start=to_feed_date(vevent.get('DTSTART')),
            end=to_feed_date(vevent.get('DTEND')),
            properties=properties,
            source_block=vevent.to_ical().decode('utf-8', errors='replace'),
            errors=[f"{name}: {error}" for name, error in vevent.errors]
        )

    def _build_event(
        self,
        raw: RawEvent,
        platform: str,
        source_url: Optional[str]
    ) -> ParsedEvent:
        if not raw.uid:
            raise ParseError("Event has no UID")
        if raw.start is None or raw.end is None:
            detail = '; '.join(raw.errors) or 'DTSTART or DTEND missing'
            raise ParseError(f"Event has no usable dates ({detail})")
        if raw.end <= raw.start:
            raise ParseError(f"Check-out {raw.end} is not after check-in {raw.start}")

        extractor = get_extractor(platform)
        is_reservation = not extractor.is_blocked(raw)

        return ParsedEvent(
            uid=raw.uid,
            platform=platform,
            check_in=raw.start,
            check_out=raw.end,
            summary=raw.summary,
            guest_name_hint=extractor.guest_name(raw) if is_reservation else None,
            phone_last_four=extractor.phone_last_four(raw) if is_reservation else None,
            is_reservation=is_reservation,
            source_url=source_url,
            reservation_url=extractor.reservation_url(raw)
        )
