"""Platform-specific heuristics for reading booking details out of feed events."""
import logging
import re
from typing import Dict, Optional, Tuple

from processor.models import RawEvent

logger = logging.getLogger(__name__)

PHONE_IN_PARENS = re.compile(r'\((\d{4})\)')
RESERVED_PREFIX = re.compile(r'^\s*(?:reserved|booked)\s*[-:–]?\s*', re.IGNORECASE)
URL_PATTERN = re.compile(r'https?://\S+')


class PlatformExtractor:
    """
    Generic extractor used for platforms without a dedicated strategy.

    Subclasses override the marker list or individual hooks; the parser
    only ever talks to this interface.
    """

    name = 'generic'
    blocked_markers: Tuple[str, ...] = ('not available', 'blocked')

    def is_blocked(self, raw: RawEvent) -> bool:
        summary = raw.summary.lower()
        return any(marker in summary for marker in self.blocked_markers)

    def guest_name(self, raw: RawEvent) -> Optional[str]:
        return self._name_from_summary(raw.summary)

    def phone_last_four(self, raw: RawEvent) -> Optional[str]:
        match = PHONE_IN_PARENS.search(raw.summary)
        return match.group(1) if match else None

    def reservation_url(self, raw: RawEvent) -> Optional[str]:
        description = raw.first_value('DESCRIPTION') or ''
        match = URL_PATTERN.search(description)
        return match.group(0) if match else None

    def _name_from_summary(self, summary: str) -> Optional[str]:
        """Return the text after a 'Reserved -' prefix, minus any phone group."""
        if not RESERVED_PREFIX.match(summary):
            return None
        name = RESERVED_PREFIX.sub('', summary, count=1)
        name = PHONE_IN_PARENS.sub('', name).strip(' -')
        return name or None


class AirbnbExtractor(PlatformExtractor):
    """Airbnb puts name and phone fragment in the summary, e.g. 'Reserved - Kam Sangha (1207)'."""

    name = 'airbnb'
    blocked_markers = ('not available', 'airbnb (not available)')

    DESCRIPTION_PHONE = re.compile(r'(?:Phone|Tel)[^:\n]*:\s*(\d{4})', re.IGNORECASE)

    def phone_last_four(self, raw: RawEvent) -> Optional[str]:
        phone = super().phone_last_four(raw)
        if phone:
            return phone
        description = raw.first_value('DESCRIPTION') or ''
        match = self.DESCRIPTION_PHONE.search(description)
        return match.group(1) if match else None


class VrboExtractor(PlatformExtractor):
    """VRBO supplies the guest name as the ATTENDEE common name."""

    name = 'vrbo'
    blocked_markers = ('blocked', 'not available')

    def guest_name(self, raw: RawEvent) -> Optional[str]:
        common_name = raw.first_params('ATTENDEE').get('CN')
        if common_name:
            return common_name.strip('"').strip() or None
        return super().guest_name(raw)


class BookingComExtractor(PlatformExtractor):
    """Booking.com marks unavailable nights as 'CLOSED - Not available'."""

    name = 'booking'
    blocked_markers = ('closed - not available', 'not available')


_DEFAULT = PlatformExtractor()
_REGISTRY: Dict[str, PlatformExtractor] = {}


def register_extractor(extractor: PlatformExtractor) -> None:
    """Register an extractor under its platform name."""
    _REGISTRY[extractor.name.lower()] = extractor


def get_extractor(platform: Optional[str]) -> PlatformExtractor:
    """Return the extractor for a platform, falling back to the generic one."""
    if not platform:
        return _DEFAULT
    extractor = _REGISTRY.get(platform.lower())
    if extractor is None:
        logger.debug(f"No extractor registered for platform '{platform}', using generic")
        return _DEFAULT
    return extractor


for _extractor in (AirbnbExtractor(), VrboExtractor(), BookingComExtractor()):
    register_extractor(_extractor)
