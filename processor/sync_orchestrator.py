"""Drives a full calendar sync for one property."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Tuple

from processor.errors import FetchError, ParseError, StoreError
from processor.models import (
    AuditStatus, FeedResult, FeedSource, ParsedEvent, ReconcileResult,
    SyncAudit, SyncResult
)

logger = logging.getLogger(__name__)

FEED_OK = 'ok'
FEED_ERROR = 'error'


def _plural(count: int, singular: str, plural: str = None) -> str:
    return f"{count} {singular if count == 1 else (plural or singular + 's')}"


def summarize_changes(result: ReconcileResult) -> str:
    """Human-readable summary of a reconciliation pass."""
    parts = []
    if result.new:
        parts.append(_plural(len(result.new), 'new reservation'))
    if result.updated:
        parts.append(_plural(len(result.updated), 'modification'))
    if result.disappeared:
        parts.append(_plural(len(result.disappeared), 'cancellation'))
    if result.missing_confirmed:
        parts.append(
            _plural(len(result.missing_confirmed), 'confirmed booking') + ' missing from feed'
        )
    return ', '.join(parts) if parts else 'No changes'


class SyncOrchestrator:
    """
    Fetches every active feed of a property and reconciles the result.

    One sync per property runs at a time (PropertyLock); feeds within a
    sync are fetched concurrently, and a failing feed only degrades the
    result instead of aborting it.
    """

    def __init__(
        self,
        feed_source_store,
        fetcher,
        parser,
        change_detector,
        reconciler,
        audit_store,
        notifier,
        lock,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time
    ):
        self.feed_source_store = feed_source_store
        self.fetcher = fetcher
        self.parser = parser
        self.change_detector = change_detector
        self.reconciler = reconciler
        self.audit_store = audit_store
        self.notifier = notifier
        self.lock = lock
        self.max_workers = max_workers
        self.clock = clock

    def trigger_sync(self, property_id: str, force: bool = False) -> SyncResult:
        """
        Sync one property.

        Args:
            property_id: Property to sync
            force: Reconcile even when the fingerprint is unchanged

        Returns:
            SyncResult summary

        Raises:
            SyncInProgressError: If another sync holds the property lock
            StoreError: If persistence fails (already written to the audit log)
        """
        start_time = time.time()
        with self.lock.hold(property_id):
            feed_results: List[FeedResult] = []
            try:
                result = self._sync_locked(property_id, force, feed_results)
            except StoreError as e:
                logger.error(
                    f"Sync failed for property {property_id}: {e}",
                    extra={'error_type': type(e).__name__},
                    exc_info=True
                )
                self._audit_failure(property_id, str(e), feed_results)
                raise

        logger.info(
            f"Sync finished for property {property_id}: {result.status}",
            extra={
                'duration_seconds': round(time.time() - start_time, 2),
                'new_count': result.new_count,
                'updated_count': result.updated_count,
                'degraded': result.degraded
            }
        )
        return result

    def sync_properties(self, property_ids: Iterable[str], force: bool = False) -> Dict[str, object]:
        """
        Sync several independent properties.

        Returns:
            Mapping of property id to SyncResult, or to the exception raised
        """
        outcomes: Dict[str, object] = {}
        for property_id in property_ids:
            try:
                outcomes[property_id] = self.trigger_sync(property_id, force=force)
            except Exception as e:
                logger.error(f"Sync failed for property {property_id}: {e}")
                outcomes[property_id] = e
        return outcomes

    def _sync_locked(
        self,
        property_id: str,
        force: bool,
        feed_results: List[FeedResult]
    ) -> SyncResult:
        sources = self.feed_source_store.get_active_feed_sources(property_id)
        if not sources:
            message = 'No active feed sources configured'
            self._audit(property_id, AuditStatus.NO_CHANGES, message, [])
            return SyncResult(
                property_id=property_id,
                status=AuditStatus.NO_CHANGES,
                has_changes=False,
                message=message
            )

        pulled = self._pull_feeds(sources)
        feed_results.extend(result for result, _ in pulled)
        self._record_feed_status(property_id, pulled)

        healthy = [(result, events) for result, events in pulled if result.success]
        failed = [result for result, _ in pulled if not result.success]
        degraded = bool(failed)

        if not healthy:
            message = f"All {len(sources)} feed sources failed: " + '; '.join(
                f"{result.platform}: {result.error}" for result in failed
            )
            self._audit(property_id, AuditStatus.ERROR, message, feed_results)
            self.notifier.raise_notification(
                'sync_error', property_id, 'Calendar sync failed', message, severity='warning'
            )
            return SyncResult(
                property_id=property_id,
                status=AuditStatus.ERROR,
                has_changes=False,
                per_feed_results=feed_results,
                message=message,
                degraded=True
            )

        events: List[ParsedEvent] = [event for _, feed_events in healthy for event in feed_events]
        reservations = [event for event in events if event.is_reservation]
        fingerprint = self.change_detector.fingerprint(events)

        result = SyncResult(
            property_id=property_id,
            status=AuditStatus.NO_CHANGES,
            has_changes=False,
            events_found=len(events),
            reservations_found=len(reservations),
            per_feed_results=feed_results,
            degraded=degraded,
            checksum=fingerprint
        )

        if not force and not self.change_detector.has_changed(property_id, fingerprint):
            result.message = f"No changes detected. {len(events)} events unchanged."
            self._audit(
                property_id, AuditStatus.NO_CHANGES,
                self._with_failures(result.message, failed), feed_results
            )
            return result

        reconciled = self.reconciler.reconcile(
            property_id,
            events,
            source_urls={feed_result.url for feed_result, _ in healthy}
        )
        if failed:
            # the aggregate lacks the failed feeds, so it is not a baseline
            logger.info(
                f"Keeping previous fingerprint for property {property_id}: "
                f"{len(failed)} feed sources failed"
            )
        else:
            self.change_detector.record(property_id, fingerprint, len(events))

        result.status = AuditStatus.CHANGES_DETECTED
        result.has_changes = True
        result.new_count = len(reconciled.new)
        result.updated_count = len(reconciled.updated)
        result.disappeared_count = len(reconciled.disappeared)
        result.message = (
            f"Synced {len(reservations)} reservations. {summarize_changes(reconciled)}."
        )
        self._audit(
            property_id, AuditStatus.CHANGES_DETECTED,
            self._with_failures(result.message, failed), feed_results
        )
        self._notify(property_id, reconciled)
        return result

    def _pull_feeds(self, sources: List[FeedSource]) -> List[Tuple[FeedResult, List[ParsedEvent]]]:
        """Fetch and parse every source concurrently, isolating failures."""
        workers = max(1, min(self.max_workers, len(sources)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self._pull_feed, sources))

    def _pull_feed(self, source: FeedSource) -> Tuple[FeedResult, List[ParsedEvent]]:
        try:
            text = self.fetcher.fetch(source.url)
            parsed = self.parser.parse(text, platform=source.platform, source_url=source.url)
        except (FetchError, ParseError) as e:
            logger.warning(
                f"Feed {source.platform} for property {source.property_id} failed: {e}",
                extra={'url': source.url, 'error_type': type(e).__name__}
            )
            return FeedResult(
                platform=source.platform,
                url=source.url,
                success=False,
                error=str(e)
            ), []

        return FeedResult(
            platform=source.platform,
            url=source.url,
            success=True,
            events_found=len(parsed.events),
            reservations_found=len(parsed.reservations),
            dropped=parsed.dropped
        ), parsed.events

    def _record_feed_status(
        self,
        property_id: str,
        pulled: List[Tuple[FeedResult, List[ParsedEvent]]]
    ) -> None:
        synced_at = int(self.clock())
        for result, _ in pulled:
            self.feed_source_store.update_sync_status(
                property_id,
                result.platform,
                FEED_OK if result.success else FEED_ERROR,
                synced_at,
                error=result.error
            )

    def _notify(self, property_id: str, reconciled: ReconcileResult) -> None:
        new_count = len(reconciled.new)
        if new_count:
            self.notifier.raise_notification(
                'new_booking',
                property_id,
                f"{_plural(new_count, 'New Booking')}",
                f"{_plural(new_count, 'new reservation')} detected from calendar sync. "
                f"Review and confirm in the Reservations page."
            )

        rescheduled = len(reconciled.rescheduled)
        if rescheduled:
            self.notifier.raise_notification(
                'modification',
                property_id,
                f"{_plural(rescheduled, 'Reservation')} Modified",
                f"{_plural(rescheduled, 'pending reservation')} changed dates. "
                f"Please review the changes.",
                severity='warning'
            )

        for record in reconciled.missing_confirmed:
            self.notifier.raise_notification(
                'cancellation',
                property_id,
                f"Reservation Cancelled on {record.platform.title()}",
                f"Reservation from {record.check_in.isoformat()} to "
                f"{record.check_out.isoformat()} (reservation {record.reservation_id}) "
                f"is no longer in the {record.platform} calendar. Please review and update.",
                severity='critical'
            )

    def _audit(
        self,
        property_id: str,
        status: str,
        message: str,
        feed_results: List[FeedResult]
    ) -> None:
        self.audit_store.append(SyncAudit(
            property_id=property_id,
            timestamp=int(self.clock()),
            status=status,
            message=message,
            per_feed_results=list(feed_results)
        ))

    def _audit_failure(self, property_id: str, message: str, feed_results: List[FeedResult]) -> None:
        try:
            self._audit(property_id, AuditStatus.ERROR, message, feed_results)
        except StoreError as e:
            logger.error(f"Could not write error audit entry for property {property_id}: {e}")

    @staticmethod
    def _with_failures(message: str, failed: List[FeedResult]) -> str:
        if not failed:
            return message
        return message + ' Failed feeds: ' + '; '.join(
            f"{result.platform}: {result.error}" for result in failed
        )
