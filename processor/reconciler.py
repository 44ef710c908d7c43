"""Reconciles parsed feed reservations against the staging ledger."""
import logging
import time
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Set

from processor.errors import ConditionalWriteError
from processor.models import (
    ParsedEvent, ReconcileResult, StageStatus, StagingRecord
)

logger = logging.getLogger(__name__)

STAGING_NAMESPACE = uuid.UUID('0b7c4e52-3f1a-4d6b-8e2f-5a9c1d7e4b30')


def staging_id_for(property_id: str, sync_uid: str, generation: int = 0) -> str:
    """
    Deterministic staging id for one appearance of a feed event.

    The generation moves on each time the uid comes back after its record
    disappeared, so every appearance gets its own record.
    """
    return str(uuid.uuid5(STAGING_NAMESPACE, f"{property_id}|{sync_uid}|{generation}"))


class StagingReconciler:
    """
    Upserts feed reservations into staging and flags vanished ones.

    Safe to re-run with the same input: a second pass inserts nothing and
    changes no status, it only refreshes last_seen_at.
    """

    def __init__(self, staging_store, clock: Callable[[], float] = time.time):
        self.staging_store = staging_store
        self.clock = clock

    def reconcile(
        self,
        property_id: str,
        events: Iterable[ParsedEvent],
        source_urls: Optional[Set[str]] = None
    ) -> ReconcileResult:
        """
        Reconcile the latest pull for a property.

        Args:
            property_id: Property being synced
            events: Parsed events from every healthy feed of this pull
            source_urls: Feeds fetched successfully in this pull. Pending
                records from other feeds are never marked disappeared.
                None means every record is eligible.

        Returns:
            ReconcileResult describing what happened to each record
        """
        now = int(self.clock())
        result = ReconcileResult()

        existing = self.staging_store.get_staging_for_property(property_id)
        by_sync_uid: Dict[str, List[StagingRecord]] = {}
        for record in existing:
            by_sync_uid.setdefault(record.sync_uid, []).append(record)

        seen: Set[str] = set()

        for event in events:
            if not event.is_reservation:
                result.skipped += 1
                continue

            sync_uid = event.sync_uid
            if sync_uid in seen:
                logger.warning(f"Duplicate event {sync_uid} in one pull, keeping the first")
                result.skipped += 1
                continue
            seen.add(sync_uid)

            records = by_sync_uid.get(sync_uid, [])
            live = next(
                (r for r in records if r.stage_status != StageStatus.DISAPPEARED),
                None
            )

            if live is None:
                if records:
                    logger.warning(
                        f"Event {sync_uid} reappeared after disappearing; "
                        f"staging it as a new pending record"
                    )
                self._stage(property_id, event, len(records), now, result)
            else:
                self._apply_to_live(live, event, now, result)

        for record in existing:
            if record.sync_uid in seen:
                continue
            if source_urls is not None and record.source_url and record.source_url not in source_urls:
                continue

            if record.stage_status == StageStatus.PENDING:
                self._mark_disappeared(record, now, result)
            elif (
                record.stage_status == StageStatus.CONFIRMED
                and record.missing_from_feed_at is None
            ):
                self.staging_store.set_missing_from_feed(record.staging_id, now)
                record.missing_from_feed_at = now
                result.missing_confirmed.append(record)

        logger.info(
            f"Reconciled property {property_id}: {len(result.new)} new, "
            f"{len(result.updated)} updated, {result.unchanged} unchanged, "
            f"{len(result.disappeared)} disappeared",
            extra={
                'property_id': property_id,
                'terminal_seen': result.terminal_seen,
                'missing_confirmed': len(result.missing_confirmed)
            }
        )
        return result

    def _apply_to_live(
        self,
        live: StagingRecord,
        event: ParsedEvent,
        now: int,
        result: ReconcileResult
    ) -> None:
        if live.is_terminal:
            result.terminal_seen += 1
            if live.missing_from_feed_at is not None:
                self.staging_store.set_missing_from_feed(live.staging_id, None)
        else:
            self._refresh(live, event, now, result)

    def _stage(
        self,
        property_id: str,
        event: ParsedEvent,
        generation: int,
        now: int,
        result: ReconcileResult
    ) -> None:
        """
        Insert a pending record under the next free deterministic id.

        The property listing is read from an eventually consistent index and
        can miss a record written moments ago. A taken id is re-read with a
        consistent get: a live record there is updated instead of duplicated,
        a disappeared one means the next generation is free to try.
        """
        while True:
            staging_id = staging_id_for(property_id, event.sync_uid, generation)
            try:
                result.new.append(self._insert(staging_id, property_id, event, now))
                return
            except ConditionalWriteError:
                current = self.staging_store.get(staging_id)

            if current is None or current.stage_status == StageStatus.DISAPPEARED:
                generation += 1
                continue

            logger.info(
                f"Staging record {staging_id} for {event.sync_uid} was missing from the "
                f"property index; updating it instead of inserting"
            )
            self._apply_to_live(current, event, now, result)
            return

    def _insert(
        self,
        staging_id: str,
        property_id: str,
        event: ParsedEvent,
        now: int
    ) -> StagingRecord:
        record = StagingRecord(
            staging_id=staging_id,
            property_id=property_id,
            platform=event.platform,
            sync_uid=event.sync_uid,
            check_in=event.check_in,
            check_out=event.check_out,
            guest_name_hint=event.guest_name_hint,
            status_text=event.summary,
            phone_last_four=event.phone_last_four,
            stage_status=StageStatus.PENDING,
            first_seen_at=now,
            last_seen_at=now,
            source_url=event.source_url,
            reservation_url=event.reservation_url
        )
        return self.staging_store.insert(record)

    def _refresh(
        self,
        record: StagingRecord,
        event: ParsedEvent,
        now: int,
        result: ReconcileResult
    ) -> None:
        rescheduled = (
            record.check_in != event.check_in or record.check_out != event.check_out
        )
        changed = rescheduled or (
            record.guest_name_hint != event.guest_name_hint
            or record.status_text != event.summary
            or record.phone_last_four != event.phone_last_four
            or record.source_url != event.source_url
            or record.reservation_url != event.reservation_url
        )

        record.check_in = event.check_in
        record.check_out = event.check_out
        record.guest_name_hint = event.guest_name_hint
        record.status_text = event.summary
        record.phone_last_four = event.phone_last_four
        record.source_url = event.source_url
        record.reservation_url = event.reservation_url
        record.last_seen_at = now

        try:
            self.staging_store.refresh_pending(record, now)
        except ConditionalWriteError:
            # Decided by a reviewer between our read and this write.
            logger.info(f"Staging record {record.staging_id} was decided during sync")
            result.terminal_seen += 1
            return

        if changed:
            result.updated.append(record)
            if rescheduled:
                result.rescheduled.append(record)
        else:
            result.unchanged += 1

    def _mark_disappeared(self, record: StagingRecord, now: int, result: ReconcileResult) -> None:
        try:
            self.staging_store.mark_disappeared(record.staging_id, now)
        except ConditionalWriteError:
            logger.info(f"Staging record {record.staging_id} was decided during sync")
            return
        record.stage_status = StageStatus.DISAPPEARED
        record.disappeared_at = now
        result.disappeared.append(record)
        logger.info(
            f"Staging record {record.staging_id} ({record.sync_uid}) disappeared from feed"
        )
