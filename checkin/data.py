"""
Data-access helpers with a read-through cache.

Each helper wraps one query shape. Reads consult the cache first and
populate it on a miss; writes invalidate the keys they make stale and
publish a change event. Database failures are returned in the ``error``
slot of a ``QueryResult`` instead of being raised.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, NamedTuple, Optional

from checkin.cache import (
    EVENTS_ALL,
    PARTICIPANTS_ALL,
    SCAN_STATS,
    VOLUNTEERS_ALL,
    TtlCache,
    participant_qr_key,
    volunteer_email_key,
)
from checkin.config import Settings
from checkin.db import (
    DbClient,
    DbError,
    EventRecord,
    ParticipantRecord,
    ScanLogRecord,
    VolunteerApplicationRecord,
    VolunteerRecord,
)
from checkin.realtime import ChangeEvent, ChangeFeed, ChangeType, Subscription
from checkin.types import ParticipantStatus, Table

logger = logging.getLogger(__name__)


class QueryResult(NamedTuple):
    data: Any
    error: Optional[DbError]


@dataclass(frozen=True)
class CacheTtls:
    stats_ms: int = 15_000
    listing_ms: int = 30_000
    lookup_ms: int = 60_000
    identity_ms: int = 300_000

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheTtls":
        return cls(
            stats_ms=settings.stats_cache_ttl_ms,
            listing_ms=settings.listing_cache_ttl_ms,
            lookup_ms=settings.lookup_cache_ttl_ms,
            identity_ms=settings.identity_cache_ttl_ms,
        )


@dataclass
class ScanStats:
    total: int = 0
    scanned: int = 0
    checked_in: int = 0
    registered: int = 0
    scan_rate: str = "0"

    @classmethod
    def from_statuses(cls, statuses: Iterable[ParticipantStatus]) -> "ScanStats":
        statuses = list(statuses)
        total = len(statuses)
        scanned = statuses.count(ParticipantStatus.SCANNED)
        return cls(
            total=total,
            scanned=scanned,
            checked_in=statuses.count(ParticipantStatus.CHECKED_IN),
            registered=statuses.count(ParticipantStatus.REGISTERED),
            scan_rate=f"{scanned / total * 100:.1f}" if total else "0",
        )


ChangeCallback = Callable[[ChangeEvent], None]


class CheckinData:
    """Cached access to participants, volunteers, scan logs and events."""

    def __init__(
        self,
        db: DbClient,
        cache: TtlCache,
        feed: ChangeFeed,
        ttls: CacheTtls | None = None,
    ):
        self.db = db
        self.cache = cache
        self.feed = feed
        self.ttls = ttls or CacheTtls()

    def _read(
        self,
        key: str,
        ttl_ms: int,
        use_cache: bool,
        query: Callable[[], Any],
        what: str,
    ) -> QueryResult:
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return QueryResult(copy.deepcopy(cached), None)
        try:
            data = query()
        except DbError as exc:
            logger.error("Failed to load %s: %s", what, exc)
            return QueryResult(None, exc)
        if data is not None:
            # Callers get their own copies; the cached value is never shared.
            self.cache.set(key, copy.deepcopy(data), ttl_ms)
        return QueryResult(data, None)

    def _write(self, mutation: Callable[[], Any], what: str) -> QueryResult:
        try:
            return QueryResult(mutation(), None)
        except DbError as exc:
            logger.error("Failed to %s: %s", what, exc)
            return QueryResult(None, exc)

    def _publish(self, table: Table, change: ChangeType, record: Any) -> None:
        """Announce a committed write; a feed failure must not undo its result."""
        try:
            self.feed.publish(
                ChangeEvent(table=table, type=change, record=record.as_dict())
            )
        except Exception:
            logger.warning(
                "Could not publish %s change for %s",
                change.value,
                table.value,
                exc_info=True,
            )

    # Participants

    def get_participants(self, use_cache: bool = True) -> QueryResult:
        return self._read(
            PARTICIPANTS_ALL,
            self.ttls.listing_ms,
            use_cache,
            self.db.list_participants,
            "participants",
        )

    def get_participant_by_qr(
        self, qr_code: str, use_cache: bool = True
    ) -> QueryResult:
        return self._read(
            participant_qr_key(qr_code),
            self.ttls.lookup_ms,
            use_cache,
            lambda: self.db.get_participant_by_qr(qr_code),
            "participant by QR code",
        )

    def create_participant(self, participant: ParticipantRecord) -> QueryResult:
        created, error = self._write(
            lambda: self.db.insert_participant(participant), "create participant"
        )
        if error:
            return QueryResult(None, error)
        self.cache.delete(PARTICIPANTS_ALL)
        self.cache.delete(SCAN_STATS)
        self._publish(Table.PARTICIPANTS, ChangeType.INSERT, created)
        return QueryResult(created, None)

    def update_participant_status(
        self,
        participant_id: str,
        status: ParticipantStatus,
        *,
        unless_status: Optional[ParticipantStatus] = None,
    ) -> QueryResult:
        """
        Set a participant's status.

        With ``unless_status`` the update only applies when the stored status
        differs; ``data`` is None when no row was updated.
        """
        updated, error = self._write(
            lambda: self.db.update_participant_status(
                participant_id, status, unless_status=unless_status
            ),
            "update participant status",
        )
        if error:
            return QueryResult(None, error)
        if updated is None:
            return QueryResult(None, None)
        self.cache.delete(PARTICIPANTS_ALL)
        self.cache.delete(SCAN_STATS)
        self.cache.delete(participant_qr_key(updated.qr_code))
        self._publish(Table.PARTICIPANTS, ChangeType.UPDATE, updated)
        return QueryResult(updated, None)

    def batch_update_participant_status(
        self, updates: Iterable[tuple[str, ParticipantStatus]]
    ) -> QueryResult:
        """Apply many status changes; scanned participants are left as-is."""
        updates = list(updates)
        updated, error = self._write(
            lambda: self.db.bulk_update_participant_status(updates),
            "batch update participant status",
        )
        if error:
            return QueryResult(None, error)
        self.cache.delete(PARTICIPANTS_ALL)
        self.cache.delete(SCAN_STATS)
        for record in updated:
            self.cache.delete(participant_qr_key(record.qr_code))
            self._publish(Table.PARTICIPANTS, ChangeType.UPDATE, record)
        return QueryResult(updated, None)

    # Volunteers

    def get_volunteers(self, use_cache: bool = True) -> QueryResult:
        return self._read(
            VOLUNTEERS_ALL,
            self.ttls.listing_ms,
            use_cache,
            self.db.list_volunteers,
            "volunteers",
        )

    def get_volunteer_by_email(
        self, email: str, use_cache: bool = True
    ) -> QueryResult:
        return self._read(
            volunteer_email_key(email),
            self.ttls.identity_ms,
            use_cache,
            lambda: self.db.get_volunteer_by_email(email),
            "volunteer by email",
        )

    def create_volunteer(self, volunteer: VolunteerRecord) -> QueryResult:
        created, error = self._write(
            lambda: self.db.insert_volunteer(volunteer), "create volunteer"
        )
        if error:
            return QueryResult(None, error)
        self.cache.delete(VOLUNTEERS_ALL)
        self.cache.delete(volunteer_email_key(created.email))
        self._publish(Table.VOLUNTEERS, ChangeType.INSERT, created)
        return QueryResult(created, None)

    # Scan logs and stats

    def create_scan_log(self, scan_log: ScanLogRecord) -> QueryResult:
        created, error = self._write(
            lambda: self.db.insert_scan_log(scan_log), "create scan log"
        )
        if error:
            return QueryResult(None, error)
        self.cache.delete(SCAN_STATS)
        self._publish(Table.SCAN_LOGS, ChangeType.INSERT, created)
        return QueryResult(created, None)

    def get_scan_stats(self, use_cache: bool = True) -> ScanStats:
        """Status counts over all participants; zeroed if the query fails."""
        if use_cache:
            cached = self.cache.get(SCAN_STATS)
            if cached is not None:
                return copy.deepcopy(cached)
        try:
            statuses = self.db.list_participant_statuses()
        except DbError as exc:
            logger.error("Failed to load participant statuses: %s", exc)
            return ScanStats()
        stats = ScanStats.from_statuses(statuses)
        self.cache.set(SCAN_STATS, copy.deepcopy(stats), self.ttls.stats_ms)
        return stats

    # Applications and events

    def create_volunteer_application(
        self, application: VolunteerApplicationRecord
    ) -> QueryResult:
        created, error = self._write(
            lambda: self.db.insert_volunteer_application(application),
            "create volunteer application",
        )
        if error:
            return QueryResult(None, error)
        self._publish(Table.VOLUNTEER_APPLICATIONS, ChangeType.INSERT, created)
        return QueryResult(created, None)

    def get_events(self, use_cache: bool = True) -> QueryResult:
        return self._read(
            EVENTS_ALL,
            self.ttls.listing_ms,
            use_cache,
            self.db.list_events,
            "events",
        )

    def create_event(self, event: EventRecord) -> QueryResult:
        created, error = self._write(
            lambda: self.db.insert_event(event), "create event"
        )
        if error:
            return QueryResult(None, error)
        self.cache.delete(EVENTS_ALL)
        self._publish(Table.EVENTS, ChangeType.INSERT, created)
        return QueryResult(created, None)

    # Realtime invalidation

    def subscribe_to_participants(
        self, callback: ChangeCallback | None = None
    ) -> Subscription:
        def on_change(event: ChangeEvent) -> None:
            self.cache.delete(PARTICIPANTS_ALL)
            self.cache.delete(SCAN_STATS)
            qr_code = event.record.get("qr_code")
            if qr_code:
                self.cache.delete(participant_qr_key(qr_code))
            if callback:
                callback(event)

        return self.feed.subscribe(Table.PARTICIPANTS, on_change)

    def subscribe_to_volunteers(
        self, callback: ChangeCallback | None = None
    ) -> Subscription:
        def on_change(event: ChangeEvent) -> None:
            self.cache.delete(VOLUNTEERS_ALL)
            email = event.record.get("email")
            if email:
                self.cache.delete(volunteer_email_key(email))
            if callback:
                callback(event)

        return self.feed.subscribe(Table.VOLUNTEERS, on_change)

    def subscribe_to_scan_logs(
        self, callback: ChangeCallback | None = None
    ) -> Subscription:
        def on_change(event: ChangeEvent) -> None:
            self.cache.delete(SCAN_STATS)
            if callback:
                callback(event)

        return self.feed.subscribe(Table.SCAN_LOGS, on_change)

    def subscribe_all(self) -> list[Subscription]:
        """Keep this process's cache in step with changes made elsewhere."""
        return [
            self.subscribe_to_participants(),
            self.subscribe_to_volunteers(),
            self.subscribe_to_scan_logs(),
        ]
