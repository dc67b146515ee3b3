import unittest
from unittest.mock import patch

from redis import exceptions as redis_exceptions

from checkin.cache import (
    PARTICIPANTS_ALL,
    SCAN_STATS,
    TtlCache,
    participant_qr_key,
    volunteer_email_key,
)
from checkin.data import CheckinData, ScanStats
from checkin.db import (
    DbError,
    EventRecord,
    InMemoryDbClient,
    ParticipantRecord,
    ScanLogRecord,
    VolunteerRecord,
)
from checkin.realtime import ChangeEvent, ChangeType, InMemoryChangeFeed
from checkin.types import ParticipantStatus, ScanOutcome, Table


class FakeClock:
    def __init__(self, now_ms: int = 1_000_000):
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms / 1000

    def advance_ms(self, ms: int) -> None:
        self.now_ms += ms


def make_participant(n: int, status=ParticipantStatus.REGISTERED) -> ParticipantRecord:
    return ParticipantRecord(
        name=f"Guest {n}",
        email=f"guest{n}@example.com",
        phone="555-0100",
        qr_code=f"qr-{n}",
        status=status,
    )


class CheckinDataTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.db = InMemoryDbClient()
        self.cache = TtlCache(clock=self.clock)
        self.feed = InMemoryChangeFeed()
        self.data = CheckinData(self.db, self.cache, self.feed)

    def test_participant_listing_is_cached(self):
        self.db.insert_participant(make_participant(1))
        with patch.object(
            self.db, "list_participants", wraps=self.db.list_participants
        ) as query:
            first, error = self.data.get_participants()
            second, _ = self.data.get_participants()
        self.assertIsNone(error)
        self.assertEqual(len(first), 1)
        self.assertEqual(first, second)
        self.assertIsNot(first, second)
        self.assertEqual(query.call_count, 1)

    def test_mutating_a_result_leaves_the_cache_intact(self):
        self.db.insert_participant(make_participant(1))
        listing, _ = self.data.get_participants()
        listing[0].status = ParticipantStatus.SCANNED
        listing.append(make_participant(2))

        cached, _ = self.data.get_participants()
        self.assertEqual(len(cached), 1)
        self.assertEqual(cached[0].status, ParticipantStatus.REGISTERED)

        participant, _ = self.data.get_participant_by_qr("qr-1")
        participant.name = "Someone else"
        again, _ = self.data.get_participant_by_qr("qr-1")
        self.assertEqual(again.name, "Guest 1")

    def test_feed_failure_does_not_fail_committed_write(self):
        participant = self.db.insert_participant(make_participant(1))
        self.data.get_participants()
        with patch.object(
            self.feed, "publish", side_effect=redis_exceptions.TimeoutError("slow")
        ):
            with self.assertLogs("checkin.data", level="WARNING"):
                updated, error = self.data.update_participant_status(
                    participant.id, ParticipantStatus.SCANNED
                )
        self.assertIsNone(error)
        self.assertEqual(updated.status, ParticipantStatus.SCANNED)
        self.assertNotIn(PARTICIPANTS_ALL, self.cache.keys())

    def test_listing_expires_after_thirty_seconds(self):
        with patch.object(
            self.db, "list_participants", wraps=self.db.list_participants
        ) as query:
            self.data.get_participants()
            self.clock.advance_ms(30_000)
            self.data.get_participants()
        self.assertEqual(query.call_count, 2)

    def test_use_cache_false_skips_cached_value(self):
        self.data.get_participants()
        self.db.insert_participant(make_participant(1))
        fresh, _ = self.data.get_participants(use_cache=False)
        self.assertEqual(len(fresh), 1)

    def test_qr_lookup_cached_for_a_minute(self):
        self.db.insert_participant(make_participant(1))
        with patch.object(
            self.db, "get_participant_by_qr", wraps=self.db.get_participant_by_qr
        ) as query:
            self.data.get_participant_by_qr("qr-1")
            self.clock.advance_ms(59_999)
            self.data.get_participant_by_qr("qr-1")
            self.assertEqual(query.call_count, 1)
            self.clock.advance_ms(1)
            self.data.get_participant_by_qr("qr-1")
            self.assertEqual(query.call_count, 2)

    def test_unknown_qr_is_not_cached(self):
        found, error = self.data.get_participant_by_qr("missing")
        self.assertIsNone(found)
        self.assertIsNone(error)
        self.assertNotIn(participant_qr_key("missing"), self.cache.keys())

    def test_volunteer_email_lookup_cached_for_five_minutes(self):
        self.db.insert_volunteer(VolunteerRecord(name="Asha", email="asha@example.com"))
        self.data.get_volunteer_by_email("asha@example.com")
        self.clock.advance_ms(299_999)
        self.assertIsNotNone(self.cache.get(volunteer_email_key("asha@example.com")))
        self.clock.advance_ms(1)
        self.assertIsNone(self.cache.get(volunteer_email_key("asha@example.com")))

    def test_database_failure_is_returned_not_raised(self):
        with patch.object(
            self.db, "list_participants", side_effect=DbError("connection reset")
        ):
            data, error = self.data.get_participants()
        self.assertIsNone(data)
        self.assertIsInstance(error, DbError)
        self.assertNotIn(PARTICIPANTS_ALL, self.cache.keys())

    def test_status_update_invalidates_listing_stats_and_qr_keys(self):
        participant = self.db.insert_participant(make_participant(1))
        self.data.get_participants()
        self.data.get_scan_stats()
        self.data.get_participant_by_qr("qr-1")

        updated, error = self.data.update_participant_status(
            participant.id, ParticipantStatus.SCANNED
        )

        self.assertIsNone(error)
        self.assertEqual(updated.status, ParticipantStatus.SCANNED)
        self.assertNotIn(PARTICIPANTS_ALL, self.cache.keys())
        self.assertNotIn(SCAN_STATS, self.cache.keys())
        self.assertNotIn(participant_qr_key("qr-1"), self.cache.keys())

        listing, _ = self.data.get_participants()
        self.assertEqual(listing[0].status, ParticipantStatus.SCANNED)
        self.assertEqual(self.data.get_scan_stats().scanned, 1)

    def test_guarded_update_reports_no_match(self):
        participant = self.db.insert_participant(
            make_participant(1, ParticipantStatus.SCANNED)
        )
        updated, error = self.data.update_participant_status(
            participant.id,
            ParticipantStatus.SCANNED,
            unless_status=ParticipantStatus.SCANNED,
        )
        self.assertIsNone(updated)
        self.assertIsNone(error)

    def test_batch_update_leaves_scanned_participants_alone(self):
        a = self.db.insert_participant(make_participant(1))
        b = self.db.insert_participant(make_participant(2, ParticipantStatus.SCANNED))
        updated, error = self.data.batch_update_participant_status(
            [
                (a.id, ParticipantStatus.CHECKED_IN),
                (b.id, ParticipantStatus.REGISTERED),
            ]
        )
        self.assertIsNone(error)
        self.assertEqual([p.id for p in updated], [a.id])
        self.assertEqual(
            self.db.get_participant(b.id).status, ParticipantStatus.SCANNED
        )

    def test_create_participant_failure(self):
        self.db.insert_participant(make_participant(1))
        duplicate = make_participant(2)
        duplicate.qr_code = "qr-1"
        created, error = self.data.create_participant(duplicate)
        self.assertIsNone(created)
        self.assertIsInstance(error, DbError)

    def test_create_volunteer_invalidates_listing(self):
        self.data.get_volunteers()
        created, error = self.data.create_volunteer(
            VolunteerRecord(name="Ravi", email="ravi@example.com")
        )
        self.assertIsNone(error)
        volunteers, _ = self.data.get_volunteers()
        self.assertEqual([v.id for v in volunteers], [created.id])

    def test_events_listing(self):
        self.data.get_events()
        self.data.create_event(
            EventRecord(
                name="Festival", date="2026-08-16", time="18:00", venue="Hall", capacity=500
            )
        )
        events, _ = self.data.get_events()
        self.assertEqual(len(events), 1)


class ScanStatsTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.db = InMemoryDbClient()
        self.data = CheckinData(self.db, TtlCache(clock=self.clock), InMemoryChangeFeed())

    def _seed(self, registered: int, scanned: int, checked_in: int) -> None:
        n = 0
        for status, count in (
            (ParticipantStatus.REGISTERED, registered),
            (ParticipantStatus.SCANNED, scanned),
            (ParticipantStatus.CHECKED_IN, checked_in),
        ):
            for _ in range(count):
                n += 1
                self.db.insert_participant(make_participant(n, status))

    def test_counts_and_rate(self):
        self._seed(registered=3, scanned=5, checked_in=2)
        stats = self.data.get_scan_stats()
        self.assertEqual(
            stats,
            ScanStats(total=10, scanned=5, checked_in=2, registered=3, scan_rate="50.0"),
        )

    def test_empty_roster(self):
        stats = self.data.get_scan_stats()
        self.assertEqual(stats.total, 0)
        self.assertEqual(stats.scan_rate, "0")

    def test_rate_rounds_to_one_decimal(self):
        self._seed(registered=2, scanned=1, checked_in=0)
        self.assertEqual(self.data.get_scan_stats().scan_rate, "33.3")

    def test_failure_yields_zeroed_stats(self):
        with patch.object(
            self.db, "list_participant_statuses", side_effect=DbError("timeout")
        ):
            stats = self.data.get_scan_stats()
        self.assertEqual(stats, ScanStats())

    def test_stats_cached_for_fifteen_seconds(self):
        self._seed(registered=1, scanned=0, checked_in=0)
        self.assertEqual(self.data.get_scan_stats().total, 1)
        self.db.insert_participant(make_participant(99))
        self.clock.advance_ms(14_999)
        self.assertEqual(self.data.get_scan_stats().total, 1)
        self.clock.advance_ms(1)
        self.assertEqual(self.data.get_scan_stats().total, 2)

    def test_cached_stats_are_not_shared(self):
        self._seed(registered=1, scanned=0, checked_in=0)
        self.data.get_scan_stats().total = 500
        self.assertEqual(self.data.get_scan_stats().total, 1)

    def test_scan_log_invalidates_stats(self):
        participant = self.db.insert_participant(make_participant(1))
        self.data.get_scan_stats()
        _, error = self.data.create_scan_log(
            ScanLogRecord(
                participant_id=participant.id,
                scan_time=participant.created_at,
                status=ScanOutcome.SUCCESS,
            )
        )
        self.assertIsNone(error)
        self.assertNotIn(SCAN_STATS, self.data.cache.keys())


class SubscriptionTests(unittest.TestCase):
    def setUp(self):
        self.cache = TtlCache()
        self.feed = InMemoryChangeFeed()
        self.data = CheckinData(InMemoryDbClient(), self.cache, self.feed)

    def test_participant_changes_invalidate_and_notify(self):
        received = []
        self.data.subscribe_to_participants(received.append)
        self.cache.set(PARTICIPANTS_ALL, ["stale"])
        self.cache.set(SCAN_STATS, ScanStats(total=1))
        self.cache.set(participant_qr_key("qr-9"), "stale")

        event = ChangeEvent(Table.PARTICIPANTS, ChangeType.UPDATE, {"qr_code": "qr-9"})
        self.feed.publish(event)

        self.assertEqual(received, [event])
        self.assertEqual(self.cache.keys(), [])

    def test_volunteer_changes_invalidate(self):
        self.data.subscribe_to_volunteers()
        self.cache.set("volunteers_all", ["stale"])
        self.cache.set(volunteer_email_key("a@example.com"), "stale")
        self.cache.set(SCAN_STATS, ScanStats())
        self.feed.publish(
            ChangeEvent(Table.VOLUNTEERS, ChangeType.INSERT, {"email": "a@example.com"})
        )
        self.assertEqual(self.cache.keys(), [SCAN_STATS])

    def test_scan_log_changes_invalidate_stats_only(self):
        self.data.subscribe_to_scan_logs()
        self.cache.set(SCAN_STATS, ScanStats())
        self.cache.set(PARTICIPANTS_ALL, [])
        self.feed.publish(ChangeEvent(Table.SCAN_LOGS, ChangeType.INSERT, {}))
        self.assertEqual(self.cache.keys(), [PARTICIPANTS_ALL])

    def test_unsubscribe_stops_invalidation(self):
        subscription = self.data.subscribe_to_scan_logs()
        subscription.unsubscribe()
        self.cache.set(SCAN_STATS, ScanStats())
        self.feed.publish(ChangeEvent(Table.SCAN_LOGS, ChangeType.INSERT, {}))
        self.assertEqual(self.cache.keys(), [SCAN_STATS])

    def test_writes_publish_change_events(self):
        received = []
        self.data.subscribe_to_participants(received.append)
        created, _ = self.data.create_participant(make_participant(1))
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].type, ChangeType.INSERT)
        self.assertEqual(received[0].record["id"], created.id)


if __name__ == "__main__":
    unittest.main()
