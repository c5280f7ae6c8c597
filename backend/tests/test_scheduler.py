"""
Tests for the tick: collecting due work, the synchronous cron check and housekeeping.
"""
import unittest
from datetime import timedelta

from waitlist.core.constants import (
    ENTRY_EXPIRED,
    ENTRY_NOTIFIED,
    ENTRY_PENDING,
    SLOT_AVAILABLE,
    SLOT_EXPIRED,
    TOKEN_CONFIRMATION,
)
from waitlist.models.slot import Slot
from waitlist.scheduler import waitlist_job
from waitlist.scheduler.waitlist_job import collect_due_slot_ids, run_housekeeping, run_waitlist_check_now
from waitlist.services.calendar import FreeBusyResult

from tests.helpers import NOW, FakeGateway, add_connection, add_entry, add_slot, build_watcher, make_session_factory


class TestCollectDueSlots(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.watcher = build_watcher()
        add_connection(self.db)

    def tearDown(self):
        self.db.close()

    def test_collects_due_monitoring_slots(self):
        due = add_slot(self.db, NOW + timedelta(hours=2))
        add_slot(self.db, NOW + timedelta(hours=2), next_check_at=NOW + timedelta(minutes=3))
        self.assertEqual(collect_due_slot_ids(self.db, self.watcher, NOW), [due.id])

    def test_expires_past_slots_and_their_entries(self):
        """Test that a slot whose start passed is expired along with its pending entries."""
        past = add_slot(self.db, NOW - timedelta(minutes=5))
        entry = add_entry(self.watcher, self.db, past)
        self.assertEqual(collect_due_slot_ids(self.db, self.watcher, NOW), [])
        self.db.refresh(past)
        self.db.refresh(entry)
        self.assertEqual(past.status, SLOT_EXPIRED)
        self.assertEqual(entry.status, ENTRY_EXPIRED)

    def test_includes_available_slot_without_offer(self):
        slot = add_slot(self.db, NOW + timedelta(hours=2), status=SLOT_AVAILABLE, next_check_at=None)
        self.assertEqual(collect_due_slot_ids(self.db, self.watcher, NOW), [slot.id])

    def test_includes_slot_with_expired_offer(self):
        slot = add_slot(self.db, NOW + timedelta(hours=2), status=SLOT_AVAILABLE, next_check_at=None)
        add_entry(self.watcher, self.db, slot)
        self.watcher.matcher.offer_next(self.db, slot.id, NOW)
        self.assertEqual(collect_due_slot_ids(self.db, self.watcher, NOW + timedelta(minutes=5)), [])
        self.assertEqual(collect_due_slot_ids(self.db, self.watcher, NOW + timedelta(minutes=31)), [slot.id])


class TestRunCheckNow(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.gateway = FakeGateway()
        self.watcher = build_watcher(gateway=self.gateway)
        add_connection(self.db)

    def tearDown(self):
        self.db.close()

    def test_outcomes_are_counted(self):
        free_slot = add_slot(self.db, NOW + timedelta(hours=2))
        busy_slot = add_slot(self.db, NOW + timedelta(hours=8))
        add_entry(self.watcher, self.db, free_slot)
        add_entry(self.watcher, self.db, busy_slot, phone="+33600000002")
        self.gateway.results = [FreeBusyResult(free=True), FreeBusyResult(free=False)]

        result = run_waitlist_check_now(self.db, self.watcher, NOW)
        self.assertEqual(result["checked"], 2)
        self.assertEqual(result["outcomes"], {"available": 1, "busy": 1})
        self.assertEqual(result["at"], NOW.isoformat())

    def test_in_flight_slot_is_skipped(self):
        """Test that a slot a background worker holds is not processed twice."""
        slot = add_slot(self.db, NOW + timedelta(hours=2))
        add_entry(self.watcher, self.db, slot)
        with waitlist_job._lock:
            waitlist_job._in_flight.add(slot.id)
        try:
            result = run_waitlist_check_now(self.db, self.watcher, NOW)
        finally:
            with waitlist_job._lock:
                waitlist_job._in_flight.discard(slot.id)
        self.assertEqual(result["checked"], 0)
        self.assertEqual(self.gateway.checks, [])

    def test_failing_slot_does_not_stop_the_tick(self):
        first = add_slot(self.db, NOW + timedelta(hours=2))
        second = add_slot(self.db, NOW + timedelta(hours=3))
        add_entry(self.watcher, self.db, first)
        add_entry(self.watcher, self.db, second, phone="+33600000002")
        self.gateway.results = [RuntimeError("boom"), FreeBusyResult(free=False)]
        result = run_waitlist_check_now(self.db, self.watcher, NOW)
        self.assertEqual(result["outcomes"], {"error": 1, "busy": 1})


class TestHousekeeping(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.watcher = build_watcher(retention_days=7)

    def tearDown(self):
        self.db.close()

    def test_purges_old_tokens_and_archives_old_slots(self):
        old = add_slot(self.db, NOW - timedelta(days=10), status=SLOT_EXPIRED)
        recent = add_slot(self.db, NOW - timedelta(days=2), status=SLOT_EXPIRED)
        entry = add_entry(self.watcher, self.db, recent)
        self.watcher.entries.transition(self.db, entry.id, ENTRY_PENDING, ENTRY_EXPIRED)
        tokens = self.watcher.matcher.tokens
        tokens.issue(self.db, entry.id, TOKEN_CONFIRMATION, NOW - timedelta(days=8))
        tokens.issue(self.db, entry.id, TOKEN_CONFIRMATION, NOW - timedelta(days=1))

        result = run_housekeeping(self.db, self.watcher, NOW)
        self.assertEqual(result, {"tokens_purged": 1, "slots_archived": 1})
        self.assertIsNone(self.db.get(Slot, old.id))

    def test_notified_entries_untouched(self):
        slot = add_slot(self.db, NOW + timedelta(hours=2), status=SLOT_AVAILABLE, next_check_at=None)
        entry = add_entry(self.watcher, self.db, slot)
        self.watcher.matcher.offer_next(self.db, slot.id, NOW)
        run_housekeeping(self.db, self.watcher, NOW)
        self.db.refresh(entry)
        self.assertEqual(entry.status, ENTRY_NOTIFIED)


if __name__ == "__main__":
    unittest.main()
