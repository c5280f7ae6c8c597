"""
Tests for the slot state machine: compare-and-set transitions, scheduling and expiry.
"""
import unittest
from datetime import timedelta

from waitlist.core.constants import (
    SLOT_AVAILABLE,
    SLOT_CANCELLED,
    SLOT_EXPIRED,
    SLOT_FILLED,
    SLOT_MONITORING,
    SLOT_PENDING,
)
from waitlist.core.clock import as_utc
from waitlist.core.errors import ValidationError
from waitlist.services.slot_registry import compute_check_interval

from tests.helpers import NOW, OWNER, add_connection, add_entry, add_slot, build_watcher, make_session_factory


class TestCheckInterval(unittest.TestCase):
    def test_interval_tightens_as_slot_approaches(self):
        """Test that polling goes 3 min within 6h, 5 min within 24h, 10 min beyond."""
        self.assertEqual(compute_check_interval(NOW + timedelta(hours=2), NOW), 3)
        self.assertEqual(compute_check_interval(NOW + timedelta(hours=6), NOW), 3)
        self.assertEqual(compute_check_interval(NOW + timedelta(hours=12), NOW), 5)
        self.assertEqual(compute_check_interval(NOW + timedelta(days=3), NOW), 10)


class TestSlotRegistry(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.watcher = build_watcher()
        self.slots = self.watcher.slots

    def tearDown(self):
        self.db.close()

    def test_find_or_create_reuses_slot_within_window(self):
        """Test that a request 15 minutes off an open slot reuses it instead of creating a second one."""
        start = NOW + timedelta(days=1)
        first = self.slots.find_or_create(self.db, OWNER, start, now=NOW)
        second = self.slots.find_or_create(self.db, OWNER, start + timedelta(minutes=15), now=NOW)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.status, SLOT_PENDING)

    def test_find_or_create_joins_available_slot(self):
        """Test that a request for a slot currently on offer queues behind it instead of opening a parallel slot."""
        start = NOW + timedelta(days=1)
        first = self.slots.find_or_create(self.db, OWNER, start, now=NOW)
        first.status = SLOT_AVAILABLE
        self.db.commit()
        second = self.slots.find_or_create(self.db, OWNER, start, now=NOW)
        self.assertEqual(first.id, second.id)

    def test_find_or_create_replaces_closed_slot(self):
        start = NOW + timedelta(days=1)
        first = self.slots.find_or_create(self.db, OWNER, start, now=NOW)
        first.status = SLOT_FILLED
        self.db.commit()
        second = self.slots.find_or_create(self.db, OWNER, start, now=NOW)
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(second.status, SLOT_PENDING)

    def test_find_or_create_uses_default_length(self):
        """Test that a slot without an end gets the default length."""
        start = NOW + timedelta(days=1)
        slot = self.slots.find_or_create(self.db, OWNER, start, now=NOW)
        self.assertEqual(as_utc(slot.slot_end) - as_utc(slot.slot_start), timedelta(minutes=60))

    def test_find_or_create_rejects_inverted_window(self):
        """Test that slot_end before slot_start is a validation error."""
        start = NOW + timedelta(days=1)
        with self.assertRaises(ValidationError):
            self.slots.find_or_create(self.db, OWNER, start, start - timedelta(minutes=5), now=NOW)

    def test_other_owner_gets_its_own_slot(self):
        start = NOW + timedelta(days=1)
        a = self.slots.find_or_create(self.db, OWNER, start, now=NOW)
        b = self.slots.find_or_create(self.db, "other-business", start, now=NOW)
        self.assertNotEqual(a.id, b.id)

    def test_transition_is_compare_and_set(self):
        """Test that only the first of two identical transitions wins."""
        slot = add_slot(self.db, NOW + timedelta(hours=3))
        self.assertTrue(self.slots.transition(self.db, slot.id, SLOT_MONITORING, SLOT_AVAILABLE))
        self.assertFalse(self.slots.transition(self.db, slot.id, SLOT_MONITORING, SLOT_AVAILABLE))
        self.db.refresh(slot)
        self.assertEqual(slot.status, SLOT_AVAILABLE)

    def test_illegal_transition_raises(self):
        """Test that leaving a terminal state is refused outright."""
        slot = add_slot(self.db, NOW + timedelta(hours=3), status=SLOT_FILLED)
        with self.assertRaises(ValueError):
            self.slots.transition(self.db, slot.id, SLOT_FILLED, SLOT_MONITORING)

    def test_activate_monitoring_schedules_first_check(self):
        slot = add_slot(self.db, NOW + timedelta(hours=3), status=SLOT_PENDING, next_check_at=None)
        self.assertTrue(self.slots.activate_monitoring(self.db, slot, NOW))
        self.assertEqual(slot.status, SLOT_MONITORING)
        self.assertEqual(as_utc(slot.next_check_at), NOW + timedelta(minutes=3))

    def test_mark_checked_reschedules(self):
        slot = add_slot(self.db, NOW + timedelta(hours=12))
        self.slots.mark_checked(self.db, slot, NOW)
        self.db.refresh(slot)
        self.assertEqual(as_utc(slot.last_check_at), NOW)
        self.assertEqual(as_utc(slot.next_check_at), NOW + timedelta(minutes=5))
        self.assertEqual(slot.check_interval_minutes, 5)

    def test_defer_after_error_never_tightens_schedule(self):
        """Test that a transient failure pushes the next check past the planned one, with jitter."""
        planned = NOW + timedelta(minutes=4)
        slot = add_slot(self.db, NOW + timedelta(hours=12), next_check_at=planned)
        next_check = self.slots.defer_after_error(self.db, slot, NOW, "timeout")
        self.assertGreaterEqual(next_check, planned + timedelta(seconds=60))
        self.assertLessEqual(next_check, planned + timedelta(seconds=120))
        self.db.refresh(slot)
        self.assertEqual(slot.status, SLOT_MONITORING)
        self.assertEqual(slot.last_error, "timeout")

    def test_due_slots_requires_enabled_connection(self):
        """Test that slots of a business with a disabled calendar are not due."""
        add_slot(self.db, NOW + timedelta(hours=3))
        add_slot(self.db, NOW + timedelta(hours=3), owner_id="paused")
        add_connection(self.db)
        add_connection(self.db, owner_id="paused", is_enabled=False)
        due = self.slots.due_slots(self.db, NOW)
        self.assertEqual([s.owner_id for s in due], [OWNER])

    def test_due_slots_skips_future_checks(self):
        add_connection(self.db)
        add_slot(self.db, NOW + timedelta(hours=3), next_check_at=NOW + timedelta(minutes=2))
        self.assertEqual(self.slots.due_slots(self.db, NOW), [])

    def test_expire_past(self):
        """Test that open slots whose start passed expire, terminal ones are left alone."""
        past = add_slot(self.db, NOW - timedelta(minutes=1))
        filled = add_slot(self.db, NOW - timedelta(hours=1), status=SLOT_FILLED)
        future = add_slot(self.db, NOW + timedelta(hours=1))
        self.assertEqual(self.slots.expire_past(self.db, NOW), [past.id])
        for slot in (past, filled, future):
            self.db.refresh(slot)
        self.assertEqual(past.status, SLOT_EXPIRED)
        self.assertEqual(filled.status, SLOT_FILLED)
        self.assertEqual(future.status, SLOT_MONITORING)

    def test_cancel_open_slot(self):
        slot = add_slot(self.db, NOW + timedelta(hours=3))
        self.assertTrue(self.slots.cancel(self.db, slot.id))
        self.db.refresh(slot)
        self.assertEqual(slot.status, SLOT_CANCELLED)
        self.assertFalse(self.slots.cancel(self.db, slot.id))

    def test_delete_refuses_referenced_slot(self):
        """Test that a slot still waited on by a pending entry cannot be deleted."""
        slot = add_slot(self.db, NOW + timedelta(hours=3), status=SLOT_CANCELLED)
        add_entry(self.watcher, self.db, slot)
        with self.assertRaises(ValidationError):
            self.slots.delete(self.db, slot.id)

    def test_delete_refuses_monitoring_slot(self):
        slot = add_slot(self.db, NOW + timedelta(hours=3))
        with self.assertRaises(ValidationError):
            self.slots.delete(self.db, slot.id)

    def test_archive_terminal(self):
        old = add_slot(self.db, NOW - timedelta(days=10), status=SLOT_EXPIRED)
        add_slot(self.db, NOW - timedelta(days=1), status=SLOT_EXPIRED)
        self.assertEqual(self.slots.archive_terminal(self.db, NOW - timedelta(days=7)), 1)
        self.assertEqual([s.id for s in self.slots.list_for_owner(self.db, OWNER)], [old.id + 1])


if __name__ == "__main__":
    unittest.main()
