"""
Integration tests for delivery slot booking.
"""

import threading
from dailyfresh.database import new_session
from dailyfresh.models import DeliverySlot, SlotType
from dailyfresh.repositories import SlotRepository
from dailyfresh.services import cache_service
from dailyfresh.services.cancellation_service import cancel_order
from dailyfresh.services.delivery_service import list_available_slots


class TestSlotReservation:

    def test_reserve_increments_booked_count(self, session, slot, fresh):
        assert SlotRepository(session).reserve(slot.id) is True
        session.commit()
        assert fresh(DeliverySlot, slot.id).booked_count == 1

    def test_full_slot_rejects_booking(self, session, full_slot, fresh):
        """Capacity 10 with 10 booked: the next booking fails and nothing changes."""
        assert SlotRepository(session).reserve(full_slot.id) is False
        session.commit()
        assert fresh(DeliverySlot, full_slot.id).booked_count == 10

    def test_last_booking_closes_slot(self, session, slot, fresh):
        repo = SlotRepository(session)
        for _ in range(10):
            assert repo.reserve(slot.id) is True
        assert repo.reserve(slot.id) is False
        session.commit()

        slot = fresh(DeliverySlot, slot.id)
        assert slot.booked_count == 10
        assert slot.is_available is False

    def test_concurrent_bookings_never_exceed_capacity(self, session, slot, fresh):
        """Two seats left, five concurrent bookings: exactly two succeed."""
        slot.booked_count = 8
        session.commit()
        slot_id = slot.id

        results = []
        errors = []
        barrier = threading.Barrier(5)

        def worker():
            worker_session = new_session()
            try:
                barrier.wait()
                ok = SlotRepository(worker_session).reserve(slot_id)
                worker_session.commit()
                results.append(ok)
            except Exception as e:  # surfaced through `errors`
                worker_session.rollback()
                errors.append(e)
            finally:
                worker_session.close()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert sorted(results) == [False, False, False, True, True]
        slot = fresh(DeliverySlot, slot_id)
        assert slot.booked_count == 10
        assert slot.is_available is False

    def test_release_reopens_full_slot(self, session, slot, fresh):
        repo = SlotRepository(session)
        for _ in range(10):
            repo.reserve(slot.id)
        assert repo.release(slot.id) is True
        session.commit()

        slot = fresh(DeliverySlot, slot.id)
        assert slot.booked_count == 9
        assert slot.is_available is True

    def test_release_never_goes_below_zero(self, session, slot, fresh):
        assert SlotRepository(session).release(slot.id) is False
        assert fresh(DeliverySlot, slot.id).booked_count == 0

    def test_release_keeps_manually_closed_slot_closed(self, session, slot, fresh):
        slot.is_available = False
        slot.booked_count = 3
        session.commit()

        assert SlotRepository(session).release(slot.id) is True
        slot = fresh(DeliverySlot, slot.id)
        assert slot.booked_count == 2
        assert slot.is_available is False


class TestListAvailableSlots:

    def test_lists_open_slots_by_start_time(self, session, slot, full_slot):
        early = DeliverySlot(date=slot.date, start_time=slot.start_time.replace(hour=7),
                             end_time=slot.start_time, slot_type=SlotType.STANDARD, capacity=5)
        express = DeliverySlot(date=slot.date, start_time=slot.start_time, end_time=slot.end_time,
                               slot_type=SlotType.EXPRESS, capacity=5)
        session.add_all([early, express])
        session.commit()

        listed = list_available_slots(session, slot.date, SlotType.STANDARD)
        # full_slot is excluded by its booked count
        assert [s['id'] for s in listed] == [early.id, slot.id]

        express_listed = list_available_slots(session, slot.date, SlotType.EXPRESS)
        assert [s['id'] for s in express_listed] == [express.id]


class CommittedBookingRecorder:
    """Stands in for the listing cache; records the booked count a separate reader sees on invalidation."""

    def __init__(self, slot_id):
        self.slot_id = slot_id
        self.seen = []

    def listing(self, on_date, slot_type, loader):
        return loader()

    def invalidate_listings(self):
        reader = new_session()
        try:
            self.seen.append(reader.get(DeliverySlot, self.slot_id).booked_count)
        finally:
            reader.close()
        return 1


class TestListingInvalidation:

    def test_invalidated_only_after_booking_changes_commit(self, session, slot, place_order, monkeypatch):
        recorder = CommittedBookingRecorder(slot.id)
        monkeypatch.setattr(cache_service, '_slot_cache', recorder)

        order = place_order()
        cancel_order(session, order.id, 'Changed my mind', actor='user:1')

        assert recorder.seen == [1, 0]
