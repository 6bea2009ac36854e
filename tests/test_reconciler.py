from datetime import datetime, timedelta

import pytest

from calsync import assignments
from calsync.event_deriver import derive_events
from calsync.feed_fetcher import Booking
from calsync.reconciler import EventReconciler, reactivate_future_events
from calsync.sync_logging import SyncLogger, SyncOperation
from common.models import Cleaner, CleanerAssignment, Event, EventVersion, Listing

BASE = datetime(2030, 3, 1)
SYNC_1 = datetime(2030, 1, 1, 12, 0)
SYNC_2 = SYNC_1 + timedelta(minutes=5)
SYNC_3 = SYNC_2 + timedelta(minutes=5)


def booking(uid, start_offset, nights, title='Guest - Airbnb'):
    start = BASE + timedelta(days=start_offset)
    return Booking(uid=uid, title=title, start=start, end=start + timedelta(days=nights))


@pytest.fixture
def listing(session):
    listing = Listing(name='Harbor Loft')
    session.add(listing)
    session.flush()
    return listing


def reconcile(session, listing, bookings, sync_time):
    sync_logger = SyncLogger(listing.name)
    reconciler = EventReconciler(session, listing, sync_logger, sync_time=sync_time)
    derived = derive_events(bookings, listing.id)
    reconciler.apply(derived)
    reconciler.deactivate_stale({e.event_uid for e in derived}, [])
    return reconciler, sync_logger


def events_by_uid(session, listing):
    return {e.event_uid: e for e in session.query(Event).filter_by(listing_id=listing.id)}


def test_new_bookings_are_inserted(session, listing):
    reconciler, sync_logger = reconcile(session, listing, [booking('b1', 0, 3)], SYNC_1)

    assert reconciler.counts.added == 2
    assert reconciler.counts.events == 2
    events = events_by_uid(session, listing)
    assert set(events) == {'checkin-b1', 'checkout-b1'}
    assert all(e.version_number == 1 and e.is_active for e in events.values())
    assert events['checkout-b1'].last_synced == SYNC_1
    assert len(sync_logger.get_logs_by_operation(SyncOperation.ADDITION)) == 2


def test_unchanged_sync_only_touches_last_synced(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3)], SYNC_1)
    reconciler, sync_logger = reconcile(session, listing, [booking('b1', 0, 3)], SYNC_2)

    counts = reconciler.counts
    assert (counts.added, counts.replaced, counts.updated, counts.unchanged) == (0, 0, 0, 2)
    events = events_by_uid(session, listing)
    assert all(e.version_number == 1 for e in events.values())
    assert all(e.last_synced == SYNC_2 for e in events.values())
    assert sync_logger.get_summary()[SyncOperation.UNCHANGED.value] == 2


def test_new_neighbour_turns_checkout_same_day(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3)], SYNC_1)
    reconciler, sync_logger = reconcile(
        session, listing, [booking('b1', 0, 3), booking('b2', 3, 2)], SYNC_2
    )

    counts = reconciler.counts
    assert counts.added == 2
    assert counts.updated == 1
    assert counts.unchanged == 1
    assert counts.replaced == 0

    checkout = events_by_uid(session, listing)['checkout-b1']
    assert checkout.checkout_type == 'same_day'
    # Checkout type is not part of the fingerprint, so no new version
    assert checkout.version_number == 1

    changes = sync_logger.get_logs_by_operation(SyncOperation.CHECKOUT_TYPE_CHANGE)
    assert len(changes) == 1
    assert changes[0].payload.old_checkout_type == 'open'
    assert changes[0].payload.new_checkout_type == 'same_day'


def test_moved_booking_archives_previous_dates(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3)], SYNC_1)
    reconciler, sync_logger = reconcile(session, listing, [booking('b1', 0, 4)], SYNC_2)

    assert reconciler.counts.replaced == 1
    assert reconciler.counts.unchanged == 1

    checkout = events_by_uid(session, listing)['checkout-b1']
    assert checkout.version_number == 2
    assert checkout.start_time == BASE + timedelta(days=4)

    versions = session.query(EventVersion).filter_by(event_id=checkout.id).all()
    assert len(versions) == 1
    assert versions[0].change_type == 'moved'
    assert versions[0].version_number == 1
    assert versions[0].previous_start_time == BASE + timedelta(days=3)

    assert reconciler.changed[0]['old_start'] == (BASE + timedelta(days=3)).date().isoformat()
    assert len(sync_logger.get_logs_by_operation(SyncOperation.DATE_CHANGE)) == 1


def test_missing_booking_is_canceled_with_its_assignment(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3), booking('b2', 10, 2)], SYNC_1)
    cleaner = Cleaner(name='Ana', hourly_rate=20)
    session.add(cleaner)
    session.flush()
    checkout_id = events_by_uid(session, listing)['checkout-b1'].id
    assignment = assignments.assign_cleaner(session, cleaner.id, checkout_id, 2.5)

    reconciler, _ = reconcile(session, listing, [booking('b2', 10, 2)], SYNC_2)

    assert reconciler.counts.deactivated == 2
    events = events_by_uid(session, listing)
    assert not events['checkout-b1'].is_active
    assert events['checkout-b1'].version_number == 2
    assert events['checkout-b2'].is_active
    session.refresh(assignment)
    assert not assignment.is_active

    canceled = session.query(EventVersion).filter_by(change_type='canceled').count()
    assert canceled == 2
    assert {c['event_id'] for c in reconciler.canceled} == {'checkin-b1', 'checkout-b1'}


def test_reappearing_booking_reactivates_event_and_assignment(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3), booking('b2', 10, 2)], SYNC_1)
    cleaner = Cleaner(name='Ana', hourly_rate=20)
    session.add(cleaner)
    session.flush()
    checkout_id = events_by_uid(session, listing)['checkout-b1'].id
    assignment = assignments.assign_cleaner(session, cleaner.id, checkout_id)

    reconcile(session, listing, [booking('b2', 10, 2)], SYNC_2)
    reconciler, _ = reconcile(session, listing, [booking('b1', 0, 3), booking('b2', 10, 2)], SYNC_3)

    assert reconciler.counts.updated == 2
    assert events_by_uid(session, listing)['checkout-b1'].is_active
    session.refresh(assignment)
    assert assignment.is_active


def test_empty_batch_never_deactivates(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3)], SYNC_1)
    reconciler, _ = reconcile(session, listing, [], SYNC_2)

    assert reconciler.counts.deactivated == 0
    assert all(e.is_active for e in events_by_uid(session, listing).values())


def test_only_events_inside_window_are_deactivated(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3), booking('b2', 40, 2)], SYNC_1)

    sync_logger = SyncLogger(listing.name)
    reconciler = EventReconciler(session, listing, sync_logger, sync_time=SYNC_2)
    derived = derive_events([booking('b2', 40, 2)], listing.id)
    reconciler.apply(derived)
    deactivated = reconciler.deactivate_stale(
        {e.event_uid for e in derived}, [],
        window_start=BASE + timedelta(days=20), window_end=BASE + timedelta(days=60),
    )

    assert deactivated == 0
    assert events_by_uid(session, listing)['checkout-b1'].is_active


def test_events_past_window_end_stay_active(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3), booking('b2', 90, 2)], SYNC_1)

    sync_logger = SyncLogger(listing.name)
    reconciler = EventReconciler(session, listing, sync_logger, sync_time=SYNC_2)
    derived = derive_events([booking('b1', 0, 3)], listing.id)
    reconciler.apply(derived)
    deactivated = reconciler.deactivate_stale(
        {e.event_uid for e in derived}, [],
        window_start=BASE - timedelta(days=10), window_end=BASE + timedelta(days=60),
    )

    assert deactivated == 0
    events = events_by_uid(session, listing)
    assert events['checkin-b2'].is_active
    assert events['checkout-b2'].is_active


def test_reassignment_keeps_one_active_row(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3)], SYNC_1)
    first, second = Cleaner(name='Ana'), Cleaner(name='Ben')
    session.add_all([first, second])
    session.flush()
    event_id = events_by_uid(session, listing)['checkout-b1'].id

    assignments.assign_cleaner(session, first.id, event_id)
    assignments.assign_cleaner(session, second.id, event_id)

    active = session.query(CleanerAssignment).filter_by(event_id=event_id, is_active=True).all()
    assert [a.cleaner_id for a in active] == [second.id]
    assert session.query(CleanerAssignment).filter_by(event_id=event_id).count() == 2


def test_reactivate_future_events(session, listing):
    reconcile(session, listing, [booking('b1', 0, 3), booking('b2', 10, 2)], SYNC_1)
    reconcile(session, listing, [booking('b2', 10, 2)], SYNC_2)

    counts = reactivate_future_events(session, now=BASE - timedelta(days=1))

    assert counts['events'] == 2
    assert all(e.is_active for e in events_by_uid(session, listing).values())
