from unittest import mock

import pytest

from calsync import assignments
from calsync.feed_fetcher import FeedFetchError
from calsync.listing_sync import ListingSyncer, final_status, summarize, ListingSyncResult
from common.errors import NotFoundError
from common.models import Cleaner, CleanerAssignment, Event, Feed, Listing, SyncLogEntry, SyncSession
from conftest import day, ics

URL_A = 'https://cal.example.com/a.ics'
URL_B = 'https://cal.example.com/b.ics'


def active_uids(session_manager, listing_id):
    with session_manager.session_scope() as s:
        return {
            e.event_uid
            for e in s.query(Event).filter_by(listing_id=listing_id, is_active=True)
        }


def test_first_sync_adds_events_and_records_session(syncer, fetcher, make_listing, session_manager):
    listing_id, feed_ids = make_listing(urls=(URL_A,))
    fetcher.set(URL_A, ics(('b1', 'Ann - Airbnb', day(5), day(8)), ('b2', 'Bob - Airbnb', day(8), day(10))))

    result = syncer.sync_listing(listing_id)

    assert result.status == 'success'
    assert result.feeds_processed == 1
    assert result.events == 4
    assert result.added == 4
    assert active_uids(session_manager, listing_id) == {
        'checkin-b1', 'checkout-b1', 'checkin-b2', 'checkout-b2',
    }

    with session_manager.session_scope() as s:
        sync_session = s.get(SyncSession, result.session_id)
        assert sync_session.sync_type == 'single'
        assert sync_session.status == 'completed'
        assert sync_session.total_added == 4
        assert sync_session.completed_at is not None
        assert s.query(SyncLogEntry).filter_by(sync_session_id=result.session_id).count() == 4
        assert s.get(Feed, feed_ids[0]).last_synced is not None
        checkout = s.query(Event).filter_by(event_uid='checkout-b1').one()
        assert checkout.checkout_type == 'same_day'


def test_resync_without_changes_is_unchanged(syncer, fetcher, make_listing):
    listing_id, _ = make_listing(urls=(URL_A,))
    fetcher.set(URL_A, ics(('b1', 'Ann - Airbnb', day(5), day(8))))

    syncer.sync_listing(listing_id)
    result = syncer.sync_listing(listing_id)

    assert result.added == 0
    assert result.unchanged == 2
    assert result.deactivated == 0


def test_removed_booking_is_deactivated(syncer, fetcher, make_listing, session_manager):
    listing_id, _ = make_listing(urls=(URL_A,))
    fetcher.set(URL_A, ics(('b1', 'Ann', day(5), day(8)), ('b2', 'Bob', day(12), day(14))))
    syncer.sync_listing(listing_id)

    fetcher.set(URL_A, ics(('b2', 'Bob', day(12), day(14))))
    result = syncer.sync_listing(listing_id)

    assert result.deactivated == 2
    assert active_uids(session_manager, listing_id) == {'checkin-b2', 'checkout-b2'}


def test_empty_feed_does_not_deactivate(syncer, fetcher, make_listing, session_manager):
    listing_id, _ = make_listing(urls=(URL_A,))
    fetcher.set(URL_A, ics(('b1', 'Ann', day(5), day(8))))
    syncer.sync_listing(listing_id)

    fetcher.set(URL_A, ics())
    result = syncer.sync_listing(listing_id)

    assert result.status == 'success'
    assert result.deactivated == 0
    assert active_uids(session_manager, listing_id) == {'checkin-b1', 'checkout-b1'}


def test_failed_feed_leaves_its_events_alone(syncer, fetcher, make_listing, session_manager):
    listing_id, _ = make_listing(urls=(URL_A, URL_B))
    fetcher.set(URL_A, ics(('b1', 'Ann', day(5), day(8))))
    fetcher.set(URL_B, ics(('b2', 'Bob', day(12), day(14))))
    syncer.sync_listing(listing_id)

    fetcher.set(URL_B, FeedFetchError('HTTP 503', url=URL_B))
    result = syncer.sync_listing(listing_id)

    assert result.status == 'success'
    assert result.errors == 1
    assert result.feeds_processed == 1
    assert result.deactivated == 0
    assert 'checkout-b2' in active_uids(session_manager, listing_id)
    assert any(r.event_id.startswith('feed-') for r in result.detailed_logs)


def test_unlinked_feed_events_are_deactivated(syncer, fetcher, make_listing, session_manager):
    listing_id, feed_ids = make_listing(urls=(URL_A, URL_B))
    fetcher.set(URL_A, ics(('a1', 'Ann', day(5), day(8))))
    fetcher.set(URL_B, ics(('b1', 'Bob', day(12), day(14))))
    syncer.sync_listing(listing_id)

    with session_manager.session_scope() as s:
        cleaner = Cleaner(name='Maria', hourly_rate=20)
        s.add(cleaner)
        s.flush()
        checkout = s.query(Event).filter_by(listing_id=listing_id, event_uid='checkout-b1').one()
        assignments.assign_cleaner(s, cleaner.id, checkout.id)
        listing = s.get(Listing, listing_id)
        listing.feeds.remove(s.get(Feed, feed_ids[1]))

    result = syncer.sync_listing(listing_id)

    assert result.deactivated == 2
    assert fetcher.calls.count(URL_B) == 1
    assert active_uids(session_manager, listing_id) == {'checkin-a1', 'checkout-a1'}
    with session_manager.session_scope() as s:
        assert s.query(CleanerAssignment).filter_by(is_active=True).count() == 0


def test_inactive_feed_events_are_deactivated(syncer, fetcher, make_listing, session_manager):
    listing_id, feed_ids = make_listing(urls=(URL_A, URL_B))
    fetcher.set(URL_A, ics(('a1', 'Ann', day(5), day(8))))
    fetcher.set(URL_B, ics(('b1', 'Bob', day(12), day(14))))
    syncer.sync_listing(listing_id)

    with session_manager.session_scope() as s:
        s.get(Feed, feed_ids[1]).is_active = False

    result = syncer.sync_listing(listing_id)

    assert result.feeds_processed == 1
    assert result.deactivated == 2
    assert active_uids(session_manager, listing_id) == {'checkin-a1', 'checkout-a1'}


def test_manual_listing_is_skipped(syncer, fetcher, make_listing):
    listing_id, _ = make_listing(urls=(URL_A,), external_id='manual-42')

    result = syncer.sync_listing(listing_id)

    assert result.status == 'skipped'
    assert fetcher.calls == []


def test_unknown_listing_raises(syncer):
    with pytest.raises(NotFoundError):
        syncer.sync_listing('does-not-exist')


def test_listing_already_syncing_is_skipped(syncer, make_listing):
    listing_id, _ = make_listing(urls=(URL_A,))

    with syncer.locks.acquire(listing_id) as acquired:
        assert acquired
        assert syncer.locks.is_locked(listing_id)
        result = syncer.sync_listing(listing_id)

    assert result.status == 'skipped'
    assert 'in progress' in result.error_message
    assert not syncer.locks.is_locked(listing_id)


def test_alerts_follow_the_sync(session_manager, fetcher, sync_config, make_listing):
    alerts = mock.Mock()
    syncer = ListingSyncer(session_manager, fetcher, sync_config, alerts)
    listing_id, _ = make_listing(urls=(URL_A,))
    fetcher.set(URL_A, ics(('b1', 'Ann', day(5), day(8)), ('b2', 'Bob', day(12), day(14))))
    syncer.sync_listing(listing_id)

    fetcher.set(URL_A, ics(('b2', 'Bob', day(12), day(15))))
    syncer.sync_listing(listing_id)

    name, canceled = alerts.send_cancellation_alert.call_args[0]
    assert name == 'Beach House'
    assert {c['event_id'] for c in canceled} == {'checkin-b1', 'checkout-b1'}
    name, changed = alerts.send_change_alert.call_args[0]
    assert [c['event_id'] for c in changed] == ['checkout-b2']


def test_sync_all_covers_syncable_listings(syncer, fetcher, make_listing, session_manager):
    first, _ = make_listing('Beach House', urls=(URL_A,))
    second, _ = make_listing('City Flat', urls=(URL_B,))
    make_listing('Owner Cabin', urls=(), external_id='manual-1')
    fetcher.set(URL_A, ics(('b1', 'Ann', day(5), day(8))))
    fetcher.set(URL_B, ics(('b2', 'Bob', day(6), day(9))))

    run = syncer.sync_all(triggered_by='scheduler')

    assert run['status'] == 'completed'
    assert run['summary']['total_listings'] == 2
    assert run['summary']['total_added'] == 4
    assert {r.listing_id for r in run['results']} == {first, second}

    with session_manager.session_scope() as s:
        sync_session = s.get(SyncSession, run['session_id'])
        assert sync_session.sync_type == 'all'
        assert sync_session.triggered_by == 'scheduler'
        assert sync_session.total_listings == 2
        assert sync_session.completed_listings == 2
        assert sync_session.total_added == 4
        assert s.query(SyncSession).count() == 1


def test_sync_all_is_partial_when_a_listing_fails(syncer, fetcher, make_listing):
    make_listing('Beach House', urls=(URL_A,))
    make_listing('City Flat', urls=(URL_B,))
    fetcher.set(URL_A, ics(('b1', 'Ann', day(5), day(8))))
    fetcher.set(URL_B, ics(('b2', 'Bob', day(6), day(9))))

    with mock.patch.object(syncer, '_run', side_effect=[None, RuntimeError('database went away')]):
        run = syncer.sync_all()

    assert run['status'] == 'partial'
    assert run['summary']['failed'] == 1


def test_final_status():
    assert final_status(3, 0) == 'completed'
    assert final_status(2, 1) == 'partial'
    assert final_status(0, 2) == 'error'
    assert final_status(0, 0) == 'completed'


def test_summarize_counts_statuses():
    summary = summarize([
        ListingSyncResult('a', status='success', added=2),
        ListingSyncResult('b', status='skipped'),
        ListingSyncResult('c', status='error', errors=1),
    ])
    assert summary['successful'] == 1
    assert summary['skipped'] == 1
    assert summary['failed'] == 1
    assert summary['total_added'] == 2
