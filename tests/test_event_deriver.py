from datetime import datetime

from calsync.event_deriver import OPEN, SAME_DAY, derive_events, guest_name_from_title
from calsync.feed_fetcher import Booking
from calsync.fingerprint import ChangeKind, classify, create_event_fingerprint


def booking(uid, start, end, title='Ann Smith - Airbnb'):
    return Booking(uid=uid, title=title, start=start, end=end, feed_id='feed-1')


def by_uid(events):
    return {e.event_uid: e for e in events}


def test_each_booking_yields_checkin_and_checkout():
    events = derive_events(
        [booking('b1', datetime(2024, 6, 3), datetime(2024, 6, 6))],
        'listing-1',
    )

    assert [e.event_uid for e in events] == ['checkin-b1', 'checkout-b1']
    checkin, checkout = events

    assert checkin.is_check_in and not checkin.is_check_out
    assert checkin.start_time == checkin.end_time == datetime(2024, 6, 3)
    assert checkin.title == 'Check-in: Ann Smith - Airbnb'
    assert checkin.checkout_time is None

    assert checkout.is_check_out and not checkout.is_check_in
    assert checkout.start_time == checkout.end_time == datetime(2024, 6, 6)
    assert checkout.title == 'Check-out: Ann Smith - Airbnb'
    assert checkout.checkout_time == '10:00:00'
    assert checkout.checkout_type == OPEN
    assert checkout.guest_name == 'Ann Smith'
    assert checkout.listing_id == 'listing-1'
    assert checkout.feed_id == 'feed-1'


def test_checkout_is_same_day_when_another_booking_checks_in():
    events = by_uid(derive_events(
        [
            booking('b1', datetime(2024, 6, 3), datetime(2024, 6, 6)),
            booking('b2', datetime(2024, 6, 6), datetime(2024, 6, 9)),
        ],
        'listing-1',
    ))

    assert events['checkout-b1'].checkout_type == SAME_DAY
    assert events['checkout-b2'].checkout_type == OPEN


def test_same_day_compares_dates_not_times():
    events = by_uid(derive_events(
        [
            booking('b1', datetime(2024, 6, 3, 15), datetime(2024, 6, 6, 10)),
            booking('b2', datetime(2024, 6, 6, 16), datetime(2024, 6, 9, 10)),
        ],
        'listing-1',
    ))
    assert events['checkout-b1'].checkout_type == SAME_DAY


def test_excluded_titles_are_dropped():
    events = derive_events(
        [
            booking('b1', datetime(2024, 6, 3), datetime(2024, 6, 6)),
            booking('blocked', datetime(2024, 6, 6), datetime(2024, 6, 8), title='Airbnb (Not available)'),
        ],
        'listing-1',
        excluded_titles=['Airbnb (Not available)'],
    )

    assert {e.booking_uid for e in events} == {'b1'}
    # The blocked interval does not make the checkout same-day
    assert by_uid(events)['checkout-b1'].checkout_type == OPEN


def test_repeated_uid_keeps_last_occurrence():
    events = derive_events(
        [
            booking('b1', datetime(2024, 6, 3), datetime(2024, 6, 6)),
            booking('b1', datetime(2024, 6, 4), datetime(2024, 6, 7)),
        ],
        'listing-1',
    )
    assert len(events) == 2
    assert by_uid(events)['checkin-b1'].start_time == datetime(2024, 6, 4)


def test_custom_checkout_time():
    events = derive_events(
        [booking('b1', datetime(2024, 6, 3), datetime(2024, 6, 6))],
        'listing-1',
        checkout_time='11:30:00',
    )
    assert by_uid(events)['checkout-b1'].checkout_time == '11:30:00'


def test_guest_name_from_title():
    assert guest_name_from_title('Ann Smith - Airbnb') == 'Ann Smith'
    assert guest_name_from_title('Reserved') == 'Reserved'
    assert guest_name_from_title('') is None


def test_fingerprint_tracks_content_fields():
    base = create_event_fingerprint(datetime(2024, 6, 3), datetime(2024, 6, 3), 'Check-in: Ann', 'Ann')

    assert base == create_event_fingerprint(datetime(2024, 6, 3), datetime(2024, 6, 3), 'Check-in: Ann', 'Ann')
    assert len(base) == 32
    assert base != create_event_fingerprint(datetime(2024, 6, 4), datetime(2024, 6, 4), 'Check-in: Ann', 'Ann')
    assert base != create_event_fingerprint(datetime(2024, 6, 3), datetime(2024, 6, 3), 'Check-in: Bob', 'Ann')


def test_classify():
    class Stored:
        event_fingerprint = 'abc'

    assert classify(None, 'abc') is ChangeKind.NEW
    assert classify(Stored(), 'abc') is ChangeKind.UNCHANGED
    assert classify(Stored(), 'def') is ChangeKind.CHANGED
