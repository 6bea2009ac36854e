from datetime import date, datetime
from unittest import mock

import pytest
import requests

from calsync.feed_fetcher import Booking, FeedFetcher, FeedFetchError, filter_window, parse_calendar
from common.config import SyncConfig
from conftest import ics

TIMED_FEED = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Channel//EN
BEGIN:VEVENT
DTSTART:20240603T150000Z
DTEND:20240606T100000Z
END:VEVENT
BEGIN:VEVENT
UID:no-end
DTSTART:20240610T150000Z
END:VEVENT
END:VCALENDAR
"""


def test_parse_all_day_bookings():
    result = parse_calendar(
        ics(('abc@airbnb', 'Ann Smith - Airbnb', date(2024, 6, 3), date(2024, 6, 6)), name='Beach House'),
        feed_id='feed-1', feed_name='Airbnb',
    )

    assert result.calendar_name == 'Beach House'
    assert result.original_count == 1
    booking = result.bookings[0]
    assert booking.uid == 'abc@airbnb'
    assert booking.title == 'Ann Smith - Airbnb'
    assert booking.start == datetime(2024, 6, 3)
    assert booking.end == datetime(2024, 6, 6)
    assert booking.feed_id == 'feed-1'
    assert booking.feed_name == 'Airbnb'


def test_parse_fills_missing_uid_and_summary():
    result = parse_calendar(TIMED_FEED)

    # The event without DTEND is skipped
    assert len(result.bookings) == 1
    booking = result.bookings[0]
    assert booking.uid == 'event-1'
    assert booking.title == 'Reserved'
    assert booking.start == datetime(2024, 6, 3, 15, 0)
    assert booking.end == datetime(2024, 6, 6, 10, 0)


def test_parse_rejects_non_calendar_text():
    with pytest.raises(FeedFetchError):
        parse_calendar('this is not a calendar')


def test_filter_window_keeps_overlapping_bookings():
    bookings = [
        Booking('past', 'x', datetime(2024, 1, 1), datetime(2024, 1, 5)),
        Booking('spans-start', 'x', datetime(2024, 2, 25), datetime(2024, 3, 2)),
        Booking('inside', 'x', datetime(2024, 3, 10), datetime(2024, 3, 12)),
        Booking('future', 'x', datetime(2024, 9, 1), datetime(2024, 9, 3)),
    ]

    kept = filter_window(bookings, datetime(2024, 3, 1), datetime(2024, 6, 1))

    assert [b.uid for b in kept] == ['spans-start', 'inside']
    assert filter_window(bookings) == bookings


def test_fetch_downloads_and_filters():
    http_client = mock.Mock()
    http_client.get.return_value = mock.Mock(text=ics(
        ('b1', 'Ann', date(2024, 3, 10), date(2024, 3, 12)),
        ('b2', 'Bob', date(2024, 9, 1), date(2024, 9, 3)),
    ))
    feed = mock.Mock(id='feed-1')
    feed.name = 'Airbnb'
    fetcher = FeedFetcher(http_client, SyncConfig(request_timeout=15))

    result = fetcher.fetch('https://cal.example.com/a.ics', datetime(2024, 3, 1), datetime(2024, 6, 1), feed=feed)

    http_client.get.assert_called_once_with('https://cal.example.com/a.ics', timeout=15)
    assert [b.uid for b in result.bookings] == ['b1']
    assert result.original_count == 2
    assert result.bookings[0].feed_name == 'Airbnb'


def test_fetch_wraps_network_errors():
    http_client = mock.Mock()
    http_client.get.side_effect = requests.exceptions.ConnectionError('connection refused')
    fetcher = FeedFetcher(http_client, SyncConfig())

    with pytest.raises(FeedFetchError) as exc_info:
        fetcher.fetch('https://cal.example.com/a.ics')

    assert exc_info.value.url == 'https://cal.example.com/a.ics'
    assert 'connection refused' in str(exc_info.value)
