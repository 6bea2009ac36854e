"""
iCal feed retrieval and parsing.

Turns a calendar URL into a list of Booking intervals. Failures surface as
FeedFetchError so the caller can skip one feed without aborting the rest.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import requests
from icalendar import Calendar

from common.config import SyncConfig
from common.date_utils import to_naive_utc
from common.http_client import HTTPClient

logger = logging.getLogger(__name__)


class FeedFetchError(Exception):
    """Network, HTTP status or parse failure for one feed."""

    def __init__(self, message: str, url: str = None, feed_name: str = None):
        super().__init__(message)
        self.url = url
        self.feed_name = feed_name


@dataclass
class Booking:
    """One reservation interval read from a feed."""
    uid: str
    title: str
    start: datetime
    end: datetime
    feed_id: Optional[str] = None
    feed_name: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.uid,
            'title': self.title,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'feed_id': self.feed_id,
            'feed_name': self.feed_name,
        }


@dataclass
class FeedFetchResult:
    bookings: List[Booking] = field(default_factory=list)
    calendar_name: Optional[str] = None
    original_count: int = 0


def parse_calendar(text: str, feed_id: str = None, feed_name: str = None) -> FeedFetchResult:
    """
    Parse iCal text into bookings.

    VEVENTs without DTSTART or DTEND are skipped. SUMMARY defaults to
    'Reserved' and UID to 'event-{n}' (1-based position in the feed).

    Raises:
        FeedFetchError: If the text is not a calendar
    """
    try:
        cal = Calendar.from_ical(text)
    except ValueError as e:
        raise FeedFetchError(f"Invalid iCal data: {e}", feed_name=feed_name) from e

    calendar_name = cal.get('X-WR-CALNAME')
    result = FeedFetchResult(calendar_name=str(calendar_name).strip() if calendar_name else None)

    for index, component in enumerate(cal.walk('VEVENT'), start=1):
        dtstart = component.get('DTSTART')
        dtend = component.get('DTEND')
        if dtstart is None or dtend is None:
            logger.debug(f"Skipping VEVENT {index} without start/end")
            continue

        summary = component.get('SUMMARY')
        uid = component.get('UID')
        result.bookings.append(Booking(
            uid=str(uid) if uid else f"event-{index}",
            title=str(summary) if summary else 'Reserved',
            start=to_naive_utc(dtstart.dt),
            end=to_naive_utc(dtend.dt),
            feed_id=feed_id,
            feed_name=feed_name,
        ))

    result.original_count = len(result.bookings)
    return result


def filter_window(
    bookings: List[Booking],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> List[Booking]:
    """Keep bookings overlapping [start, end]; either bound may be open."""
    return [
        b for b in bookings
        if (start is None or b.end >= start) and (end is None or b.start <= end)
    ]


class FeedFetcher:
    """
    Fetches and parses iCal feeds.

    Usage:
        fetcher = FeedFetcher(HTTPClient(), SyncConfig())
        result = fetcher.fetch(feed.url, window_start, window_end, feed=feed)
    """

    def __init__(self, http_client: HTTPClient = None, config: SyncConfig = None):
        self.config = config or SyncConfig()
        self.http_client = http_client or HTTPClient(
            total_retries=self.config.feed_retries,
            default_timeout=self.config.request_timeout,
            user_agent=self.config.user_agent,
        )

    def fetch(
        self,
        url: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        feed=None
    ) -> FeedFetchResult:
        """
        Download a feed and return the bookings inside the window.

        Args:
            url: Feed URL
            start: Window start (bookings ending before it are dropped)
            end: Window end (bookings starting after it are dropped)
            feed: Optional Feed row, used to tag bookings with their source

        Raises:
            FeedFetchError: On network, HTTP status or parse failure
        """
        feed_id = getattr(feed, 'id', None)
        feed_name = getattr(feed, 'name', None)

        try:
            response = self.http_client.get(url, timeout=self.config.request_timeout)
        except requests.exceptions.RequestException as e:
            raise FeedFetchError(f"Failed to fetch feed: {e}", url=url, feed_name=feed_name) from e

        result = parse_calendar(response.text, feed_id=feed_id, feed_name=feed_name)
        result.bookings = filter_window(result.bookings, start, end)

        logger.info(
            f"Fetched {feed_name or url}: {len(result.bookings)} of "
            f"{result.original_count} bookings in window"
        )
        return result
