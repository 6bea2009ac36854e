"""
Check-in/check-out derivation.

Each booking becomes a check-in event on its start date and a check-out
event on its end date. A check-out is same-day when another booking of
the same batch checks in on that date.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from common.data_utils import deduplicate_records
from .feed_fetcher import Booking
from .fingerprint import create_event_fingerprint

logger = logging.getLogger(__name__)

SAME_DAY = 'same_day'
OPEN = 'open'


@dataclass
class DerivedEvent:
    """Candidate event produced from a booking, not yet persisted."""
    event_uid: str
    listing_id: str
    feed_id: Optional[str]
    title: str
    guest_name: Optional[str]
    start_time: datetime
    end_time: datetime
    is_check_in: bool
    is_check_out: bool
    checkout_type: str
    checkout_time: Optional[str]
    booking_uid: str

    @property
    def fingerprint(self) -> str:
        return create_event_fingerprint(self.start_time, self.end_time, self.title, self.guest_name)


def guest_name_from_title(title: str) -> Optional[str]:
    """'Ann Smith - Airbnb' -> 'Ann Smith'."""
    if not title:
        return None
    return title.split(' - ')[0].strip() or None


def derive_events(
    bookings: Iterable[Booking],
    listing_id: str,
    checkout_time: Optional[str] = '10:00:00',
    excluded_titles: Iterable[str] = ()
) -> List[DerivedEvent]:
    """
    Derive check-in and check-out events for one listing.

    Args:
        bookings: Bookings from all of the listing's feeds in this sync
        listing_id: Listing the events belong to
        checkout_time: Time stored on check-out events
        excluded_titles: Booking titles to ignore (blocked dates)

    Returns:
        Two DerivedEvents per booking, check-in first
    """
    bookings = list(bookings)
    excluded = set(excluded_titles)
    kept = [b for b in bookings if b.title not in excluded]
    if len(kept) != len(bookings):
        logger.debug(
            f"Dropped {len(bookings) - len(kept)} excluded bookings for listing {listing_id}"
        )

    # Feeds occasionally repeat a UID; the last occurrence wins
    by_uid = deduplicate_records([{'uid': b.uid, 'booking': b} for b in kept], ['uid'])
    unique = [record['booking'] for record in by_uid]

    checkin_dates = [b.start.date() for b in unique]

    events = []
    for booking in unique:
        guest_name = guest_name_from_title(booking.title)

        events.append(DerivedEvent(
            event_uid=f"checkin-{booking.uid}",
            listing_id=listing_id,
            feed_id=booking.feed_id,
            title=f"Check-in: {booking.title}",
            guest_name=guest_name,
            start_time=booking.start,
            end_time=booking.start,
            is_check_in=True,
            is_check_out=False,
            checkout_type=OPEN,
            checkout_time=None,
            booking_uid=booking.uid,
        ))

        checkout_date = booking.end.date()
        same_day = any(
            other is not booking and other_date == checkout_date
            for other, other_date in zip(unique, checkin_dates)
        )
        events.append(DerivedEvent(
            event_uid=f"checkout-{booking.uid}",
            listing_id=listing_id,
            feed_id=booking.feed_id,
            title=f"Check-out: {booking.title}",
            guest_name=guest_name,
            start_time=booking.end,
            end_time=booking.end,
            is_check_in=False,
            is_check_out=True,
            checkout_type=SAME_DAY if same_day else OPEN,
            checkout_time=checkout_time,
            booking_uid=booking.uid,
        ))

    return events
