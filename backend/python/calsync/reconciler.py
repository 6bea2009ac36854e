"""
Event reconciliation for one listing.

Applies derived events to the stored calendar:

    new        insert, version 1
    changed    archive prior times as a 'moved' version, update in place, version + 1
    unchanged  touch last_synced (checkout type and reactivation handled in place)
    absent     archive as 'canceled', deactivate, version + 1

Assignments follow their event through calsync.assignments.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from common.date_utils import utcnow
from common.models import Event, EventVersion
from . import assignments
from .event_deriver import DerivedEvent
from .fingerprint import ChangeKind, classify
from .sync_logging import (
    SyncLogger, EventDetails, AdditionPayload, UnchangedPayload, DateChangePayload,
    CheckoutTypeChangePayload, CancellationPayload, ErrorPayload,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcileCounts:
    events: int = 0
    added: int = 0
    updated: int = 0
    replaced: int = 0
    unchanged: int = 0
    deactivated: int = 0
    errors: int = 0


def event_details(event) -> EventDetails:
    """Log details for a stored Event or a DerivedEvent."""
    return EventDetails(
        checkin_date=event.start_time.date().isoformat() if event.is_check_in else None,
        checkout_date=event.end_time.date().isoformat() if event.is_check_out else None,
        checkout_type=event.checkout_type,
        title=event.title,
    )


def _dates(start: datetime, end: datetime) -> Dict[str, str]:
    return {'checkin': start.isoformat(), 'checkout': end.isoformat()}


class EventReconciler:
    """
    Reconciles one listing's derived events against its stored events.

    Usage:
        reconciler = EventReconciler(session, listing, sync_logger, session_id)
        reconciler.apply(derived)
        reconciler.deactivate_stale(active_uids, failed_feed_ids, window_start, window_end)
    """

    def __init__(
        self,
        session: Session,
        listing,
        sync_logger: SyncLogger,
        sync_session_id: Optional[str] = None,
        sync_time: Optional[datetime] = None
    ):
        self.session = session
        self.listing = listing
        self.sync_logger = sync_logger
        self.sync_session_id = sync_session_id
        self.sync_time = sync_time or utcnow()
        self.counts = ReconcileCounts()
        # Alert material, collected as the sync goes
        self.canceled: List[Dict[str, str]] = []
        self.changed: List[Dict[str, str]] = []

        self._existing: Dict[str, Event] = {
            event.event_uid: event
            for event in session.query(Event).filter(Event.listing_id == listing.id)
        }

    def apply(self, derived_events: Iterable[DerivedEvent]) -> ReconcileCounts:
        """Apply every derived event; bad records are logged and counted, not raised."""
        for derived in derived_events:
            self.counts.events += 1
            try:
                self._apply_one(derived)
            except (ValueError, TypeError, AttributeError) as e:
                self.counts.errors += 1
                logger.error(f"Failed to reconcile {derived.event_uid} for {self.listing.name}: {e}")
                self.sync_logger.log_event_error(
                    derived.event_uid,
                    event_details(derived),
                    'Event could not be applied',
                    ErrorPayload(error_details=str(e)),
                )
        self.session.flush()
        return self.counts

    def _apply_one(self, derived: DerivedEvent):
        fingerprint = derived.fingerprint
        existing = self._existing.get(derived.event_uid)
        kind = classify(existing, fingerprint)

        if kind is ChangeKind.NEW:
            self._insert(derived, fingerprint)
        elif kind is ChangeKind.CHANGED:
            self._move(existing, derived, fingerprint)
        else:
            self._refresh(existing, derived)

    def _insert(self, derived: DerivedEvent, fingerprint: str):
        event = Event(
            event_uid=derived.event_uid,
            listing_id=self.listing.id,
            feed_id=derived.feed_id,
            title=derived.title,
            guest_name=derived.guest_name,
            start_time=derived.start_time,
            end_time=derived.end_time,
            is_check_in=derived.is_check_in,
            is_check_out=derived.is_check_out,
            checkout_type=derived.checkout_type,
            checkout_time=derived.checkout_time,
            is_active=True,
            version_number=1,
            event_fingerprint=fingerprint,
            last_synced=self.sync_time,
        )
        self.session.add(event)
        self.session.flush()
        self._existing[derived.event_uid] = event
        self.counts.added += 1

        self.sync_logger.log_event_addition(
            derived.event_uid,
            event_details(derived),
            'New event not previously stored for this listing',
            AdditionPayload(uuid=event.id, feed_name=self._feed_name(derived)),
        )

    def _move(self, event: Event, derived: DerivedEvent, fingerprint: str):
        old_start, old_end = event.start_time, event.end_time

        self.session.add(EventVersion(
            event_id=event.id,
            version_number=event.version_number,
            previous_start_time=old_start,
            previous_end_time=old_end,
            change_type='moved',
            sync_session_id=self.sync_session_id,
        ))

        event.feed_id = derived.feed_id
        event.title = derived.title
        event.guest_name = derived.guest_name
        event.start_time = derived.start_time
        event.end_time = derived.end_time
        event.checkout_type = derived.checkout_type
        if not event.checkout_time:
            event.checkout_time = derived.checkout_time
        event.event_fingerprint = fingerprint
        event.version_number += 1
        event.is_active = True
        event.last_synced = self.sync_time

        assignments.reactivate_for_event(self.session, event.id)
        self.counts.replaced += 1

        self.changed.append({
            'listing': self.listing.name,
            'event_id': derived.event_uid,
            'old_start': old_start.date().isoformat(),
            'old_end': old_end.date().isoformat(),
            'new_start': derived.start_time.date().isoformat(),
            'new_end': derived.end_time.date().isoformat(),
        })
        self.sync_logger.log_event_date_change(
            derived.event_uid,
            event_details(derived),
            'Event content changed since last sync',
            DateChangePayload(
                existing_event_id=event.id,
                old_dates=_dates(old_start, old_end),
                new_dates=_dates(derived.start_time, derived.end_time),
                feed_name=self._feed_name(derived),
            ),
        )

    def _refresh(self, event: Event, derived: DerivedEvent):
        event.last_synced = self.sync_time
        reactivated = not event.is_active
        touched = reactivated

        if reactivated:
            event.is_active = True
            assignments.reactivate_for_event(self.session, event.id)

        if event.checkout_type != derived.checkout_type:
            self.sync_logger.log_event_checkout_type_change(
                derived.event_uid,
                event_details(derived),
                'Checkout type re-evaluated against the current booking batch',
                CheckoutTypeChangePayload(
                    existing_event_id=event.id,
                    old_checkout_type=event.checkout_type,
                    new_checkout_type=derived.checkout_type,
                ),
            )
            event.checkout_type = derived.checkout_type
            touched = True

        if touched:
            self.counts.updated += 1
        else:
            self.counts.unchanged += 1

        self.sync_logger.log_event_unchanged(
            derived.event_uid,
            event_details(derived),
            'Fingerprint matches stored event',
            UnchangedPayload(
                existing_event_id=event.id,
                feed_name=self._feed_name(derived),
                reactivated=reactivated,
            ),
        )

    def deactivate_stale(
        self,
        active_uids: Iterable[str],
        failed_feed_ids: Iterable[str] = (),
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None
    ) -> int:
        """
        Deactivate active events missing from this sync.

        Candidates are the listing's events starting inside the window,
        whatever feed they came from, except those of failed_feed_ids: a feed
        that could not be fetched this pass keeps its events. Events of feeds
        that were unlinked or deactivated are candidates. Events starting
        after window_end are never candidates, since the fetcher drops their
        bookings and their absence says nothing. Nothing happens when
        active_uids is empty.
        """
        active_uids = set(active_uids)
        if not active_uids:
            logger.warning(
                f"No active events collected for {self.listing.name}; skipping deactivation"
            )
            return 0

        query = self.session.query(Event).filter(
            Event.listing_id == self.listing.id,
            Event.is_active.is_(True),
            or_(Event.last_synced.is_(None), Event.last_synced < self.sync_time),
            Event.event_uid.notin_(active_uids),
        )
        failed_feed_ids = list(failed_feed_ids)
        if failed_feed_ids:
            query = query.filter(or_(Event.feed_id.is_(None), Event.feed_id.notin_(failed_feed_ids)))
        if window_start is not None:
            query = query.filter(Event.start_time >= window_start)
        if window_end is not None:
            query = query.filter(Event.start_time <= window_end)

        stale = query.all()
        for event in stale:
            self._cancel(event)

        self.session.flush()
        if stale:
            logger.info(f"Deactivated {len(stale)} stale event(s) for {self.listing.name}")
        return len(stale)

    def _cancel(self, event: Event):
        self.session.add(EventVersion(
            event_id=event.id,
            version_number=event.version_number,
            previous_start_time=event.start_time,
            previous_end_time=event.end_time,
            change_type='canceled',
            sync_session_id=self.sync_session_id,
        ))
        event.is_active = False
        event.version_number += 1

        assignments.deactivate_for_event(self.session, event.id)
        self.counts.deactivated += 1

        self.canceled.append({
            'listing': self.listing.name,
            'event_id': event.event_uid,
            'title': event.title,
            'date': event.start_time.date().isoformat(),
        })
        self.sync_logger.log_event_cancellation(
            event.event_uid,
            event_details(event),
            'Event no longer present in any fetched feed',
            CancellationPayload(existing_event_id=event.id),
        )

    def _feed_name(self, derived: DerivedEvent) -> Optional[str]:
        for feed in self.listing.feeds:
            if feed.id == derived.feed_id:
                return feed.name
        return None


def reactivate_future_events(session: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Reactivate inactive events that start in the future, with their assignments.

    Maintenance action for recovering from a bad feed response.
    """
    now = now or utcnow()
    events = (
        session.query(Event)
        .filter(Event.is_active.is_(False), Event.start_time > now)
        .all()
    )

    reactivated_assignments = 0
    for event in events:
        event.is_active = True
        reactivated_assignments += assignments.reactivate_for_event(session, event.id)

    session.flush()
    logger.info(
        f"Reactivated {len(events)} future event(s) and {reactivated_assignments} assignment(s)"
    )
    return {'events': len(events), 'assignments': reactivated_assignments}
