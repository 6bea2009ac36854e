"""
Listing sync runs.

ListingSyncer.sync_listing runs the full pipeline for one listing:

    fetch active feeds (concurrently) → derive events → reconcile
    → stamp feeds → deactivate stale events → persist log → alert

ListingSyncer.sync_all runs it over every syncable listing in batches,
recording everything under one 'all' sync session.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from common.config import SyncConfig
from common.date_utils import get_sync_window, utcnow
from common.errors import NotFoundError
from common.models import Feed, Listing
from common.session import SessionManager
from .event_deriver import derive_events
from .feed_fetcher import FeedFetcher, FeedFetchError, FeedFetchResult
from .locks import ListingLockRegistry
from .reconciler import EventReconciler
from .sync_logging import (
    SyncLogger, SyncLogRecord, SyncSessionRecorder, EventDetails, ErrorPayload,
)

logger = logging.getLogger(__name__)


@dataclass
class ListingSyncResult:
    listing_id: str
    listing_name: Optional[str] = None
    status: str = 'success'             # 'success', 'error' or 'skipped'
    error_message: Optional[str] = None
    events: int = 0
    feeds_processed: int = 0
    added: int = 0
    updated: int = 0
    deactivated: int = 0
    replaced: int = 0
    unchanged: int = 0
    errors: int = 0
    session_id: Optional[str] = None
    detailed_logs: List[SyncLogRecord] = field(default_factory=list)

    def session_stats(self) -> Dict[str, int]:
        return {
            'total_events_processed': self.events,
            'total_feeds_processed': self.feeds_processed,
            'total_added': self.added,
            'total_updated': self.updated,
            'total_deactivated': self.deactivated,
            'total_replaced': self.replaced,
            'total_unchanged': self.unchanged,
            'total_errors': self.errors,
        }

    def to_dict(self, include_logs: bool = False) -> Dict:
        result = {
            'listing_id': self.listing_id,
            'listing_name': self.listing_name,
            'status': self.status,
            'error_message': self.error_message,
            'events': self.events,
            'feeds_processed': self.feeds_processed,
            'added': self.added,
            'updated': self.updated,
            'deactivated': self.deactivated,
            'replaced': self.replaced,
            'unchanged': self.unchanged,
            'errors': self.errors,
            'session_id': self.session_id,
        }
        if include_logs:
            result['detailed_logs'] = [record.to_dict() for record in self.detailed_logs]
        return result


def final_status(success_count: int, error_count: int) -> str:
    """Session status for a multi-listing run."""
    if error_count and success_count:
        return 'partial'
    if error_count:
        return 'error'
    return 'completed'


def summarize(results: List[ListingSyncResult]) -> Dict[str, int]:
    return {
        'total_listings': len(results),
        'successful': sum(1 for r in results if r.status == 'success'),
        'failed': sum(1 for r in results if r.status == 'error'),
        'skipped': sum(1 for r in results if r.status == 'skipped'),
        'total_events': sum(r.events for r in results),
        'total_added': sum(r.added for r in results),
        'total_updated': sum(r.updated for r in results),
        'total_deactivated': sum(r.deactivated for r in results),
        'total_replaced': sum(r.replaced for r in results),
        'total_unchanged': sum(r.unchanged for r in results),
        'total_errors': sum(r.errors for r in results),
    }


class ListingSyncer:
    """
    Syncs listings from their iCal feeds.

    Usage:
        syncer = ListingSyncer(session_manager, FeedFetcher(), SyncConfig())
        result = syncer.sync_listing(listing_id)
        run = syncer.sync_all(triggered_by='scheduler')
    """

    def __init__(
        self,
        session_manager: SessionManager,
        fetcher: FeedFetcher = None,
        config: SyncConfig = None,
        alert_manager=None,
        lock_registry: ListingLockRegistry = None,
        recorder: SyncSessionRecorder = None
    ):
        self.session_manager = session_manager
        self.config = config or SyncConfig()
        self.fetcher = fetcher or FeedFetcher(config=self.config)
        self.alert_manager = alert_manager
        self.locks = lock_registry or ListingLockRegistry(
            session_manager.engine, use_advisory_locks=self.config.advisory_locks
        )
        self.recorder = recorder or SyncSessionRecorder(session_manager)

    # ------------------------------------------------------------------
    # Single listing
    # ------------------------------------------------------------------

    def sync_listing(
        self,
        listing_id: str,
        sync_session_id: Optional[str] = None,
        triggered_by: str = 'manual',
        days_back: Optional[int] = None,
        days_forward: Optional[int] = None
    ) -> ListingSyncResult:
        """
        Sync one listing.

        Without a sync_session_id a 'single' session is created and
        completed here; with one, the counters are added to that session.

        Raises:
            NotFoundError: If the listing does not exist
        """
        with self.locks.acquire(listing_id) as acquired:
            if not acquired:
                return ListingSyncResult(
                    listing_id=listing_id,
                    status='skipped',
                    error_message='Sync already in progress for this listing',
                    session_id=sync_session_id,
                )
            return self._sync_locked(listing_id, sync_session_id, triggered_by, days_back, days_forward)

    def _sync_locked(self, listing_id, sync_session_id, triggered_by, days_back, days_forward):
        with self.session_manager.session_scope() as session:
            listing = session.get(Listing, listing_id)
            if listing is None:
                raise NotFoundError('Listing not found')
            listing_name = listing.name
            is_manual = (listing.external_id or '').startswith(self.config.manual_listing_prefix)

        if is_manual:
            logger.info(f"Skipping manual listing {listing_name}")
            return ListingSyncResult(
                listing_id=listing_id,
                listing_name=listing_name,
                status='skipped',
                error_message='Manual listings are not synced',
                session_id=sync_session_id,
            )

        owns_session = sync_session_id is None
        if owns_session:
            sync_session_id = self.recorder.create_session(
                'single', triggered_by, listing_id=listing_id, listing_name=listing_name, total_listings=1
            )
            self.recorder.start_session(sync_session_id)

        window_start, window_end = get_sync_window(
            self.config.days_back if days_back is None else days_back,
            self.config.days_forward if days_forward is None else days_forward,
        )

        result = ListingSyncResult(listing_id=listing_id, listing_name=listing_name, session_id=sync_session_id)
        try:
            self._run(result, window_start, window_end)
            self.recorder.save_log_entries(sync_session_id, result.detailed_logs)
        except Exception as e:
            logger.exception(f"Sync failed for listing {listing_name}: {e}")
            result.status = 'error'
            result.error_message = str(e)
            result.errors += 1
            if owns_session:
                self.recorder.handle_error(sync_session_id, e, {'listing_id': listing_id})
            if self.alert_manager:
                self.alert_manager.send_sync_failure_alert(listing_name, str(e))

        if owns_session:
            self.recorder.complete_session(
                sync_session_id,
                result.session_stats(),
                'completed' if result.status == 'success' else 'error',
                result.error_message,
            )
        else:
            self.recorder.increment_stats(sync_session_id, result.session_stats(), completed_listings=1)

        logger.info(
            f"Synced {listing_name}: {result.added} added, {result.replaced} replaced, "
            f"{result.updated} updated, {result.unchanged} unchanged, "
            f"{result.deactivated} deactivated, {result.errors} errors"
        )
        return result

    def _fetch_feeds(self, feeds: List[Dict], window_start: datetime, window_end: datetime) -> Dict[str, object]:
        """Fetch feeds concurrently; each value is a FeedFetchResult or a FeedFetchError."""

        def fetch(feed):
            try:
                return self.fetcher.fetch(feed['url'], window_start, window_end, feed=_FeedRef(**feed))
            except FeedFetchError as e:
                return e

        if not feeds:
            return {}
        workers = max(1, min(len(feeds), self.config.max_workers))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(fetch, feeds))
        return {feed['id']: outcome for feed, outcome in zip(feeds, outcomes)}

    def _run(self, result: ListingSyncResult, window_start: datetime, window_end: datetime):
        with self.session_manager.session_scope() as session:
            listing = session.get(Listing, result.listing_id)
            feeds = [
                {'id': f.id, 'name': f.name, 'url': f.url}
                for f in listing.feeds if f.is_active
            ]

        # Network I/O happens outside any transaction
        outcomes = self._fetch_feeds(feeds, window_start, window_end)
        sync_time = utcnow()

        with self.session_manager.session_scope() as session:
            listing = session.get(Listing, result.listing_id)
            sync_logger = SyncLogger(listing.name)

            bookings = []
            fetched_feed_ids = []
            failed_feed_ids = []
            for feed in feeds:
                outcome = outcomes[feed['id']]
                if isinstance(outcome, FeedFetchResult):
                    fetched_feed_ids.append(feed['id'])
                    bookings.extend(outcome.bookings)
                    result.feeds_processed += 1
                else:
                    failed_feed_ids.append(feed['id'])
                    result.errors += 1
                    logger.error(f"Feed {feed['name']} failed for {listing.name}: {outcome}")
                    sync_logger.log_event_error(
                        f"feed-{feed['id']}",
                        EventDetails(),
                        'Feed could not be fetched; its events were left untouched',
                        ErrorPayload(error_details=str(outcome), feed_name=feed['name']),
                    )

            derived = derive_events(
                bookings,
                listing.id,
                checkout_time=self.config.default_checkout_time,
                excluded_titles=self.config.excluded_titles,
            )

            reconciler = EventReconciler(session, listing, sync_logger, result.session_id, sync_time)
            reconciler.apply(derived)

            for feed_row in session.query(Feed).filter(Feed.id.in_(fetched_feed_ids)):
                feed_row.last_synced = sync_time

            active_uids = {event.event_uid for event in derived}
            reconciler.deactivate_stale(active_uids, failed_feed_ids, window_start, window_end)

            counts = reconciler.counts
            result.events = counts.events
            result.added = counts.added
            result.updated = counts.updated
            result.replaced = counts.replaced
            result.unchanged = counts.unchanged
            result.deactivated = counts.deactivated
            result.errors += counts.errors
            result.detailed_logs = sync_logger.get_logs()

            canceled, changed = list(reconciler.canceled), list(reconciler.changed)

        if self.alert_manager:
            self.alert_manager.send_cancellation_alert(result.listing_name, canceled)
            self.alert_manager.send_change_alert(result.listing_name, changed)

    # ------------------------------------------------------------------
    # All listings
    # ------------------------------------------------------------------

    def syncable_listing_ids(self) -> List[str]:
        prefix = self.config.manual_listing_prefix
        with self.session_manager.session_scope() as session:
            listings = (
                session.query(Listing)
                .filter(Listing.is_active.is_(True))
                .order_by(Listing.name)
                .all()
            )
            return [
                listing.id for listing in listings
                if not (listing.external_id or '').startswith(prefix)
            ]

    def sync_all(
        self,
        triggered_by: str = 'manual',
        progress: Callable[[ListingSyncResult], None] = None
    ) -> Dict:
        """
        Sync every syncable listing in batches of config.batch_size.

        Listings within a batch run concurrently (up to max_workers);
        batches run one after another.

        Returns:
            dict with session_id, status, results and summary
        """
        listing_ids = self.syncable_listing_ids()
        session_id = self.recorder.create_session('all', triggered_by, total_listings=len(listing_ids))
        self.recorder.start_session(session_id)
        logger.info(f"Starting {triggered_by} sync of {len(listing_ids)} listings (session {session_id})")

        results: List[ListingSyncResult] = []
        batch_size = max(1, self.config.batch_size)
        for offset in range(0, len(listing_ids), batch_size):
            batch = listing_ids[offset:offset + batch_size]
            for result in self._run_batch(batch, session_id):
                results.append(result)
                if progress:
                    progress(result)

        summary = summarize(results)
        status = final_status(summary['successful'], summary['failed'])
        failures = [f"{r.listing_name or r.listing_id}: {r.error_message}" for r in results if r.status == 'error']

        totals = {}
        for result in results:
            for key, value in result.session_stats().items():
                totals[key] = totals.get(key, 0) + value
        self.recorder.complete_session(
            session_id, totals, status, '; '.join(failures) if failures else None
        )

        logger.info(f"Sync session {session_id} finished: {status} ({summary})")
        return {
            'session_id': session_id,
            'status': status,
            'results': results,
            'summary': summary,
        }

    def _run_batch(self, listing_ids: List[str], session_id: str) -> List[ListingSyncResult]:
        def run(listing_id):
            try:
                return self.sync_listing(listing_id, sync_session_id=session_id)
            except Exception as e:
                logger.exception(f"Listing {listing_id} failed before syncing: {e}")
                return ListingSyncResult(
                    listing_id=listing_id, status='error', error_message=str(e),
                    errors=1, session_id=session_id,
                )

        workers = min(len(listing_ids), self.config.max_workers)
        if workers <= 1:
            return [run(listing_id) for listing_id in listing_ids]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(run, listing_ids))


@dataclass
class _FeedRef:
    """Detached feed identity handed to the fetcher threads."""
    id: str
    name: str
    url: str
