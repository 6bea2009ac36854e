"""
Calendar sync: iCal feeds → check-in/check-out events.

    FeedFetcher → derive_events → classify → EventReconciler → assignments

ListingSyncer drives the pipeline for one listing or all of them.
"""

from .feed_fetcher import Booking, FeedFetcher, FeedFetchError, FeedFetchResult, parse_calendar
from .event_deriver import DerivedEvent, derive_events
from .fingerprint import ChangeKind, classify, create_event_fingerprint
from .reconciler import EventReconciler, reactivate_future_events
from .sync_logging import SyncLogger, SyncOperation, SyncSessionRecorder
from .locks import ListingLockRegistry
from .listing_sync import ListingSyncer, ListingSyncResult, final_status


__all__ = [
    'Booking',
    'FeedFetcher',
    'FeedFetchError',
    'FeedFetchResult',
    'parse_calendar',
    'DerivedEvent',
    'derive_events',
    'ChangeKind',
    'classify',
    'create_event_fingerprint',
    'EventReconciler',
    'reactivate_future_events',
    'SyncLogger',
    'SyncOperation',
    'SyncSessionRecorder',
    'ListingLockRegistry',
    'ListingSyncer',
    'ListingSyncResult',
    'final_status',
]
