"""
iCal to SQL Sync

Fetches every active listing's iCal feeds and reconciles the derived
check-in/check-out events into the database.

Features:
- Syncs one listing or all syncable listings (manual-* listings are skipped)
- Listings run in concurrent batches, recorded under one sync session
- Stale events are deactivated only when the feeds returned bookings
- Optional reactivation of future events after a bad feed response

Usage:
    python -m calsync.ical_to_sql
    python -m calsync.ical_to_sql --listing <listing-id> --days-back 30
    python -m calsync.ical_to_sql --reactivate-future

Configuration (in sync.yaml):
    batch_size, max_workers, days_back, days_forward, excluded_titles
"""

import argparse
import logging
import sys

from tqdm import tqdm

from common import (
    DatabaseConfig,
    SyncConfig,
    SessionManager,
    create_engine_from_config,
)
from calsync.feed_fetcher import FeedFetcher
from calsync.listing_sync import ListingSyncer
from calsync.reconciler import reactivate_future_events
from scheduler.alert_manager import AlertManager
from scheduler.config import SchedulerConfig


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='iCal to SQL Sync',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sync every listing (what the scheduler does)
  python -m calsync.ical_to_sql

  # Sync a single listing with a narrower window
  python -m calsync.ical_to_sql --listing 3f0c... --days-back 30 --days-forward 90
        """
    )

    parser.add_argument('--listing', help='Listing id to sync (default: all syncable listings)')
    parser.add_argument('--days-back', type=int, help='Days of past events to consider')
    parser.add_argument('--days-forward', type=int, help='Days of future events to consider')
    parser.add_argument(
        '--reactivate-future',
        action='store_true',
        help='Reactivate inactive future events and their assignments, then exit'
    )
    parser.add_argument('--triggered-by', default='cli', help='Recorded on the sync session')

    args = parser.parse_args(argv)

    for name in ('days_back', 'days_forward'):
        value = getattr(args, name)
        if value is not None and value < 0:
            parser.error(f"--{name.replace('_', '-')} must not be negative")

    return args


def main(argv=None):
    """Run a sync from the command line."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    db_config = DatabaseConfig.from_env()
    sync_config = SyncConfig.from_env()
    engine = create_engine_from_config(db_config)
    session_manager = SessionManager(engine)

    if args.reactivate_future:
        with session_manager.session_scope() as session:
            counts = reactivate_future_events(session)
        print(f"Reactivated {counts['events']} events and {counts['assignments']} assignments")
        return 0

    alert_manager = AlertManager(SchedulerConfig.from_yaml().alerts)
    syncer = ListingSyncer(session_manager, FeedFetcher(config=sync_config), sync_config, alert_manager)

    print("=" * 70)
    print("iCal to SQL Sync")
    print("=" * 70)
    print(f"Target: {db_config!r}")
    print(f"Window: {args.days_back or sync_config.days_back} days back, "
          f"{args.days_forward or sync_config.days_forward} days forward")
    print("=" * 70)

    if args.listing:
        result = syncer.sync_listing(
            args.listing,
            triggered_by=args.triggered_by,
            days_back=args.days_back,
            days_forward=args.days_forward,
        )
        results = [result]
        status = 'completed' if result.status == 'success' else result.status
    else:
        if args.days_back is not None:
            sync_config.days_back = args.days_back
        if args.days_forward is not None:
            sync_config.days_forward = args.days_forward

        total = len(syncer.syncable_listing_ids())
        with tqdm(total=total, desc="  Syncing listings", unit="listing") as pbar:
            def progress(result):
                if result.status == 'error':
                    tqdm.write(f"  x {result.listing_name or result.listing_id}: {result.error_message}")
                pbar.update(1)

            run = syncer.sync_all(triggered_by=args.triggered_by, progress=progress)
        results = run['results']
        status = run['status']

    print("\n[Summary]")
    print("-" * 70)
    for result in results:
        print(
            f"  {result.listing_name or result.listing_id}: {result.status} "
            f"(+{result.added} ~{result.replaced} -{result.deactivated} ={result.unchanged} "
            f"errors {result.errors})"
        )

    print("\n" + "=" * 70)
    print(f"Sync finished: {status}")
    print("=" * 70)
    return 0 if status in ('completed', 'skipped') else 1


if __name__ == "__main__":
    sys.exit(main())
