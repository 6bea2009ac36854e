#!/usr/bin/env python3
"""
Property Sync Scheduler Service

Runs the background calendar sync (and the optional weekly payment report
job) as a standalone process.

Usage:
    python -m scheduler.service            # Run until SIGTERM / Ctrl+C
    python -m scheduler.service --once     # Sync all listings once and exit
    python -m scheduler.service --env      # Read scheduler settings from env vars
"""

import argparse
import logging
import signal
import sys
import time

from common import (
    DatabaseConfig,
    ReportConfig,
    SessionManager,
    SyncConfig,
    create_engine_from_config,
)
from calsync.feed_fetcher import FeedFetcher
from calsync.listing_sync import ListingSyncer
from scheduler.alert_manager import AlertManager
from scheduler.config import SchedulerConfig
from scheduler.engine import SchedulerEngine

logger = logging.getLogger(__name__)

SERVICE_NAME = "property-sync-scheduler"


def build_engine(config: SchedulerConfig) -> SchedulerEngine:
    """Wire the database, syncer and alerts into a scheduler engine."""
    db_config = DatabaseConfig.from_env()
    sync_config = SyncConfig.from_env()
    session_manager = SessionManager(create_engine_from_config(db_config))

    syncer = ListingSyncer(
        session_manager,
        FeedFetcher(config=sync_config),
        sync_config,
        AlertManager(config.alerts),
    )
    return SchedulerEngine(config, session_manager, syncer, ReportConfig.from_env())


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Property Sync Scheduler',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--once', action='store_true', help='Run one sync of all listings and exit')
    parser.add_argument('--env', action='store_true', help='Load scheduler settings from environment variables')
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    config = SchedulerConfig.from_env() if args.env else SchedulerConfig.from_yaml()
    engine = build_engine(config)

    if args.once:
        outcome = engine.run_sync_now(triggered_by='cli', wait=True)
        print(f"[+] Sync finished: {outcome['status']} {outcome['summary']}")
        return 0 if outcome['status'] == 'completed' else 1

    def signal_handler(signum, frame):
        print(f"\n[*] Stopping {SERVICE_NAME}...")
        engine.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print(f"[*] Starting {SERVICE_NAME}...")
    engine.start()
    for job in engine.get_jobs():
        print(f"    {job['name']}: next run {job['next_run']}")
    print("[+] Running. Press Ctrl+C to stop.")

    while engine.is_running:
        time.sleep(1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
