"""
Per-listing sync exclusion.

A sync of a listing holds an in-process lock for that listing and, on
PostgreSQL, a session-level advisory lock so overlapping syncs from other
processes (web workers, the scheduler service) are excluded too. Both are
non-blocking: a sync that cannot take the lock is skipped.
"""

import hashlib
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Generator

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


def advisory_key(listing_id: str) -> int:
    """Stable signed 64-bit key for pg_try_advisory_lock."""
    digest = hashlib.sha1(f"listing-sync:{listing_id}".encode('utf-8')).digest()
    return int.from_bytes(digest[:8], 'big', signed=True)


class ListingLockRegistry:
    """
    Usage:
        with registry.acquire(listing.id) as acquired:
            if not acquired:
                return skipped
            ...
    """

    def __init__(self, engine: Engine = None, use_advisory_locks: bool = True):
        self.engine = engine
        self.use_advisory_locks = (
            use_advisory_locks and engine is not None and engine.dialect.name == 'postgresql'
        )
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _local_lock(self, listing_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(listing_id, threading.Lock())

    def is_locked(self, listing_id: str) -> bool:
        return self._local_lock(listing_id).locked()

    @contextmanager
    def acquire(self, listing_id: str) -> Generator[bool, None, None]:
        local = self._local_lock(listing_id)
        if not local.acquire(blocking=False):
            logger.info(f"Listing {listing_id} is already syncing in this process")
            yield False
            return

        try:
            if not self.use_advisory_locks:
                yield True
                return

            key = advisory_key(listing_id)
            with self.engine.connect() as conn:
                acquired = conn.execute(
                    text("SELECT pg_try_advisory_lock(:key)"), {'key': key}
                ).scalar()
                if not acquired:
                    logger.info(f"Listing {listing_id} is already syncing in another process")
                    yield False
                    return
                try:
                    yield True
                finally:
                    conn.execute(text("SELECT pg_advisory_unlock(:key)"), {'key': key})
                    conn.commit()
        finally:
            local.release()
