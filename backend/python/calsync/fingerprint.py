"""
Event fingerprints.

A fingerprint is the md5 of an event's mutable fields. Comparing it with the
stored value tells whether a derived event is new, unchanged or changed.
"""

import enum
import hashlib
from datetime import datetime
from typing import Optional


class ChangeKind(enum.Enum):
    NEW = 'new'
    UNCHANGED = 'unchanged'
    CHANGED = 'changed'


def create_event_fingerprint(
    start_time: datetime,
    end_time: datetime,
    title: Optional[str],
    guest_name: Optional[str] = None
) -> str:
    """
    Hash the fields a feed can change.

    Example:
        >>> create_event_fingerprint(datetime(2024, 6, 3), datetime(2024, 6, 3), 'Check-in: Ann', 'Ann')
        '...'  # 32 hex chars
    """
    raw = f"{start_time.isoformat()}{end_time.isoformat()}{title or ''}{guest_name or ''}"
    return hashlib.md5(raw.encode('utf-8')).hexdigest()


def classify(existing_event, fingerprint: str) -> ChangeKind:
    """Classify a derived event against the stored row (or None)."""
    if existing_event is None:
        return ChangeKind.NEW
    if existing_event.event_fingerprint == fingerprint:
        return ChangeKind.UNCHANGED
    return ChangeKind.CHANGED
