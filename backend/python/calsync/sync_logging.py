"""
Sync audit trail.

SyncLogger collects one typed entry per event-level decision while a listing
syncs; SyncSessionRecorder persists sessions and their entries.

Each operation kind has its own payload dataclass, so an entry can only
carry the metadata that makes sense for its operation.
"""

import enum
import logging
import traceback
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Union

from sqlalchemy import update

from common.date_utils import utcnow
from common.models import SyncLogEntry, SyncSession
from common.session import SessionManager

logger = logging.getLogger(__name__)


class SyncOperation(str, enum.Enum):
    UNCHANGED = 'event_unchanged'
    CANCELLATION = 'event_cancellations'
    DATE_CHANGE = 'event_date_changes'
    CHECKOUT_TYPE_CHANGE = 'event_checkout_type_changes'
    ADDITION = 'event_additions'
    ERROR = 'event_errors'


FINAL_STATUSES = ('completed', 'error', 'partial')

STAT_FIELDS = (
    'total_events_processed',
    'total_feeds_processed',
    'total_added',
    'total_updated',
    'total_deactivated',
    'total_replaced',
    'total_unchanged',
    'total_errors',
)


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


class _Serializable:
    """Dataclass mixin: to_dict with camelCase keys, None values dropped."""

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            result[_camel(f.name)] = value
        return result


@dataclass
class EventDetails(_Serializable):
    checkin_date: Optional[str] = None
    checkout_date: Optional[str] = None
    checkout_type: Optional[str] = None
    title: Optional[str] = None


@dataclass
class AdditionPayload(_Serializable):
    operation: ClassVar[SyncOperation] = SyncOperation.ADDITION
    uuid: str = None
    feed_name: Optional[str] = None
    sql_operation: str = 'INSERT'


@dataclass
class UnchangedPayload(_Serializable):
    operation: ClassVar[SyncOperation] = SyncOperation.UNCHANGED
    existing_event_id: str = None
    feed_name: Optional[str] = None
    match_type: str = 'fingerprint'
    reactivated: bool = False


@dataclass
class DateChangePayload(_Serializable):
    operation: ClassVar[SyncOperation] = SyncOperation.DATE_CHANGE
    existing_event_id: str = None
    old_dates: Dict[str, str] = field(default_factory=dict)
    new_dates: Dict[str, str] = field(default_factory=dict)
    feed_name: Optional[str] = None
    sql_operation: str = 'UPDATE'


@dataclass
class CheckoutTypeChangePayload(_Serializable):
    operation: ClassVar[SyncOperation] = SyncOperation.CHECKOUT_TYPE_CHANGE
    existing_event_id: str = None
    old_checkout_type: str = None
    new_checkout_type: str = None


@dataclass
class CancellationPayload(_Serializable):
    operation: ClassVar[SyncOperation] = SyncOperation.CANCELLATION
    existing_event_id: str = None
    feed_name: Optional[str] = None
    sql_operation: str = 'DEACTIVATE'


@dataclass
class ErrorPayload(_Serializable):
    operation: ClassVar[SyncOperation] = SyncOperation.ERROR
    error_details: str = None
    feed_name: Optional[str] = None


Payload = Union[
    AdditionPayload, UnchangedPayload, DateChangePayload,
    CheckoutTypeChangePayload, CancellationPayload, ErrorPayload,
]


@dataclass
class SyncLogRecord:
    """One decision; the operation is fixed by the payload type."""
    event_id: str
    listing_name: str
    event_details: EventDetails
    reasoning: str
    payload: Payload
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def operation(self) -> SyncOperation:
        return self.payload.operation

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'operation': self.operation.value,
            'eventId': self.event_id,
            'listingName': self.listing_name,
            'eventDetails': self.event_details.to_dict(),
            'reasoning': self.reasoning,
            'metadata': self.payload.to_dict(),
        }


class SyncLogger:
    """In-memory log of the decisions made while syncing one listing."""

    def __init__(self, listing_name: str):
        self.listing_name = listing_name
        self._logs: List[SyncLogRecord] = []

    def log(self, event_id: str, details: EventDetails, reasoning: str, payload: Payload) -> SyncLogRecord:
        record = SyncLogRecord(
            event_id=event_id,
            listing_name=self.listing_name,
            event_details=details,
            reasoning=reasoning,
            payload=payload,
        )
        self._logs.append(record)
        return record

    def log_event_unchanged(self, event_id, details, reasoning, payload: UnchangedPayload):
        return self.log(event_id, details, reasoning, payload)

    def log_event_cancellation(self, event_id, details, reasoning, payload: CancellationPayload):
        return self.log(event_id, details, reasoning, payload)

    def log_event_date_change(self, event_id, details, reasoning, payload: DateChangePayload):
        return self.log(event_id, details, reasoning, payload)

    def log_event_checkout_type_change(self, event_id, details, reasoning, payload: CheckoutTypeChangePayload):
        return self.log(event_id, details, reasoning, payload)

    def log_event_addition(self, event_id, details, reasoning, payload: AdditionPayload):
        return self.log(event_id, details, reasoning, payload)

    def log_event_error(self, event_id, details, reasoning, payload: ErrorPayload):
        return self.log(event_id, details, reasoning, payload)

    def get_logs(self) -> List[SyncLogRecord]:
        return list(self._logs)

    def get_logs_by_operation(self, operation: SyncOperation) -> List[SyncLogRecord]:
        operation = SyncOperation(operation)
        return [record for record in self._logs if record.operation is operation]

    def get_summary(self) -> Dict[str, int]:
        summary = {'total': len(self._logs)}
        for operation in SyncOperation:
            summary[operation.value] = len(self.get_logs_by_operation(operation))
        return summary

    def clear(self):
        self._logs = []


class SyncSessionRecorder:
    """
    Persists sync sessions and their log entries.

    Every call runs in its own short transaction, so listing syncs running
    on worker threads can report into the same session.
    """

    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager

    def create_session(
        self,
        sync_type: str,
        triggered_by: str = 'manual',
        listing_id: str = None,
        listing_name: str = None,
        total_listings: int = 0
    ) -> str:
        with self.session_manager.session_scope() as session:
            sync_session = SyncSession(
                sync_type=sync_type,
                triggered_by=triggered_by or 'manual',
                listing_id=listing_id,
                listing_name=listing_name,
                total_listings=total_listings,
                status='pending',
                started_at=utcnow(),
            )
            session.add(sync_session)
            session.flush()
            session_id = sync_session.id

        logger.info(f"Created {sync_type} sync session {session_id} (triggered by {triggered_by})")
        return session_id

    def update_session(self, session_id: str, **updates) -> None:
        """Apply column updates; a final status also stamps completed_at."""
        if updates.get('status') in FINAL_STATUSES and 'completed_at' not in updates:
            updates['completed_at'] = utcnow()

        with self.session_manager.session_scope() as session:
            sync_session = session.get(SyncSession, session_id)
            if sync_session is None:
                raise ValueError(f"Sync session not found: {session_id}")
            for key, value in updates.items():
                setattr(sync_session, key, value)

    def start_session(self, session_id: str) -> None:
        self.update_session(session_id, status='in_progress', started_at=utcnow())

    def complete_session(
        self,
        session_id: str,
        stats: Dict[str, int] = None,
        status: str = 'completed',
        error_message: str = None
    ) -> None:
        completed_at = utcnow()
        with self.session_manager.session_scope() as session:
            sync_session = session.get(SyncSession, session_id)
            if sync_session is None:
                raise ValueError(f"Sync session not found: {session_id}")
            started_at = sync_session.started_at or completed_at

        updates = {key: value for key, value in (stats or {}).items() if key in STAT_FIELDS}
        self.update_session(
            session_id,
            status=status,
            error_message=error_message,
            completed_at=completed_at,
            duration_seconds=round((completed_at - started_at).total_seconds()),
            **updates
        )
        logger.info(f"Sync session {session_id} finished with status {status}")

    def save_log_entries(self, session_id: str, records: List[SyncLogRecord]) -> int:
        if not records:
            return 0

        with self.session_manager.session_scope() as session:
            session.add_all([
                SyncLogEntry(
                    sync_session_id=session_id,
                    operation=record.operation.value,
                    event_id=record.event_id,
                    listing_name=record.listing_name,
                    event_details=record.event_details.to_dict(),
                    reasoning=record.reasoning,
                    entry_metadata=record.payload.to_dict(),
                    created_at=record.timestamp,
                )
                for record in records
            ])

        logger.debug(f"Saved {len(records)} log entries for session {session_id}")
        return len(records)

    def increment_stats(self, session_id: str, stats: Dict[str, int], completed_listings: int = 0) -> None:
        """Add to the session counters in a single UPDATE."""
        values = {
            key: getattr(SyncSession, key) + int(value or 0)
            for key, value in stats.items() if key in STAT_FIELDS
        }
        if completed_listings:
            values['completed_listings'] = SyncSession.completed_listings + completed_listings
        if not values:
            return

        with self.session_manager.session_scope() as session:
            session.execute(
                update(SyncSession)
                .where(SyncSession.id == session_id)
                .values(values)
                .execution_options(synchronize_session=False)
            )

    def handle_error(self, session_id: str, error: BaseException, details: Dict[str, Any] = None) -> None:
        error_details = {
            'stack': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        error_details.update(details or {})
        self.update_session(
            session_id,
            status='error',
            error_message=str(error),
            error_details=error_details,
        )

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self.session_manager.session_scope() as session:
            sync_session = session.get(SyncSession, session_id)
            return sync_session.to_dict() if sync_session else None
