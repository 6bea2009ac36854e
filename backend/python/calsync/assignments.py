"""
Cleaner assignment bookkeeping.

Assignments follow their event: deactivated when it is canceled, reactivated
when it reappears or moves. Reassignment never edits a row in place; it
deactivates the active row and inserts a new one.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from common.errors import NotFoundError, ValidationError
from common.models import Cleaner, CleanerAssignment, Event

logger = logging.getLogger(__name__)


def deactivate_for_event(session: Session, event_id: str) -> int:
    """Mark the event's active assignments inactive. Returns rows changed."""
    count = (
        session.query(CleanerAssignment)
        .filter(CleanerAssignment.event_id == event_id, CleanerAssignment.is_active.is_(True))
        .update({CleanerAssignment.is_active: False}, synchronize_session='fetch')
    )
    if count:
        logger.debug(f"Deactivated {count} assignment(s) for event {event_id}")
    return count


def reactivate_for_event(session: Session, event_id: str) -> int:
    """
    Reactivate the event's most recent assignment.

    Only the newest row comes back so the one-active-assignment rule holds
    even when the event was reassigned before it was canceled.
    """
    latest = (
        session.query(CleanerAssignment)
        .filter(CleanerAssignment.event_id == event_id)
        .order_by(CleanerAssignment.created_at.desc())
        .first()
    )
    if latest is None or latest.is_active:
        return 0
    latest.is_active = True
    logger.debug(f"Reactivated assignment {latest.id} for event {event_id}")
    return 1


def assign_cleaner(session: Session, cleaner_id: str, event_id: str, hours: float = 2.0) -> CleanerAssignment:
    """
    Assign a cleaner to an event, replacing the current assignment.

    Raises:
        ValidationError: If hours is not positive
        NotFoundError: If the cleaner or event does not exist
    """
    if hours is None or float(hours) <= 0:
        raise ValidationError('hours must be greater than 0')
    if session.get(Cleaner, cleaner_id) is None:
        raise NotFoundError('Cleaner not found')
    if session.get(Event, event_id) is None:
        raise NotFoundError('Event not found')

    deactivate_for_event(session, event_id)

    assignment = CleanerAssignment(
        cleaner_id=cleaner_id,
        event_id=event_id,
        hours=float(hours),
        is_active=True,
    )
    session.add(assignment)
    session.flush()
    logger.info(f"Assigned cleaner {cleaner_id} to event {event_id} ({hours}h)")
    return assignment


UPDATABLE_FIELDS = ('hours', 'is_completed', 'completed_at')


def update_assignment(session: Session, assignment_id: str, changes: dict) -> CleanerAssignment:
    """
    Update hours or completion state of an assignment.

    Moving an assignment to another cleaner goes through assign_cleaner so
    the history row is kept.
    """
    assignment = session.get(CleanerAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError('Assignment not found')

    if changes.get('cleaner_id') and changes['cleaner_id'] != assignment.cleaner_id:
        return assign_cleaner(session, changes['cleaner_id'], assignment.event_id,
                              changes.get('hours', assignment.hours))

    if 'hours' in changes and (changes['hours'] is None or float(changes['hours']) <= 0):
        raise ValidationError('hours must be greater than 0')

    for key in UPDATABLE_FIELDS:
        if key in changes:
            setattr(assignment, key, changes[key])
    session.flush()
    return assignment


def delete_assignment(session: Session, assignment_id: str) -> None:
    assignment = session.get(CleanerAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError('Assignment not found')
    session.delete(assignment)
    session.flush()


def list_assignments(session: Session, cleaner_id: Optional[str] = None,
                     active_only: bool = True) -> List[CleanerAssignment]:
    query = session.query(CleanerAssignment).join(Event, CleanerAssignment.event_id == Event.id)
    if cleaner_id:
        query = query.filter(CleanerAssignment.cleaner_id == cleaner_id)
    if active_only:
        query = query.filter(CleanerAssignment.is_active.is_(True))
    return query.order_by(Event.start_time).all()
