"""
Cleaner notifications and job timers.

Cleaners get notifications when their payment reports change status.
Admins get a job notification each time a cleaner completes a job.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from common.data_utils import convert_to_int
from common.date_utils import utcnow
from common.errors import NotFoundError, ValidationError
from common.models import (
    Cleaner, CleanerAssignment, JobCompletion, JobNotification, JobTimer, Notification,
)

logger = logging.getLogger(__name__)

DAMAGE_ANSWERS = ('Yes', 'No', 'Maybe')


# ============================================================================
# Cleaner notifications
# ============================================================================

def notify_cleaner(
    session: Session,
    cleaner_id: str,
    message: str,
    notification_type: str,
    related_id: Optional[str] = None
) -> Notification:
    notification = Notification(
        cleaner_id=cleaner_id,
        message=message,
        type=notification_type,
        is_read=False,
        related_id=related_id,
    )
    session.add(notification)
    session.flush()
    logger.info(f"Notified cleaner {cleaner_id}: {notification_type}")
    return notification


def list_notifications(session: Session, cleaner_id: str, limit: int = 20) -> List[Notification]:
    """Most recently updated notifications for a cleaner."""
    if not cleaner_id:
        raise ValidationError('cleaner_id is required')
    return (
        session.query(Notification)
        .filter(Notification.cleaner_id == cleaner_id)
        .order_by(Notification.updated_at.desc())
        .limit(limit)
        .all()
    )


def mark_notification(session: Session, notification_id: str, is_read) -> Notification:
    """Mark a notification read or unread. is_read must be a real boolean."""
    if not isinstance(is_read, bool):
        raise ValidationError('is_read must be a boolean')
    notification = session.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError('Notification not found')
    notification.is_read = is_read
    session.flush()
    return notification


# ============================================================================
# Job timers and completions
# ============================================================================

def start_job(session: Session, assignment_id: str, cleaner_id: str, now: datetime = None) -> JobTimer:
    """
    Start the timer for a job, replacing any timer already running for it.

    Raises:
        ValidationError: Missing ids
        NotFoundError: Unknown assignment
    """
    if not assignment_id:
        raise ValidationError('assignment_id is required')
    if not cleaner_id:
        raise ValidationError('cleaner_id is required')
    if session.get(CleanerAssignment, assignment_id) is None:
        raise NotFoundError('Assignment not found')

    session.query(JobTimer).filter(JobTimer.assignment_id == assignment_id).delete(synchronize_session=False)

    timer = JobTimer(assignment_id=assignment_id, cleaner_id=cleaner_id, start_time=now or utcnow())
    session.add(timer)
    session.flush()
    logger.info(f"Timer started for assignment {assignment_id}")
    return timer


def complete_job(session: Session, data: Dict[str, Any], now: datetime = None) -> Dict[str, Any]:
    """
    Record a completed job.

    The duration runs from the newest timer for the assignment to now. The
    completion is stored, admins get a job notification, the assignment's
    timers are removed and the assignment is marked completed.

    Args:
        session: Database session
        data: Completion form (assignment_id, cleaner_id, date, listing_name,
            cleanliness_rating, damage_question, checklist_items, ...)
        now: Completion time (defaults to utcnow)

    Returns:
        {'job_completion': JobCompletion, 'duration_minutes': int}

    Raises:
        ValidationError: Missing fields, bad rating or damage answer, or no timer
    """
    for name in ('assignment_id', 'cleaner_id', 'date', 'listing_name'):
        if not data.get(name):
            raise ValidationError(f'{name} is required')

    rating = convert_to_int(data.get('cleanliness_rating'))
    if rating is None or rating < 1 or rating > 5:
        raise ValidationError('cleanliness_rating must be between 1 and 5')

    if data.get('damage_question') not in DAMAGE_ANSWERS:
        raise ValidationError('damage_question must be Yes, No, or Maybe')

    assignment_id = data['assignment_id']
    timer = (
        session.query(JobTimer)
        .filter(JobTimer.assignment_id == assignment_id)
        .order_by(JobTimer.start_time.desc())
        .first()
    )
    if timer is None:
        raise ValidationError('No timer found for this assignment. Please start the job first.')

    end_time = now or utcnow()
    duration_seconds = max(int((end_time - timer.start_time).total_seconds()), 0)
    duration_minutes = round(duration_seconds / 60)
    # Filed under the day it was submitted
    completion_date = end_time.date()

    completion = JobCompletion(
        assignment_id=assignment_id,
        cleaner_id=data['cleaner_id'],
        completion_date=completion_date,
        listing_name=data['listing_name'],
        cleanliness_rating=rating,
        damage_question=data['damage_question'],
        damage_images=data.get('damage_images') or [],
        checklist_items=data.get('checklist_items') or {},
        images=data.get('post_cleaning_images') or data.get('images') or [],
        missing_items_details=data.get('missing_items_details') or '',
        start_time=timer.start_time,
        end_time=end_time,
        duration_seconds=duration_seconds,
    )
    session.add(completion)
    session.flush()

    session.add(JobNotification(
        job_completion_id=completion.id,
        cleaner_id=data['cleaner_id'],
        listing_name=data['listing_name'],
        completion_date=completion_date,
        duration_minutes=duration_minutes,
        is_read=False,
    ))

    session.query(JobTimer).filter(JobTimer.assignment_id == assignment_id).delete(synchronize_session=False)

    assignment = session.get(CleanerAssignment, assignment_id)
    if assignment is not None:
        assignment.is_completed = True
        assignment.completed_at = end_time
    else:
        logger.warning(f"Completed job for missing assignment {assignment_id}")

    session.flush()
    logger.info(f"Job completed for assignment {assignment_id} in {duration_minutes} min")
    return {'job_completion': completion, 'duration_minutes': duration_minutes}


# ============================================================================
# Admin job notifications
# ============================================================================

def list_job_notifications(session: Session, limit: int = 20) -> List[Dict[str, Any]]:
    """Newest job notifications, with the cleaner's name and the rating."""
    notifications = (
        session.query(JobNotification)
        .order_by(JobNotification.created_at.desc())
        .limit(limit)
        .all()
    )
    cleaner_ids = {n.cleaner_id for n in notifications}
    names = {
        c.id: c.name
        for c in session.query(Cleaner).filter(Cleaner.id.in_(cleaner_ids)).all()
    } if cleaner_ids else {}
    completion_ids = {n.job_completion_id for n in notifications}
    completions = {
        c.id: c
        for c in session.query(JobCompletion).filter(JobCompletion.id.in_(completion_ids)).all()
    } if completion_ids else {}

    results = []
    for n in notifications:
        item = n.to_dict()
        item['cleaner_name'] = names.get(n.cleaner_id, 'Unknown Cleaner')
        completion = completions.get(n.job_completion_id)
        if completion is not None:
            item['assignment_id'] = completion.assignment_id
            item['cleanliness_rating'] = completion.cleanliness_rating
            item['damage_question'] = completion.damage_question
        results.append(item)
    return results


def mark_job_notification(session: Session, notification_id: str, is_read) -> JobNotification:
    if not isinstance(is_read, bool):
        raise ValidationError('is_read must be a boolean')
    notification = session.get(JobNotification, notification_id)
    if notification is None:
        raise NotFoundError('Job notification not found')
    notification.is_read = is_read
    session.flush()
    return notification
