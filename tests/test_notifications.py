from datetime import datetime, timedelta

import pytest

from common.errors import NotFoundError, ValidationError
from common.models import (
    Cleaner, CleanerAssignment, Event, JobNotification, JobTimer, Listing,
)
from reports import notifications


@pytest.fixture
def assignment(session):
    cleaner = Cleaner(name='Maria')
    listing = Listing(name='Beach House')
    session.add_all([cleaner, listing])
    session.flush()
    event = Event(
        event_uid='checkout-b1', listing_id=listing.id, is_check_out=True,
        start_time=datetime(2024, 6, 5, 10), end_time=datetime(2024, 6, 5, 10),
    )
    session.add(event)
    session.flush()
    assignment = CleanerAssignment(cleaner_id=cleaner.id, event_id=event.id)
    session.add(assignment)
    session.flush()
    return assignment


def completion_form(assignment, **overrides):
    form = {
        'assignment_id': assignment.id,
        'cleaner_id': assignment.cleaner_id,
        'date': '2024-06-05',
        'listing_name': 'Beach House',
        'cleanliness_rating': 4,
        'damage_question': 'No',
        'checklist_items': {'kitchen': True},
    }
    form.update(overrides)
    return form


def test_notify_list_and_mark(session, assignment):
    cleaner_id = assignment.cleaner_id
    note = notifications.notify_cleaner(session, cleaner_id, 'Report approved', 'payment_report_approved', 'r1')

    listed = notifications.list_notifications(session, cleaner_id)
    assert [n.id for n in listed] == [note.id]
    assert not listed[0].is_read

    notifications.mark_notification(session, note.id, True)
    assert note.is_read

    with pytest.raises(ValidationError):
        notifications.mark_notification(session, note.id, 'yes')
    with pytest.raises(NotFoundError):
        notifications.mark_notification(session, 'missing', False)
    with pytest.raises(ValidationError):
        notifications.list_notifications(session, None)


def test_job_lifecycle(session, assignment):
    started = datetime(2024, 6, 5, 11, 0)
    notifications.start_job(session, assignment.id, assignment.cleaner_id, now=started - timedelta(hours=1))
    notifications.start_job(session, assignment.id, assignment.cleaner_id, now=started)
    assert session.query(JobTimer).filter_by(assignment_id=assignment.id).count() == 1

    outcome = notifications.complete_job(session, completion_form(assignment), now=started + timedelta(minutes=95))

    completion = outcome['job_completion']
    assert outcome['duration_minutes'] == 95
    assert completion.duration_seconds == 95 * 60
    assert completion.start_time == started
    assert completion.checklist_items == {'kitchen': True}
    assert session.query(JobTimer).count() == 0
    assert assignment.is_completed
    assert assignment.completed_at == started + timedelta(minutes=95)

    [job_notification] = notifications.list_job_notifications(session)
    assert job_notification['cleaner_name'] == 'Maria'
    assert job_notification['duration_minutes'] == 95
    assert job_notification['cleanliness_rating'] == 4

    marked = notifications.mark_job_notification(session, job_notification['id'], True)
    assert marked.is_read


@pytest.mark.parametrize('overrides, message', [
    ({'listing_name': ''}, 'listing_name is required'),
    ({'cleanliness_rating': 6}, 'cleanliness_rating'),
    ({'damage_question': 'Perhaps'}, 'damage_question'),
])
def test_completion_validation(session, assignment, overrides, message):
    notifications.start_job(session, assignment.id, assignment.cleaner_id)
    with pytest.raises(ValidationError, match=message):
        notifications.complete_job(session, completion_form(assignment, **overrides))


def test_completion_requires_a_timer(session, assignment):
    with pytest.raises(ValidationError, match='start the job first'):
        notifications.complete_job(session, completion_form(assignment))
    assert session.query(JobNotification).count() == 0


def test_start_job_unknown_assignment(session, assignment):
    with pytest.raises(NotFoundError):
        notifications.start_job(session, 'missing', assignment.cleaner_id)
