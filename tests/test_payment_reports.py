from datetime import date, datetime

import pytest

from common.config import ReportConfig
from common.date_utils import get_week_boundaries
from common.errors import ConflictError, NotFoundError, ValidationError
from common.models import (
    Cleaner, CleanerAssignment, Event, Listing, Notification, PaymentReport,
)
from reports import extra_reports, payment_reports


@pytest.fixture
def week(session):
    """A cleaner with three cleans in the week of 2024-06-03 and one outside it."""
    cleaner = Cleaner(name='Maria', hourly_rate=20.0)
    beach = Listing(name='Beach House', hours=3.0, bank_account='ACC-1')
    flat = Listing(name='City Flat', bank_account='ACC-2')
    session.add_all([cleaner, beach, flat])
    session.flush()

    def clean(listing, when, hours=2.5, active=True):
        event = Event(
            event_uid=f'checkout-{listing.name}-{when:%m%d}', listing_id=listing.id,
            start_time=when, end_time=when, is_check_out=True,
        )
        session.add(event)
        session.flush()
        session.add(CleanerAssignment(cleaner_id=cleaner.id, event_id=event.id, hours=hours, is_active=active))

    clean(beach, datetime(2024, 6, 3, 10))
    clean(beach, datetime(2024, 6, 9, 10))
    clean(flat, datetime(2024, 6, 5, 10), hours=2.5)
    clean(flat, datetime(2024, 6, 6, 10), active=False)
    clean(flat, datetime(2024, 6, 10, 10))
    session.flush()
    return {'cleaner': cleaner, 'beach': beach, 'flat': flat}


def test_week_boundaries_run_monday_to_sunday():
    for day in (date(2024, 6, 3), date(2024, 6, 5), date(2024, 6, 9)):
        monday, sunday = get_week_boundaries(day)
        assert monday == datetime(2024, 6, 3)
        assert sunday.date() == date(2024, 6, 9)
        assert sunday.hour == 23 and sunday.minute == 59


def test_generate_prices_week(session, week):
    [report] = payment_reports.generate_weekly_reports(session, week['cleaner'].id, date(2024, 6, 5))

    assert report.week_start == date(2024, 6, 3)
    assert report.week_end == date(2024, 6, 9)
    assert report.status == 'pending'
    assert report.base_rate == 20.0
    # Beach House bills its listing hours (3.0 x 2), City Flat the assignment hours
    assert report.total_hours == 8.5
    assert report.total_amount == 170.0

    data = report.report_data
    assert data['summary']['total_assignments'] == 3
    assert data['summary']['total_properties'] == 2
    assert data['breakdown_by_listing']['Beach House'] == {'assignments': 2, 'hours': 6.0, 'amount': 120.0}
    assert data['breakdown_by_bank_account']['ACC-2']['properties'] == ['City Flat']


def test_regenerating_replaces_the_snapshot(session, week):
    cleaner_id = week['cleaner'].id
    payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 3))
    payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 9))

    reports = session.query(PaymentReport).filter_by(cleaner_id=cleaner_id).all()
    assert len(reports) == 1
    assert reports[0].total_amount == 170.0


def test_regenerating_keeps_status(session, week):
    cleaner_id = week['cleaner'].id
    [report] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5))
    payment_reports.update_report_status(session, report.id, 'approved')

    [again] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5))

    assert again.status == 'approved'
    assert again.bank_account_statuses['ACC-1']['status'] == 'approved'


@pytest.mark.parametrize('status, message', [('approved', None), ('rejected', 'Missing Sunday clean')])
def test_regenerating_resets_status_when_not_preserved(session, week, status, message):
    cleaner_id = week['cleaner'].id
    config = ReportConfig(preserve_status_on_regenerate=False)
    [report] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5), config)
    payment_reports.update_report_status(session, report.id, status, message)
    assert report.bank_account_statuses['ACC-1']['status'] == status

    [again] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5), config)

    assert again.status == 'pending'
    assert again.rejection_message is None
    assert again.bank_account_statuses is None
    assert again.total_amount == 170.0
    assert session.query(PaymentReport).filter_by(cleaner_id=cleaner_id).count() == 1


def test_generate_for_all_active_cleaners(session, week):
    session.add(Cleaner(name='Retired', is_active=False))
    session.add(Cleaner(name='Zoe', hourly_rate=18.0))
    session.flush()

    reports = payment_reports.generate_weekly_reports(session, reference_day=date(2024, 6, 5))

    assert sorted(r.cleaner.name for r in reports) == ['Maria', 'Zoe']
    zoe = next(r for r in reports if r.cleaner.name == 'Zoe')
    assert zoe.total_amount == 0.0


def test_generate_unknown_cleaner(session):
    with pytest.raises(NotFoundError):
        payment_reports.generate_weekly_reports(session, 'nobody', date(2024, 6, 5))


def test_extra_hours_are_priced_per_listing(session, week):
    cleaner_id = week['cleaner'].id
    extra_reports.create_extra_report(
        session, cleaner_id, '2024-06-03', travel_minutes=45, extra_hours=1.5, listing_id=week['flat'].id,
    )

    [report] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5))

    assert report.total_hours == 10.0
    assert report.total_amount == 200.0
    entries = [a['listing_name'] for a in report.report_data['assignments']]
    assert 'City Flat (Extra Hours)' in entries
    # Extra hours do not count as another property
    assert report.report_data['summary']['total_properties'] == 2


def test_recalculate_after_extra_hours_change(session, week):
    cleaner_id = week['cleaner'].id
    payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5))
    extra_reports.create_extra_report(session, cleaner_id, '2024-06-03', extra_hours=2, listing_id=week['beach'].id)

    result = payment_reports.recalculate_report_totals(session, cleaner_id, '2024-06-03')

    assert result['updated'] is True
    assert result['updated_totals'] == {'total_hours': 10.5, 'total_amount': 210.0}


def test_recalculate_without_report(session, week):
    result = payment_reports.recalculate_report_totals(session, week['cleaner'].id, '2024-07-01')
    assert result['updated'] is False


def test_paid_reports_are_frozen(session, week):
    cleaner_id = week['cleaner'].id
    [report] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5))
    payment_reports.update_report_status(session, report.id, 'paid')

    with pytest.raises(ConflictError):
        payment_reports.update_report_status(session, report.id, 'approved')

    extra_reports.create_extra_report(session, cleaner_id, '2024-06-03', extra_hours=2, listing_id=week['beach'].id)
    result = payment_reports.recalculate_report_totals(session, cleaner_id, '2024-06-03')
    assert result['updated'] is False
    assert session.get(PaymentReport, report.id).total_amount == 170.0


def test_status_changes_notify_the_cleaner(session, week):
    cleaner_id = week['cleaner'].id
    [report] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5))

    with pytest.raises(ValidationError):
        payment_reports.update_report_status(session, report.id, 'rejected')
    with pytest.raises(ValidationError):
        payment_reports.update_report_status(session, report.id, 'pending')

    payment_reports.update_report_status(session, report.id, 'rejected', 'Missing the June 9 clean')

    assert report.rejection_message == 'Missing the June 9 clean'
    notification = session.query(Notification).filter_by(cleaner_id=cleaner_id).one()
    assert notification.type == 'payment_report_rejected'
    assert notification.related_id == report.id
    assert 'Missing the June 9 clean' in notification.message


def test_list_and_get_include_extra_info(session, week):
    cleaner_id = week['cleaner'].id
    [report] = payment_reports.generate_weekly_reports(session, cleaner_id, date(2024, 6, 5))
    extra_reports.create_extra_report(session, cleaner_id, '2024-06-03', travel_minutes=30)

    listed = payment_reports.list_payment_reports(session, cleaner_id=cleaner_id, status='pending')
    assert listed['count'] == 1
    assert len(listed['reports'][0]['extra_info']) == 1

    fetched = payment_reports.get_payment_report(session, report.id)
    assert fetched['cleaner']['name'] == 'Maria'
    assert fetched['extra_info'][0]['travel_minutes'] == 30

    with pytest.raises(ValidationError):
        payment_reports.list_payment_reports(session, status='archived')


def test_duplicate_cleanup_keeps_newest(session, week):
    cleaner = week['cleaner']
    for created in (datetime(2024, 6, 10, 8), datetime(2024, 6, 10, 9)):
        session.add(PaymentReport(
            cleaner_id=cleaner.id, week_start=date(2024, 6, 3), week_end=date(2024, 6, 9),
            created_at=created, updated_at=created,
        ))
    session.flush()

    summary = payment_reports.get_duplicate_reports_summary(session)
    assert summary['total_duplicates'] == 1
    assert summary['duplicate_groups'][0]['count'] == 2

    result = payment_reports.cleanup_duplicate_reports(session)
    assert result['duplicates_removed'] == 1
    [kept] = session.query(PaymentReport).all()
    assert kept.created_at == datetime(2024, 6, 10, 9)


def test_calculate_report_data_rounds_half_up():
    class Stub:
        pass

    listing = Stub()
    listing.name, listing.hours, listing.bank_account = 'Loft', None, None
    event = Stub()
    event.listing, event.start_time = listing, datetime(2024, 6, 4)
    assignment = Stub()
    assignment.id, assignment.event_id, assignment.event, assignment.hours = 'a1', 'e1', event, 1.335

    data = payment_reports.calculate_report_data([assignment], 10)

    assert data['assignments'][0]['hours'] == 1.34
    assert data['assignments'][0]['amount'] == 13.4
    assert 'Unknown Bank Account' in data['breakdown_by_bank_account']
