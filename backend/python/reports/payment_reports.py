"""
Weekly cleaner payment reports.

A report is a snapshot of one cleaner's Monday-to-Sunday week: every active
assignment whose checkout falls in the week, plus extra hours the cleaner
declared, priced at the cleaner's hourly rate. Regenerating a week replaces
the snapshot.

Money Handling:
- Hours come from the listing when it has a per-clean figure, otherwise
  from the assignment
- Every figure and every running total is rounded half-up to 2 decimals,
  so regenerating the same data always yields the same totals
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from common.config import ReportConfig
from common.data_utils import round_money
from common.date_utils import get_week_boundaries, parse_date_string, utcnow
from common.errors import ConflictError, NotFoundError, ValidationError
from common.models import (
    Cleaner, CleanerAssignment, CleanerExtraReport, Event, Listing, PaymentReport,
)
from reports.extra_reports import get_extra_reports_for_week
from reports.notifications import notify_cleaner

logger = logging.getLogger(__name__)

STATUSES = ('pending', 'approved', 'paid', 'rejected')
TARGET_STATUSES = ('approved', 'paid', 'rejected')
EXTRA_HOURS_SUFFIX = ' (Extra Hours)'

STATUS_NOTIFICATIONS = {
    'approved': (
        'payment_report_approved',
        'Your payment report has been approved and is ready for payment.',
    ),
    'paid': (
        'payment_report_paid',
        'Your payment has been processed and should be received shortly.',
    ),
    'rejected': (
        'payment_report_rejected',
        'Your payment report needs revision: {message}',
    ),
}


def _to_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return parse_date_string(str(value))
    except ValueError as e:
        raise ValidationError(str(e))


# ============================================================================
# Calculation
# ============================================================================

def get_assignments_for_week(
    session: Session,
    cleaner_id: str,
    week_start: datetime,
    week_end: datetime
) -> List[CleanerAssignment]:
    """
    Active assignments whose checkout date falls in [week_start, week_end].

    The checkout date is the event's start time; listing data is loaded
    with the event for hours and bank account.
    """
    assignments = (
        session.query(CleanerAssignment)
        .join(Event, CleanerAssignment.event_id == Event.id)
        .filter(
            CleanerAssignment.cleaner_id == cleaner_id,
            CleanerAssignment.is_active.is_(True),
            Event.start_time >= week_start,
            Event.start_time <= week_end,
        )
        .order_by(Event.start_time.asc())
        .all()
    )
    logger.debug(f"Found {len(assignments)} assignment(s) for cleaner {cleaner_id} "
                 f"from {week_start:%Y-%m-%d} to {week_end:%Y-%m-%d}")
    return assignments


def _empty_report_data() -> Dict[str, Any]:
    return {
        'assignments': [],
        'summary': {
            'total_assignments': 0,
            'total_properties': 0,
            'total_hours': 0.0,
            'total_amount': 0.0,
        },
        'breakdown_by_listing': {},
        'breakdown_by_bank_account': {},
    }


def _add_entry(data: Dict[str, Any], entry: Dict[str, Any], property_name: Optional[str],
               unknown_bank_account: str):
    """Append one priced entry and fold it into the summary and breakdowns."""
    hours = entry['hours']
    amount = entry['amount']
    data['assignments'].append(entry)

    summary = data['summary']
    summary['total_assignments'] += 1
    summary['total_hours'] = round_money(summary['total_hours'] + hours)
    summary['total_amount'] = round_money(summary['total_amount'] + amount)

    by_listing = data['breakdown_by_listing'].setdefault(
        entry['listing_name'], {'assignments': 0, 'hours': 0.0, 'amount': 0.0}
    )
    by_listing['assignments'] += 1
    by_listing['hours'] = round_money(by_listing['hours'] + hours)
    by_listing['amount'] = round_money(by_listing['amount'] + amount)

    account = entry.get('bank_account') or unknown_bank_account
    by_account = data['breakdown_by_bank_account'].setdefault(
        account, {'assignments': 0, 'hours': 0.0, 'amount': 0.0, 'properties': []}
    )
    by_account['assignments'] += 1
    by_account['hours'] = round_money(by_account['hours'] + hours)
    by_account['amount'] = round_money(by_account['amount'] + amount)
    if property_name and property_name not in by_account['properties']:
        by_account['properties'].append(property_name)


def calculate_report_data(
    assignments: Iterable[CleanerAssignment],
    hourly_rate: float,
    extra_reports: Iterable[CleanerExtraReport] = (),
    listings: Optional[Dict[str, Listing]] = None,
    config: ReportConfig = None
) -> Dict[str, Any]:
    """
    Price a week of assignments and extra hours.

    Args:
        assignments: Assignments with their events (and listings) loaded
        hourly_rate: Cleaner's rate
        extra_reports: The cleaner's extra reports for the week
        listings: Optional listing lookup by id for the extra reports
            (falls back to each report's own listing)
        config: Report settings (placeholder names)

    Returns:
        dict with assignments, summary, breakdown_by_listing and
        breakdown_by_bank_account
    """
    config = config or ReportConfig()
    listings = listings or {}
    rate = float(hourly_rate or 0)
    data = _empty_report_data()

    for assignment in assignments:
        event = assignment.event
        listing = event.listing if event is not None else None

        if listing is not None and listing.hours:
            hours = listing.hours
        else:
            hours = assignment.hours
        rounded_hours = round_money(hours)
        amount = round_money(rounded_hours * rate)

        listing_name = listing.name if listing is not None else None
        _add_entry(data, {
            'uuid': assignment.id,
            'event_uuid': assignment.event_id,
            'listing_name': listing_name or config.unknown_property,
            'checkout_date': event.start_time.date().isoformat() if event is not None else None,
            'hours': rounded_hours,
            'amount': amount,
            'bank_account': listing.bank_account if listing is not None else None,
        }, listing_name, config.unknown_bank_account)

    for extra in extra_reports:
        if not extra.extra_hours or extra.extra_hours <= 0 or not extra.listing_id:
            continue
        listing = listings.get(extra.listing_id) or extra.listing
        if listing is None:
            logger.warning(f"Extra report {extra.id} refers to missing listing {extra.listing_id}")
            continue

        extra_hours = round_money(extra.extra_hours)
        extra_amount = round_money(extra_hours * rate)
        _add_entry(data, {
            'uuid': f'extra-{extra.id}',
            'event_uuid': f'extra-{extra.id}',
            'listing_name': f'{listing.name}{EXTRA_HOURS_SUFFIX}',
            'checkout_date': extra.week_start_date.isoformat(),
            'hours': extra_hours,
            'amount': extra_amount,
            'bank_account': listing.bank_account,
        }, listing.name, config.unknown_bank_account)

    data['summary']['total_properties'] = len({
        entry['listing_name']
        for entry in data['assignments']
        if not entry['listing_name'].endswith(EXTRA_HOURS_SUFFIX)
    })
    return data


# ============================================================================
# Generation
# ============================================================================

def _build_report(session: Session, cleaner: Cleaner, monday: datetime, sunday: datetime,
                  config: ReportConfig) -> Dict[str, Any]:
    assignments = get_assignments_for_week(session, cleaner.id, monday, sunday)
    extra_reports = get_extra_reports_for_week(session, cleaner.id, monday.date())
    return calculate_report_data(assignments, cleaner.hourly_rate, extra_reports, config=config)


def generate_weekly_reports(
    session: Session,
    cleaner_id: Optional[str] = None,
    reference_day=None,
    config: ReportConfig = None
) -> List[PaymentReport]:
    """
    Generate (or regenerate) payment reports for the week containing a day.

    For each cleaner the existing rows for the week are deleted and one
    fresh snapshot is inserted, so repeated runs never leave duplicates.

    Args:
        session: Database session
        cleaner_id: One cleaner, or None for every active cleaner
        reference_day: Any day in the week (defaults to today)
        config: Report settings; preserve_status_on_regenerate carries the
            previous status, rejection message and bank account statuses
            over to the new snapshot

    Returns:
        The new PaymentReport rows

    Raises:
        NotFoundError: Unknown cleaner, or no cleaners at all
    """
    config = config or ReportConfig()
    monday, sunday = get_week_boundaries(_to_date(reference_day or date.today()))
    week_start, week_end = monday.date(), sunday.date()

    if cleaner_id:
        cleaner = session.get(Cleaner, cleaner_id)
        if cleaner is None:
            raise NotFoundError('Cleaner not found')
        cleaners = [cleaner]
    else:
        cleaners = session.query(Cleaner).filter(Cleaner.is_active.is_(True)).order_by(Cleaner.name).all()
        if not cleaners:
            raise NotFoundError('No cleaners found')

    logger.info(f"Generating payment reports for {len(cleaners)} cleaner(s), week {week_start} to {week_end}")

    reports = []
    for cleaner in cleaners:
        existing = (
            session.query(PaymentReport)
            .filter(
                PaymentReport.cleaner_id == cleaner.id,
                PaymentReport.week_start == week_start,
                PaymentReport.week_end == week_end,
            )
            .order_by(PaymentReport.created_at.desc())
            .all()
        )
        previous = existing[0] if existing else None
        carried = {}
        if previous is not None and config.preserve_status_on_regenerate:
            carried = {
                'status': previous.status,
                'rejection_message': previous.rejection_message,
                'bank_account_statuses': previous.bank_account_statuses,
            }

        for row in existing:
            session.delete(row)
        if existing:
            session.flush()
            logger.info(f"Replaced {len(existing)} existing report(s) for {cleaner.name} week {week_start}")

        report_data = _build_report(session, cleaner, monday, sunday, config)
        report = PaymentReport(
            cleaner_id=cleaner.id,
            week_start=week_start,
            week_end=week_end,
            total_hours=report_data['summary']['total_hours'],
            total_amount=report_data['summary']['total_amount'],
            base_rate=cleaner.hourly_rate,
            status=carried.get('status', 'pending'),
            rejection_message=carried.get('rejection_message'),
            bank_account_statuses=carried.get('bank_account_statuses'),
            report_data=report_data,
        )
        session.add(report)
        session.flush()
        logger.info(f"Created report for {cleaner.name}: {report.total_hours} hours, {report.total_amount:.2f}")
        reports.append(report)

    return reports


def recalculate_report_totals(session: Session, cleaner_id: str, week_start_date,
                              config: ReportConfig = None) -> Dict[str, Any]:
    """
    Refresh an existing report after the cleaner's extra hours changed.

    Status fields are left alone. Nothing happens when the week has no report.

    Returns:
        {'updated': bool, 'message': str, 'updated_totals': {...}}
    """
    if not cleaner_id or not week_start_date:
        raise ValidationError('cleaner_id and week_start_date are required')

    monday, sunday = get_week_boundaries(_to_date(week_start_date))
    report = (
        session.query(PaymentReport)
        .filter(
            PaymentReport.cleaner_id == cleaner_id,
            PaymentReport.week_start == monday.date(),
            PaymentReport.week_end == sunday.date(),
        )
        .order_by(PaymentReport.created_at.desc())
        .first()
    )
    if report is None:
        logger.info(f"No payment report to update for cleaner {cleaner_id} week {monday:%Y-%m-%d}")
        return {'updated': False, 'message': 'No payment report to update'}
    if report.status == 'paid':
        logger.info(f"Payment report {report.id} is paid, totals left unchanged")
        return {'updated': False, 'message': 'Paid reports are not recalculated'}

    report_data = _build_report(session, report.cleaner, monday, sunday, config or ReportConfig())
    report.report_data = report_data
    report.total_hours = report_data['summary']['total_hours']
    report.total_amount = report_data['summary']['total_amount']
    report.updated_at = utcnow()
    session.flush()

    logger.info(f"Recalculated payment report {report.id}: {report.total_hours} hours, {report.total_amount:.2f}")
    return {
        'updated': True,
        'message': 'Payment report updated successfully',
        'updated_totals': {
            'total_hours': report.total_hours,
            'total_amount': report.total_amount,
        },
    }


# ============================================================================
# Queries and status
# ============================================================================

def _with_extra_info(session: Session, report: PaymentReport) -> Dict[str, Any]:
    result = report.to_dict()
    result['extra_info'] = [
        extra.to_dict() for extra in get_extra_reports_for_week(session, report.cleaner_id, report.week_start)
    ]
    return result


def get_payment_report(session: Session, report_id: str) -> Dict[str, Any]:
    """A report with the cleaner's extra reports for its week."""
    report = session.get(PaymentReport, report_id)
    if report is None:
        raise NotFoundError('Report not found')
    return _with_extra_info(session, report)


def list_payment_reports(
    session: Session,
    cleaner_id: Optional[str] = None,
    status: Optional[str] = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 10
) -> Dict[str, Any]:
    """
    List reports, newest week first, each with its extra info.

    Returns:
        {'reports': [...], 'count': total matching, 'page', 'limit'}
    """
    if status and status not in STATUSES:
        raise ValidationError(f'Invalid status: {status}')
    page = max(int(page or 1), 1)
    limit = max(int(limit or 10), 1)

    query = session.query(PaymentReport)
    if cleaner_id:
        query = query.filter(PaymentReport.cleaner_id == cleaner_id)
    if status:
        query = query.filter(PaymentReport.status == status)
    if date_from:
        query = query.filter(PaymentReport.week_start >= _to_date(date_from))
    if date_to:
        query = query.filter(PaymentReport.week_start <= _to_date(date_to))

    count = query.count()
    reports = (
        query.order_by(PaymentReport.week_start.desc(), PaymentReport.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        'reports': [_with_extra_info(session, r) for r in reports],
        'count': count,
        'page': page,
        'limit': limit,
    }


def update_report_status(session: Session, report_id: str, status: str,
                         message: Optional[str] = None) -> PaymentReport:
    """
    Move a report to approved, paid or rejected and notify the cleaner.

    Raises:
        ValidationError: Unknown target status, or rejection without a message
        NotFoundError: Unknown report
        ConflictError: The report is already paid
    """
    if status not in TARGET_STATUSES:
        raise ValidationError('Invalid status')

    report = session.get(PaymentReport, report_id)
    if report is None:
        raise NotFoundError('Report not found')

    if report.status == 'paid' and status != 'paid':
        raise ConflictError('Cannot change status from paid')

    if status == 'rejected' and not message:
        raise ValidationError('Message is required for rejection')

    now = utcnow()
    report.status = status
    report.rejection_message = message if status == 'rejected' else None
    report.bank_account_statuses = _stamp_bank_accounts(report, status, now)
    report.updated_at = now

    notification_type, template = STATUS_NOTIFICATIONS[status]
    notify_cleaner(session, report.cleaner_id, template.format(message=message), notification_type, report.id)

    session.flush()
    logger.info(f"Payment report {report_id} set to {status}")
    return report


def _stamp_bank_accounts(report: PaymentReport, status: str, now: datetime) -> Dict[str, Any]:
    """Copy the report status onto each bank account in its breakdown."""
    statuses = dict(report.bank_account_statuses or {})
    accounts = (report.report_data or {}).get('breakdown_by_bank_account', {})
    for account in accounts:
        entry = dict(statuses.get(account, {}))
        entry['status'] = status
        if status in ('approved', 'paid'):
            entry[f'{status}_at'] = now.isoformat()
        statuses[account] = entry
    return statuses


# ============================================================================
# Duplicate maintenance
# ============================================================================

def _group_by_week(reports: Iterable[PaymentReport]) -> Dict[Tuple[str, date, date], List[PaymentReport]]:
    groups = defaultdict(list)
    for report in reports:
        groups[(report.cleaner_id, report.week_start, report.week_end)].append(report)
    return groups


def cleanup_duplicate_reports(session: Session) -> Dict[str, Any]:
    """
    Delete all but the newest report per cleaner and week.

    Returns:
        {'duplicates_removed': int, 'errors': [str]}
    """
    reports = session.query(PaymentReport).order_by(PaymentReport.created_at.desc()).all()

    to_delete = []
    for (cleaner_id, week_start, _), group in _group_by_week(reports).items():
        if len(group) > 1:
            keep, *duplicates = group
            logger.info(f"Keeping report {keep.id} for cleaner {cleaner_id} week {week_start}, "
                        f"removing {len(duplicates)} duplicate(s)")
            to_delete.extend(duplicates)

    for report in to_delete:
        session.delete(report)
    session.flush()

    return {'duplicates_removed': len(to_delete), 'errors': []}


def get_duplicate_reports_summary(session: Session) -> Dict[str, Any]:
    """
    Inspect duplicate reports without deleting anything.

    Returns:
        {'duplicate_groups': [...], 'total_duplicates': int}
    """
    reports = (
        session.query(PaymentReport)
        .order_by(PaymentReport.cleaner_id, PaymentReport.week_start, PaymentReport.created_at.desc())
        .all()
    )

    groups = []
    for (cleaner_id, week_start, week_end), group in _group_by_week(reports).items():
        if len(group) < 2:
            continue
        groups.append({
            'key': f'{cleaner_id}-{week_start.isoformat()}-{week_end.isoformat()}',
            'cleaner_id': cleaner_id,
            'week_start': week_start.isoformat(),
            'week_end': week_end.isoformat(),
            'count': len(group),
            'reports': [
                {
                    'id': r.id,
                    'total_hours': r.total_hours,
                    'total_amount': r.total_amount,
                    'created_at': r.created_at.isoformat(),
                }
                for r in group
            ],
        })

    return {
        'duplicate_groups': groups,
        'total_duplicates': sum(g['count'] - 1 for g in groups),
    }
