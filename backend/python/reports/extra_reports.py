"""
Cleaner extra-hours reports.

A cleaner may file several reports for one week: travel time, plus extra
hours worked at a specific listing. Extra hours feed into the weekly
payment report as separate "(Extra Hours)" entries.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from common.data_utils import convert_to_decimal
from common.date_utils import get_week_boundaries, parse_date_string
from common.errors import NotFoundError, ValidationError
from common.models import Cleaner, CleanerExtraReport, Listing

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('travel_minutes', 'extra_hours', 'listing_id', 'notes')


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return parse_date_string(str(value))
    except ValueError as e:
        raise ValidationError(str(e))


def _non_negative(value, name: str) -> float:
    number = convert_to_decimal(value if value not in (None, '') else 0)
    if number is None or not number.is_finite() or number < 0:
        raise ValidationError(f'{name} must be a non-negative number')
    return float(number)


def _validate(extra_hours: float, listing_id: Optional[str]):
    if extra_hours > 0 and not listing_id:
        raise ValidationError('listing_id is required when extra_hours > 0')


def create_extra_report(
    session: Session,
    cleaner_id: str,
    week_start_date,
    travel_minutes=0,
    extra_hours=0,
    listing_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> CleanerExtraReport:
    """
    Store a new extra report. Reports are never merged; each call inserts.

    Raises:
        ValidationError: Missing cleaner/week, negative values, or extra
            hours without a listing
        NotFoundError: Unknown cleaner or listing
    """
    if not cleaner_id:
        raise ValidationError('cleaner_id is required')
    if not week_start_date:
        raise ValidationError('week_start_date is required')

    travel = _non_negative(travel_minutes, 'travel_minutes')
    hours = _non_negative(extra_hours, 'extra_hours')
    _validate(hours, listing_id)

    if session.get(Cleaner, cleaner_id) is None:
        raise NotFoundError('Cleaner not found')
    if listing_id and session.get(Listing, listing_id) is None:
        raise NotFoundError('Listing not found')

    report = CleanerExtraReport(
        cleaner_id=cleaner_id,
        week_start_date=_as_date(week_start_date),
        travel_minutes=int(round(travel)),
        extra_hours=hours,
        listing_id=listing_id or None,
        notes=notes or None,
    )
    session.add(report)
    session.flush()
    logger.info(f"Created extra report {report.id} for cleaner {cleaner_id} ({hours}h, {travel} min)")
    return report


def get_extra_report(
    session: Session,
    cleaner_id: str,
    week_start_date,
    listing_id: Optional[str] = None
) -> Optional[CleanerExtraReport]:
    """
    Get the cleaner's report for a week and listing.

    Without a listing_id this matches the report that has no listing
    (the travel-only report).
    """
    query = session.query(CleanerExtraReport).filter(
        CleanerExtraReport.cleaner_id == cleaner_id,
        CleanerExtraReport.week_start_date == _as_date(week_start_date),
    )
    if listing_id:
        query = query.filter(CleanerExtraReport.listing_id == listing_id)
    else:
        query = query.filter(CleanerExtraReport.listing_id.is_(None))
    return query.order_by(CleanerExtraReport.created_at.desc()).first()


def get_extra_reports_for_week(session: Session, cleaner_id: str, week_start_date) -> List[CleanerExtraReport]:
    """All of a cleaner's reports for one week, oldest first."""
    return (
        session.query(CleanerExtraReport)
        .filter(
            CleanerExtraReport.cleaner_id == cleaner_id,
            CleanerExtraReport.week_start_date == _as_date(week_start_date),
        )
        .order_by(CleanerExtraReport.created_at.asc())
        .all()
    )


def get_extra_report_by_id(session: Session, report_id: str) -> CleanerExtraReport:
    report = session.get(CleanerExtraReport, report_id)
    if report is None:
        raise NotFoundError('Extra report not found')
    return report


def list_extra_reports(
    session: Session,
    cleaner_id: Optional[str] = None,
    week_start_date=None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """
    List extra reports, newest week first.

    Returns:
        {'reports': [...], 'count': total matching, 'page', 'limit'}
    """
    page = max(int(page or 1), 1)
    limit = max(int(limit or 10), 1)

    query = session.query(CleanerExtraReport)
    if cleaner_id:
        query = query.filter(CleanerExtraReport.cleaner_id == cleaner_id)
    if week_start_date:
        query = query.filter(CleanerExtraReport.week_start_date == _as_date(week_start_date))
    if date_from:
        query = query.filter(CleanerExtraReport.week_start_date >= _as_date(date_from))
    if date_to:
        query = query.filter(CleanerExtraReport.week_start_date <= _as_date(date_to))

    count = query.count()
    reports = (
        query.order_by(CleanerExtraReport.week_start_date.desc(), CleanerExtraReport.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        'reports': [r.to_dict() for r in reports],
        'count': count,
        'page': page,
        'limit': limit,
    }


def update_extra_report(session: Session, report_id: str, updates: Dict[str, Any]) -> CleanerExtraReport:
    """
    Update an extra report in place.

    The merged result is validated the same way as on creation, so clearing
    the listing of a report with extra hours is rejected.
    """
    report = get_extra_report_by_id(session, report_id)
    unknown = set(updates) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    travel = _non_negative(updates.get('travel_minutes', report.travel_minutes), 'travel_minutes')
    hours = _non_negative(updates.get('extra_hours', report.extra_hours), 'extra_hours')
    listing_id = updates.get('listing_id', report.listing_id) or None
    _validate(hours, listing_id)

    if listing_id and listing_id != report.listing_id and session.get(Listing, listing_id) is None:
        raise NotFoundError('Listing not found')

    report.travel_minutes = int(round(travel))
    report.extra_hours = hours
    report.listing_id = listing_id
    if 'notes' in updates:
        report.notes = updates['notes'] or None
    session.flush()
    session.expire(report, ['listing'])
    logger.info(f"Updated extra report {report_id}")
    return report


def delete_extra_report(session: Session, report_id: str):
    report = get_extra_report_by_id(session, report_id)
    session.delete(report)
    session.flush()
    logger.info(f"Deleted extra report {report_id}")


def get_current_week_extra_report(session: Session, cleaner_id: str, today: date = None) -> Optional[CleanerExtraReport]:
    """The cleaner's travel-only report for the current week, if any."""
    monday, _ = get_week_boundaries(today or date.today())
    return get_extra_report(session, cleaner_id, monday.date())
