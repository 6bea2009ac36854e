"""
Payment report and extra-hours report routes.
"""

from datetime import date

from flask import Blueprint, jsonify, request, current_app, g

from common.errors import ValidationError
from common.date_utils import parse_date_string
from reports import extra_reports, payment_reports
from web.auth.jwt_auth import ensure_cleaner_access, is_admin, require_auth
from web.routes.api import get_json_body, get_pagination, get_session, session_scope
from web.utils.audit import AuditEvent, audit_log

reports_bp = Blueprint('reports', __name__, url_prefix='/api')


def _scoped_cleaner_id(cleaner_id):
    """Admins may filter by any cleaner; cleaners are pinned to their own id."""
    if is_admin():
        return cleaner_id
    cleaner_id = cleaner_id or g.current_user.get('cleaner_id')
    ensure_cleaner_access(cleaner_id)
    return cleaner_id


def _reference_day(data):
    if data.get('use_current_week') or not data.get('week_start'):
        return date.today()
    try:
        return parse_date_string(data['week_start'])
    except ValueError:
        raise ValidationError('week_start must be YYYY-MM-DD')


# =============================================================================
# Payment reports
# =============================================================================

@reports_bp.route('/payment-reports')
@require_auth
def api_list_payment_reports():
    page, limit = get_pagination(current_app.report_config.default_page_size)
    cleaner_id = _scoped_cleaner_id(request.args.get('cleaner_id'))

    session = get_session()
    try:
        result = payment_reports.list_payment_reports(
            session,
            cleaner_id=cleaner_id,
            status=request.args.get('status'),
            date_from=request.args.get('date_from'),
            date_to=request.args.get('date_to'),
            page=page,
            limit=limit,
        )
        return jsonify({'success': True, **result})
    finally:
        session.close()


@reports_bp.route('/payment-reports', methods=['POST'])
@require_auth(roles=['admin'])
def api_generate_payment_reports():
    """Generate the reports of the week containing week_start (default: this week)."""
    data = request.get_json(silent=True) or {}
    reference_day = _reference_day(data)

    with session_scope() as session:
        reports = payment_reports.generate_weekly_reports(
            session,
            cleaner_id=data.get('cleaner_id') or None,
            reference_day=reference_day,
            config=current_app.report_config,
        )
        result = [r.to_dict() for r in reports]

    audit_log(AuditEvent.REPORTS_GENERATED, f"{len(result)} report(s) for week of {reference_day}")
    return jsonify({'success': True, 'reports': result})


@reports_bp.route('/payment-reports', methods=['PATCH'])
@require_auth(roles=['admin'])
def api_payment_report_maintenance():
    data = get_json_body()
    action = data.get('action')

    if action == 'cleanup-duplicates':
        with session_scope() as session:
            result = payment_reports.cleanup_duplicate_reports(session)
        audit_log(AuditEvent.REPORTS_CLEANED_UP, f"{result['duplicates_removed']} duplicate(s) removed")
        return jsonify({'success': True, **result})

    if action == 'get-duplicates-summary':
        session = get_session()
        try:
            return jsonify({'success': True, **payment_reports.get_duplicate_reports_summary(session)})
        finally:
            session.close()

    raise ValidationError('Invalid action')


@reports_bp.route('/payment-reports/<report_id>')
@require_auth
def api_get_payment_report(report_id):
    session = get_session()
    try:
        report = payment_reports.get_payment_report(session, report_id)
        ensure_cleaner_access(report['cleaner_id'])
        return jsonify({'success': True, 'report': report})
    finally:
        session.close()


@reports_bp.route('/payment-reports/<report_id>', methods=['PATCH'])
@require_auth(roles=['admin'])
def api_update_payment_report_status(report_id):
    """Approve, pay or reject a report. Rejection needs a message."""
    data = get_json_body()
    status = data.get('status')

    with session_scope() as session:
        report = payment_reports.update_report_status(session, report_id, status, data.get('message'))
        result = report.to_dict()

    audit_log(AuditEvent.REPORT_STATUS_CHANGED, f"Report {report_id} -> {status}")
    return jsonify({'success': True, 'report': result})


@reports_bp.route('/payment-reports/update-extra-hours', methods=['POST'])
@require_auth
def api_update_extra_hours():
    """Recompute a week's report totals after extra hours changed."""
    data = get_json_body()
    cleaner_id = data.get('cleaner_id')
    if not cleaner_id or not data.get('week_start_date'):
        raise ValidationError('cleaner_id and week_start_date are required')
    ensure_cleaner_access(cleaner_id)

    with session_scope() as session:
        result = payment_reports.recalculate_report_totals(
            session, cleaner_id, data['week_start_date'], current_app.report_config
        )
    return jsonify({'success': True, **result})


# =============================================================================
# Extra-hours reports
# =============================================================================

def _extra_report_fields(data):
    return {key: data[key] for key in extra_reports.UPDATABLE_FIELDS if key in data}


@reports_bp.route('/cleaner-extra-reports')
@require_auth
def api_list_extra_reports():
    """
    List extra reports.

    With both cleaner_id and week_start_date the week's reports are returned
    unpaginated; with current_week=true the cleaner's travel-only report for
    this week.
    """
    cleaner_id = _scoped_cleaner_id(request.args.get('cleaner_id'))
    week_start_date = request.args.get('week_start_date')

    session = get_session()
    try:
        if request.args.get('current_week') == 'true':
            if not cleaner_id:
                raise ValidationError('cleaner_id is required')
            report = extra_reports.get_current_week_extra_report(session, cleaner_id)
            return jsonify({'success': True, 'report': report.to_dict() if report else None})

        if cleaner_id and week_start_date:
            reports = extra_reports.get_extra_reports_for_week(session, cleaner_id, week_start_date)
            return jsonify({
                'success': True,
                'reports': [r.to_dict() for r in reports],
                'count': len(reports),
            })

        page, limit = get_pagination(current_app.report_config.default_page_size)
        result = extra_reports.list_extra_reports(
            session,
            cleaner_id=cleaner_id,
            date_from=request.args.get('date_from'),
            date_to=request.args.get('date_to'),
            page=page,
            limit=limit,
        )
        return jsonify({'success': True, **result})
    finally:
        session.close()


@reports_bp.route('/cleaner-extra-reports', methods=['POST'])
@require_auth
def api_create_extra_report():
    """Store an extra report and refresh the week's payment report, if any."""
    data = get_json_body()
    cleaner_id = data.get('cleaner_id')
    ensure_cleaner_access(cleaner_id)

    with session_scope() as session:
        report = extra_reports.create_extra_report(
            session,
            cleaner_id=cleaner_id,
            week_start_date=data.get('week_start_date'),
            **_extra_report_fields(data)
        )
        payment_reports.recalculate_report_totals(
            session, report.cleaner_id, report.week_start_date, current_app.report_config
        )
        result = report.to_dict()

    return jsonify({'success': True, 'report': result}), 201


@reports_bp.route('/cleaner-extra-reports/<report_id>')
@require_auth
def api_get_extra_report(report_id):
    session = get_session()
    try:
        report = extra_reports.get_extra_report_by_id(session, report_id)
        ensure_cleaner_access(report.cleaner_id)
        return jsonify({'success': True, 'report': report.to_dict()})
    finally:
        session.close()


@reports_bp.route('/cleaner-extra-reports/<report_id>', methods=['PATCH'])
@require_auth
def api_update_extra_report(report_id):
    data = get_json_body()

    with session_scope() as session:
        ensure_cleaner_access(extra_reports.get_extra_report_by_id(session, report_id).cleaner_id)
        report = extra_reports.update_extra_report(session, report_id, data)
        payment_reports.recalculate_report_totals(
            session, report.cleaner_id, report.week_start_date, current_app.report_config
        )
        result = report.to_dict()

    return jsonify({'success': True, 'report': result})


@reports_bp.route('/cleaner-extra-reports/<report_id>', methods=['DELETE'])
@require_auth
def api_delete_extra_report(report_id):
    with session_scope() as session:
        report = extra_reports.get_extra_report_by_id(session, report_id)
        ensure_cleaner_access(report.cleaner_id)
        cleaner_id, week_start_date = report.cleaner_id, report.week_start_date
        extra_reports.delete_extra_report(session, report_id)
        payment_reports.recalculate_report_totals(
            session, cleaner_id, week_start_date, current_app.report_config
        )

    return jsonify({'success': True})
