"""
Cleaner-facing job timers and notifications, plus admin job notices.
"""

from flask import Blueprint, jsonify, request, g

from common.data_utils import convert_to_int
from common.models import Notification
from reports import notifications
from web.auth.jwt_auth import ensure_cleaner_access, is_admin, require_auth
from web.routes.api import get_json_body, get_session, session_scope

jobs_bp = Blueprint('jobs', __name__, url_prefix='/api')


def _limit(default=20):
    return min(max(convert_to_int(request.args.get('limit')) or default, 1), 100)


# =============================================================================
# Cleaner notifications
# =============================================================================

@jobs_bp.route('/notifications')
@require_auth
def api_list_notifications():
    cleaner_id = request.args.get('cleaner_id')
    if not is_admin():
        cleaner_id = cleaner_id or g.current_user.get('cleaner_id')
    ensure_cleaner_access(cleaner_id)

    session = get_session()
    try:
        rows = notifications.list_notifications(session, cleaner_id, limit=_limit())
        return jsonify({'success': True, 'notifications': [n.to_dict() for n in rows]})
    finally:
        session.close()


@jobs_bp.route('/notifications/<notification_id>', methods=['PATCH'])
@require_auth
def api_mark_notification(notification_id):
    data = get_json_body()

    with session_scope() as session:
        existing = session.get(Notification, notification_id)
        if existing is not None:
            ensure_cleaner_access(existing.cleaner_id)
        notification = notifications.mark_notification(session, notification_id, data.get('is_read'))
        result = notification.to_dict()

    return jsonify({'success': True, 'notification': result})


# =============================================================================
# Job timers
# =============================================================================

@jobs_bp.route('/job-start', methods=['POST'])
@require_auth
def api_job_start():
    data = get_json_body()
    ensure_cleaner_access(data.get('cleaner_id'))

    with session_scope() as session:
        timer = notifications.start_job(session, data.get('assignment_id'), data.get('cleaner_id'))
        result = timer.to_dict()

    return jsonify({'success': True, 'timer': result}), 201


@jobs_bp.route('/job-completion', methods=['POST'])
@require_auth
def api_job_completion():
    """Close the job's timer and store the completion checklist."""
    data = get_json_body()
    ensure_cleaner_access(data.get('cleaner_id'))

    with session_scope() as session:
        outcome = notifications.complete_job(session, data)
        result = outcome['job_completion'].to_dict()

    return jsonify({
        'success': True,
        'job_completion': result,
        'duration_minutes': outcome['duration_minutes'],
    }), 201


# =============================================================================
# Admin job notifications
# =============================================================================

@jobs_bp.route('/job-notifications')
@require_auth(roles=['admin'])
def api_list_job_notifications():
    session = get_session()
    try:
        return jsonify({
            'success': True,
            'notifications': notifications.list_job_notifications(session, limit=_limit()),
        })
    finally:
        session.close()


@jobs_bp.route('/job-notifications/<notification_id>', methods=['PATCH'])
@require_auth(roles=['admin'])
def api_mark_job_notification(notification_id):
    data = get_json_body()

    with session_scope() as session:
        notification = notifications.mark_job_notification(session, notification_id, data.get('is_read'))
        result = notification.to_dict()

    return jsonify({'success': True, 'notification': result})
