"""
Sync API: trigger listing syncs, client-driven sync sessions and sync history.
"""

from flask import Blueprint, jsonify, request, current_app
from sqlalchemy import desc, func

from calsync.listing_sync import final_status
from calsync.sync_logging import STAT_FIELDS
from common.data_utils import convert_to_bool, convert_to_int
from common.errors import NotFoundError, ValidationError
from common.models import SyncLogEntry, SyncSession
from web.auth.jwt_auth import require_auth
from web.routes.api import get_json_body, get_pagination, get_session, parse_day_arg
from web.utils.audit import AuditEvent, audit_log
from web.utils.rate_limit import rate_limit_api

sync_bp = Blueprint('sync', __name__, url_prefix='/api')

# Client result keys summed into session totals
RESULT_STAT_KEYS = {
    'events': 'total_events_processed',
    'feeds_processed': 'total_feeds_processed',
    'added': 'total_added',
    'updated': 'total_updated',
    'deactivated': 'total_deactivated',
    'replaced': 'total_replaced',
    'unchanged': 'total_unchanged',
    'errors': 'total_errors',
}


# =============================================================================
# Triggers
# =============================================================================

@sync_bp.route('/sync-listing', methods=['POST'])
@require_auth(roles=['admin'])
@rate_limit_api(max_requests=30, window_seconds=60)
def api_sync_listing():
    """
    Sync one listing now.

    Pass sync_session_id to report into a session created with
    POST /api/sync-session; otherwise a 'single' session is recorded.
    """
    data = get_json_body()
    listing_id = data.get('listing_id')
    if not listing_id:
        raise ValidationError('listing_id is required')
    sync_session_id = data.get('sync_session_id')
    if sync_session_id and current_app.syncer.recorder.get_session(sync_session_id) is None:
        raise NotFoundError('Sync session not found')

    audit_log(AuditEvent.SYNC_TRIGGERED, f"Listing {listing_id}")
    result = current_app.syncer.sync_listing(
        listing_id,
        sync_session_id=sync_session_id,
        triggered_by=data.get('triggered_by') or 'manual',
    )

    include_logs = convert_to_bool(data.get('include_logs', False))
    body = {'success': result.status != 'error', 'result': result.to_dict(include_logs=include_logs)}
    if result.status == 'error':
        body['error'] = result.error_message
        return jsonify(body), 500
    return jsonify(body)


@sync_bp.route('/sync-all-listings', methods=['POST'])
@require_auth(roles=['admin'])
@rate_limit_api(max_requests=5, window_seconds=60)
def api_sync_all_listings():
    """Sync every syncable listing in batches and record one 'all' session."""
    data = request.get_json(silent=True) or {}
    audit_log(AuditEvent.SYNC_TRIGGERED, "All listings")

    outcome = current_app.syncer.sync_all(triggered_by=data.get('triggered_by') or 'manual')
    return jsonify({
        'success': outcome['status'] != 'error',
        'session_id': outcome['session_id'],
        'status': outcome['status'],
        'summary': outcome['summary'],
        'results': [r.to_dict() for r in outcome['results']],
    })


# =============================================================================
# Client-driven sessions
# =============================================================================

@sync_bp.route('/sync-session', methods=['POST'])
@require_auth(roles=['admin'])
def api_create_sync_session():
    data = get_json_body()
    sync_type = data.get('sync_type')
    triggered_by = data.get('triggered_by') or 'manual'
    recorder = current_app.syncer.recorder

    if sync_type == 'all':
        total = convert_to_int(data.get('total_listings')) or 0
        if total <= 0:
            raise ValidationError('total_listings is required for "all" sync type')
        session_id = recorder.create_session('all', triggered_by, total_listings=total)
    elif sync_type == 'single':
        if not data.get('listing_name'):
            raise ValidationError('listing_name is required for "single" sync type')
        session_id = recorder.create_session(
            'single', triggered_by,
            listing_id=data.get('listing_id'),
            listing_name=data['listing_name'],
            total_listings=1,
        )
    else:
        raise ValidationError('Invalid sync_type. Must be "single" or "all"')

    recorder.start_session(session_id)
    return jsonify({'success': True, 'session_id': session_id}), 201


@sync_bp.route('/sync-session/complete', methods=['POST'])
@require_auth(roles=['admin'])
def api_complete_sync_session():
    """Close a client-driven session from the per-listing results it collected."""
    data = get_json_body()
    session_id = data.get('session_id')
    results = data.get('results')
    if not session_id:
        raise ValidationError('session_id is required')
    if not isinstance(results, list):
        raise ValidationError('results array is required')

    recorder = current_app.syncer.recorder
    if recorder.get_session(session_id) is None:
        raise NotFoundError('Sync session not found')

    stats = {column: 0 for column in STAT_FIELDS}
    for result in results:
        for key, column in RESULT_STAT_KEYS.items():
            stats[column] += convert_to_int(result.get(key)) or 0

    status = final_status(
        sum(1 for r in results if r.get('status') == 'success'),
        sum(1 for r in results if r.get('status') == 'error'),
    )
    recorder.complete_session(session_id, stats, status)
    recorder.update_session(session_id, completed_listings=len(results))

    return jsonify({'success': True, 'session_id': session_id, 'status': status, 'stats': stats})


# =============================================================================
# History
# =============================================================================

@sync_bp.route('/sync-logs')
@require_auth(roles=['admin'])
def api_list_sync_sessions():
    """List sync sessions, newest first, with filters and pagination."""
    page, limit = get_pagination(20)
    sync_type = request.args.get('sync_type')
    status = request.args.get('status')
    listing_name = request.args.get('listing_name')
    start = parse_day_arg(request.args.get('start_date'), 'start_date')
    end = parse_day_arg(request.args.get('end_date'), 'end_date', end_of_day=True)

    session = get_session()
    try:
        query = session.query(SyncSession)
        if sync_type:
            query = query.filter(SyncSession.sync_type == sync_type)
        if status:
            query = query.filter(SyncSession.status == status)
        if listing_name:
            query = query.filter(SyncSession.listing_name.ilike(f'%{listing_name}%'))
        if start:
            query = query.filter(SyncSession.created_at >= start)
        if end:
            query = query.filter(SyncSession.created_at <= end)

        total = query.count()
        sessions = (
            query.order_by(desc(SyncSession.created_at))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return jsonify({
            'success': True,
            'data': {
                'sessions': [s.to_dict() for s in sessions],
                'pagination': {
                    'page': page,
                    'limit': limit,
                    'total': total,
                    'total_pages': (total + limit - 1) // limit,
                },
            },
        })
    finally:
        session.close()


@sync_bp.route('/sync-logs/<session_id>')
@require_auth(roles=['admin'])
def api_get_sync_session(session_id):
    """Session details, its log entries and a count per operation."""
    page, limit = get_pagination(50)
    operation = request.args.get('operation')
    listing_name = request.args.get('listing_name')

    session = get_session()
    try:
        sync_session = session.get(SyncSession, session_id)
        if sync_session is None:
            return jsonify({'success': False, 'error': 'Sync session not found'}), 404

        query = session.query(SyncLogEntry).filter(SyncLogEntry.sync_session_id == session_id)
        if operation:
            query = query.filter(SyncLogEntry.operation == operation)
        if listing_name:
            query = query.filter(SyncLogEntry.listing_name.ilike(f'%{listing_name}%'))

        total = query.count()
        entries = (
            query.order_by(SyncLogEntry.created_at)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        operation_counts = dict(
            session.query(SyncLogEntry.operation, func.count(SyncLogEntry.id))
            .filter(SyncLogEntry.sync_session_id == session_id)
            .group_by(SyncLogEntry.operation)
            .all()
        )

        return jsonify({
            'success': True,
            'data': {
                'session': sync_session.to_dict(),
                'log_entries': [e.to_dict() for e in entries],
                'operation_counts': operation_counts,
                'pagination': {
                    'page': page,
                    'limit': limit,
                    'total': total,
                    'total_pages': (total + limit - 1) // limit,
                },
            },
        })
    finally:
        session.close()
