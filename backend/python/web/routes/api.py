"""
REST API routes for listings, feeds, cleaners, events and assignments.
"""

from datetime import datetime, time

from flask import Blueprint, jsonify, request, current_app, g
from sqlalchemy import desc, text
from sqlalchemy.exc import SQLAlchemyError

from calsync import assignments
from calsync.feed_fetcher import FeedFetchError
from calsync.reconciler import reactivate_future_events
from common.data_utils import convert_to_bool, convert_to_datetime, convert_to_int
from common.date_utils import parse_date_string
from common.engine import get_pool_stats
from common.errors import ConflictError, NotFoundError, ValidationError
from common.models import Cleaner, Event, Feed, Listing
from web.auth.jwt_auth import ensure_cleaner_access, is_admin, require_auth
from web.utils.audit import AuditEvent, audit_log
from web.utils.validators import (
    normalize_time,
    validate_color,
    validate_feed_url,
    validate_non_negative,
    validate_required,
    validate_time,
)

api_bp = Blueprint('api', __name__, url_prefix='/api')

LISTING_FIELDS = ('name', 'external_id', 'color', 'bank_account', 'hours', 'is_active')
FEED_FIELDS = ('name', 'url', 'is_active')
CLEANER_FIELDS = ('name', 'email', 'phone', 'hourly_rate', 'role', 'is_active')


def get_session():
    """Get database session from app context."""
    return current_app.get_db_session()


def session_scope():
    """Transactional scope for writes."""
    return current_app.session_manager.session_scope()


def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _check(result):
    """Raise the message of a failed (is_valid, message) validator result."""
    is_valid, message = result
    if not is_valid:
        raise ValidationError(message)


def _amount(value, name='amount'):
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be a number')


def get_pagination(default_limit=10):
    page = max(convert_to_int(request.args.get('page')) or 1, 1)
    limit = min(max(convert_to_int(request.args.get('limit')) or default_limit, 1), 200)
    return page, limit


def parse_day_arg(value, name, end_of_day=False):
    if not value:
        return None
    try:
        day = parse_date_string(value)
    except ValueError:
        raise ValidationError(f'{name} must be YYYY-MM-DD')
    return datetime.combine(day, time.max if end_of_day else time.min)


# =============================================================================
# Health
# =============================================================================

@api_bp.route('/health')
def api_health():
    """Health check endpoint, also verifies the database connection."""
    session = get_session()
    try:
        session.execute(text('SELECT 1'))
        database = 'ok'
    except SQLAlchemyError as e:
        current_app.logger.error(f"Health check database error: {e}")
        database = 'error'
    finally:
        session.close()

    healthy = database == 'ok'
    return jsonify({
        'success': healthy,
        'status': 'healthy' if healthy else 'degraded',
        'database': database,
        'timestamp': datetime.now().isoformat(),
        'started_at': current_app.web_started_at.isoformat(),
        'pool': get_pool_stats(current_app.session_manager.engine),
    }), 200 if healthy else 503


# =============================================================================
# Listings
# =============================================================================

def _validate_listing(data):
    _check(validate_color(data.get('color')))
    _check(validate_non_negative(data.get('hours'), 'hours'))
    if 'hours' in data:
        data['hours'] = _amount(data['hours'])


@api_bp.route('/listings')
@require_auth
def api_list_listings():
    """List listings with their feeds."""
    active = request.args.get('active')

    session = get_session()
    try:
        query = session.query(Listing)
        if active is not None:
            query = query.filter(Listing.is_active.is_(convert_to_bool(active)))
        listings = query.order_by(Listing.name).all()
        return jsonify({
            'success': True,
            'listings': [listing.to_dict(include_feeds=True) for listing in listings],
        })
    finally:
        session.close()


@api_bp.route('/listings/<listing_id>')
@require_auth
def api_get_listing(listing_id):
    session = get_session()
    try:
        listing = session.get(Listing, listing_id)
        if listing is None:
            return jsonify({'success': False, 'error': 'Listing not found'}), 404
        return jsonify({'success': True, 'listing': listing.to_dict(include_feeds=True)})
    finally:
        session.close()


@api_bp.route('/listings', methods=['POST'])
@require_auth(roles=['admin'])
def api_create_listing():
    """Create a listing, optionally linking existing feeds via feed_ids."""
    data = get_json_body()
    _check(validate_required(data, 'name'))
    _validate_listing(data)

    with session_scope() as session:
        if session.query(Listing).filter_by(name=data['name']).first():
            raise ConflictError(f"Listing '{data['name']}' already exists")

        listing = Listing(**{k: data[k] for k in LISTING_FIELDS if k in data})
        for feed_id in data.get('feed_ids') or []:
            feed = session.get(Feed, feed_id)
            if feed is None:
                raise NotFoundError(f'Feed not found: {feed_id}')
            listing.feeds.append(feed)
        session.add(listing)
        session.flush()
        result = listing.to_dict(include_feeds=True)

    audit_log(AuditEvent.LISTING_CREATED, f"Listing '{result['name']}' ({result['id']})")
    return jsonify({'success': True, 'listing': result}), 201


@api_bp.route('/listings/<listing_id>', methods=['PATCH'])
@require_auth(roles=['admin'])
def api_update_listing(listing_id):
    data = get_json_body()
    _validate_listing(data)

    with session_scope() as session:
        listing = session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError('Listing not found')
        if data.get('name') and data['name'] != listing.name:
            if session.query(Listing).filter_by(name=data['name']).first():
                raise ConflictError(f"Listing '{data['name']}' already exists")

        changed = [k for k in LISTING_FIELDS if k in data]
        for key in changed:
            setattr(listing, key, data[key])
        session.flush()
        result = listing.to_dict(include_feeds=True)

    audit_log(AuditEvent.LISTING_UPDATED, f"Listing {listing_id}: {', '.join(changed) or 'no changes'}")
    return jsonify({'success': True, 'listing': result})


@api_bp.route('/listings/<listing_id>/feeds', methods=['POST'])
@require_auth(roles=['admin'])
def api_link_feed(listing_id):
    """
    Link a feed to a listing.

    Body is either {feed_id} for an existing feed or {name, url} to create one.
    """
    data = get_json_body()

    with session_scope() as session:
        listing = session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError('Listing not found')

        if data.get('feed_id'):
            feed = session.get(Feed, data['feed_id'])
            if feed is None:
                raise NotFoundError('Feed not found')
        else:
            _check(validate_required(data, 'name', 'url'))
            _check(validate_feed_url(data['url']))
            feed = Feed(name=data['name'], url=data['url'].strip())
            session.add(feed)

        if feed not in listing.feeds:
            listing.feeds.append(feed)
        session.flush()
        result = listing.to_dict(include_feeds=True)
        feed_id = feed.id

    audit_log(AuditEvent.FEED_LINKED, f"Feed {feed_id} -> listing {listing_id}")
    return jsonify({'success': True, 'listing': result})


@api_bp.route('/listings/<listing_id>/feeds/<feed_id>', methods=['DELETE'])
@require_auth(roles=['admin'])
def api_unlink_feed(listing_id, feed_id):
    with session_scope() as session:
        listing = session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError('Listing not found')
        feed = next((f for f in listing.feeds if f.id == feed_id), None)
        if feed is None:
            raise NotFoundError('Feed is not linked to this listing')
        listing.feeds.remove(feed)

    audit_log(AuditEvent.FEED_UNLINKED, f"Feed {feed_id} from listing {listing_id}")
    return jsonify({'success': True})


# =============================================================================
# Feeds
# =============================================================================

@api_bp.route('/feeds')
@require_auth(roles=['admin'])
def api_list_feeds():
    session = get_session()
    try:
        feeds = session.query(Feed).order_by(Feed.name).all()
        return jsonify({
            'success': True,
            'feeds': [
                dict(feed.to_dict(), listing_ids=[listing.id for listing in feed.listings])
                for feed in feeds
            ],
        })
    finally:
        session.close()


@api_bp.route('/feeds', methods=['POST'])
@require_auth(roles=['admin'])
def api_create_feed():
    data = get_json_body()
    _check(validate_required(data, 'name', 'url'))
    _check(validate_feed_url(data['url']))

    with session_scope() as session:
        feed = Feed(
            name=data['name'],
            url=data['url'].strip(),
            is_active=convert_to_bool(data.get('is_active', True)),
        )
        session.add(feed)
        session.flush()
        result = feed.to_dict()

    audit_log(AuditEvent.FEED_CREATED, f"Feed '{result['name']}' ({result['id']})")
    return jsonify({'success': True, 'feed': result}), 201


@api_bp.route('/feeds/<feed_id>', methods=['PATCH'])
@require_auth(roles=['admin'])
def api_update_feed(feed_id):
    data = get_json_body()
    if 'url' in data:
        _check(validate_feed_url(data['url']))

    with session_scope() as session:
        feed = session.get(Feed, feed_id)
        if feed is None:
            raise NotFoundError('Feed not found')
        for key in FEED_FIELDS:
            if key in data:
                setattr(feed, key, data[key].strip() if key == 'url' else data[key])
        session.flush()
        result = feed.to_dict()

    audit_log(AuditEvent.FEED_UPDATED, f"Feed {feed_id}")
    return jsonify({'success': True, 'feed': result})


@api_bp.route('/fetch-ical', methods=['POST'])
@require_auth(roles=['admin'])
def api_fetch_ical():
    """Preview a feed without storing anything."""
    data = get_json_body()
    _check(validate_feed_url(data.get('url')))

    start = parse_day_arg(data.get('start_date'), 'start_date')
    end = parse_day_arg(data.get('end_date'), 'end_date', end_of_day=True)

    try:
        result = current_app.feed_fetcher.fetch(data['url'].strip(), start, end)
    except FeedFetchError as e:
        current_app.logger.warning(f"Feed preview failed for {data['url']}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 502

    listing_name = result.calendar_name or data.get('listing_name') or 'Unknown Listing'
    return jsonify({
        'success': True,
        'events': [dict(b.to_dict(), listing=listing_name) for b in result.bookings],
        'detected_listing_name': listing_name,
        'event_count': len(result.bookings),
        'original_count': result.original_count,
        'date_range_applied': bool(start or end),
    })


# =============================================================================
# Cleaners
# =============================================================================

def _validate_cleaner(data):
    _check(validate_non_negative(data.get('hourly_rate'), 'hourly_rate'))
    if 'hourly_rate' in data:
        data['hourly_rate'] = _amount(data['hourly_rate']) or 0
    if data.get('role') and data['role'] not in ('cleaner', 'admin'):
        raise ValidationError('role must be cleaner or admin')


@api_bp.route('/cleaners')
@require_auth
def api_list_cleaners():
    active = request.args.get('active')

    session = get_session()
    try:
        query = session.query(Cleaner)
        if active is not None:
            query = query.filter(Cleaner.is_active.is_(convert_to_bool(active)))
        cleaners = query.order_by(Cleaner.name).all()
        return jsonify({'success': True, 'cleaners': [c.to_dict() for c in cleaners]})
    finally:
        session.close()


@api_bp.route('/cleaners', methods=['POST'])
@require_auth(roles=['admin'])
def api_create_cleaner():
    data = get_json_body()
    _check(validate_required(data, 'name'))
    _validate_cleaner(data)

    with session_scope() as session:
        if data.get('email') and session.query(Cleaner).filter_by(email=data['email']).first():
            raise ConflictError(f"A cleaner with email {data['email']} already exists")
        cleaner = Cleaner(**{k: data[k] for k in CLEANER_FIELDS if k in data})
        session.add(cleaner)
        session.flush()
        result = cleaner.to_dict()

    audit_log(AuditEvent.CLEANER_CREATED, f"Cleaner '{result['name']}' ({result['id']})")
    return jsonify({'success': True, 'cleaner': result}), 201


@api_bp.route('/cleaners/<cleaner_id>', methods=['PATCH'])
@require_auth(roles=['admin'])
def api_update_cleaner(cleaner_id):
    data = get_json_body()
    _validate_cleaner(data)

    with session_scope() as session:
        cleaner = session.get(Cleaner, cleaner_id)
        if cleaner is None:
            raise NotFoundError('Cleaner not found')
        for key in CLEANER_FIELDS:
            if key in data:
                setattr(cleaner, key, data[key])
        session.flush()
        result = cleaner.to_dict()

    audit_log(AuditEvent.CLEANER_UPDATED, f"Cleaner {cleaner_id}")
    return jsonify({'success': True, 'cleaner': result})


# =============================================================================
# Events
# =============================================================================

@api_bp.route('/events')
@require_auth
def api_list_events():
    """List events by listing, active flag and start date range."""
    listing_id = request.args.get('listing_id')
    active = request.args.get('active', 'true')
    start = parse_day_arg(request.args.get('start_date'), 'start_date')
    end = parse_day_arg(request.args.get('end_date'), 'end_date', end_of_day=True)
    limit = convert_to_int(request.args.get('limit')) or 500

    session = get_session()
    try:
        query = session.query(Event)
        if listing_id:
            query = query.filter(Event.listing_id == listing_id)
        if active != 'all':
            query = query.filter(Event.is_active.is_(convert_to_bool(active)))
        if start:
            query = query.filter(Event.start_time >= start)
        if end:
            query = query.filter(Event.start_time <= end)

        events = query.order_by(Event.start_time).limit(limit).all()
        return jsonify({'success': True, 'events': [e.to_dict() for e in events], 'count': len(events)})
    finally:
        session.close()


@api_bp.route('/calendar/update-checkout-time', methods=['POST'])
@require_auth(roles=['admin'])
def api_update_checkout_time():
    """
    Set the checkout time of an event.

    event_id is tried as the row id first, then as the event_uid.
    """
    data = get_json_body()
    event_ref = (data.get('event_id') or '').strip()
    checkout_time = (data.get('checkout_time') or '').strip()
    if not event_ref or not checkout_time:
        raise ValidationError('Event ID and checkout time are required')
    _check(validate_time(checkout_time))

    with session_scope() as session:
        event = session.get(Event, event_ref)
        if event is None:
            event = (
                session.query(Event)
                .filter(Event.event_uid == event_ref)
                .order_by(desc(Event.is_active), desc(Event.updated_at))
                .first()
            )
        if event is None:
            raise NotFoundError('Event not found')

        event.checkout_time = normalize_time(checkout_time)
        session.flush()
        result = event.to_dict()

    return jsonify({'success': True, 'data': result})


@api_bp.route('/events/reactivate-future', methods=['POST'])
@require_auth(roles=['admin'])
def api_reactivate_future_events():
    with session_scope() as session:
        counts = reactivate_future_events(session)

    audit_log(
        AuditEvent.EVENTS_REACTIVATED,
        f"{counts['events']} event(s), {counts['assignments']} assignment(s)"
    )
    return jsonify({
        'success': True,
        'reactivated_events': counts['events'],
        'reactivated_assignments': counts['assignments'],
    })


# =============================================================================
# Cleaner assignments
# =============================================================================

@api_bp.route('/cleaner-assignments')
@require_auth
def api_list_assignments():
    """
    List assignments with their events.

    Cleaners only see their own; admins may filter by cleaner_id.
    """
    cleaner_id = request.args.get('cleaner_id')
    if not is_admin():
        cleaner_id = cleaner_id or g.current_user.get('cleaner_id')
        ensure_cleaner_access(cleaner_id)
    include_inactive = convert_to_bool(request.args.get('include_inactive', False))

    session = get_session()
    try:
        rows = assignments.list_assignments(session, cleaner_id, active_only=not include_inactive)
        return jsonify({'success': True, 'assignments': [a.to_dict() for a in rows]})
    finally:
        session.close()


@api_bp.route('/cleaner-assignments', methods=['POST'])
@require_auth(roles=['admin'])
def api_create_assignment():
    """Assign a cleaner to an event, replacing the current assignment."""
    data = get_json_body()
    _check(validate_required(data, 'cleaner_id', 'event_id'))

    with session_scope() as session:
        assignment = assignments.assign_cleaner(
            session, data['cleaner_id'], data['event_id'], _amount(data.get('hours', 2.0), 'hours')
        )
        result = assignment.to_dict()

    audit_log(AuditEvent.ASSIGNMENT_CHANGED, f"Cleaner {data['cleaner_id']} -> event {data['event_id']}")
    return jsonify({'success': True, 'assignment': result}), 201


@api_bp.route('/cleaner-assignments', methods=['PATCH'])
@require_auth(roles=['admin'])
def api_update_assignment():
    data = get_json_body()
    _check(validate_required(data, 'id'))
    changes = {k: v for k, v in data.items() if k != 'id'}
    if 'hours' in changes:
        changes['hours'] = _amount(changes['hours'], 'hours')
    if 'completed_at' in changes:
        changes['completed_at'] = convert_to_datetime(changes['completed_at'])

    with session_scope() as session:
        assignment = assignments.update_assignment(session, data['id'], changes)
        result = assignment.to_dict()

    audit_log(AuditEvent.ASSIGNMENT_CHANGED, f"Assignment {data['id']}: {', '.join(changes)}")
    return jsonify({'success': True, 'assignment': result})


@api_bp.route('/cleaner-assignments', methods=['DELETE'])
@require_auth(roles=['admin'])
def api_delete_assignment():
    assignment_id = request.args.get('id')
    if not assignment_id:
        raise ValidationError('id is required')

    with session_scope() as session:
        assignments.delete_assignment(session, assignment_id)

    audit_log(AuditEvent.ASSIGNMENT_CHANGED, f"Assignment {assignment_id} deleted")
    return jsonify({'success': True})
