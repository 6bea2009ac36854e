"""
JWT Authentication Middleware for the sync API.
Validates Bearer tokens issued to admins and cleaners.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import request, jsonify, g, current_app

ROLES = ('admin', 'cleaner')


class AuthError(Exception):
    """Authentication error with status code."""
    def __init__(self, message, status_code=401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def get_token_from_header():
    """
    Extract JWT token from Authorization header.

    Returns:
        str: Token string or None
    """
    auth_header = request.headers.get('Authorization', '')

    if auth_header.startswith('Bearer '):
        return auth_header[7:]
    return None


def decode_token(token):
    """
    Decode and validate JWT token.

    Args:
        token: JWT token string

    Returns:
        dict: Decoded payload

    Raises:
        AuthError: If token is invalid
    """
    secret = current_app.config.get('JWT_SECRET')
    if not secret:
        raise AuthError('JWT secret not configured', 500)

    algorithm = current_app.config.get('JWT_ALGORITHM') or 'HS256'
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError('Token has expired')
    except jwt.InvalidTokenError as e:
        raise AuthError(f'Invalid token: {str(e)}')


def create_token(subject, role, cleaner_id=None, expires_in=3600):
    """
    Issue a token for a user. Used by tests and admin tooling.

    Args:
        subject: User identifier (sub claim)
        role: 'admin' or 'cleaner'
        cleaner_id: Cleaner row the token acts for (cleaner role)
        expires_in: Lifetime in seconds
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    payload = {
        'sub': subject,
        'role': role,
        'exp': datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    if cleaner_id:
        payload['cleaner_id'] = cleaner_id
    return jwt.encode(
        payload,
        current_app.config['JWT_SECRET'],
        algorithm=current_app.config.get('JWT_ALGORITHM') or 'HS256'
    )


def require_auth(roles=None):
    """
    Decorator factory requiring a valid token, optionally with given roles.
    Sets g.current_user with the token payload.

    Usage:
        @api_bp.route('/api/listings', methods=['POST'])
        @require_auth(roles=['admin'])
        def create_listing():
            user = g.current_user
            ...

    A bare @require_auth accepts any known role.
    """
    if callable(roles):
        return require_auth()(roles)

    allowed = list(roles) if roles else list(ROLES)

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            token = get_token_from_header()
            if not token:
                raise AuthError('Missing authentication token')

            payload = decode_token(token)
            user_role = payload.get('role', '')
            if user_role not in allowed:
                raise AuthError(
                    f'This endpoint requires one of: {", ".join(allowed)}', 403
                )

            g.current_user = payload
            return f(*args, **kwargs)

        return decorated
    return decorator


def current_username():
    user = getattr(g, 'current_user', None)
    return user.get('sub', 'unknown') if user else 'anonymous'


def is_admin():
    user = getattr(g, 'current_user', None) or {}
    return user.get('role') == 'admin'


def ensure_cleaner_access(cleaner_id):
    """
    Cleaners may only act on their own records; admins on any.

    Raises:
        AuthError: 403 when a cleaner token targets another cleaner
    """
    if is_admin():
        return
    user = getattr(g, 'current_user', None) or {}
    if not cleaner_id or user.get('cleaner_id') != cleaner_id:
        raise AuthError('Cleaners can only access their own records', 403)


def init_auth(app):
    """
    Initialize authentication for Flask app.
    Adds the AuthError handler and request logging.

    Args:
        app: Flask application
    """
    @app.errorhandler(AuthError)
    def handle_auth_error(error):
        return jsonify({
            'success': False,
            'error': error.message
        }), error.status_code

    @app.before_request
    def log_auth_info():
        token = get_token_from_header()
        if token:
            try:
                payload = decode_token(token)
                app.logger.debug(f"Authenticated request from user {payload.get('sub')} ({payload.get('role')})")
            except AuthError:
                app.logger.debug("Request with invalid token")
