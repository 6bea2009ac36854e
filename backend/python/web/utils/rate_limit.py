"""
In-memory throttling for the sync trigger endpoints.

A manual "sync everything" fans out to every feed of every listing, so the
endpoints that start syncs are limited per caller. Callers are keyed by the
token subject when authenticated, otherwise by client IP.
"""

import time
from collections import defaultdict, deque
from functools import wraps
from threading import Lock

from flask import request, jsonify, current_app, g

from web.utils.audit import get_client_ip


class RateLimiter:
    """Sliding-window request counter, safe to share between request threads."""

    def __init__(self):
        self._hits = defaultdict(deque)
        self._lock = Lock()

    def hit(self, key, max_requests, window_seconds, now=None):
        """
        Record a request for key unless the window is already full.

        Returns:
            tuple: (allowed, remaining, retry_after_seconds or None)
        """
        now = time.time() if now is None else now
        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - window_seconds:
                hits.popleft()

            if len(hits) >= max_requests:
                retry_after = int(hits[0] + window_seconds - now) + 1
                return False, 0, max(retry_after, 1)

            hits.append(now)
            return True, max_requests - len(hits), None

    def reset(self, key=None):
        """Forget one caller, or everyone."""
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


api_limiter = RateLimiter()


def _caller_key():
    user = getattr(g, 'current_user', None) or {}
    if user.get('sub'):
        return f"user:{user['sub']}"
    return f"ip:{get_client_ip()}"


def rate_limit_api(max_requests=30, window_seconds=60):
    """
    Limit an endpoint to max_requests per caller per window.

    Apply below @require_auth so the caller is known. Turned off when the
    app sets RATELIMIT_ENABLED to False.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_app.config.get('RATELIMIT_ENABLED', True):
                return f(*args, **kwargs)

            caller = _caller_key()
            allowed, remaining, retry_after = api_limiter.hit(
                f"{request.endpoint}:{caller}", max_requests, window_seconds
            )
            if not allowed:
                current_app.logger.warning(f"Rate limit exceeded for {caller} on {request.endpoint}")
                response = jsonify({
                    'success': False,
                    'error': 'Rate limit exceeded',
                    'retry_after': retry_after,
                })
                response.status_code = 429
                response.headers['Retry-After'] = str(retry_after)
                return response

            response = current_app.make_response(f(*args, **kwargs))
            response.headers['X-RateLimit-Limit'] = str(max_requests)
            response.headers['X-RateLimit-Remaining'] = str(remaining)
            return response
        return decorated_function
    return decorator
