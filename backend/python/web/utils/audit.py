"""
Audit logging for admin actions.

Logs listing/feed changes, sync triggers and payment report status changes
to a dedicated audit log.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from flask import request

from web.auth.jwt_auth import current_username


# Configure audit logger
audit_logger = logging.getLogger('security.audit')


def setup_audit_logging(app):
    """
    Set up audit logging for the application.

    Creates a dedicated log file for audit events. The directory comes from
    AUDIT_LOG_DIR, defaulting to backend/logs.
    """
    log_dir = app.config.get('AUDIT_LOG_DIR') or os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(__file__)))), 'logs'
    )
    os.makedirs(log_dir, exist_ok=True)

    log_file = os.path.join(log_dir, 'audit.log')
    # One handler per file even when several apps are created (tests)
    for existing in audit_logger.handlers:
        if getattr(existing, 'baseFilename', None) == os.path.abspath(log_file):
            return

    # Rotating file handler (10MB max, keep 5 backups)
    handler = RotatingFileHandler(log_file, maxBytes=10*1024*1024, backupCount=5)
    handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)

    if app.debug:
        audit_logger.addHandler(logging.StreamHandler())


def get_client_ip():
    """Get the real client IP, handling proxies."""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    return request.remote_addr or 'unknown'


def audit_log(event_type, details, user=None, level='INFO'):
    """
    Log an audit event.

    Args:
        event_type: Type of event (e.g., 'LISTING_CREATED', 'SYNC_TRIGGERED')
        details: Description of what happened
        user: Username (defaults to the token subject)
        level: Log level ('INFO', 'WARNING', 'ERROR')
    """
    username = user or current_username()
    ip_address = get_client_ip()

    message = f"{event_type} | User: {username} | IP: {ip_address} | {details}"

    if level == 'WARNING':
        audit_logger.warning(message)
    elif level == 'ERROR':
        audit_logger.error(message)
    else:
        audit_logger.info(message)


class AuditEvent:
    """Audit event type constants."""
    # Listings and feeds
    LISTING_CREATED = 'LISTING_CREATED'
    LISTING_UPDATED = 'LISTING_UPDATED'
    FEED_CREATED = 'FEED_CREATED'
    FEED_UPDATED = 'FEED_UPDATED'
    FEED_LINKED = 'FEED_LINKED'
    FEED_UNLINKED = 'FEED_UNLINKED'

    # Cleaners and assignments
    CLEANER_CREATED = 'CLEANER_CREATED'
    CLEANER_UPDATED = 'CLEANER_UPDATED'
    ASSIGNMENT_CHANGED = 'ASSIGNMENT_CHANGED'

    # Sync
    SYNC_TRIGGERED = 'SYNC_TRIGGERED'
    EVENTS_REACTIVATED = 'EVENTS_REACTIVATED'

    # Payment reports
    REPORTS_GENERATED = 'REPORTS_GENERATED'
    REPORT_STATUS_CHANGED = 'REPORT_STATUS_CHANGED'
    REPORTS_CLEANED_UP = 'REPORTS_CLEANED_UP'
