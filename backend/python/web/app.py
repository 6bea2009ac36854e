"""
Flask Web Application for the Property Sync Backend.
Provides the REST API for listings, calendar sync, cleaner assignments and payment reports.
"""

import sys
from pathlib import Path
from datetime import datetime
from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from common import ReportConfig, SessionManager, SyncConfig, create_engine_from_url
from common.config_loader import get_config, get_database_url, get_flask_config
from common.errors import AppError


def create_app(config=None, db_url=None, settings=None, sync_config=None,
               report_config=None, feed_fetcher=None):
    """
    Create Flask application with all blueprints registered.

    Args:
        config: SchedulerConfig instance (optional, used for alert settings)
        db_url: Database URL (optional, will use config loader if not provided)
        settings: Extra Flask settings applied over the YAML ones
        sync_config: SyncConfig (defaults to sync.yaml)
        report_config: ReportConfig (defaults to reports.yaml)
        feed_fetcher: Object with a FeedFetcher-compatible fetch() (tests pass a stub)

    Returns:
        Flask application
    """
    from calsync.feed_fetcher import FeedFetcher
    from calsync.listing_sync import ListingSyncer
    from scheduler.alert_manager import AlertManager
    from scheduler.config import SchedulerConfig

    app = Flask(__name__)

    # Load Flask configuration from unified config
    app.config.update(get_flask_config())
    if settings:
        app.config.update(settings)

    # Store configs for access by blueprints
    app.scheduler_config = config or SchedulerConfig.from_yaml()
    app.sync_config = sync_config or SyncConfig.from_env()
    app.report_config = report_config or ReportConfig.from_env()

    # Build database URL from unified config
    if not db_url:
        db_url = get_database_url('backend')
    app.db_url = db_url

    # One engine per app; routes open sessions through the manager
    app.session_manager = SessionManager(create_engine_from_url(db_url))
    app.get_db_session = app.session_manager.get_session
    if app.config.get('AUTO_CREATE_TABLES'):
        app.session_manager.create_all()

    app.feed_fetcher = feed_fetcher or FeedFetcher(config=app.sync_config)
    app.alert_manager = AlertManager(app.scheduler_config.alerts)
    app.syncer = ListingSyncer(
        app.session_manager,
        app.feed_fetcher,
        app.sync_config,
        app.alert_manager,
    )

    # Initialize CORS
    CORS(app, supports_credentials=True)

    # Initialize JWT auth for API routes
    from web.auth.jwt_auth import init_auth
    init_auth(app)

    # Track web start time
    app.web_started_at = datetime.now()

    # Initialize audit logging
    from web.utils.audit import setup_audit_logging
    setup_audit_logging(app)

    @app.errorhandler(AppError)
    def handle_app_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'success': False, 'error': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        app.logger.exception(f"Unhandled error on {request.method} {request.path}: {error}")
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    # Add security headers and prevent caching of API responses
    @app.after_request
    def add_security_headers(response):
        # Cache control for API endpoints
        if '/api/' in request.path:
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            response.headers['Pragma'] = 'no-cache'
            response.headers['Expires'] = '0'

        # Security headers for all responses
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
        return response

    # Register blueprints
    from web.routes import api_bp, sync_bp, reports_bp, jobs_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(jobs_bp)

    return app


def run_app(host='0.0.0.0', port=5000, debug=False, db_url=None):
    """Run the Flask application."""
    app_config = get_config()

    app = create_app(db_url=db_url)

    # Get server settings from config
    flask_settings = app_config.app.flask
    if flask_settings:
        host = flask_settings.host or host
        port = flask_settings.port or port
        debug = flask_settings.debug if flask_settings.debug is not None else debug

    app.run(host=host, port=port, debug=debug)


if __name__ == '__main__':
    run_app(debug=True)
