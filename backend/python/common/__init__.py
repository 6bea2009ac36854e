"""
Common building blocks shared by sync runs, report generation and the web app.

- Configuration (YAML + environment)
- Database engine and session management
- ORM models
- HTTP client for feed retrieval
- Date and data conversion helpers

Example Usage:
    from common import DatabaseConfig, create_engine_from_config, SessionManager
    from common import Listing

    engine = create_engine_from_config(DatabaseConfig.from_env())
    session_manager = SessionManager(engine)

    with session_manager.session_scope() as session:
        listings = session.query(Listing).filter_by(is_active=True).all()
"""

__version__ = '1.0.0'

# Configuration
from .config import (
    DatabaseConfig,
    SyncConfig,
    ReportConfig,
)

# Database engine and session management
from .engine import (
    create_engine_from_config,
    create_engine_from_url,
    get_pool_stats,
)

from .session import SessionManager

# Models
from .models import Base, BaseModel, TimestampMixin
from .models import Listing, Feed, listing_feeds, Event, EventVersion
from .models import Cleaner, CleanerAssignment, CleanerExtraReport, PaymentReport
from .models import SyncSession, SyncLogEntry
from .models import Notification, JobTimer, JobCompletion, JobNotification

# Errors
from .errors import AppError, ValidationError, NotFoundError, ConflictError

# HTTP client
from .http_client import HTTPClient

# Date utilities
from .date_utils import (
    utcnow,
    to_naive_utc,
    get_week_boundaries,
    get_sync_window,
    parse_date_string,
    parse_time_string,
)

# Data utilities
from .data_utils import (
    convert_to_bool,
    convert_to_int,
    convert_to_decimal,
    convert_to_datetime,
    round_money,
    deduplicate_records,
)


__all__ = [
    '__version__',

    # Configuration
    'DatabaseConfig',
    'SyncConfig',
    'ReportConfig',

    # Database
    'create_engine_from_config',
    'create_engine_from_url',
    'get_pool_stats',
    'SessionManager',

    # Models
    'Base',
    'BaseModel',
    'TimestampMixin',
    'Listing',
    'Feed',
    'listing_feeds',
    'Event',
    'EventVersion',
    'Cleaner',
    'CleanerAssignment',
    'CleanerExtraReport',
    'PaymentReport',
    'SyncSession',
    'SyncLogEntry',
    'Notification',
    'JobTimer',
    'JobCompletion',
    'JobNotification',

    # Errors
    'AppError',
    'ValidationError',
    'NotFoundError',
    'ConflictError',

    # HTTP
    'HTTPClient',

    # Date utilities
    'utcnow',
    'to_naive_utc',
    'get_week_boundaries',
    'get_sync_window',
    'parse_date_string',
    'parse_time_string',

    # Data utilities
    'convert_to_bool',
    'convert_to_int',
    'convert_to_decimal',
    'convert_to_datetime',
    'round_money',
    'deduplicate_records',
]
