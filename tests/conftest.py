"""
Shared fixtures: an in-memory database, a stub feed fetcher serving canned
iCal text, and a Flask app wired to both.
"""

from datetime import date, timedelta

import pytest

from calsync.feed_fetcher import filter_window, parse_calendar
from calsync.listing_sync import ListingSyncer
from common import ReportConfig, SessionManager, SyncConfig, create_engine_from_url
from common.models import Cleaner, Feed, Listing
from scheduler.config import SchedulerConfig


def day(offset):
    """A date relative to today, so bookings always fall inside the sync window."""
    return date.today() + timedelta(days=offset)


def ics(*bookings, name=None):
    """
    Build an iCal document from (uid, title, start_date, end_date) tuples.

    Dates are all-day values, the way booking channels export them.
    """
    lines = ['BEGIN:VCALENDAR', 'VERSION:2.0', 'PRODID:-//Property Sync Tests//EN']
    if name:
        lines.append(f'X-WR-CALNAME:{name}')
    for uid, title, start, end in bookings:
        lines.extend([
            'BEGIN:VEVENT',
            f'UID:{uid}',
            f'SUMMARY:{title}',
            f'DTSTART;VALUE=DATE:{start:%Y%m%d}',
            f'DTEND;VALUE=DATE:{end:%Y%m%d}',
            'END:VEVENT',
        ])
    lines.append('END:VCALENDAR')
    return '\r\n'.join(lines) + '\r\n'


class StubFetcher:
    """FeedFetcher stand-in: url -> iCal text, or an exception to raise."""

    def __init__(self):
        self.responses = {}
        self.calls = []

    def set(self, url, value):
        self.responses[url] = value

    def fetch(self, url, start=None, end=None, feed=None):
        self.calls.append(url)
        value = self.responses[url]
        if isinstance(value, Exception):
            raise value
        result = parse_calendar(value, getattr(feed, 'id', None), getattr(feed, 'name', None))
        result.bookings = filter_window(result.bookings, start, end)
        return result


@pytest.fixture
def session_manager():
    manager = SessionManager(create_engine_from_url('sqlite://'))
    manager.create_all()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def session(session_manager):
    session = session_manager.get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def sync_config():
    return SyncConfig(max_workers=1, advisory_locks=False)


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def syncer(session_manager, fetcher, sync_config):
    return ListingSyncer(session_manager, fetcher, sync_config)


@pytest.fixture
def make_listing(session_manager):
    """Create a listing with one feed per url; returns (listing_id, [feed_id, ...])."""

    def make(name='Beach House', urls=('https://cal.example.com/a.ics',), **fields):
        with session_manager.session_scope() as s:
            listing = Listing(name=name, **fields)
            for index, url in enumerate(urls):
                listing.feeds.append(Feed(name=f'{name} feed {index + 1}', url=url))
            s.add(listing)
            s.flush()
            return listing.id, [feed.id for feed in listing.feeds]

    return make


@pytest.fixture
def app(fetcher, sync_config, tmp_path):
    from web.app import create_app
    from web.utils.rate_limit import api_limiter

    api_limiter.reset()
    app = create_app(
        config=SchedulerConfig(),
        db_url='sqlite://',
        settings={
            'TESTING': True,
            'JWT_SECRET': 'test-secret',
            'RATELIMIT_ENABLED': False,
            'AUTO_CREATE_TABLES': True,
            'AUDIT_LOG_DIR': str(tmp_path),
        },
        sync_config=sync_config,
        report_config=ReportConfig(),
        feed_fetcher=fetcher,
    )
    yield app
    app.session_manager.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_cleaner(app):
    """A cleaner row in the app database."""
    with app.session_manager.session_scope() as s:
        cleaner = Cleaner(name='Maria Lopez', email='maria@example.com', hourly_rate=20.0)
        s.add(cleaner)
        s.flush()
        return cleaner.id


def _headers(app, subject, role, cleaner_id=None):
    from web.auth import create_token

    with app.app_context():
        token = create_token(subject, role, cleaner_id=cleaner_id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin_headers(app):
    return _headers(app, 'admin@example.com', 'admin')


@pytest.fixture
def cleaner_headers(app, app_cleaner):
    return _headers(app, 'maria@example.com', 'cleaner', cleaner_id=app_cleaner)
