from unittest import mock

import pytest

from calsync import ical_to_sql
from common import SyncConfig
from common.models import Event
from scheduler.config import SchedulerConfig
from conftest import day, ics

URL = 'https://cal.example.com/a.ics'


@pytest.fixture
def cli_env(session_manager, fetcher):
    """Point the CLI at the test database and the stub fetcher."""
    with mock.patch.object(ical_to_sql.DatabaseConfig, 'from_env'), \
            mock.patch.object(ical_to_sql, 'create_engine_from_config', return_value=session_manager.engine), \
            mock.patch.object(ical_to_sql.SyncConfig, 'from_env',
                              return_value=SyncConfig(max_workers=1, advisory_locks=False)), \
            mock.patch.object(ical_to_sql.SchedulerConfig, 'from_yaml', return_value=SchedulerConfig()), \
            mock.patch.object(ical_to_sql, 'FeedFetcher', return_value=fetcher):
        yield


def test_negative_window_is_rejected():
    with pytest.raises(SystemExit):
        ical_to_sql.parse_args(['--days-back', '-1'])


def test_parse_args_defaults():
    args = ical_to_sql.parse_args([])
    assert args.listing is None
    assert args.triggered_by == 'cli'
    assert not args.reactivate_future


def test_sync_all_from_cli(cli_env, fetcher, make_listing, session_manager, capsys):
    make_listing(urls=(URL,))
    fetcher.set(URL, ics(('b1', 'Ann', day(3), day(6))))

    assert ical_to_sql.main([]) == 0

    assert 'Sync finished: completed' in capsys.readouterr().out
    with session_manager.session_scope() as s:
        assert s.query(Event).filter(Event.is_active.is_(True)).count() == 2


def test_failed_listing_sets_exit_code(cli_env, fetcher, make_listing):
    listing_id, _ = make_listing(urls=(URL,))
    fetcher.set(URL, ics(('b1', 'Ann', day(3), day(6))))

    with mock.patch('calsync.listing_sync.ListingSyncer._run', side_effect=RuntimeError('boom')):
        assert ical_to_sql.main(['--listing', listing_id]) == 1


def test_reactivate_future_from_cli(cli_env, fetcher, make_listing, session_manager, capsys):
    listing_id, _ = make_listing(urls=(URL,))
    fetcher.set(URL, ics(('b1', 'Ann', day(3), day(6))))
    ical_to_sql.main(['--listing', listing_id])
    with session_manager.session_scope() as s:
        s.query(Event).update({Event.is_active: False})

    assert ical_to_sql.main(['--reactivate-future']) == 0

    assert 'Reactivated 2 events' in capsys.readouterr().out
