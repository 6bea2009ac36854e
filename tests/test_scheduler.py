from datetime import date
from unittest import mock

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from common.models import Cleaner, PaymentReport
from scheduler.config import JobSchedule, SchedulerConfig
from scheduler.engine import REPORT_JOB_ID, SYNC_JOB_ID, SchedulerEngine
from conftest import day, ics


@pytest.fixture
def engine(session_manager, syncer):
    return SchedulerEngine(SchedulerConfig(), session_manager, syncer)


def test_default_jobs():
    config = SchedulerConfig()
    assert config.sync_job.enabled
    assert config.sync_job.schedule_type == 'interval'
    assert config.sync_job.interval_minutes == 5
    assert not config.report_job.enabled
    assert config.report_job.cron == '0 6 * * 1'


def test_create_triggers(engine):
    interval = engine._create_trigger(JobSchedule(schedule_type='interval', interval_minutes=15))
    assert isinstance(interval, IntervalTrigger)
    assert interval.interval.total_seconds() == 15 * 60

    cron = engine._create_trigger(JobSchedule(schedule_type='cron', cron='0 6 * * 1'))
    assert isinstance(cron, CronTrigger)

    assert engine._create_trigger(JobSchedule(schedule_type='cron', cron='bad')) is None
    assert engine._create_trigger(JobSchedule(schedule_type='weekly')) is None


def test_run_sync_now_inline_records_outcome(engine, fetcher, make_listing):
    make_listing(urls=('https://cal.example.com/a.ics',))
    fetcher.set('https://cal.example.com/a.ics', ics(('b1', 'Ann', day(3), day(6))))

    outcome = engine.run_sync_now(triggered_by='cli')

    assert outcome['status'] == 'completed'
    assert outcome['summary']['total_added'] == 2
    last = engine.get_status()['last_runs'][SYNC_JOB_ID]
    assert last['session_id'] == outcome['session_id']
    assert 'finished_at' in last


def test_sync_failure_is_recorded_and_raised(engine):
    with mock.patch.object(engine.syncer, 'sync_all', side_effect=RuntimeError('db down')):
        with pytest.raises(RuntimeError):
            engine._run_sync()

    last = engine.get_status()['last_runs'][SYNC_JOB_ID]
    assert last['status'] == 'error'
    assert last['error'] == 'db down'


def test_report_job_generates_reports(engine, session_manager):
    with session_manager.session_scope() as s:
        s.add(Cleaner(name='Maria', hourly_rate=20))

    outcome = engine._run_reports(reference_day=date(2024, 6, 5))

    assert outcome['status'] == 'completed'
    assert outcome['reports'] == 1
    assert outcome['week_of'] == '2024-06-05'
    with session_manager.session_scope() as s:
        assert s.query(PaymentReport).one().week_start == date(2024, 6, 3)
    assert REPORT_JOB_ID in engine.get_status()['last_runs']


def test_start_registers_enabled_jobs(session_manager, syncer):
    config = SchedulerConfig()
    config.report_job.enabled = True
    engine = SchedulerEngine(config, session_manager, syncer)

    engine.start()
    try:
        assert engine.is_running
        assert {job['id'] for job in engine.get_jobs()} == {SYNC_JOB_ID, REPORT_JOB_ID}
        assert engine.get_status()['jobs_scheduled'] == 2
    finally:
        engine.stop(wait=False)

    assert not engine.is_running


def test_from_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv('TEST_SLACK_WEBHOOK', 'https://hooks.slack.example/T1')
    scheduler_file = tmp_path / 'scheduler.yaml'
    scheduler_file.write_text(
        "scheduler:\n"
        "  engine:\n"
        "    timezone: Europe/Lisbon\n"
        "    job_defaults:\n"
        "      misfire_grace_time: 60\n"
        "  jobs:\n"
        "    sync:\n"
        "      type: interval\n"
        "      interval_minutes: 10\n"
        "    reports:\n"
        "      enabled: true\n"
    )
    alerts_file = tmp_path / 'alerts.yaml'
    alerts_file.write_text(
        "alerts:\n"
        "  slack:\n"
        "    enabled: true\n"
        "    webhook_url: ${TEST_SLACK_WEBHOOK}\n"
        "    on_change: false\n"
    )

    config = SchedulerConfig.from_yaml(str(scheduler_file), str(alerts_file))

    assert config.timezone == 'Europe/Lisbon'
    assert config.misfire_grace_time == 60
    assert config.sync_job.interval_minutes == 10
    assert config.report_job.enabled
    assert config.report_job.cron == '0 6 * * 1'
    assert config.alerts.slack.enabled
    assert config.alerts.slack.webhook_url == 'https://hooks.slack.example/T1'
    assert not config.alerts.slack.on_change


def test_slack_disabled_when_webhook_unresolved(tmp_path, monkeypatch):
    monkeypatch.delenv('MISSING_WEBHOOK', raising=False)
    alerts_file = tmp_path / 'alerts.yaml'
    alerts_file.write_text("alerts:\n  slack:\n    enabled: true\n    webhook_url: ${MISSING_WEBHOOK}\n")

    config = SchedulerConfig.from_yaml(str(tmp_path / 'none.yaml'), str(alerts_file))

    assert not config.alerts.slack.enabled
