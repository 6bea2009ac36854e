"""
Scheduler configuration management.
Follows the same pattern as common/config.py for consistency.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


def _config_dir() -> Path:
    from common.config_loader import get_config
    return get_config().config_dir


def _get_config_value(key: str, default: Any = None, cast: type = None) -> Any:
    """Get configuration value from the environment, with optional casting."""
    value = os.environ.get(key, default)
    if value is not None and cast is not None:
        if cast == bool:
            if isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')
            return bool(value)
        return cast(value)
    return value


@dataclass
class JobSchedule:
    """When a scheduled job runs."""
    enabled: bool = True
    schedule_type: str = 'interval'     # 'interval', 'cron' or 'date'
    interval_minutes: int = 5
    cron: str = ''
    run_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: 'JobSchedule') -> 'JobSchedule':
        return cls(
            enabled=data.get('enabled', defaults.enabled),
            schedule_type=data.get('type', defaults.schedule_type),
            interval_minutes=data.get('interval_minutes', defaults.interval_minutes),
            cron=data.get('cron', defaults.cron),
            run_date=data.get('run_date', defaults.run_date),
        )


def _default_sync_job() -> JobSchedule:
    # Replaces the dashboard's five-minute refresh
    return JobSchedule(enabled=True, schedule_type='interval', interval_minutes=5)


def _default_report_job() -> JobSchedule:
    # Monday morning, for the week that just ended
    return JobSchedule(enabled=False, schedule_type='cron', cron='0 6 * * 1')


@dataclass
class SlackConfig:
    """Slack alert configuration."""
    enabled: bool = False
    webhook_url: str = ''
    channel: str = ''
    username: str = 'Property Sync'
    on_cancellation: bool = True
    on_change: bool = True
    on_failure: bool = True


@dataclass
class EmailConfig:
    """Email alert configuration."""
    enabled: bool = False
    smtp_host: str = ''
    smtp_port: int = 587
    smtp_user: str = ''
    smtp_password: str = ''
    from_address: str = ''
    to_addresses: List[str] = field(default_factory=list)


@dataclass
class AlertsConfig:
    """Alert channels configuration."""
    slack: SlackConfig = field(default_factory=SlackConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass
class SchedulerConfig:
    """
    Background scheduler configuration.
    Can be loaded from YAML files or environment variables.
    """
    # APScheduler settings
    timezone: str = 'UTC'
    coalesce: bool = True               # Combine missed runs
    max_instances: int = 1              # One instance per job
    misfire_grace_time: int = 300
    executor_max_workers: int = 2

    # Graceful shutdown
    wait_for_jobs: bool = True

    # Jobs
    sync_job: JobSchedule = field(default_factory=_default_sync_job)
    report_job: JobSchedule = field(default_factory=_default_report_job)

    # Alert configuration
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    @classmethod
    def from_yaml(cls, scheduler_path: str = None, alerts_path: str = None) -> 'SchedulerConfig':
        """
        Load configuration from YAML files.
        Environment variables can be referenced as ${VAR_NAME}.
        Paths default to the application config directory.
        """
        config = cls()

        scheduler_file = Path(scheduler_path) if scheduler_path else _config_dir() / 'scheduler.yaml'
        alerts_file = Path(alerts_path) if alerts_path else _config_dir() / 'alerts.yaml'

        if scheduler_file.exists():
            with open(scheduler_file) as f:
                data = yaml.safe_load(f)
            if data and 'scheduler' in data:
                sched = data['scheduler']

                if 'engine' in sched:
                    e = sched['engine']
                    config.timezone = e.get('timezone', config.timezone)
                    if 'job_defaults' in e:
                        jd = e['job_defaults']
                        config.coalesce = jd.get('coalesce', config.coalesce)
                        config.max_instances = jd.get('max_instances', config.max_instances)
                        config.misfire_grace_time = jd.get('misfire_grace_time', config.misfire_grace_time)
                    if 'executor' in e:
                        config.executor_max_workers = e['executor'].get('max_workers', config.executor_max_workers)
                    config.wait_for_jobs = e.get('wait_for_jobs', config.wait_for_jobs)

                jobs = sched.get('jobs', {})
                if 'sync' in jobs:
                    config.sync_job = JobSchedule.from_dict(jobs['sync'], config.sync_job)
                if 'reports' in jobs:
                    config.report_job = JobSchedule.from_dict(jobs['reports'], config.report_job)

        if alerts_file.exists():
            with open(alerts_file) as f:
                data = yaml.safe_load(f)
            if data and 'alerts' in data:
                config.alerts = _alerts_from_dict(data['alerts'])

        return config

    @classmethod
    def from_env(cls) -> 'SchedulerConfig':
        """
        Load configuration from environment variables.
        Useful for simple deployments without YAML files.
        """
        config = cls()

        config.timezone = _get_config_value('SCHEDULER_TIMEZONE', default=config.timezone)
        config.executor_max_workers = _get_config_value(
            'SCHEDULER_MAX_WORKERS', default=config.executor_max_workers, cast=int
        )
        config.sync_job.enabled = _get_config_value('SYNC_JOB_ENABLED', default=True, cast=bool)
        config.sync_job.interval_minutes = _get_config_value(
            'SYNC_INTERVAL_MINUTES', default=config.sync_job.interval_minutes, cast=int
        )
        config.report_job.enabled = _get_config_value('REPORT_JOB_ENABLED', default=False, cast=bool)

        slack_url = _get_config_value('SLACK_WEBHOOK_URL', default='')
        if slack_url:
            config.alerts.slack = SlackConfig(
                enabled=True,
                webhook_url=slack_url,
                channel=_get_config_value('SLACK_CHANNEL', default=''),
            )

        return config


def _alerts_from_dict(a: Dict[str, Any]) -> AlertsConfig:
    alerts = AlertsConfig()

    if 'slack' in a:
        s = a['slack']
        alerts.slack = SlackConfig(
            enabled=s.get('enabled', False),
            webhook_url=_resolve_env(s.get('webhook_url', '')),
            channel=s.get('channel', ''),
            username=s.get('username', 'Property Sync'),
            on_cancellation=s.get('on_cancellation', True),
            on_change=s.get('on_change', True),
            on_failure=s.get('on_failure', True),
        )

    if 'email' in a:
        e = a['email']
        alerts.email = EmailConfig(
            enabled=e.get('enabled', False),
            smtp_host=_resolve_env(e.get('smtp_host', '')),
            smtp_port=e.get('smtp_port', 587),
            smtp_user=_resolve_env(e.get('smtp_user', '')),
            smtp_password=_resolve_env(e.get('smtp_password', '')),
            from_address=e.get('from_address', ''),
            to_addresses=e.get('to_addresses', []),
        )

    # An empty webhook after ${VAR} resolution means Slack is not usable
    if alerts.slack.enabled and not alerts.slack.webhook_url:
        alerts.slack.enabled = False

    return alerts


def _resolve_env(value: str) -> str:
    """Resolve ${VAR_NAME} references in string values."""
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        var_name = match.group(1)
        return _get_config_value(var_name, default='')

    return re.sub(pattern, replace, value)
