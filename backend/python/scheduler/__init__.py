"""
Property Sync Scheduler

Background jobs for the sync backend:
- Calendar sync of every listing on an interval (or cron)
- Optional weekly payment report generation
- Slack/email alerts for cancellations, changes and failed syncs
"""

__version__ = '1.0.0'


def get_version():
    """Return the current scheduler version."""
    return __version__


from scheduler.config import SchedulerConfig, JobSchedule, AlertsConfig
from scheduler.alert_manager import AlertManager, AlertContext
from scheduler.engine import SchedulerEngine

__all__ = [
    '__version__',
    'get_version',
    'SchedulerConfig',
    'JobSchedule',
    'AlertsConfig',
    'AlertManager',
    'AlertContext',
    'SchedulerEngine',
]
