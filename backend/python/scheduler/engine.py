"""
APScheduler Engine - Background calendar sync and weekly report generation.
Replaces the dashboard's client-side polling with a server-side job.
"""

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Optional, Dict, Any, List

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.events import (
    EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MISSED,
    EVENT_SCHEDULER_STARTED, EVENT_SCHEDULER_SHUTDOWN
)

from common.config import ReportConfig
from common.session import SessionManager
from calsync.listing_sync import ListingSyncer
from reports.payment_reports import generate_weekly_reports
from scheduler.config import SchedulerConfig, JobSchedule

logger = logging.getLogger(__name__)

SYNC_JOB_ID = 'calendar_sync'
REPORT_JOB_ID = 'weekly_payment_reports'


class SchedulerEngine:
    """
    Runs the calendar sync on a schedule.

    Responsibilities:
    - Initialize and manage APScheduler
    - Register the sync job and, when enabled, the weekly report job
    - Keep the outcome of the latest run of each job
    - Manage graceful shutdown
    """

    def __init__(
        self,
        config: SchedulerConfig,
        session_manager: SessionManager,
        syncer: ListingSyncer,
        report_config: Optional[ReportConfig] = None
    ):
        """
        Initialize scheduler engine.

        Args:
            config: Scheduler configuration
            session_manager: Database session manager (used by the report job)
            syncer: Listing syncer the sync job drives
            report_config: Payment report settings
        """
        self.config = config
        self.session_manager = session_manager
        self.syncer = syncer
        self.report_config = report_config or ReportConfig()
        self.tz = pytz.timezone(config.timezone)

        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False

        self._last_runs: Dict[str, Dict[str, Any]] = {}
        self._last_runs_lock = threading.Lock()

    def initialize(self):
        """Configure APScheduler."""
        logger.info("Initializing scheduler engine...")

        # Jobs are re-registered from config on each startup
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': ThreadPoolExecutor(max_workers=self.config.executor_max_workers)
        }

        job_defaults = {
            'coalesce': self.config.coalesce,
            'max_instances': self.config.max_instances,
            'misfire_grace_time': self.config.misfire_grace_time,
        }

        self._scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.tz
        )

        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._scheduler.add_listener(self._on_scheduler_event, EVENT_SCHEDULER_STARTED | EVENT_SCHEDULER_SHUTDOWN)

        logger.info("Scheduler engine initialized")

    def start(self):
        """Register jobs and start the scheduler."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        if not self._scheduler:
            self.initialize()

        self._register_jobs()

        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started successfully")

    def stop(self, wait: bool = None):
        """
        Stop the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
                (defaults to config.wait_for_jobs)
        """
        if not self._running:
            logger.warning("Scheduler is not running")
            return

        logger.info("Stopping scheduler...")
        if wait is None:
            wait = self.config.wait_for_jobs
        self._scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("Scheduler stopped")

    def pause(self):
        """Pause the scheduler (keeps jobs scheduled but doesn't run them)."""
        if self._scheduler:
            self._scheduler.pause()
            logger.info("Scheduler paused")

    def resume(self):
        """Resume a paused scheduler."""
        if self._scheduler:
            self._scheduler.resume()
            logger.info("Scheduler resumed")

    def _register_jobs(self):
        """Register the enabled jobs with APScheduler."""
        jobs = (
            (SYNC_JOB_ID, 'Calendar sync', self.config.sync_job, self._run_sync),
            (REPORT_JOB_ID, 'Weekly payment reports', self.config.report_job, self._run_reports),
        )
        for job_id, name, schedule, func in jobs:
            if not schedule.enabled:
                logger.debug(f"Skipping disabled job: {job_id}")
                continue

            trigger = self._create_trigger(schedule, job_id)
            if trigger is None:
                continue
            self._scheduler.add_job(
                func=func,
                trigger=trigger,
                id=job_id,
                name=name,
                replace_existing=True
            )
            logger.info(f"Registered job: {job_id} ({schedule.schedule_type})")

    def _create_trigger(self, schedule: JobSchedule, job_id: str = ''):
        """Create APScheduler trigger from a job schedule."""
        if schedule.schedule_type == 'cron':
            parts = (schedule.cron or '').split()

            if len(parts) >= 5:
                return CronTrigger(
                    minute=parts[0],
                    hour=parts[1],
                    day=parts[2],
                    month=parts[3],
                    day_of_week=parts[4],
                    timezone=self.tz
                )
            logger.error(f"Invalid cron expression for {job_id}: {schedule.cron!r}")
            return None

        elif schedule.schedule_type == 'interval':
            return IntervalTrigger(minutes=max(int(schedule.interval_minutes), 1))

        elif schedule.schedule_type == 'date':
            if schedule.run_date:
                return DateTrigger(run_date=schedule.run_date)

        logger.warning(f"Unknown schedule type for {job_id}: {schedule.schedule_type}")
        return None

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _record(self, job_id: str, outcome: Dict[str, Any]):
        outcome['finished_at'] = datetime.now(self.tz).isoformat()
        with self._last_runs_lock:
            self._last_runs[job_id] = outcome

    def _run_sync(self, triggered_by: str = 'scheduler') -> Dict[str, Any]:
        """Sync every listing. Called by APScheduler."""
        logger.info("Scheduled calendar sync starting")
        try:
            run = self.syncer.sync_all(triggered_by=triggered_by)
        except Exception as e:
            logger.exception(f"Calendar sync failed: {e}")
            self._record(SYNC_JOB_ID, {'status': 'error', 'error': str(e)})
            raise

        outcome = {
            'status': run['status'],
            'session_id': run['session_id'],
            'summary': run['summary'],
        }
        self._record(SYNC_JOB_ID, outcome)
        logger.info(f"Calendar sync finished: {run['status']} ({run['summary']})")
        return outcome

    def _run_reports(self, reference_day: Optional[date] = None) -> Dict[str, Any]:
        """Generate last week's payment reports for every cleaner."""
        # Runs at the start of a week, for the week that just ended
        reference_day = reference_day or (datetime.now(self.tz).date() - timedelta(days=7))
        logger.info(f"Scheduled payment report generation for week of {reference_day}")
        try:
            with self.session_manager.session_scope() as session:
                reports = generate_weekly_reports(session, None, reference_day, self.report_config)
                count = len(reports)
        except Exception as e:
            logger.exception(f"Payment report generation failed: {e}")
            self._record(REPORT_JOB_ID, {'status': 'error', 'error': str(e)})
            raise

        outcome = {'status': 'completed', 'reports': count, 'week_of': reference_day.isoformat()}
        self._record(REPORT_JOB_ID, outcome)
        return outcome

    def run_sync_now(self, triggered_by: str = 'manual', wait: bool = False) -> Optional[Dict[str, Any]]:
        """
        Trigger an immediate sync of all listings.

        Args:
            triggered_by: Recorded on the sync session
            wait: Run in the calling thread and return the outcome instead
                of handing the run to the scheduler's thread pool

        Returns:
            The sync outcome when wait is True, else None
        """
        if wait or not self._running:
            return self._run_sync(triggered_by=triggered_by)

        self._scheduler.add_job(
            func=self._run_sync,
            trigger='date',
            run_date=datetime.now(self.tz),
            id=f"manual_{SYNC_JOB_ID}_{datetime.now():%Y%m%d%H%M%S%f}",
            kwargs={'triggered_by': triggered_by},
            replace_existing=False
        )
        return None

    # ------------------------------------------------------------------
    # Events and status
    # ------------------------------------------------------------------

    def _on_job_event(self, event):
        """Handle APScheduler job events."""
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"Job {event.job_id} error: {event.exception}")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(f"Job {event.job_id} missed its scheduled run time")
        elif event.code == EVENT_JOB_EXECUTED:
            logger.debug(f"Job {event.job_id} executed successfully")

    def _on_scheduler_event(self, event):
        """Handle APScheduler lifecycle events."""
        if event.code == EVENT_SCHEDULER_STARTED:
            logger.info("APScheduler started")
        elif event.code == EVENT_SCHEDULER_SHUTDOWN:
            logger.info("APScheduler shutdown")

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Get list of scheduled jobs."""
        if not self._scheduler:
            return []

        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
                'trigger': str(job.trigger),
            })

        return jobs

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        with self._last_runs_lock:
            last_runs = dict(self._last_runs)
        return {
            'running': self._running,
            'jobs_scheduled': len(self._scheduler.get_jobs()) if self._scheduler else 0,
            'last_runs': last_runs,
        }

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
