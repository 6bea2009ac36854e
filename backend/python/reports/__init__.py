"""
Cleaner payments: weekly payment reports, extra-hours reports,
notifications and job completion tracking.
"""

from .payment_reports import (
    calculate_report_data,
    cleanup_duplicate_reports,
    generate_weekly_reports,
    get_assignments_for_week,
    get_duplicate_reports_summary,
    get_payment_report,
    list_payment_reports,
    recalculate_report_totals,
    update_report_status,
)
from .extra_reports import (
    create_extra_report,
    delete_extra_report,
    get_current_week_extra_report,
    get_extra_report,
    get_extra_reports_for_week,
    list_extra_reports,
    update_extra_report,
)
from .notifications import (
    complete_job,
    list_job_notifications,
    list_notifications,
    mark_job_notification,
    mark_notification,
    notify_cleaner,
    start_job,
)


__all__ = [
    'calculate_report_data',
    'cleanup_duplicate_reports',
    'generate_weekly_reports',
    'get_assignments_for_week',
    'get_duplicate_reports_summary',
    'get_payment_report',
    'list_payment_reports',
    'recalculate_report_totals',
    'update_report_status',
    'create_extra_report',
    'delete_extra_report',
    'get_current_week_extra_report',
    'get_extra_report',
    'get_extra_reports_for_week',
    'list_extra_reports',
    'update_extra_report',
    'complete_job',
    'list_job_notifications',
    'list_notifications',
    'mark_job_notification',
    'mark_notification',
    'notify_cleaner',
    'start_job',
]
