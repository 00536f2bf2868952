"""Scheduled jobs: the weekly report run and the nightly user sync.

Usage:
    run = run_weekly_report(slack, linear, store)      # one-off run
    scheduler = create_scheduler(slack, linear, store,
                                 report_cron="0 9 * * 1", sync_cron="0 2 * * *")
    scheduler.start()                                  # blocks

Cron expressions use the standard five-field crontab syntax and are parsed
with APScheduler's ``CronTrigger.from_crontab``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from rundown.delivery import DeliveryRun, ReportDeliveryService
from rundown.sync import SyncResult, sync_users

log = logging.getLogger(__name__)

DEFAULT_REPORT_CRON = "0 9 * * 1"   # Monday 09:00
DEFAULT_SYNC_CRON = "0 2 * * *"     # daily 02:00

WEEKLY_REPORT_JOB = "weekly-report"
USER_SYNC_JOB = "user-sync"


class InvalidScheduleError(ValueError):
    """Raised for a cron expression that cannot be parsed."""


@dataclass
class SyncSummary:
    success: bool
    start_time: datetime
    end_time: datetime
    error: str | None = None
    result: SyncResult | None = None

    @property
    def duration_ms(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "result": self.result.to_dict() if self.result else None,
        }


def validate_cron_expression(expression: str, tz: str = "UTC") -> CronTrigger:
    """Parse *expression* into a trigger, or raise InvalidScheduleError."""
    try:
        return CronTrigger.from_crontab(expression, timezone=tz)
    except (ValueError, TypeError, KeyError) as exc:
        raise InvalidScheduleError(f"Invalid cron expression '{expression}': {exc}") from exc


# ---------------------------------------------------------------------------
# Job bodies
# ---------------------------------------------------------------------------

def run_weekly_report(
    messaging,
    tracker,
    store,
    options: dict[str, Any] | None = None,
) -> DeliveryRun:
    """Deliver the weekly report to every recipient once.

    *options* are passed to ``ReportDeliveryService`` (``cache``, ``now``,
    ``sleep``).  Per-recipient failures are part of the returned run; a
    failure to read the recipient list propagates.
    """
    log.info("Starting weekly report job")
    service = ReportDeliveryService(messaging, tracker, store, **(options or {}))
    return service.deliver_report_to_all()


def run_user_sync(messaging, tracker, store) -> SyncSummary:
    """Run the user sync once.  Never raises; failures land in the summary."""
    start = datetime.now(timezone.utc)
    log.info("Starting user sync job")
    try:
        result = sync_users(messaging, tracker, store)
    except Exception as exc:
        log.exception("User sync job failed")
        return SyncSummary(
            success=False, start_time=start, end_time=datetime.now(timezone.utc), error=str(exc)
        )

    summary = SyncSummary(
        success=True, start_time=start, end_time=datetime.now(timezone.utc), result=result
    )
    log.info("User sync job completed in %dms", summary.duration_ms)
    return summary


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

def _weekly_report_job(messaging, tracker, store) -> None:
    try:
        run_weekly_report(messaging, tracker, store)
    except Exception:
        log.exception("Weekly report job failed")


def create_scheduler(
    messaging,
    tracker,
    store,
    report_cron: str = DEFAULT_REPORT_CRON,
    sync_cron: str = DEFAULT_SYNC_CRON,
    tz: str = "UTC",
) -> BlockingScheduler:
    """Register both jobs on a ``BlockingScheduler``; the caller starts it.

    Raises:
        InvalidScheduleError: either expression is invalid (nothing is registered).
    """
    report_trigger = validate_cron_expression(report_cron, tz)
    sync_trigger = validate_cron_expression(sync_cron, tz)

    scheduler = BlockingScheduler(timezone=tz)
    scheduler.add_job(
        _weekly_report_job,
        report_trigger,
        args=(messaging, tracker, store),
        id=WEEKLY_REPORT_JOB,
        name="Weekly report delivery",
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        run_user_sync,
        sync_trigger,
        args=(messaging, tracker, store),
        id=USER_SYNC_JOB,
        name="Slack/Linear user sync",
        coalesce=True,
        max_instances=1,
    )
    log.info("Scheduled weekly report (%s) and user sync (%s) in %s", report_cron, sync_cron, tz)
    return scheduler
