"""Report preview and delivery.

Usage:
    service = ReportDeliveryService(slack, linear, store)
    preview = service.preview_report(user)          # generated and cached
    result  = service.deliver_report(user)          # reuses the cached preview
    run     = service.deliver_report_to_all()       # DeliveryRun(results, summary)

Recipients are processed one at a time.  A failure for one recipient is
logged and recorded as a failed ``DeliveryResult``; it never aborts the
batch.  Writes to the delivery log are best effort.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable

from rundown.cache import ReportCache
from rundown.cooldown import status_for_schedule
from rundown.models import DeliveryResult, DeliveryStatus, DeliverySummary
from rundown.reports.weekly import ReportResult, generate_report_for_user
from rundown.store import DeliveryLogEntry, MemoryStore, User

log = logging.getLogger(__name__)

RETRY_INITIAL_DELAY = 1.0  # seconds, doubled after each failed redelivery


class DeliveryError(Exception):
    """Raised when a redelivery request is invalid."""


@dataclass
class DeliveryRun:
    results: list[DeliveryResult]
    summary: DeliverySummary

    def to_dict(self) -> dict:
        return {
            "summary": self.summary.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReportDeliveryService:
    """Generates, caches and sends weekly reports through Slack."""

    def __init__(
        self,
        messaging,
        tracker,
        store,
        cache: ReportCache | None = None,
        now: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.messaging = messaging
        self.tracker = tracker
        self.store = store
        self.cache = cache if cache is not None else ReportCache()
        self._now = now
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(self, user: User) -> ReportResult:
        """Generate a fresh report for *user*, honouring their cooldown."""
        now = self._now()
        cooldown = status_for_schedule(self.store.get_cooldown_schedule(user.id), now)
        return generate_report_for_user(user, self.tracker, cooldown=cooldown, now=now)

    def preview_report(self, user: User) -> ReportResult:
        """Return the cached report for *user*, generating and caching on a miss."""
        report = self.cache.get(user.id)
        if report is None:
            report = self.generate(user)
            self.cache.set(user.id, report)
        return report

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver_report(self, user: User) -> DeliveryResult:
        """Generate (or reuse) and send one report.  Never raises."""
        log.info("Delivering report to user %s (%s)", user.id, user.email)

        skip_reason = self._skip_reason(user)
        if skip_reason:
            log.warning("Skipping user %s: %s", user.id, skip_reason)
            today = self._now().date()
            self._log_delivery(DeliveryLogEntry(
                user_id=user.id,
                sent_at=self._now(),
                status=DeliveryStatus.SKIPPED,
                error_message=skip_reason,
                report_period_start=today,
                report_period_end=today,
            ))
            return DeliveryResult(user_id=user.id, status=DeliveryStatus.SKIPPED, error=skip_reason)

        try:
            report = self.cache.get(user.id) or self.generate(user)
            sent = self.messaging.send_direct_message(user.slack_user_id, report.report_text)
            # The next report must be built from fresh data.
            self.cache.invalidate(user.id)
        except Exception as exc:
            log.exception("Error delivering report to user %s", user.id)
            today = self._now().date()
            self._log_delivery(DeliveryLogEntry(
                user_id=user.id,
                sent_at=self._now(),
                status=DeliveryStatus.FAILED,
                error_message=str(exc),
                report_period_start=today,
                report_period_end=today,
            ))
            return DeliveryResult(user_id=user.id, status=DeliveryStatus.FAILED, error=str(exc))

        status = DeliveryStatus.SUCCESS if sent.success else DeliveryStatus.FAILED
        self._log_delivery(DeliveryLogEntry(
            user_id=user.id,
            sent_at=self._now(),
            status=status,
            error_message=sent.error,
            message_content=report.report_text,
            report_period_start=_utc_date(report.period_start),
            report_period_end=_utc_date(report.period_end),
            issues_count=report.issues_count,
            in_cooldown=report.in_cooldown,
        ))

        if not sent.success:
            log.warning("Failed to deliver report to user %s: %s", user.id, sent.error)
            return DeliveryResult(user_id=user.id, status=DeliveryStatus.FAILED, error=sent.error)

        log.info("Delivered report to user %s (%d issues)", user.id, report.issues_count)
        return DeliveryResult(
            user_id=user.id,
            status=DeliveryStatus.SUCCESS,
            issues_count=report.issues_count,
            in_cooldown=report.in_cooldown,
        )

    def deliver_report_to_all(self, recipients: list[User] | None = None) -> DeliveryRun:
        """Deliver to every recipient in order and summarise the run.

        When *recipients* is omitted they are read from the store; a failure
        to read them propagates.
        """
        start = self._now()
        if recipients is None:
            recipients = self.store.get_report_recipients()
        log.info("Delivering reports to %d recipients", len(recipients))

        results: list[DeliveryResult] = []
        for user in recipients:
            results.append(self._deliver_isolated(user))

        summary = DeliverySummary.from_results(results, start, self._now())
        log.info(
            "Delivery complete: %d succeeded, %d failed, %d skipped in %dms",
            summary.success_count, summary.failure_count,
            summary.skipped_count, summary.duration_ms,
        )
        return DeliveryRun(results=results, summary=summary)

    def retry_failed_delivery(self, log_id: int, max_retries: int = 3) -> DeliveryResult:
        """Redeliver the report behind a failed log entry, backing off between attempts."""
        entry = self.store.get_delivery_log(log_id)
        if entry is None:
            raise DeliveryError(f"Delivery log {log_id} not found")
        if entry.status is not DeliveryStatus.FAILED:
            raise DeliveryError(f"Delivery log {log_id} is not in failed state")
        user = self.store.get_user(entry.user_id)

        delay = RETRY_INITIAL_DELAY
        result: DeliveryResult | None = None
        for attempt in range(1, max_retries + 1):
            log.info("Retry attempt %d/%d for user %s", attempt, max_retries, user.id)
            result = self.deliver_report(user)
            if result.status is not DeliveryStatus.FAILED:
                return result
            if attempt < max_retries:
                self._sleep(delay)
                delay *= 2

        log.error("All retry attempts exhausted for user %s", user.id)
        return DeliveryResult(
            user_id=user.id,
            status=DeliveryStatus.FAILED,
            error=f"Failed after {max_retries} retries: {result.error if result else None}",
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _deliver_isolated(self, user: User) -> DeliveryResult:
        try:
            result = self.deliver_report(user)
        except Exception as exc:
            log.exception("Error processing report for user %s", getattr(user, "id", "?"))
            return DeliveryResult(
                user_id=getattr(user, "id", -1), status=DeliveryStatus.FAILED, error=str(exc)
            )
        if result.status is DeliveryStatus.FAILED:
            log.warning("User %s: delivery failed (%s)", user.id, result.error)
        return result

    @staticmethod
    def _skip_reason(user: User) -> str | None:
        if not user.receive_reports:
            return f"User {user.email} has opted out of reports"
        if not user.slack_user_id:
            return f"User {user.email} does not have a Slack user ID mapped"
        if not user.linear_user_id:
            return f"User {user.email} does not have a Linear user ID mapped"
        return None

    def _log_delivery(self, entry: DeliveryLogEntry) -> None:
        try:
            self.store.log_delivery(entry)
        except Exception as exc:
            log.error("Failed to log delivery for user %s: %s", entry.user_id, exc)


def deliver_report_to_all(messaging, tracker, recipients: list[User], store=None) -> DeliveryRun:
    """Deliver to *recipients* with a throwaway service (no shared cache)."""
    service = ReportDeliveryService(messaging, tracker, store if store is not None else MemoryStore())
    return service.deliver_report_to_all(recipients)


def _utc_date(value: datetime) -> date:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()
