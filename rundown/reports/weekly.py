"""Weekly report generation.

Functions:
    reporting_window(now)                                  -> (start, end, cutoff)
    categorize_issues(issues, period_start, period_end)    -> CategorizedIssues
    generate_report_for_user(user, tracker, cooldown, now) -> ReportResult

Issues are fetched from Linear (open, or updated in the last 30 days), split
into four mutually exclusive buckets over the trailing 7-day window, gated by
the user's cooldown status and rendered with ``reports.formatting``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from rundown.cooldown import filter_issues_for_cooldown
from rundown.models import CooldownStatus, RemoteIssue, UserReport
from rundown.reports.formatting import format_weekly_report

log = logging.getLogger(__name__)

REPORT_WINDOW_DAYS = 7
OPEN_ISSUE_LOOKBACK_DAYS = 30


class ReportError(Exception):
    """Raised when a report cannot be generated for a specific reason."""


@dataclass
class CategorizedIssues:
    completed: list[RemoteIssue] = field(default_factory=list)
    started: list[RemoteIssue] = field(default_factory=list)
    updated: list[RemoteIssue] = field(default_factory=list)
    other_open: list[RemoteIssue] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.started) + len(self.updated) + len(self.other_open)


@dataclass
class ReportResult:
    report_text: str
    issues_count: int
    in_cooldown: bool
    period_start: datetime
    period_end: datetime
    report: UserReport

    def to_dict(self) -> dict:
        return {
            "issues_count": self.issues_count,
            "in_cooldown": self.in_cooldown,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "counts": {
                "completed": len(self.report.completed),
                "started": len(self.report.started),
                "updated": len(self.report.updated),
                "other_open": len(self.report.other_open),
            },
            "report_text": self.report_text,
        }


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def reporting_window(now: datetime) -> tuple[datetime, datetime, datetime]:
    """Return ``(period_start, period_end, open_issue_cutoff)`` ending at *now*."""
    return (
        now - timedelta(days=REPORT_WINDOW_DAYS),
        now,
        now - timedelta(days=OPEN_ISSUE_LOOKBACK_DAYS),
    )


def _within(ts: datetime | None, start: datetime, end: datetime) -> bool:
    return ts is not None and start <= ts < end


def categorize_issues(
    issues: list[RemoteIssue],
    period_start: datetime,
    period_end: datetime,
) -> CategorizedIssues:
    """Assign each issue to the first matching bucket.

    1. completed within the window
    2. started within the window
    3. updated within the window
    4. still open (not touched this window)

    Closed issues matching none of the first three are not reportable and
    are left out.
    """
    buckets = CategorizedIssues()

    for issue in issues:
        if _within(issue.completed_at, period_start, period_end):
            buckets.completed.append(issue)
        elif _within(issue.started_at, period_start, period_end):
            buckets.started.append(issue)
        elif _within(issue.updated_at, period_start, period_end):
            buckets.updated.append(issue)
        elif issue.is_open:
            buckets.other_open.append(issue)

    log.info(
        "Categorized issues: completed=%d started=%d updated=%d other_open=%d",
        len(buckets.completed), len(buckets.started),
        len(buckets.updated), len(buckets.other_open),
    )
    return buckets


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

def generate_report_for_user(
    user,
    tracker,
    cooldown: CooldownStatus | None = None,
    now: datetime | None = None,
) -> ReportResult:
    """Fetch, classify and render the weekly report for *user*.

    *user* is a store ``User``; *tracker* is a ``LinearClient`` (or anything
    with the same ``get_current_user`` / ``get_issues_for_user`` methods).

    Raises:
        ReportError: the user has no Linear identity mapped.
        ClientError: the tracker could not be queried.
    """
    if not user.linear_user_id:
        raise ReportError(f"User {user.email} does not have a Linear user ID mapped")

    cooldown = cooldown or CooldownStatus.inactive()
    now = now or datetime.now(timezone.utc)
    period_start, period_end, cutoff = reporting_window(now)

    log.info("Generating report for user %s (%s)", user.id, user.email)

    viewer = tracker.get_current_user()
    org_url_key = viewer.organization.url_key if viewer.organization else None

    issues = tracker.get_issues_for_user(user.linear_user_id, cutoff)
    buckets = categorize_issues(issues, period_start, period_end)

    if cooldown.is_in_cooldown:
        before = len(buckets.other_open)
        buckets.other_open = filter_issues_for_cooldown(buckets.other_open)
        log.info(
            "Applied cooldown filtering for user %s: %d -> %d other open issues",
            user.id, before, len(buckets.other_open),
        )

    report = UserReport(
        user_name=user.display_name,
        period_start=period_start,
        period_end=period_end,
        completed=buckets.completed,
        started=buckets.started,
        updated=buckets.updated,
        other_open=buckets.other_open,
        org_url_key=org_url_key,
        remote_user_id=user.linear_user_id,
    )
    text = format_weekly_report(report, cooldown)

    log.info("Generated report for user %s: %d issues", user.id, report.total)
    return ReportResult(
        report_text=text,
        issues_count=report.total,
        in_cooldown=cooldown.is_in_cooldown,
        period_start=period_start,
        period_end=period_end,
        report=report,
    )
