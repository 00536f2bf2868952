"""Plain-text rendering of weekly reports for Slack.

Functions:
    format_weekly_report(report, cooldown)            -> str
    format_cooldown_banner(week, total_weeks, end)    -> str
    aggregate_issues_by_priority(issues)              -> list[PriorityGroup]
    build_issue_url(org_url_key, identifier)          -> str
    build_search_url(org_url_key, user_id, priority)  -> str

Buckets of at most ``AGGREGATION_THRESHOLD`` issues are listed per project;
larger buckets, and the "other open" bucket always, collapse into a
five-tier priority breakdown.  Dates are always rendered as UTC ``YYYY-MM-DD``.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from urllib.parse import quote

from rundown.models import CooldownStatus, RemoteIssue, UserReport

AGGREGATION_THRESHOLD = 10

LINEAR_APP_URL = "https://linear.app"

NO_PROJECT = "__no_project__"

EMPTY_REPORT_MESSAGE = "No issues to report this week. Great job staying on top of things! 🎉"

# Linear priority scale: 0 = None, 1 = Urgent, 2 = High, 3 = Medium, 4 = Low
_PRIORITY_EMOJI = {1: "🔴", 2: "🟠", 3: "🟡", 4: "🟢"}

_PRIORITY_TIERS: tuple[tuple[int, str, str], ...] = (
    (1, "Urgent", "🔴"),
    (2, "High", "🟠"),
    (3, "Medium", "🟡"),
    (4, "Low", "🟢"),
    (0, "None", "⚪"),
)

_SECTIONS: tuple[tuple[str, str, bool], ...] = (
    # (UserReport attribute, header, always aggregate)
    ("completed", "✅ Completed This Week", False),
    ("started", "🔄 Started This Week", False),
    ("updated", "📝 Updated This Week", False),
    ("other_open", "📋 Other Open Issues", True),
)


@dataclass(frozen=True)
class PriorityGroup:
    priority: int
    label: str
    emoji: str
    count: int


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def format_weekly_report(report: UserReport, cooldown: CooldownStatus) -> str:
    """Render the full report as newline-joined text."""
    parts: list[str] = []

    if cooldown.is_in_cooldown:
        parts.append(format_cooldown_banner(
            cooldown.week_number or 1,
            cooldown.total_weeks or 1,
            cooldown.end_date or datetime.now(timezone.utc).date(),
        ))
        parts.append("")

    parts.append(f"Hi {report.user_name}! Here's your weekly Linear update.")
    parts.append("")
    parts.append(
        f"📅 Report Period: {format_date(report.period_start)} - {format_date(report.period_end)}"
    )
    parts.append("")

    for attr, header, always_aggregate in _SECTIONS:
        issues: list[RemoteIssue] = getattr(report, attr)
        if not issues:
            continue
        parts.append(header)
        parts.append(format_issue_list(
            issues,
            org_url_key=report.org_url_key,
            user_id=report.remote_user_id,
            force_aggregate=always_aggregate,
        ))
        parts.append("")

    if report.total == 0:
        parts.append(EMPTY_REPORT_MESSAGE)
    else:
        parts.append(format_summary(
            len(report.completed), len(report.started), len(report.other_open)
        ))

    return "\n".join(parts)


def format_cooldown_banner(week_number: int, total_weeks: int, end_date: date | datetime) -> str:
    lines = [
        "🏖️ ════════════════════════════════════════ 🏖️",
        "                COOLDOWN MODE ACTIVE",
        f"            Week {week_number} of {total_weeks}",
        f"        Ends: {format_date(end_date)}",
        "",
        "  Focus: Maintenance work, tech debt & misc items",
        "  (Project board issues are filtered out)",
        "🏖️ ════════════════════════════════════════ 🏖️",
    ]
    return "\n".join(lines)


def format_issue_list(
    issues: list[RemoteIssue],
    org_url_key: str | None = None,
    user_id: str | None = None,
    force_aggregate: bool = False,
) -> str:
    if force_aggregate or len(issues) > AGGREGATION_THRESHOLD:
        return format_aggregated_issues(issues, org_url_key, user_id)
    return format_full_issue_list(issues, org_url_key)


def format_full_issue_list(issues: list[RemoteIssue], org_url_key: str | None = None) -> str:
    """Issues grouped under project headers, projects A→Z, "No Project" last."""
    lines: list[str] = []

    for project_name, project_issues in group_issues_by_project(issues):
        lines.append("  No Project:" if project_name == NO_PROJECT else f"  {project_name}:")
        for issue in project_issues:
            identifier = issue.identifier
            if org_url_key:
                identifier = slack_link(build_issue_url(org_url_key, issue.identifier), identifier)
            lines.append(
                f"    • {identifier} - {issue.title}"
                f"{format_priority(issue.priority)}{format_estimate(issue.estimate)}"
            )
        lines.append("")

    if lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def format_aggregated_issues(
    issues: list[RemoteIssue],
    org_url_key: str | None = None,
    user_id: str | None = None,
) -> str:
    lines = [f"  📊 Priority Summary ({len(issues)} total):"]

    for group in aggregate_issues_by_priority(issues):
        if group.count == 0:
            continue
        word = "issue" if group.count == 1 else "issues"
        line = f"    {group.emoji} {group.label}: {group.count} {word}"
        if org_url_key and user_id:
            url = build_search_url(org_url_key, user_id, priority=group.priority)
            line += f" → {slack_link(url, 'View in Linear')}"
        lines.append(line)

    return "\n".join(lines)


def aggregate_issues_by_priority(issues: list[RemoteIssue]) -> list[PriorityGroup]:
    """Counts for all five tiers, urgent first.  Unknown priorities count as None."""
    counts = {priority: 0 for priority, _, _ in _PRIORITY_TIERS}
    for issue in issues:
        priority = issue.priority if issue.priority in counts else 0
        counts[priority] += 1
    return [
        PriorityGroup(priority=p, label=label, emoji=emoji, count=counts[p])
        for p, label, emoji in _PRIORITY_TIERS
    ]


def group_issues_by_project(issues: list[RemoteIssue]) -> list[tuple[str, list[RemoteIssue]]]:
    grouped: dict[str, list[RemoteIssue]] = {}
    for issue in issues:
        grouped.setdefault(issue.project_name or NO_PROJECT, []).append(issue)
    return sorted(grouped.items(), key=lambda item: (item[0] == NO_PROJECT, item[0].lower()))


def format_summary(completed: int, started: int, other_open: int) -> str:
    return "\n".join([
        "📊 Summary:",
        f"  • {completed} issue{_plural(completed)} completed",
        f"  • {started} issue{_plural(started)} started",
        f"  • {other_open} other open issue{_plural(other_open)}",
    ])


def format_priority(priority: int | None) -> str:
    emoji = _PRIORITY_EMOJI.get(priority) if priority is not None else None
    return f" {emoji}" if emoji else ""


def format_estimate(estimate: float | None) -> str:
    if not estimate:
        return ""
    value = int(estimate) if float(estimate).is_integer() else estimate
    return f" [{value}pts]"


def format_date(value: date | datetime) -> str:
    """``YYYY-MM-DD`` in UTC, whatever the local timezone."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc).date()
    return value.isoformat()


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

def slack_link(url: str, label: str) -> str:
    return f"<{url}|{label}>"


def build_issue_url(org_url_key: str, identifier: str) -> str:
    return f"{LINEAR_APP_URL}/{org_url_key}/issue/{identifier}"


def build_search_url(
    org_url_key: str,
    user_id: str,
    priority: int | None = None,
) -> str:
    """Linear issue search filtered to *user_id*, and to *priority* when given."""
    filters = [f"assignee:{user_id}"]
    if priority is not None:
        filters.append(f"priority:{priority}")
    return f"{LINEAR_APP_URL}/{org_url_key}/issues?filter={quote('+'.join(filters), safe='')}"


def _plural(n: int) -> str:
    return "" if n == 1 else "s"
