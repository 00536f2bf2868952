"""Tests for rundown/reports/formatting.py"""

from datetime import date, datetime, timedelta, timezone

from conftest import NOW, make_issue
from rundown.models import CooldownStatus, UserReport
from rundown.reports.formatting import (
    AGGREGATION_THRESHOLD,
    EMPTY_REPORT_MESSAGE,
    aggregate_issues_by_priority,
    build_issue_url,
    build_search_url,
    format_aggregated_issues,
    format_cooldown_banner,
    format_date,
    format_full_issue_list,
    format_summary,
    format_weekly_report,
)


def make_report(**buckets) -> UserReport:
    return UserReport(
        user_name="Ada",
        period_start=NOW - timedelta(days=7),
        period_end=NOW,
        org_url_key="acme",
        remote_user_id="lin-ada",
        **buckets,
    )


# ---------------------------------------------------------------------------
# Banner / header
# ---------------------------------------------------------------------------

def test_cooldown_banner():
    banner = format_cooldown_banner(1, 2, date(2025, 11, 10))
    assert "COOLDOWN MODE ACTIVE" in banner
    assert "Week 1 of 2" in banner
    assert "2025-11-10" in banner


def test_report_header():
    text = format_weekly_report(make_report(completed=[make_issue()]), CooldownStatus.inactive())
    lines = text.splitlines()
    assert lines[0] == "Hi Ada! Here's your weekly Linear update."
    assert "📅 Report Period: 2025-11-03 - 2025-11-10" in lines
    assert "COOLDOWN MODE ACTIVE" not in text


def test_report_in_cooldown_starts_with_banner():
    cooldown = CooldownStatus(
        is_in_cooldown=True, week_number=2, total_weeks=2,
        end_date=date(2025, 11, 17), start_date=date(2025, 11, 3),
    )
    text = format_weekly_report(make_report(other_open=[make_issue()]), cooldown)
    assert text.startswith("🏖️")
    assert "Week 2 of 2" in text
    assert "Ends: 2025-11-17" in text
    assert text.index("COOLDOWN MODE ACTIVE") < text.index("Hi Ada!")


def test_empty_report():
    text = format_weekly_report(make_report(), CooldownStatus.inactive())
    assert text.endswith(EMPTY_REPORT_MESSAGE)
    assert "✅" not in text
    assert "📊 Summary" not in text


def test_sections_appear_in_order_and_only_when_non_empty():
    report = make_report(
        completed=[make_issue("ENG-1")],
        updated=[make_issue("ENG-2")],
        other_open=[make_issue("ENG-3")],
    )
    text = format_weekly_report(report, CooldownStatus.inactive())
    assert "🔄 Started This Week" not in text
    assert (
        text.index("✅ Completed This Week")
        < text.index("📝 Updated This Week")
        < text.index("📋 Other Open Issues")
        < text.index("📊 Summary:")
    )


def test_summary_block():
    assert format_summary(1, 0, 2).splitlines() == [
        "📊 Summary:",
        "  • 1 issue completed",
        "  • 0 issues started",
        "  • 2 other open issues",
    ]


# ---------------------------------------------------------------------------
# Detailed lists
# ---------------------------------------------------------------------------

def test_full_list_groups_by_project_with_no_project_last():
    issues = [
        make_issue("ENG-1", project="Zeta"),
        make_issue("ENG-2"),
        make_issue("ENG-3", project="alpha"),
    ]
    lines = format_full_issue_list(issues).splitlines()
    headers = [line for line in lines if line.endswith(":")]
    assert headers == ["  alpha:", "  Zeta:", "  No Project:"]


def test_issue_line_with_link_priority_and_estimate():
    issue = make_issue("ENG-1", title="Fix login", priority=1, estimate=3.0, project="Auth")
    lines = format_full_issue_list([issue], org_url_key="acme").splitlines()
    assert lines == [
        "  Auth:",
        "    • <https://linear.app/acme/issue/ENG-1|ENG-1> - Fix login 🔴 [3pts]",
    ]


def test_issue_line_without_org_or_priority():
    issue = make_issue("ENG-9", title="Tidy up", priority=0)
    assert format_full_issue_list([issue]).splitlines()[-1] == "    • ENG-9 - Tidy up"


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def test_threshold_bucket_is_itemized():
    issues = [make_issue(f"ENG-{n}") for n in range(AGGREGATION_THRESHOLD)]
    text = format_weekly_report(make_report(completed=issues), CooldownStatus.inactive())
    assert "Priority Summary" not in text
    assert "ENG-9" in text


def test_bucket_over_threshold_is_aggregated():
    issues = [make_issue(f"ENG-{n}") for n in range(AGGREGATION_THRESHOLD + 1)]
    text = format_weekly_report(make_report(completed=issues), CooldownStatus.inactive())
    assert "📊 Priority Summary (11 total):" in text
    assert "ENG-3" not in text


def test_other_open_is_always_aggregated():
    text = format_weekly_report(
        make_report(other_open=[make_issue("ENG-1", priority=2)]), CooldownStatus.inactive()
    )
    assert "📊 Priority Summary (1 total):" in text
    assert "🟠 High: 1 issue" in text


def test_aggregate_counts_every_tier_with_unknown_as_none():
    issues = [make_issue(f"E-{n}", priority=p) for n, p in enumerate([1, 1, 3, 0, 7])]
    groups = aggregate_issues_by_priority(issues)
    assert [(g.label, g.count) for g in groups] == [
        ("Urgent", 2), ("High", 0), ("Medium", 1), ("Low", 0), ("None", 2),
    ]


def test_aggregated_text_hides_empty_tiers_and_links_search():
    issues = [make_issue("E-1", priority=1), make_issue("E-2", priority=1), make_issue("E-3")]
    lines = format_aggregated_issues(issues, "acme", "lin-ada").splitlines()
    assert lines[0] == "  📊 Priority Summary (3 total):"
    assert len(lines) == 3
    assert lines[1].startswith("    🔴 Urgent: 2 issues → <https://linear.app/acme/issues?filter=")
    assert lines[1].endswith("|View in Linear>")
    assert lines[2].startswith("    ⚪ None: 1 issue →")


def test_aggregated_text_without_links():
    lines = format_aggregated_issues([make_issue("E-1", priority=4)]).splitlines()
    assert lines[1] == "    🟢 Low: 1 issue"


# ---------------------------------------------------------------------------
# Links / dates
# ---------------------------------------------------------------------------

def test_build_issue_url():
    assert build_issue_url("acme", "ENG-42") == "https://linear.app/acme/issue/ENG-42"


def test_build_search_url_for_priority():
    assert build_search_url("acme", "lin-1", priority=1) == (
        "https://linear.app/acme/issues?filter=assignee%3Alin-1%2Bpriority%3A1"
    )


def test_build_search_url_without_priority():
    assert build_search_url("acme", "u") == "https://linear.app/acme/issues?filter=assignee%3Au"


def test_format_date_uses_utc():
    plus_five = timezone(timedelta(hours=5))
    assert format_date(datetime(2025, 11, 10, 1, 0, tzinfo=plus_five)) == "2025-11-09"
    assert format_date(date(2025, 1, 2)) == "2025-01-02"
