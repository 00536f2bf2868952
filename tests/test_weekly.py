"""Tests for rundown/reports/weekly.py"""

from datetime import date, timedelta

import pytest

from conftest import NOW, FakeTracker, add_user, make_issue
from rundown.client import NetworkError
from rundown.models import CooldownStatus
from rundown.reports.weekly import (
    ReportError,
    categorize_issues,
    generate_report_for_user,
    reporting_window,
)

START = NOW - timedelta(days=7)
OLD = NOW - timedelta(days=20)
COOLDOWN = CooldownStatus(
    is_in_cooldown=True, week_number=1, total_weeks=2,
    end_date=date(2025, 11, 17), start_date=date(2025, 11, 3),
)


def ids(issues):
    return [i.identifier for i in issues]


# ---------------------------------------------------------------------------
# reporting_window() / categorize_issues()
# ---------------------------------------------------------------------------

def test_reporting_window():
    start, end, cutoff = reporting_window(NOW)
    assert end == NOW
    assert start == NOW - timedelta(days=7)
    assert cutoff == NOW - timedelta(days=30)


def test_each_issue_lands_in_first_matching_bucket():
    recent = NOW - timedelta(days=2)
    issues = [
        make_issue("DONE", state_type="completed", completed_at=recent, started_at=recent,
                   updated_at=recent),
        make_issue("STARTED", state_type="started", started_at=recent, updated_at=recent),
        make_issue("TOUCHED", state_type="unstarted", updated_at=recent),
        make_issue("IDLE", state_type="backlog"),
        make_issue("OLD-DONE", state_type="completed", completed_at=OLD),
    ]
    buckets = categorize_issues(issues, START, NOW)

    assert ids(buckets.completed) == ["DONE"]
    assert ids(buckets.started) == ["STARTED"]
    assert ids(buckets.updated) == ["TOUCHED"]
    assert ids(buckets.other_open) == ["IDLE"]
    assert buckets.total == 4


def test_window_is_half_open():
    issues = [
        make_issue("AT-START", state_type="completed", completed_at=START),
        make_issue("AT-END", state_type="completed", completed_at=NOW),
    ]
    buckets = categorize_issues(issues, START, NOW)
    assert ids(buckets.completed) == ["AT-START"]
    assert buckets.total == 1


def test_started_before_window_but_updated_inside_counts_as_updated():
    issue = make_issue(
        "ENG-1", state_type="started",
        started_at=NOW - timedelta(days=10), updated_at=NOW - timedelta(days=1),
    )
    assert ids(categorize_issues([issue], START, NOW).updated) == ["ENG-1"]


# ---------------------------------------------------------------------------
# generate_report_for_user()
# ---------------------------------------------------------------------------

def test_generate_report(store):
    user = add_user(store, "ada@acme.io", slack_real_name="Ada Lovelace")
    tracker = FakeTracker(issues={"lin-ada": [
        make_issue("ENG-1", state_type="completed", completed_at=NOW - timedelta(days=1)),
        make_issue("ENG-2"),
    ]})

    result = generate_report_for_user(user, tracker, now=NOW)

    assert result.issues_count == 2
    assert not result.in_cooldown
    assert result.period_start == START
    assert result.period_end == NOW
    assert result.report_text.startswith("Hi Ada Lovelace!")
    assert "https://linear.app/acme/issue/ENG-1" in result.report_text
    assert tracker.issue_calls == [("lin-ada", NOW - timedelta(days=30))]
    assert result.to_dict()["counts"] == {
        "completed": 1, "started": 0, "updated": 0, "other_open": 1,
    }


def test_cooldown_filters_only_other_open(store):
    user = add_user(store, "ada@acme.io")
    recent = NOW - timedelta(days=1)
    tracker = FakeTracker(issues={"lin-ada": [
        make_issue("BOARD-DONE", state_type="completed", completed_at=recent, project="Checkout"),
        make_issue("BOARD-OPEN", project="Checkout"),
        make_issue("MISC-OPEN", project="Misc"),
        make_issue("LOOSE-OPEN"),
    ]})

    result = generate_report_for_user(user, tracker, cooldown=COOLDOWN, now=NOW)

    assert result.in_cooldown
    assert ids(result.report.completed) == ["BOARD-DONE"]
    assert ids(result.report.other_open) == ["MISC-OPEN", "LOOSE-OPEN"]
    assert result.issues_count == 3
    assert "COOLDOWN MODE ACTIVE" in result.report_text


def test_user_without_linear_id_raises(store):
    user = add_user(store, "ada@acme.io", linear_user_id=None)
    with pytest.raises(ReportError, match="Linear user ID"):
        generate_report_for_user(user, FakeTracker(), now=NOW)


def test_tracker_failure_propagates(store):
    user = add_user(store, "ada@acme.io")
    tracker = FakeTracker()
    tracker.failing_users.add("lin-ada")
    with pytest.raises(NetworkError):
        generate_report_for_user(user, tracker, now=NOW)
