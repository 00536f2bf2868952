"""Shared fakes and builders for the pipeline tests."""

from datetime import datetime, timedelta, timezone

import pytest

from rundown.client import NetworkError
from rundown.models import (
    MessageResult,
    MessagingUser,
    Organization,
    Project,
    RemoteIssue,
    TrackerUser,
)
from rundown.store import MemoryStore

UTC = timezone.utc
NOW = datetime(2025, 11, 10, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_issue(
    identifier: str = "ENG-1",
    *,
    title: str | None = None,
    priority: int = 0,
    state_type: str = "unstarted",
    project: str | None = None,
    estimate: float | None = None,
    updated_at: datetime | None = None,
    started_at: datetime | None = None,
    completed_at: datetime | None = None,
) -> RemoteIssue:
    return RemoteIssue(
        id=f"id-{identifier}",
        identifier=identifier,
        title=title or f"Issue {identifier}",
        priority=priority,
        state_type=state_type,
        created_at=NOW - timedelta(days=60),
        updated_at=updated_at or NOW - timedelta(days=20),
        estimate=estimate,
        started_at=started_at,
        completed_at=completed_at,
        project=Project(id=f"p-{project}", name=project) if project else None,
    )


def add_user(store: MemoryStore, email: str, **fields):
    defaults = {
        "slack_user_id": f"U-{email.split('@')[0]}",
        "slack_real_name": email.split("@")[0].title(),
        "linear_user_id": f"lin-{email.split('@')[0]}",
        "receive_reports": True,
    }
    defaults.update(fields)
    user, _ = store.upsert_user(email, **defaults)
    return user


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeTracker:
    """Stands in for LinearClient."""

    def __init__(self, issues=None, users=None, org_url_key="acme"):
        self.issues: dict[str, list[RemoteIssue]] = issues or {}
        self.users: list[TrackerUser] = users or []
        self.org_url_key = org_url_key
        self.failing_users: set[str] = set()
        self.users_error: Exception | None = None
        self.issue_calls: list[tuple[str, datetime]] = []

    def get_current_user(self) -> TrackerUser:
        org = Organization(id="org-1", name="Acme", url_key=self.org_url_key)
        return TrackerUser(id="lin-viewer", name="Viewer", email="viewer@acme.io", organization=org)

    def get_issues_for_user(self, user_id: str, cutoff: datetime) -> list[RemoteIssue]:
        self.issue_calls.append((user_id, cutoff))
        if user_id in self.failing_users:
            raise NetworkError(f"Linear unreachable for {user_id}")
        return list(self.issues.get(user_id, []))

    def get_all_users(self) -> list[TrackerUser]:
        if self.users_error:
            raise self.users_error
        return list(self.users)


class FakeMessaging:
    """Stands in for SlackClient."""

    def __init__(self, users=None):
        self.users: list[MessagingUser] = users or []
        self.sent: list[tuple[str, str]] = []
        self.fail_for: dict[str, str] = {}
        self.raise_for: set[str] = set()

    def list_users(self) -> list[MessagingUser]:
        return list(self.users)

    def send_direct_message(self, user_id: str, text: str) -> MessageResult:
        if user_id in self.raise_for:
            raise RuntimeError(f"boom for {user_id}")
        if user_id in self.fail_for:
            return MessageResult(success=False, error=self.fail_for[user_id])
        self.sent.append((user_id, text))
        return MessageResult(success=True, channel_id=f"D-{user_id}", message_id="1700000000.0001")


class FakeClock:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def messaging() -> FakeMessaging:
    return FakeMessaging()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    return []
