"""Data models shared by the clients, the report generator and the pipeline.

Contains dataclasses for:
    - Linear entities       (Organization, TrackerUser, Project, Team, RemoteIssue)
    - Slack entities        (MessagingUser, MessageResult)
    - Cooldown              (CooldownSchedule, CooldownStatus)
    - Report / delivery     (UserReport, DeliveryResult, DeliverySummary)
"""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

CLOSED_STATE_TYPES = ("completed", "canceled")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp from the API into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    url_key: str


@dataclass(frozen=True)
class TrackerUser:
    id: str
    name: str
    email: str
    active: bool = True
    organization: Organization | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "TrackerUser":
        org = raw.get("organization")
        return cls(
            id=raw["id"],
            name=raw.get("name") or "",
            email=raw.get("email") or "",
            active=raw.get("active") is not False,
            organization=Organization(
                id=org["id"], name=org.get("name", ""), url_key=org["urlKey"]
            ) if org else None,
        )


@dataclass(frozen=True)
class Project:
    id: str
    name: str


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    key: str


@dataclass(frozen=True)
class RemoteIssue:
    """Snapshot of a Linear issue fetched for one report cycle."""

    id: str
    identifier: str
    title: str
    priority: int
    state_type: str
    created_at: datetime
    updated_at: datetime
    state_name: str = ""
    estimate: float | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    canceled_at: datetime | None = None
    project: Project | None = None
    team: Team | None = None

    @property
    def is_open(self) -> bool:
        return self.state_type not in CLOSED_STATE_TYPES

    @property
    def project_name(self) -> str | None:
        return self.project.name if self.project else None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "RemoteIssue":
        state = raw.get("state") or {}
        project = raw.get("project")
        team = raw.get("team")
        return cls(
            id=raw["id"],
            identifier=raw["identifier"],
            title=raw.get("title", ""),
            priority=raw.get("priority") or 0,
            state_type=state.get("type", "backlog"),
            state_name=state.get("name", ""),
            estimate=raw.get("estimate"),
            created_at=parse_timestamp(raw["createdAt"]),
            updated_at=parse_timestamp(raw["updatedAt"]),
            started_at=parse_timestamp(raw.get("startedAt")),
            completed_at=parse_timestamp(raw.get("completedAt")),
            canceled_at=parse_timestamp(raw.get("canceledAt")),
            project=Project(id=project["id"], name=project["name"]) if project else None,
            team=Team(id=team["id"], name=team["name"], key=team["key"]) if team else None,
        )


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MessagingUser:
    id: str
    email: str
    display_name: str


@dataclass(frozen=True)
class MessageResult:
    success: bool
    error: str | None = None
    channel_id: str | None = None
    message_id: str | None = None


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CooldownSchedule:
    user_id: int
    next_cooldown_start: date
    cooldown_duration_weeks: int


@dataclass(frozen=True)
class CooldownStatus:
    is_in_cooldown: bool
    week_number: int | None = None
    total_weeks: int | None = None
    end_date: date | None = None
    start_date: date | None = None

    @classmethod
    def inactive(cls) -> "CooldownStatus":
        return cls(is_in_cooldown=False)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

@dataclass
class UserReport:
    user_name: str
    period_start: datetime
    period_end: datetime
    completed: list[RemoteIssue] = field(default_factory=list)
    started: list[RemoteIssue] = field(default_factory=list)
    updated: list[RemoteIssue] = field(default_factory=list)
    other_open: list[RemoteIssue] = field(default_factory=list)
    org_url_key: str | None = None
    remote_user_id: str | None = None

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.started) + len(self.updated) + len(self.other_open)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

class DeliveryStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DeliveryResult:
    user_id: int
    status: DeliveryStatus
    error: str | None = None
    issues_count: int | None = None
    in_cooldown: bool | None = None

    @property
    def success(self) -> bool:
        return self.status is DeliveryStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "success": self.success,
            "error": self.error,
            "issues_count": self.issues_count,
            "in_cooldown": self.in_cooldown,
        }


@dataclass
class DeliverySummary:
    total: int
    success_count: int
    failure_count: int
    skipped_count: int
    start_time: datetime
    end_time: datetime

    @property
    def duration_ms(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    @classmethod
    def from_results(
        cls, results: list[DeliveryResult], start_time: datetime, end_time: datetime
    ) -> "DeliverySummary":
        counts = {status: 0 for status in DeliveryStatus}
        for result in results:
            counts[result.status] += 1
        return cls(
            total=len(results),
            success_count=counts[DeliveryStatus.SUCCESS],
            failure_count=counts[DeliveryStatus.FAILED],
            skipped_count=counts[DeliveryStatus.SKIPPED],
            start_time=start_time,
            end_time=end_time,
        )

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": self.duration_ms,
        }
