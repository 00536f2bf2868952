"""User, cooldown and delivery-log storage.

Usage:
    store = FileStore("rundown-data")        # users.yaml + deliveries.jsonl
    for user in store.get_report_recipients():
        schedule = store.get_cooldown_schedule(user.id)

``MemoryStore`` holds everything in dictionaries; ``FileStore`` adds
persistence to a directory: users and cooldown schedules in ``users.yaml``,
the append-only delivery log in ``deliveries.jsonl``.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from rundown.cooldown import validate_schedule
from rundown.models import CooldownSchedule, DeliveryStatus

log = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the store cannot be read or a record is missing."""


class UserNotFoundError(StoreError):
    """Raised when no user matches an id or e-mail."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class User:
    id: int
    email: str
    slack_user_id: str | None = None
    slack_real_name: str | None = None
    linear_user_id: str | None = None
    linear_name: str | None = None
    is_active: bool = True
    receive_reports: bool = False

    @property
    def display_name(self) -> str:
        return self.slack_real_name or self.linear_name or self.email


@dataclass
class DeliveryLogEntry:
    user_id: int
    sent_at: datetime
    status: DeliveryStatus
    report_period_start: date
    report_period_end: date
    error_message: str | None = None
    message_content: str | None = None
    issues_count: int | None = None
    in_cooldown: bool | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["sent_at"] = self.sent_at.isoformat()
        data["status"] = self.status.value
        data["report_period_start"] = self.report_period_start.isoformat()
        data["report_period_end"] = self.report_period_end.isoformat()
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "DeliveryLogEntry":
        return cls(
            id=raw.get("id"),
            user_id=raw["user_id"],
            sent_at=datetime.fromisoformat(raw["sent_at"]),
            status=DeliveryStatus(raw["status"]),
            report_period_start=date.fromisoformat(raw["report_period_start"]),
            report_period_end=date.fromisoformat(raw["report_period_end"]),
            error_message=raw.get("error_message"),
            message_content=raw.get("message_content"),
            issues_count=raw.get("issues_count"),
            in_cooldown=raw.get("in_cooldown"),
        )


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

@dataclass
class MemoryStore:
    users: dict[int, User] = field(default_factory=dict)
    schedules: dict[int, CooldownSchedule] = field(default_factory=dict)
    deliveries: list[DeliveryLogEntry] = field(default_factory=list)

    # -- users ---------------------------------------------------------

    def get_user(self, user_id: int) -> User:
        try:
            return self.users[user_id]
        except KeyError:
            raise UserNotFoundError(f"User {user_id} not found") from None

    def find_user(self, ref: str | int) -> User:
        """Look a user up by numeric id or (case-insensitive) e-mail."""
        if isinstance(ref, int) or str(ref).isdigit():
            return self.get_user(int(ref))
        wanted = str(ref).lower()
        for user in self.users.values():
            if user.email.lower() == wanted:
                return user
        raise UserNotFoundError(f"No user with e-mail '{ref}'")

    def get_report_recipients(self) -> list[User]:
        """Active users who opted in to reports, ordered by e-mail."""
        recipients = [u for u in self.users.values() if u.is_active and u.receive_reports]
        return sorted(recipients, key=lambda u: u.email.lower())

    def upsert_user(self, email: str, **fields: Any) -> tuple[User, bool]:
        """Update the user with *email* or create it.  Returns ``(user, created)``."""
        for user in self.users.values():
            if user.email.lower() == email.lower():
                updated = replace(user, **fields)
                self.users[user.id] = updated
                self._save()
                return updated, False
        new_id = max(self.users, default=0) + 1
        user = User(id=new_id, email=email, **fields)
        self.users[new_id] = user
        self._save()
        return user, True

    def deactivate_missing(self, emails: list[str]) -> int:
        """Mark Slack-synced users whose e-mail is not in *emails* inactive."""
        present = {e.lower() for e in emails}
        count = 0
        for uid, user in list(self.users.items()):
            if user.is_active and user.slack_user_id and user.email.lower() not in present:
                self.users[uid] = replace(user, is_active=False)
                count += 1
        if count:
            self._save()
        return count

    # -- cooldowns -----------------------------------------------------

    def get_cooldown_schedule(self, user_id: int) -> CooldownSchedule | None:
        return self.schedules.get(user_id)

    def set_cooldown_schedule(
        self, user_id: int, next_start: str | date, duration_weeks: int | str
    ) -> CooldownSchedule:
        self.get_user(user_id)
        start, weeks = validate_schedule(next_start, duration_weeks)
        schedule = CooldownSchedule(
            user_id=user_id, next_cooldown_start=start, cooldown_duration_weeks=weeks
        )
        self.schedules[user_id] = schedule
        self._save()
        log.info("Updated cooldown schedule for user %s: %s for %d weeks", user_id, start, weeks)
        return schedule

    def delete_cooldown_schedule(self, user_id: int) -> bool:
        removed = self.schedules.pop(user_id, None) is not None
        if removed:
            self._save()
            log.info("Deleted cooldown schedule for user %s", user_id)
        return removed

    # -- delivery log --------------------------------------------------

    def log_delivery(self, entry: DeliveryLogEntry) -> DeliveryLogEntry:
        stored = replace(entry, id=len(self.deliveries) + 1)
        self.deliveries.append(stored)
        self._append_delivery(stored)
        return stored

    def get_delivery_log(self, log_id: int) -> DeliveryLogEntry | None:
        for entry in self.deliveries:
            if entry.id == log_id:
                return entry
        return None

    def delivery_logs(self, user_id: int | None = None) -> list[DeliveryLogEntry]:
        return [d for d in self.deliveries if user_id is None or d.user_id == user_id]

    # -- persistence hooks ---------------------------------------------

    def _save(self) -> None:
        pass

    def _append_delivery(self, entry: DeliveryLogEntry) -> None:
        pass


# ---------------------------------------------------------------------------
# File-backed store
# ---------------------------------------------------------------------------

class FileStore(MemoryStore):
    """``MemoryStore`` persisted under a directory."""

    USERS_FILE = "users.yaml"
    DELIVERIES_FILE = "deliveries.jsonl"

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)
        self._load()

    @property
    def users_path(self) -> Path:
        return self.path / self.USERS_FILE

    @property
    def deliveries_path(self) -> Path:
        return self.path / self.DELIVERIES_FILE

    def _load(self) -> None:
        if self.users_path.exists():
            try:
                with self.users_path.open(encoding="utf-8") as f:
                    raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise StoreError(f"Failed to parse '{self.users_path}': {exc}") from exc

            for item in raw.get("users") or []:
                item = dict(item)
                cooldown = item.pop("cooldown", None)
                user = User(**item)
                self.users[user.id] = user
                if cooldown:
                    start, weeks = validate_schedule(
                        cooldown["next_start"], cooldown["duration_weeks"]
                    )
                    self.schedules[user.id] = CooldownSchedule(user.id, start, weeks)

        if self.deliveries_path.exists():
            with self.deliveries_path.open(encoding="utf-8") as f:
                for line in f:
                    if line.strip():
                        self.deliveries.append(DeliveryLogEntry.from_dict(json.loads(line)))

    def _save(self) -> None:
        records = []
        for user in sorted(self.users.values(), key=lambda u: u.id):
            record = asdict(user)
            schedule = self.schedules.get(user.id)
            if schedule:
                record["cooldown"] = {
                    "next_start": schedule.next_cooldown_start.isoformat(),
                    "duration_weeks": schedule.cooldown_duration_weeks,
                }
            records.append(record)
        text = yaml.safe_dump({"users": records}, sort_keys=False, allow_unicode=True)
        self.users_path.write_text(text, encoding="utf-8")

    def _append_delivery(self, entry: DeliveryLogEntry) -> None:
        with self.deliveries_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
