"""Slack ⇄ Linear user synchronisation.

Usage:
    result = sync_users(slack, linear, store)
    print(result.matched, "users mapped to Linear")

Every Slack member with an e-mail is upserted into the store and matched to
a Linear user by e-mail (case-insensitive).  Users who were synced from Slack
before but are no longer listed become inactive.
"""

import logging
from dataclasses import asdict, dataclass

from rundown.client import ClientError
from rundown.models import TrackerUser
from rundown.store import UserNotFoundError

log = logging.getLogger(__name__)


@dataclass
class SyncResult:
    messaging_users: int = 0
    tracker_users: int = 0
    matched: int = 0
    created: int = 0
    deactivated: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _tracker_users_by_email(tracker) -> dict[str, TrackerUser]:
    try:
        users = tracker.get_all_users()
    except ClientError as exc:
        log.warning("Could not fetch Linear users, continuing without mapping: %s", exc)
        return {}
    return {u.email.lower(): u for u in users if u.email}


def sync_users(messaging, tracker, store) -> SyncResult:
    """Upsert every Slack member and map it to its Linear account.

    A Slack failure propagates; a Linear failure only disables mapping.
    """
    slack_users = messaging.list_users()
    by_email = _tracker_users_by_email(tracker)
    result = SyncResult(messaging_users=len(slack_users), tracker_users=len(by_email))
    log.info("Syncing %d Slack users against %d Linear users", len(slack_users), len(by_email))

    for slack_user in slack_users:
        match = by_email.get(slack_user.email.lower())
        fields = {
            "slack_user_id": slack_user.id,
            "slack_real_name": slack_user.display_name,
            "is_active": True,
        }
        if match:
            fields["linear_user_id"] = match.id
            fields["linear_name"] = match.name
            result.matched += 1

        try:
            existing = store.find_user(slack_user.email)
        except UserNotFoundError:
            existing = None

        if existing is None:
            fields["receive_reports"] = match is not None
        _, created = store.upsert_user(slack_user.email, **fields)
        if created:
            result.created += 1
            log.debug("Created user %s", slack_user.email)

    result.deactivated = store.deactivate_missing([u.email for u in slack_users])

    log.info(
        "User sync complete: %d matched, %d created, %d deactivated",
        result.matched, result.created, result.deactivated,
    )
    return result
