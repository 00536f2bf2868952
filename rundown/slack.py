"""Slack Web API client.

Usage:
    client = SlackClient(bot_token="xoxb-xxx", rate_limit_delay=1.0)
    users  = client.list_users()
    result = client.send_direct_message(users[0].id, "Hello!")

``send_direct_message`` never raises for Slack-side failures: the outcome is
reported in a ``MessageResult`` so a batch caller can record it and move on.
Consecutive sends are spaced by at least ``rate_limit_delay`` seconds.
"""

import logging
import time
from typing import Any, Callable

from rundown.client import (
    ApiClient,
    ClientError,
    RateLimitGate,
    RetryPolicy,
    error_from_message,
)
from rundown.models import MessageResult, MessagingUser

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://slack.com/api"
USERS_PAGE_LIMIT = 200  # maximum allowed by users.list
DEFAULT_RATE_LIMIT_DELAY = 1.0

# Slack error codes mapped to a readable reason
_ERROR_REASONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("user_not_found",), "User not found in Slack workspace"),
    (("channel_not_found",), "Channel not found or inaccessible"),
    (("not_in_channel",), "Bot is not in the channel"),
    (("rate_limited", "ratelimited"), "Rate limit exceeded - please retry later"),
    (("invalid_auth", "token_revoked"), "Invalid or revoked authentication token"),
    (("account_inactive",), "Slack account is inactive"),
    (("is_archived",), "Channel is archived"),
)


class SlackApiError(ClientError):
    """Raised when Slack answers ``{"ok": false}``."""

    def __init__(self, method: str, code: str) -> None:
        kind = error_from_message(code).kind
        super().__init__(f"Slack {method} failed: {code}", kind)
        self.code = code


def describe_error(message: str) -> str:
    """Turn a raw Slack error into a short human-readable reason."""
    for codes, reason in _ERROR_REASONS:
        if any(code in message for code in codes):
            return reason
    return f"Slack API error: {message}"


class SlackClient(ApiClient):
    """Messaging client for the Slack Web API."""

    service_name = "Slack"

    def __init__(
        self,
        bot_token: str,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 30,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not bot_token:
            raise ValueError("Slack bot token is required")
        super().__init__(
            base_url,
            headers={"Authorization": f"Bearer {bot_token}"},
            timeout=timeout,
            retry_policy=retry_policy,
            sleep=sleep,
        )
        self.gate = RateLimitGate(rate_limit_delay, clock=clock, sleep=sleep)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def list_users(self) -> list[MessagingUser]:
        """All human, non-deleted workspace members that have an e-mail."""
        users: list[MessagingUser] = []
        cursor = ""

        while True:
            params: dict[str, Any] = {"limit": USERS_PAGE_LIMIT}
            if cursor:
                params["cursor"] = cursor
            data = self._call("GET", "users.list", params=params)

            for member in data.get("members", []):
                profile = member.get("profile") or {}
                if member.get("is_bot") or member.get("deleted") or not profile.get("email"):
                    continue
                users.append(MessagingUser(
                    id=member["id"],
                    email=profile["email"],
                    display_name=(
                        member.get("real_name") or profile.get("real_name") or "Unknown"
                    ),
                ))

            cursor = (data.get("response_metadata") or {}).get("next_cursor", "")
            if not cursor:
                break

        log.debug("Fetched %d Slack users", len(users))
        return users

    def send_direct_message(self, user_id: str, text: str) -> MessageResult:
        """Open a DM with *user_id* and post *text* into it."""
        self.gate.wait()

        try:
            opened = self._call("POST", "conversations.open", json={"users": user_id})
            channel_id = (opened.get("channel") or {}).get("id")
            if not channel_id:
                return MessageResult(success=False, error="Failed to open conversation")

            posted = self._call(
                "POST", "chat.postMessage", json={"channel": channel_id, "text": text}
            )
        except ClientError as exc:
            log.warning("Slack DM to %s failed: %s", user_id, exc)
            return MessageResult(success=False, error=describe_error(str(exc)))

        return MessageResult(success=True, channel_id=channel_id, message_id=posted.get("ts"))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _call(self, http_method: str, method: str, **kwargs: Any) -> dict:
        return self._with_retry(
            lambda: self._call_once(http_method, method, **kwargs), f"Slack {method}"
        )

    def _call_once(self, http_method: str, method: str, **kwargs: Any) -> dict:
        data = self._request(http_method, f"/{method}", **kwargs)
        if not data.get("ok"):
            raise SlackApiError(method, data.get("error") or "unknown_error")
        return data
