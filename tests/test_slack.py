"""Tests for rundown/slack.py"""

import pytest

from rundown.client import ClientError, RetryPolicy
from rundown.slack import DEFAULT_BASE_URL, USERS_PAGE_LIMIT, SlackClient, describe_error

USERS_URL = f"{DEFAULT_BASE_URL}/users.list"
OPEN_URL = f"{DEFAULT_BASE_URL}/conversations.open"
POST_URL = f"{DEFAULT_BASE_URL}/chat.postMessage"


@pytest.fixture
def client(clock) -> SlackClient:
    return SlackClient(
        "xoxb-test",
        rate_limit_delay=1.0,
        retry_policy=RetryPolicy(max_retries=1),
        sleep=clock.sleep,
        clock=clock,
    )


def member(uid: str, email: str | None, **extra) -> dict:
    data = {"id": uid, "real_name": f"Name {uid}", "profile": {"email": email} if email else {}}
    data.update(extra)
    return data


def test_missing_token_is_rejected():
    with pytest.raises(ValueError):
        SlackClient("")


# ---------------------------------------------------------------------------
# list_users()
# ---------------------------------------------------------------------------

def test_list_users_follows_cursor_and_skips_non_humans(client, requests_mock):
    adapter = requests_mock.get(USERS_URL, [
        {"json": {
            "ok": True,
            "members": [
                member("U1", "ada@acme.io"),
                member("B1", "bot@acme.io", is_bot=True),
                member("U2", None),
            ],
            "response_metadata": {"next_cursor": "page2"},
        }},
        {"json": {
            "ok": True,
            "members": [member("U3", "cy@acme.io"), member("U4", "gone@acme.io", deleted=True)],
            "response_metadata": {"next_cursor": ""},
        }},
    ])
    users = client.list_users()

    assert [(u.id, u.email) for u in users] == [("U1", "ada@acme.io"), ("U3", "cy@acme.io")]
    assert users[0].display_name == "Name U1"
    first, second = adapter.request_history
    assert first.qs == {"limit": [str(USERS_PAGE_LIMIT)]}
    assert second.qs["cursor"] == ["page2"]
    assert first.headers["Authorization"] == "Bearer xoxb-test"


def test_list_users_raises_on_api_error(client, requests_mock):
    requests_mock.get(USERS_URL, json={"ok": False, "error": "invalid_auth"})
    with pytest.raises(ClientError, match="invalid_auth"):
        client.list_users()


# ---------------------------------------------------------------------------
# send_direct_message()
# ---------------------------------------------------------------------------

def test_send_opens_conversation_then_posts(client, requests_mock):
    opened = requests_mock.post(OPEN_URL, json={"ok": True, "channel": {"id": "D123"}})
    posted = requests_mock.post(POST_URL, json={"ok": True, "channel": "D123", "ts": "1700.0001"})

    result = client.send_direct_message("U1", "Hello!")

    assert result.success
    assert result.channel_id == "D123"
    assert result.message_id == "1700.0001"
    assert opened.last_request.json() == {"users": "U1"}
    assert posted.last_request.json() == {"channel": "D123", "text": "Hello!"}


def test_send_reports_friendly_error_without_retrying(client, requests_mock, clock):
    opened = requests_mock.post(OPEN_URL, json={"ok": False, "error": "user_not_found"})
    posted = requests_mock.post(POST_URL, json={"ok": True})

    result = client.send_direct_message("U404", "Hello!")

    assert not result.success
    assert result.error == "User not found in Slack workspace"
    assert opened.call_count == 1
    assert posted.call_count == 0
    assert clock.sleeps == []


def test_send_retries_rate_limit_then_gives_up(client, requests_mock, clock):
    opened = requests_mock.post(OPEN_URL, json={"ok": False, "error": "ratelimited"})

    result = client.send_direct_message("U1", "Hello!")

    assert not result.success
    assert result.error == "Rate limit exceeded - please retry later"
    assert opened.call_count == 2
    assert clock.sleeps == [1.0]


def test_consecutive_sends_are_spaced(client, requests_mock, clock):
    requests_mock.post(OPEN_URL, json={"ok": True, "channel": {"id": "D1"}})
    requests_mock.post(POST_URL, json={"ok": True, "ts": "1"})

    client.send_direct_message("U1", "one")
    clock.advance(0.4)
    client.send_direct_message("U2", "two")

    assert clock.sleeps == [pytest.approx(0.6)]


# ---------------------------------------------------------------------------
# describe_error()
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw, reason", [
    ("Slack chat.postMessage failed: channel_not_found", "Channel not found or inaccessible"),
    ("Slack conversations.open failed: token_revoked", "Invalid or revoked authentication token"),
    ("Slack chat.postMessage failed: is_archived", "Channel is archived"),
    ("Slack chat.postMessage failed: msg_too_long",
     "Slack API error: Slack chat.postMessage failed: msg_too_long"),
])
def test_describe_error(raw, reason):
    assert describe_error(raw) == reason
