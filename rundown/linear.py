"""Linear GraphQL API client.

Usage:
    client = LinearClient(api_key="lin_api_xxx")
    me     = client.get_current_user()
    issues = client.get_issues_for_user(me.id, cutoff=one_month_ago)

Collections are paginated with ``first``/``after`` cursors and fetched one
page at a time until ``pageInfo.hasNextPage`` is false.  Every page request
goes through the retry policy of ``ApiClient``.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable

import requests

from rundown.client import (
    ApiClient,
    AuthenticationError,
    ClientError,
    RetryPolicy,
    error_from_message,
)
from rundown.models import RemoteIssue, TrackerUser

log = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.linear.app/graphql"
PAGE_SIZE = 100

# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

_ISSUE_FIELDS = """
    id
    identifier
    title
    priority
    estimate
    createdAt
    updatedAt
    completedAt
    startedAt
    canceledAt
    state { id name type }
    project { id name }
    team { id name key }
"""

GET_CURRENT_USER = """
query Me {
  viewer {
    id
    name
    email
    organization { id name urlKey }
  }
}
"""

GET_ALL_ASSIGNED_ISSUES = """
query AllAssignedIssues($first: Int!, $after: String) {
  viewer {
    assignedIssues(first: $first, after: $after, orderBy: updatedAt) {
      nodes { %s }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""" % _ISSUE_FIELDS

GET_ISSUES_FOR_USER = """
query IssuesForUser($userId: ID!, $first: Int!, $after: String) {
  issues(
    filter: { assignee: { id: { eq: $userId } } }
    orderBy: updatedAt
    first: $first
    after: $after
  ) {
    nodes { %s }
    pageInfo { hasNextPage endCursor }
  }
}
""" % _ISSUE_FIELDS

GET_ALL_USERS = """
query AllUsers($first: Int!, $after: String) {
  users(first: $first, after: $after) {
    nodes { id name email active }
    pageInfo { hasNextPage endCursor }
  }
}
"""

# GraphQL error codes Linear reports in ``extensions.code``
_AUTH_CODES = ("AUTHENTICATION_ERROR", "FORBIDDEN")
_RATE_LIMIT_CODES = ("RATELIMITED",)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class LinearClient(ApiClient):
    """Issue-tracker client for the Linear GraphQL API."""

    service_name = "Linear"

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: int = 30,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("Linear API key is required")
        super().__init__(
            endpoint,
            headers={"Authorization": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            retry_policy=retry_policy,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def query(self, query: str, variables: dict[str, Any] | None = None) -> dict:
        """Run one GraphQL operation and return its ``data`` member.

        Raises:
            AuthenticationError: invalid API key
            RateLimitError:      Linear reported RATELIMITED
            ClientError:         any other GraphQL error (fatal)
            NetworkError:        timeout or connection failure
        """
        return self._retrying_query(query, variables or {})

    def get_current_user(self) -> TrackerUser:
        """Return the authenticated user with its organization."""
        data = self.query(GET_CURRENT_USER)
        return TrackerUser.from_api(data["viewer"])

    def get_all_assigned_issues(self, cutoff: datetime) -> list[RemoteIssue]:
        """Issues assigned to the API key's owner: open, or updated since *cutoff*."""
        nodes = self.paginate(GET_ALL_ASSIGNED_ISSUES, {}, ("viewer", "assignedIssues"))
        return filter_current_issues([RemoteIssue.from_api(n) for n in nodes], cutoff)

    def get_issues_for_user(self, user_id: str, cutoff: datetime) -> list[RemoteIssue]:
        """Issues assigned to *user_id*: open, or updated since *cutoff*."""
        nodes = self.paginate(GET_ISSUES_FOR_USER, {"userId": user_id}, ("issues",))
        issues = filter_current_issues([RemoteIssue.from_api(n) for n in nodes], cutoff)
        log.info("Fetched %d of %d issues for Linear user %s", len(issues), len(nodes), user_id)
        return issues

    def get_all_users(self) -> list[TrackerUser]:
        """All active users in the workspace."""
        nodes = self.paginate(GET_ALL_USERS, {}, ("users",))
        return [u for u in (TrackerUser.from_api(n) for n in nodes) if u.active]

    def paginate(
        self,
        query: str,
        variables: dict[str, Any],
        path: tuple[str, ...],
    ) -> list[dict]:
        """Fetch every page of the connection found at *path* in ``data``.

        Pages are requested strictly one after another; the returned list
        keeps server order.
        """
        all_nodes: list[dict] = []
        cursor: str | None = None

        while True:
            page_vars = {**variables, "first": PAGE_SIZE, "after": cursor}
            data = self.query(query, page_vars)

            connection: Any = data
            for key in path:
                connection = connection[key]

            all_nodes.extend(connection.get("nodes", []))

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
            if not cursor:
                raise ClientError("Linear reported hasNextPage without endCursor")

        return all_nodes

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _retrying_query(self, query: str, variables: dict[str, Any]) -> dict:
        return self._with_retry(
            lambda: self._query_once(query, variables), "Linear GraphQL request"
        )

    def _handle_response(self, response: requests.Response, url: str) -> dict:
        # Linear answers invalid or throttled operations with HTTP 400 and a
        # GraphQL ``errors`` body; let _query_once classify those.
        if response.status_code == 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("errors"):
                return body
        return super()._handle_response(response, url)

    def _query_once(self, query: str, variables: dict[str, Any]) -> dict:
        body = self._request("POST", "", json={"query": query, "variables": variables})
        errors = body.get("errors")
        if errors:
            raise _graphql_error(errors)
        data = body.get("data")
        if data is None:
            raise ClientError("Linear response contained no data")
        return data


def _graphql_error(errors: list[dict]) -> ClientError:
    """Normalise the first GraphQL error into a ``ClientError``."""
    first = errors[0] if errors else {}
    message = first.get("message", "Unknown GraphQL error")
    code = (first.get("extensions") or {}).get("code", "")

    if code in _AUTH_CODES:
        return AuthenticationError(f"Linear authentication failed: {message}")
    if code in _RATE_LIMIT_CODES:
        return error_from_message(f"Linear rate limit: {message}")
    label = f" ({code})" if code else ""
    return error_from_message(f"Linear GraphQL error{label}: {message}")


def filter_current_issues(issues: list[RemoteIssue], cutoff: datetime) -> list[RemoteIssue]:
    """Keep issues that are still open or were updated on/after *cutoff*."""
    return [i for i in issues if i.is_open or i.updated_at >= cutoff]
