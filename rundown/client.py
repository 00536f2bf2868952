"""Resilient HTTP client core shared by the Linear and Slack clients.

Usage:
    policy = RetryPolicy(max_retries=3, initial_delay=1.0, max_delay=10.0)
    data   = with_retry(lambda: client.post_json("/graphql", payload), policy)

Every remote failure is normalised at the transport boundary into an
``ErrorKind``.  Rate limits, timeouts, connection resets and DNS failures are
retryable; anything else is fatal and propagates on the first attempt.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import requests
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class ErrorKind(enum.Enum):
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK = "network"
    DNS = "dns"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.FATAL


# Ordered: the first matching pattern wins.
_MESSAGE_PATTERNS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.RATE_LIMIT, ("rate limit", "ratelimit", "rate_limit", "too many requests")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.DNS, ("enotfound", "name or service not known", "nodename nor servname",
                     "getaddrinfo", "name resolution")),
    (ErrorKind.NETWORK, ("econnreset", "connection reset", "connection aborted", "network")),
)


def classify_message(message: str) -> ErrorKind:
    """Map an error message reported only as text to an ``ErrorKind``."""
    lowered = message.lower()
    for kind, patterns in _MESSAGE_PATTERNS:
        if any(p in lowered for p in patterns):
            return kind
    return ErrorKind.FATAL


class ClientError(Exception):
    """Base exception for all remote API errors."""

    default_kind = ErrorKind.FATAL

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind or self.default_kind

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class AuthenticationError(ClientError):
    """Raised on HTTP 401/403 or an API-level authentication failure."""


class NotFoundError(ClientError):
    """Raised on HTTP 404 or a missing remote entity."""


class NetworkError(ClientError):
    """Raised on connection timeout, reset or unresolvable host."""

    default_kind = ErrorKind.NETWORK


class RateLimitError(ClientError):
    """Raised on HTTP 429 or an API-level rate-limit response."""

    default_kind = ErrorKind.RATE_LIMIT


class RetryExhaustedError(ClientError):
    """Raised when a retryable error persisted through every attempt."""


def error_from_message(message: str) -> ClientError:
    """Build the matching ``ClientError`` for an error known only by its text."""
    kind = classify_message(message)
    if kind is ErrorKind.RATE_LIMIT:
        return RateLimitError(message)
    if kind is ErrorKind.FATAL:
        return ClientError(message)
    return NetworkError(message, kind)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.  Delays are in seconds.

    The n-th retry waits ``initial_delay * 2**(n-1)``, capped at ``max_delay``.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ClientError) and exc.retryable


def _log_retry(description: str, attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception()
        log.warning(
            "%s failed (attempt %d/%d, %s): %s; retrying in %.1fs",
            description, state.attempt_number, attempts, exc.kind.value, exc,
            state.next_action.sleep,
        )
    return before_sleep


def with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "request",
) -> T:
    """Call *fn*, retrying retryable ``ClientError`` failures with backoff.

    Fatal errors, and exceptions that are not ``ClientError``, propagate from
    the first attempt.  When every attempt failed with a retryable error,
    ``RetryExhaustedError`` carries the last failure's message and kind.
    """
    attempts = policy.max_retries + 1
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=policy.initial_delay, max=policy.max_delay),
        retry=retry_if_exception(_is_retryable),
        sleep=sleep,
        before_sleep=_log_retry(description, attempts),
    )
    try:
        return retrying(fn)
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        log.error("%s failed after %d attempts: %s", description, attempts, last_error)
        raise RetryExhaustedError(
            f"Failed after {policy.max_retries} retries: {last_error}", last_error.kind
        ) from last_error


# ---------------------------------------------------------------------------
# Send gate
# ---------------------------------------------------------------------------

class RateLimitGate:
    """Blocks until *min_interval* seconds have passed since the last pass."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None

    def wait(self) -> None:
        if self._last is not None:
            elapsed = self._clock() - self._last
            if elapsed < self.min_interval:
                self._sleep(self.min_interval - elapsed)
        self._last = self._clock()


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------

class ApiClient:
    """Thin wrapper around a ``requests.Session`` with retrying JSON calls."""

    service_name = "API"

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self._timeout = timeout
        self._sleep = sleep
        self._session = requests.Session()
        if headers:
            self._session.headers.update(headers)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        """GET *endpoint* with retries and return the parsed JSON body."""
        return self._retrying("GET", endpoint, params=params or {})

    def post_json(self, endpoint: str, payload: dict[str, Any]) -> dict:
        """POST *payload* as JSON with retries and return the parsed body."""
        return self._retrying("POST", endpoint, json=payload)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _retrying(self, method: str, endpoint: str, **kwargs: Any) -> dict:
        return self._with_retry(
            lambda: self._request(method, endpoint, **kwargs),
            f"{self.service_name} {method} {endpoint or '/'}",
        )

    def _with_retry(self, fn: Callable[[], T], description: str) -> T:
        return with_retry(fn, self.retry_policy, sleep=self._sleep, description=description)

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {self._timeout}s while contacting '{url}'",
                ErrorKind.TIMEOUT,
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            kind = classify_message(str(exc))
            if kind is ErrorKind.FATAL:
                kind = ErrorKind.NETWORK
            raise NetworkError(
                f"Unable to reach {self.service_name} at '{self.base_url}': {exc}", kind
            ) from exc

        return self._handle_response(response, url)

    def _handle_response(self, response: requests.Response, url: str) -> dict:
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.service_name} authentication failed; check that the token is valid."
            )
        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {url}")
        if response.status_code == 429:
            raise RateLimitError(
                f"{self.service_name} rate limit exceeded "
                f"(retry-after={response.headers.get('Retry-After', '?')})"
            )
        if response.status_code >= 500:
            raise error_from_message(
                f"Unexpected response {response.status_code} from {url}: {response.text[:200]}"
            )
        if not response.ok:
            raise ClientError(
                f"Unexpected response {response.status_code} from {url}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ClientError(f"Invalid JSON from {url}: {response.text[:200]}") from exc
