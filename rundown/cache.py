"""Short-lived in-memory cache of generated reports.

A preview followed by a send within ``CACHE_TTL`` reuses the same report
instead of querying Linear twice.  The cache is owned by a
``ReportDeliveryService`` instance; it is process-local, bounded only by time
and empty after a restart.
"""

import logging
import math
import time
from typing import Callable

from cachetools import TTLCache

from rundown.reports.weekly import ReportResult

log = logging.getLogger(__name__)

CACHE_TTL = 10 * 60  # seconds


class ReportCache:
    """Maps a user id to its latest ``ReportResult`` until it expires.

    An entry stored at ``t`` is served while ``clock() < t + ttl``.
    """

    def __init__(self, clock: Callable[[], float] = time.time, ttl: float = CACHE_TTL) -> None:
        self.ttl = ttl
        self._reports: TTLCache = TTLCache(maxsize=math.inf, ttl=ttl, timer=clock)

    def __len__(self) -> int:
        return len(self._reports)

    def get(self, user_id: int) -> ReportResult | None:
        report = self._reports.get(user_id)
        if report is not None:
            log.debug("Cache hit for user %s", user_id)
            return report

        if self._reports.expire():
            log.debug("Removed expired cache entries on miss for user %s", user_id)
        log.debug("Cache miss for user %s", user_id)
        return None

    def set(self, user_id: int, report: ReportResult) -> None:
        expired = self._reports.expire()
        if expired:
            log.info("Cleaned up %d expired cache entries", len(expired))
        self._reports[user_id] = report
        log.info(
            "Cached report for user %s (%d issues, ttl %ds)",
            user_id, report.issues_count, self.ttl,
        )

    def invalidate(self, user_id: int) -> None:
        if self._reports.pop(user_id, None) is not None:
            log.debug("Invalidated cached report for user %s", user_id)

    def clear(self) -> None:
        size = len(self._reports)
        self._reports.clear()
        log.info("Cleared all cached reports (%d entries)", size)

    def stats(self) -> dict:
        """Entry counts; expired entries are evicted while counting them."""
        expired = len(self._reports.expire())
        valid = len(self._reports)
        return {
            "total_entries": valid + expired,
            "valid_entries": valid,
            "expired_entries": expired,
            "ttl_minutes": self.ttl / 60,
        }
