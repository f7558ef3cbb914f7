"""
Per-sender rate limiting for generated replies.

Counts are kept in fixed one-hour buckets keyed by (sender, epoch hour).
A burst straddling an hour boundary can therefore see up to twice the
limit within a short span.
"""

import time
from collections import defaultdict
from typing import Any, Callable

from loguru import logger

from replybot.bus.events import normalize_contact

SECONDS_PER_HOUR = 3600


class RateLimiter:
    """
    Hourly request counter per sender.

    allow() only inspects; record() charges a request. Callers charge
    the limiter after a successful generation so failed attempts do not
    consume quota.
    """

    def __init__(
        self,
        limit_per_hour: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.limit_per_hour = limit_per_hour
        self._clock = clock

        # (sender, hour bucket) -> count
        self._counts: dict[tuple[str, int], int] = defaultdict(int)

        # Stats
        self._denied_count = 0

    def current_bucket(self) -> int:
        """Epoch hour of the current time."""
        return int(self._clock() // SECONDS_PER_HOUR)

    def _key(self, sender_id: str) -> tuple[str, int]:
        return (normalize_contact(sender_id) or sender_id, self.current_bucket())

    def allow(self, sender_id: str) -> bool:
        """Check if sender is within its hourly limit. Does not mutate state."""
        count = self._counts.get(self._key(sender_id), 0)
        if count >= self.limit_per_hour:
            self._denied_count += 1
            logger.debug(f"Rate limit reached for {sender_id} ({count}/{self.limit_per_hour})")
            return False
        return True

    def record(self, sender_id: str) -> int:
        """
        Charge one request to the sender's current bucket.

        Returns:
            The new count for the bucket.
        """
        key = self._key(sender_id)
        self._counts[key] += 1
        return self._counts[key]

    def remaining(self, sender_id: str) -> int:
        """Requests left for the sender in the current bucket."""
        return max(self.limit_per_hour - self._counts.get(self._key(sender_id), 0), 0)

    def cleanup(self) -> int:
        """
        Drop buckets for hours other than the current one.

        Returns:
            Number of buckets removed.
        """
        current = self.current_bucket()
        stale = [key for key in self._counts if key[1] != current]
        for key in stale:
            del self._counts[key]
        if stale:
            logger.debug(f"Purged {len(stale)} expired rate-limit buckets")
        return len(stale)

    def reset(self) -> None:
        """Forget all counts."""
        self._counts.clear()
        self._denied_count = 0

    def get_stats(self) -> dict[str, Any]:
        """Get limiter statistics."""
        return {
            "limit_per_hour": self.limit_per_hour,
            "tracked_buckets": len(self._counts),
            "denied_count": self._denied_count,
        }
