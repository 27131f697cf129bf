"""Fetch health tracking per feed."""

import logging
import time
from typing import Dict

log = logging.getLogger("feedshelf.monitoring")


class FeedHealth:
    """Counts consecutive fetch failures per feed id and backs off failing feeds."""

    def __init__(self, alert_threshold: int = 5, cooldown_max_minutes: float = 60):
        self.alert_threshold = alert_threshold
        self.cooldown_max_minutes = cooldown_max_minutes
        self._failures: Dict[str, int] = {}
        self._last_error: Dict[str, str] = {}
        self._alerted: Dict[str, bool] = {}
        self._last_failure_at: Dict[str, float] = {}

    def record_success(self, feed_id: str) -> None:
        prev = self._failures.get(feed_id, 0)
        if prev > 0:
            log.info("Feed %s recovered after %d consecutive failure(s).", feed_id, prev)
        self._failures[feed_id] = 0
        self._alerted[feed_id] = False
        self._last_error.pop(feed_id, None)
        self._last_failure_at.pop(feed_id, None)

    def record_failure(self, feed_id: str, error: str = "") -> bool:
        """Record a failed fetch. Returns True when the alert threshold is first reached."""
        count = self._failures.get(feed_id, 0) + 1
        self._failures[feed_id] = count
        self._last_error[feed_id] = error
        self._last_failure_at[feed_id] = time.monotonic()
        log.warning("Feed %s: fetch failure #%d (%s).", feed_id, count, error or "unknown error")

        if count >= self.alert_threshold and not self._alerted.get(feed_id, False):
            self._alerted[feed_id] = True
            log.error("ALERT: feed %s failed %d times in a row.", feed_id, count)
            return True
        return False

    def is_in_cooldown(self, feed_id: str) -> bool:
        failures = self._failures.get(feed_id, 0)
        if failures < self.alert_threshold:
            return False
        last = self._last_failure_at.get(feed_id)
        if last is None:
            return False
        # failures * 2 min, capped at cooldown_max_minutes
        cooldown_sec = min(failures * 120, self.cooldown_max_minutes * 60)
        elapsed = time.monotonic() - last
        if elapsed < cooldown_sec:
            log.info(
                "Feed %s: cooling down for %.0f more min after %d failures.",
                feed_id, (cooldown_sec - elapsed) / 60, failures,
            )
            return True
        return False

    def failures(self, feed_id: str) -> int:
        return self._failures.get(feed_id, 0)

    def last_error(self, feed_id: str) -> str:
        return self._last_error.get(feed_id, "")

    def snapshot(self) -> Dict[str, int]:
        return {k: v for k, v in self._failures.items() if v > 0}
