import logging
from typing import Any, Dict, List, Optional

from feedshelf.identity import assign_ids
from feedshelf.models import RefreshResult
from feedshelf.monitoring import FeedHealth
from feedshelf.rss import feed_to_items, merge_items, parse_feed_with_cache
from feedshelf.storage import FeedStore
from feedshelf.utils import to_iso, utc_now

log = logging.getLogger("feedshelf.refresh")


class FeedRefresher:
    def __init__(self, store: FeedStore, health: Optional[FeedHealth] = None):
        self.store = store
        self.health = health or FeedHealth()

    def refresh_feed(self, feed: Dict[str, Any]) -> RefreshResult:
        """Fetch one feed, merge its items into storage and update its metadata in place."""
        feed_id = str(feed.get("id") or "")
        url = feed.get("url") or ""
        if not feed_id or not url:
            return RefreshResult(feed_id=feed_id, ok=False, error="feed has no id or url")

        try:
            parsed = parse_feed_with_cache(url, feed)
        except Exception as e:
            # feedparser wraps most I/O errors in bozo, but not all of them
            self.health.record_failure(feed_id, str(e))
            return RefreshResult(feed_id=feed_id, ok=False, error=str(e))

        if getattr(parsed, "status", None) == 304:
            self.health.record_success(feed_id)
            feed["lastFetched"] = to_iso(utc_now())
            return RefreshResult(feed_id=feed_id, ok=True, not_modified=True)

        entries = getattr(parsed, "entries", None) or []
        if getattr(parsed, "bozo", False) and not entries:
            err = str(getattr(parsed, "bozo_exception", "unparseable feed"))
            self.health.record_failure(feed_id, err)
            return RefreshResult(feed_id=feed_id, ok=False, error=err)

        fresh = assign_ids(feed_to_items(parsed), url)
        existing = self.store.read_feed_items(feed_id)
        known = {it.get("id") for it in existing}
        merged = merge_items(existing, fresh)

        if not self.store.write_feed_items(feed_id, merged):
            self.health.record_failure(feed_id, "items write failed")
            return RefreshResult(feed_id=feed_id, ok=False, error="items write failed")

        title = getattr(getattr(parsed, "feed", None), "title", None)
        if title and not feed.get("title"):
            feed["title"] = str(title)
        feed["lastFetched"] = to_iso(utc_now())
        self.health.record_success(feed_id)

        new_count = sum(1 for it in fresh if it["id"] not in known)
        log.info("Feed %s: %d new item(s), %d fetched.", feed_id, new_count, len(fresh))
        return RefreshResult(
            feed_id=feed_id, ok=True, new_items=new_count, total_items=len(merged),
        )

    def refresh_all(self) -> List[RefreshResult]:
        aggregate = self.store.read_all()
        results: List[RefreshResult] = []
        for feed in aggregate["feeds"]:
            feed_id = str(feed.get("id") or "")
            if self.health.is_in_cooldown(feed_id):
                results.append(RefreshResult(feed_id=feed_id, ok=False, skipped=True))
                continue
            results.append(self.refresh_feed(feed))

        if not self.store.write_metadata_only(aggregate):
            log.error("Refresh: feed metadata could not be saved.")
        return results
