"""Structural edits to the feed list: subscribe, unsubscribe, rename, move, view type, read state."""

import logging
import uuid
from typing import Any, Dict, Iterable, Optional

from feedshelf.models import DEFAULT_VIEW_TYPE, VIEW_TYPES
from feedshelf.storage import FeedStore

log = logging.getLogger("feedshelf.subscriptions")


def _check_view_type(view_type: str) -> str:
    if view_type not in VIEW_TYPES:
        raise ValueError(f"Unknown view type {view_type!r}, expected one of {', '.join(VIEW_TYPES)}")
    return view_type


def new_feed(url: str, title: str = "", folder_id: Optional[str] = None,
             view_type: str = DEFAULT_VIEW_TYPE) -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "url": url,
        "title": title,
        "folderId": folder_id,
        "viewType": _check_view_type(view_type),
        "loadFullContent": False,
    }


def find_feed(aggregate: Dict[str, Any], feed_id: str) -> Optional[Dict[str, Any]]:
    for feed in aggregate.get("feeds", []):
        if feed.get("id") == feed_id:
            return feed
    return None


def subscribe(store: FeedStore, url: str, title: str = "", folder_id: Optional[str] = None,
              view_type: str = DEFAULT_VIEW_TYPE) -> Optional[Dict[str, Any]]:
    """Add a feed. Returns the existing entry if the url is already subscribed, None on write failure."""
    aggregate = store.read_all()
    for feed in aggregate["feeds"]:
        if feed.get("url") == url:
            log.info("Already subscribed to %s (%s).", url, feed.get("id"))
            return feed
    feed = new_feed(url, title, folder_id, view_type)
    aggregate["feeds"].append(feed)
    if not store.write_metadata_only(aggregate):
        return None
    log.info("Subscribed to %s as %s.", url, feed["id"])
    return feed


def unsubscribe(store: FeedStore, feed_id: str) -> bool:
    aggregate = store.read_all()
    if find_feed(aggregate, feed_id) is None:
        log.warning("Unsubscribe: unknown feed %s.", feed_id)
        return False
    if not store.delete_feed_storage(feed_id):
        return False
    aggregate["feeds"] = [f for f in aggregate["feeds"] if f.get("id") != feed_id]
    return store.write_metadata_only(aggregate)


def _update_feed(store: FeedStore, feed_id: str, **changes: Any) -> bool:
    aggregate = store.read_all()
    feed = find_feed(aggregate, feed_id)
    if feed is None:
        log.warning("Unknown feed %s.", feed_id)
        return False
    feed.update(changes)
    return store.write_metadata_only(aggregate)


def rename_feed(store: FeedStore, feed_id: str, title: str) -> bool:
    return _update_feed(store, feed_id, title=title)


def move_feed(store: FeedStore, feed_id: str, folder_id: Optional[str]) -> bool:
    return _update_feed(store, feed_id, folderId=folder_id)


def set_view_type(store: FeedStore, feed_id: str, view_type: str) -> bool:
    return _update_feed(store, feed_id, viewType=_check_view_type(view_type))


def mark_read(store: FeedStore, feed_id: str, item_ids: Iterable[str], read: bool = True) -> int:
    """Set the read flag on stored items. Returns how many items changed."""
    wanted = set(item_ids)
    items = store.read_feed_items(feed_id)
    changed = 0
    for item in items:
        if item.get("id") in wanted and bool(item.get("read")) != read:
            item["read"] = read
            changed += 1
    if changed and not store.write_feed_items(feed_id, items):
        return 0
    return changed
