from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import feedparser

from feedshelf.utils import strip_html_to_text, to_iso, truncate_text

SNIPPET_MAX = 500


def _entry_guid(entry: Any) -> Optional[str]:
    # feedparser exposes <guid> and atom <id> both as entry.id
    for attr in ("id", "guid"):
        v = getattr(entry, attr, None)
        if v:
            return str(v)
    return None


def _entry_html(entry: Any) -> str:
    content = getattr(entry, "content", None)
    if content and isinstance(content, list) and len(content) > 0:
        v = getattr(content[0], "value", None)
        if v:
            return str(v)
    return str(getattr(entry, "description", "") or getattr(entry, "summary", "") or "")


def _author(entry: Any) -> str:
    a = getattr(entry, "author", None)
    if a:
        return str(a).strip()
    dc = getattr(entry, "dc_creator", None)
    if dc:
        return str(dc).strip()
    return ""


def _categories(entry: Any) -> List[str]:
    out = []
    for t in (getattr(entry, "tags", None) or []):
        term = getattr(t, "term", None)
        if term:
            out.append(str(term).strip())
    return out


def _published_dt(entry: Any) -> Optional[datetime]:
    st = getattr(entry, "published_parsed", None) or getattr(entry, "updated_parsed", None)
    if st:
        try:
            return datetime(*st[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            return None
    return None


def _enclosure(entry: Any) -> Optional[Dict[str, str]]:
    for enc in (getattr(entry, "enclosures", None) or []):
        href = getattr(enc, "href", None) or getattr(enc, "url", None)
        if href:
            return {
                "url": str(href),
                "type": str(getattr(enc, "type", "") or ""),
                "length": str(getattr(enc, "length", "") or ""),
            }
    return None


def parse_feed_with_cache(url: str, feed: Dict[str, Any]) -> Any:
    """Fetch url with the feed's stored etag/modified and record the new ones on it."""
    parsed = feedparser.parse(url, etag=feed.get("etag"), modified=feed.get("modified"))
    if getattr(parsed, "etag", None):
        feed["etag"] = parsed.etag
    if getattr(parsed, "modified", None):
        feed["modified"] = parsed.modified
    return parsed


def entry_to_item(entry: Any) -> Dict[str, Any]:
    raw_html = _entry_html(entry)
    published = _published_dt(entry)

    item: Dict[str, Any] = {
        "title": str(getattr(entry, "title", "") or ""),
        "link": str(getattr(entry, "link", "") or ""),
        "author": _author(entry),
        "content": raw_html,
        "contentSnippet": truncate_text(strip_html_to_text(raw_html), SNIPPET_MAX),
        "categories": _categories(entry),
        "read": False,
    }
    raw_date = getattr(entry, "published", None) or getattr(entry, "updated", None)
    if raw_date:
        item["pubDate"] = str(raw_date)
    if published is not None:
        item["isoDate"] = to_iso(published)
    guid = _entry_guid(entry)
    if guid:
        item["guid"] = guid
    enclosure = _enclosure(entry)
    if enclosure:
        item["enclosure"] = enclosure
    return item


def feed_to_items(parsed: Any) -> List[Dict[str, Any]]:
    entries = getattr(parsed, "entries", None) or []
    return [entry_to_item(e) for e in entries]


def merge_items(existing: List[Dict[str, Any]], fresh: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Fresh items first, keeping stored user state; then stored items no longer in the feed."""
    by_id = {it.get("id"): it for it in existing if it.get("id") is not None}
    merged: List[Dict[str, Any]] = []
    seen = set()
    for item in fresh:
        iid = item.get("id")
        if iid in seen:
            continue
        seen.add(iid)
        old = by_id.get(iid)
        if old is None:
            merged.append(item)
            continue
        # stored keys the fetch does not produce (annotations etc.) are kept
        merged.append({**old, **item, "read": bool(old.get("read", False))})

    for item in existing:
        if item.get("id") not in seen:
            merged.append(item)
    return merged
