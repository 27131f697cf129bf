"""Stable identifiers for feed items.

Feeds often omit guids or reuse one link for several entries, so an item
without a usable guid gets a UUID v5 of its link, title, date, author and
feed URL. Nothing in that key depends on fetch time, so refreshing a feed
reproduces the same ids and read state keyed by id survives.
"""

import json
import logging
import uuid
from typing import Any, Iterable, List, Mapping, Optional

from feedshelf.errors import InvalidItemError
from feedshelf.models import GuidValue, PlainGuid, StructuredGuid
from feedshelf.utils import item_date_string

log = logging.getLogger("feedshelf.identity")

# 6ba7b810-9dad-11d1-80b4-00c04fd430c8, same namespace as ids already on disk
ITEM_ID_NAMESPACE = uuid.NAMESPACE_DNS
COMPOSITE_SEPARATOR = "|"


def parse_guid(raw: Any) -> Optional[GuidValue]:
    if isinstance(raw, str):
        return PlainGuid(raw) if raw else None
    if isinstance(raw, Mapping):
        return StructuredGuid(dict(raw)) if raw else None
    return None


def _canonical(fields: Mapping[str, Any]) -> str:
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _text(v: Any) -> str:
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)


def _field(item: Mapping[str, Any], key: str) -> str:
    return _text(item.get(key))


def composite_key(item: Mapping[str, Any], feed_url: str) -> str:
    parts = [
        _field(item, "link"),
        _field(item, "title"),
        _text(item_date_string(item)),
        _field(item, "author"),
        _text(feed_url),
    ]
    return COMPOSITE_SEPARATOR.join(parts)


def resolve_id(item: Optional[Mapping[str, Any]], feed_url: str) -> str:
    if item is None or not isinstance(item, Mapping):
        raise InvalidItemError(f"Expected a feed item mapping, got {type(item).__name__}")

    guid = parse_guid(item.get("guid"))
    if isinstance(guid, PlainGuid):
        return guid.value
    if isinstance(guid, StructuredGuid):
        return guid.text() or _canonical(guid.fields)

    return str(uuid.uuid5(ITEM_ID_NAMESPACE, composite_key(item, feed_url)))


def assign_ids(items: Iterable[Any], feed_url: str) -> List[dict]:
    """Return copies of items with ``id`` set. Invalid entries are skipped."""
    out: List[dict] = []
    for item in items:
        try:
            item_id = resolve_id(item, feed_url)
        except InvalidItemError as e:
            log.warning("Skipping item from %s: %s", feed_url, e)
            continue
        out.append({**item, "id": item_id})
    return out
