import re
import html
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

from bs4 import BeautifulSoup


def truncate_text(text: str, limit: int) -> str:
    text = text or ""
    if len(text) > limit:
        return text[: max(0, limit - 3)] + "..."
    return text


def strip_html_to_text(raw_html: str) -> str:
    raw_html = raw_html or ""
    text = BeautifulSoup(raw_html, "html.parser").get_text("\n")
    text = html.unescape(text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    return text


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision and a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 or RFC 822 date string into an aware UTC datetime.

    Naive values are taken as UTC. Returns None when nothing parses.
    """
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    dt: Optional[datetime] = None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(s)
        except (TypeError, ValueError, IndexError):
            return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def item_date_string(item: Mapping[str, Any]) -> str:
    return item.get("isoDate") or item.get("pubDate") or ""


def item_effective_date(item: Mapping[str, Any]) -> Optional[datetime]:
    return parse_date(item_date_string(item))
