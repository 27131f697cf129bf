import os
import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Set

from feedshelf.config import StoreConfig
from feedshelf.errors import (
    PartialPruneError,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from feedshelf.models import PruneResult
from feedshelf.utils import item_date_string, item_effective_date, parse_date, to_iso, utc_now

log = logging.getLogger("feedshelf.storage")

SCHEMA_VERSION = 1
ITEMS_SUFFIX = ".json"


def _atomic_write_json(path: str, data: Any) -> None:
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except (OSError, TypeError, ValueError) as e:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise StorageWriteError(str(e), path) from e


def _read_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise StorageReadError(str(e), path) from e


def empty_aggregate() -> Dict[str, Any]:
    return {"feeds": [], "folders": [], "lastUpdated": to_iso(utc_now())}


def _strip_items(feed: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in feed.items() if k != "items"}


def _has_inline_items(feed: Any) -> bool:
    return isinstance(feed, dict) and bool(feed.get("items"))


class FeedStore:
    """
    Split JSON storage for feeds.

    Layout:
      <data_dir>/feeds.json            {"schemaVersion", "feeds", "folders", "lastUpdated"}
      <data_dir>/storage/<feed_id>.json  [item, ...]

    Public methods never raise storage errors: reads fall back to empty
    defaults, writes return False, prune skips failing files.
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self._meta_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._feed_locks: Dict[str, threading.Lock] = {}

    # ── paths & locks ─────────────────────────────────────────

    @property
    def metadata_path(self) -> str:
        return self.config.metadata_path

    @property
    def storage_dir(self) -> str:
        return self.config.storage_dir

    def items_path(self, feed_id: Any) -> str:
        fid = str(feed_id) if feed_id is not None else ""
        if not fid or fid in (".", "..") or "/" in fid or "\\" in fid or "\x00" in fid:
            raise StorageError(f"Unsafe feed id {fid!r}")
        return os.path.join(self.storage_dir, f"{fid}{ITEMS_SUFFIX}")

    def _lock_for(self, feed_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._feed_locks.get(feed_id)
            if lock is None:
                lock = self._feed_locks[feed_id] = threading.Lock()
            return lock

    def _ensure_directories(self) -> None:
        try:
            os.makedirs(self.storage_dir, exist_ok=True)
        except OSError as e:
            raise StorageWriteError(str(e), self.storage_dir) from e

    # ── retention ─────────────────────────────────────────────

    def should_keep_item(self, item: Dict[str, Any]) -> bool:
        """Write-time rule: undated items are kept, dated ones must be inside the window."""
        if not item.get("isoDate") and not item.get("pubDate"):
            return True
        dt = parse_date(item_date_string(item))
        if dt is None:
            return False
        return dt >= utc_now() - timedelta(days=self.config.retention_days)

    def _filter_items(self, items: Any) -> List[Dict[str, Any]]:
        if not isinstance(items, list):
            return []
        return [it for it in items if isinstance(it, dict) and self.should_keep_item(it)]

    # ── schema ────────────────────────────────────────────────

    def _load_metadata(self) -> Dict[str, Any]:
        data = _read_json(self.metadata_path)
        if not isinstance(data, dict):
            raise StorageReadError("metadata document is not an object", self.metadata_path)
        version = data.get("schemaVersion", 0)
        if not isinstance(version, int) or version > SCHEMA_VERSION:
            raise StorageReadError(f"unsupported schemaVersion {version!r}", self.metadata_path)
        data.setdefault("feeds", [])
        data.setdefault("folders", [])
        if not isinstance(data["feeds"], list) or not isinstance(data["folders"], list):
            raise StorageReadError("feeds/folders must be lists", self.metadata_path)
        data["feeds"] = [f for f in data["feeds"] if isinstance(f, dict)]
        data.setdefault("lastUpdated", to_iso(utc_now()))
        return data

    def _load_items(self, path: str) -> List[Dict[str, Any]]:
        items = _read_json(path)
        if not isinstance(items, list):
            raise StorageReadError("items document is not an array", path)
        valid = [it for it in items if isinstance(it, dict)]
        if len(valid) != len(items):
            log.warning("Dropped %d malformed entries from %s", len(items) - len(valid), path)
        return valid

    def _write_metadata(self, aggregate: Dict[str, Any], keep_inline: Set[int] = frozenset()) -> None:
        """Write the metadata document. Feeds at positions in keep_inline keep their items."""
        feeds = aggregate.get("feeds") or []
        doc = {
            **aggregate,
            "schemaVersion": SCHEMA_VERSION,
            "feeds": [
                f if i in keep_inline else _strip_items(f)
                for i, f in enumerate(feeds) if isinstance(f, dict)
            ],
            "folders": aggregate.get("folders") or [],
            "lastUpdated": to_iso(utc_now()),
        }
        with self._meta_lock:
            _atomic_write_json(self.metadata_path, doc)

    def _write_items(self, feed_id: Any, items: Any) -> int:
        path = self.items_path(feed_id)
        kept = self._filter_items(items)
        with self._lock_for(str(feed_id)):
            _atomic_write_json(path, kept)
        return len(kept)

    # ── lifecycle ─────────────────────────────────────────────

    def initialize(self) -> None:
        """Create the data layout, or split a legacy combined document into items files."""
        try:
            self._ensure_directories()
            if not os.path.exists(self.metadata_path):
                self._write_metadata(empty_aggregate())
                return
            data = self._load_metadata()
            if not any(_has_inline_items(f) for f in data["feeds"]):
                return
            log.info("Migrating %s to split storage format...", self.metadata_path)
            self._migrate(data)
        except StorageError as e:
            log.error("Error checking/migrating data: %s", e)

    def _migrate(self, data: Dict[str, Any]) -> None:
        # only feeds with inline items are split; existing items files of the others stay as they are
        failed: Set[int] = set()
        for i, feed in enumerate(data["feeds"]):
            if not _has_inline_items(feed):
                continue
            try:
                self._write_items(feed.get("id"), feed["items"])
            except StorageError as e:
                log.error("Migration of feed %s failed, items left inline: %s", feed.get("id"), e)
                failed.add(i)
        self._write_metadata(data, keep_inline=failed)
        if failed:
            log.warning("Migration incomplete: %d feed(s) still carry inline items.", len(failed))
        else:
            log.info("Migration complete.")

    def read_all(self) -> Dict[str, Any]:
        try:
            self.initialize()
            data = self._load_metadata()
        except StorageError as e:
            log.error("Error reading feeds: %s", e)
            return empty_aggregate()
        data.pop("schemaVersion", None)

        hydrated = []
        for feed in data["feeds"]:
            hydrated.append({**feed, "items": self._hydrate_items(feed)})
        data["feeds"] = hydrated
        return data

    def _hydrate_items(self, feed: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            path = self.items_path(feed.get("id"))
        except StorageError as e:
            log.warning("Feed without usable id, using inline items: %s", e)
            return feed.get("items") or []
        if os.path.exists(path):
            try:
                return self._load_items(path)
            except StorageError as e:
                log.error("Failed to read items for feed %s: %s", feed.get("id"), e)
                return []
        # partially migrated: file missing but inline items still present
        inline = feed.get("items")
        return [it for it in inline if isinstance(it, dict)] if isinstance(inline, list) else []

    def read_feed_items(self, feed_id: str) -> List[Dict[str, Any]]:
        try:
            path = self.items_path(feed_id)
            if not os.path.exists(path):
                return []
            return self._load_items(path)
        except StorageError as e:
            log.error("Failed to read items for feed %s: %s", feed_id, e)
            return []

    def write_all(self, aggregate: Dict[str, Any]) -> bool:
        try:
            self._ensure_directories()
            self._write_metadata(aggregate)
        except StorageError as e:
            log.error("Error writing feeds: %s", e)
            return False

        for feed in aggregate.get("feeds") or []:
            if not isinstance(feed, dict) or feed.get("id") is None:
                continue
            try:
                self._write_items(feed["id"], feed.get("items") or [])
            except StorageError as e:
                log.error("Error writing items for feed %s: %s", feed.get("id"), e)
        return True

    def write_metadata_only(self, aggregate: Dict[str, Any]) -> bool:
        try:
            self._ensure_directories()
            self._write_metadata(aggregate)
            return True
        except StorageError as e:
            log.error("Error writing main config: %s", e)
            return False

    def write_feed_items(self, feed_id: str, items: List[Dict[str, Any]]) -> bool:
        try:
            self._ensure_directories()
            kept = self._write_items(feed_id, items)
            log.debug("Wrote %d/%d items for feed %s", kept, len(items or []), feed_id)
            return True
        except StorageError as e:
            log.error("Error updating feed items for %s: %s", feed_id, e)
            return False

    def delete_feed_storage(self, feed_id: str) -> bool:
        try:
            path = self.items_path(feed_id)
            with self._lock_for(str(feed_id)):
                if os.path.exists(path):
                    os.remove(path)
            return True
        except (StorageError, OSError) as e:
            log.error("Error deleting storage for %s: %s", feed_id, e)
            return False

    # ── maintenance ───────────────────────────────────────────

    def _prune_file(self, path: str, cutoff: datetime) -> int:
        try:
            items = _read_json(path)
        except StorageReadError as e:
            raise PartialPruneError(e.message, path) from e
        if not isinstance(items, list):
            return 0

        kept = []
        for item in items:
            # prune-time rule: undated or unparseable dates do not survive
            dt = item_effective_date(item) if isinstance(item, dict) else None
            if dt is not None and dt >= cutoff:
                kept.append(item)

        removed = len(items) - len(kept)
        if removed:
            try:
                _atomic_write_json(path, kept)
            except StorageWriteError as e:
                raise PartialPruneError(e.message, path) from e
        return removed

    def prune_all(self, retention_days: int = 30) -> PruneResult:
        try:
            self._ensure_directories()
            names = sorted(os.listdir(self.storage_dir))
        except (StorageError, OSError) as e:
            log.error("Error cleaning up old items: %s", e)
            return PruneResult(success=False, error=str(e))

        cutoff = utc_now() - timedelta(days=retention_days)
        result = PruneResult(success=True)
        for name in names:
            if not name.endswith(ITEMS_SUFFIX):
                continue
            path = os.path.join(self.storage_dir, name)
            try:
                with self._lock_for(name[: -len(ITEMS_SUFFIX)]):
                    result.removed_count += self._prune_file(path, cutoff)
            except PartialPruneError as e:
                log.error("Error processing file %s: %s", name, e)
                result.failed_files.append(name)

        log.info(
            "Prune (%d days): removed %d item(s), %d file(s) failed.",
            retention_days, result.removed_count, len(result.failed_files),
        )
        return result
