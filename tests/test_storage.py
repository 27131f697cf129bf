import os
import json
from datetime import timedelta
import pytest
from feedshelf.config import StoreConfig
from feedshelf.errors import StorageError, StorageWriteError
from feedshelf.storage import SCHEMA_VERSION, FeedStore, empty_aggregate
from feedshelf.utils import to_iso, utc_now


def days_ago(n):
    return to_iso(utc_now() - timedelta(days=n))


@pytest.fixture
def config(tmp_path):
    return StoreConfig(data_dir=str(tmp_path / "data"), retention_days=30)


@pytest.fixture
def store(config):
    return FeedStore(config)


def _read(path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _write(path, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)


def _feed(fid, items=None, **extra):
    feed = {"id": fid, "url": f"http://example.com/{fid}.xml", "title": fid.upper(),
            "folderId": None, "viewType": "article", "loadFullContent": False}
    feed.update(extra)
    if items is not None:
        feed["items"] = items
    return feed


# ── initialize ────────────────────────────────────────────────

class TestInitialize:
    def test_creates_layout(self, store):
        store.initialize()
        assert os.path.isdir(store.storage_dir)
        data = _read(store.metadata_path)
        assert data["feeds"] == []
        assert data["folders"] == []
        assert data["schemaVersion"] == SCHEMA_VERSION
        assert "lastUpdated" in data

    def test_migrates_inline_items(self, store):
        items = [{"id": "a", "title": "A", "isoDate": days_ago(1)}]
        _write(store.metadata_path, {"feeds": [_feed("f1", items)], "folders": [{"id": "x"}]})
        store.initialize()

        meta = _read(store.metadata_path)
        assert "items" not in meta["feeds"][0]
        assert meta["folders"] == [{"id": "x"}]
        assert _read(store.items_path("f1")) == items

    def test_migration_leaves_split_feeds_alone(self, store):
        _write(store.items_path("b"), [{"id": "kept"}])
        _write(store.metadata_path, {"feeds": [_feed("a", [{"id": "x"}]), _feed("b")], "folders": []})
        store.initialize()
        assert _read(store.items_path("a")) == [{"id": "x"}]
        assert _read(store.items_path("b")) == [{"id": "kept"}]
        assert all("items" not in f for f in _read(store.metadata_path)["feeds"])

    def test_migration_idempotent(self, store):
        _write(store.metadata_path, {"feeds": [_feed("f1", [{"id": "a"}])], "folders": []})
        store.initialize()
        with open(store.metadata_path, "rb") as f:
            meta_before = f.read()
        with open(store.items_path("f1"), "rb") as f:
            items_before = f.read()

        store.initialize()
        with open(store.metadata_path, "rb") as f:
            assert f.read() == meta_before
        with open(store.items_path("f1"), "rb") as f:
            assert f.read() == items_before

    def test_corrupt_metadata_does_not_raise(self, store):
        _write(store.metadata_path, {})
        with open(store.metadata_path, "w") as f:
            f.write("{invalid json")
        store.initialize()


# ── read_all ──────────────────────────────────────────────────

class TestReadAll:
    def test_empty_store(self, store):
        data = store.read_all()
        assert data["feeds"] == []
        assert data["folders"] == []

    def test_round_trip(self, store):
        recent = [
            {"id": "1", "title": "one", "isoDate": days_ago(2), "read": True},
            {"id": "2", "title": "two", "read": False},
        ]
        aggregate = {
            "feeds": [_feed("f1", recent, customColor="red"), _feed("f2", [])],
            "folders": [{"id": "folder-1", "name": "News"}],
            "lastUpdated": days_ago(5),
        }
        assert store.write_all(aggregate)
        back = store.read_all()

        assert back.pop("lastUpdated") != aggregate["lastUpdated"]
        expected = {k: v for k, v in aggregate.items() if k != "lastUpdated"}
        assert back == expected
        assert "schemaVersion" not in back

    def test_round_trip_drops_old_items(self, store):
        items = [{"id": "old", "isoDate": days_ago(45)}, {"id": "new", "isoDate": days_ago(3)}]
        store.write_all({"feeds": [_feed("f1", items)], "folders": []})
        back = store.read_all()
        assert [it["id"] for it in back["feeds"][0]["items"]] == ["new"]

    def test_corrupt_metadata_gives_empty(self, store):
        store.initialize()
        with open(store.metadata_path, "w") as f:
            f.write("{invalid json")
        data = store.read_all()
        assert data["feeds"] == []
        assert data["folders"] == []

    def test_metadata_not_a_dict(self, store):
        _write(store.metadata_path, [1, 2, 3])
        assert store.read_all()["feeds"] == []

    def test_unsupported_schema_version(self, store):
        _write(store.metadata_path, {"schemaVersion": SCHEMA_VERSION + 1, "feeds": [_feed("f1")], "folders": []})
        assert store.read_all()["feeds"] == []

    def test_feeds_not_a_list(self, store):
        _write(store.metadata_path, {"feeds": "nope", "folders": []})
        assert store.read_all()["feeds"] == []

    def test_partial_failure_isolated(self, store):
        store.write_all({"feeds": [_feed("f1", [{"id": "a"}]), _feed("f2", [{"id": "b"}])], "folders": []})
        with open(store.items_path("f1"), "w") as f:
            f.write("[not json")

        feeds = {f["id"]: f for f in store.read_all()["feeds"]}
        assert feeds["f1"]["items"] == []
        assert feeds["f2"]["items"] == [{"id": "b"}]

    def test_items_document_not_array(self, store):
        store.write_all({"feeds": [_feed("f1", [])], "folders": []})
        _write(store.items_path("f1"), {"items": []})
        assert store.read_all()["feeds"][0]["items"] == []

    def test_malformed_entries_dropped(self, store):
        store.write_all({"feeds": [_feed("f1", [])], "folders": []})
        _write(store.items_path("f1"), [{"id": "a"}, "junk", 3])
        assert store.read_all()["feeds"][0]["items"] == [{"id": "a"}]

    def test_missing_items_file_gives_empty(self, store):
        store.write_metadata_only({"feeds": [_feed("f1")], "folders": []})
        assert store.read_all()["feeds"][0]["items"] == []

    def test_inline_fallback_when_split_fails(self, store, monkeypatch):
        original = store._write_items

        def failing_write(feed_id, items):
            if feed_id == "f1":
                raise StorageWriteError("disk full")
            return original(feed_id, items)

        monkeypatch.setattr(store, "_write_items", failing_write)
        _write(store.metadata_path, {
            "feeds": [_feed("f1", [{"id": "inline"}]), _feed("f2", [{"id": "moved"}])],
            "folders": [],
        })

        feeds = {f["id"]: f for f in store.read_all()["feeds"]}
        assert not os.path.exists(store.items_path("f1"))
        assert feeds["f1"]["items"] == [{"id": "inline"}]
        assert feeds["f2"]["items"] == [{"id": "moved"}]

        meta = {f["id"]: f for f in _read(store.metadata_path)["feeds"]}
        assert meta["f1"]["items"] == [{"id": "inline"}]
        assert "items" not in meta["f2"]

    def test_mixed_legacy_and_split_store(self, store):
        _write(store.items_path("b"), [{"id": "kept"}])
        _write(store.metadata_path, {
            "feeds": [_feed("a", [{"id": "x"}]), _feed("b")],
            "folders": [],
        })

        feeds = {f["id"]: f for f in store.read_all()["feeds"]}
        assert feeds["a"]["items"] == [{"id": "x"}]
        assert feeds["b"]["items"] == [{"id": "kept"}]
        assert _read(store.items_path("b")) == [{"id": "kept"}]


# ── writes ────────────────────────────────────────────────────

class TestWrites:
    def test_metadata_has_no_items(self, store):
        store.write_all({"feeds": [_feed("f1", [{"id": "a"}])], "folders": []})
        meta = _read(store.metadata_path)
        assert "items" not in meta["feeds"][0]
        assert meta["schemaVersion"] == SCHEMA_VERSION

    def test_extra_top_level_keys_kept(self, store):
        store.write_metadata_only({"feeds": [], "folders": [], "settings": {"theme": "dark"}})
        assert _read(store.metadata_path)["settings"] == {"theme": "dark"}

    def test_feed_without_id_skipped(self, store):
        assert store.write_all({"feeds": [{"id": None, "url": "u", "items": [{"id": "a"}]}], "folders": []})
        assert os.listdir(store.storage_dir) == []

    def test_metadata_failure_reported(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        store = FeedStore(StoreConfig(data_dir=str(blocker)))
        assert store.write_all({"feeds": [_feed("f1", [])], "folders": []}) is False
        assert store.write_metadata_only({"feeds": [], "folders": []}) is False

    def test_write_metadata_only_leaves_items(self, store):
        store.write_all({"feeds": [_feed("f1", [{"id": "a"}])], "folders": []})
        store.write_metadata_only({"feeds": [_feed("f1", [], title="Renamed")], "folders": []})
        assert _read(store.items_path("f1")) == [{"id": "a"}]
        assert _read(store.metadata_path)["feeds"][0]["title"] == "Renamed"

    def test_write_feed_items_retention(self, store):
        items = [
            {"id": "old", "isoDate": days_ago(40)},
            {"id": "recent", "isoDate": days_ago(10)},
            {"id": "undated"},
        ]
        assert store.write_feed_items("f1", items)
        assert [it["id"] for it in _read(store.items_path("f1"))] == ["recent", "undated"]

    def test_pubdate_used_for_retention(self, store):
        old = (utc_now() - timedelta(days=60)).strftime("%a, %d %b %Y %H:%M:%S GMT")
        store.write_feed_items("f1", [{"id": "a", "pubDate": old}])
        assert _read(store.items_path("f1")) == []

    def test_unparseable_date_dropped_on_write(self, store):
        store.write_feed_items("f1", [{"id": "a", "isoDate": "not a date"}])
        assert _read(store.items_path("f1")) == []

    def test_unsafe_feed_id_rejected(self, store):
        assert store.write_feed_items("../escape", [{"id": "a"}]) is False
        assert store.write_feed_items("", [{"id": "a"}]) is False

    def test_unsafe_feed_id_is_path_error(self, store):
        with pytest.raises(StorageError) as exc:
            store.items_path("..")
        assert type(exc.value) is StorageError
        assert store.read_feed_items("../escape") == []
        assert store.delete_feed_storage("a/b") is False

    def test_no_tmp_left(self, store):
        store.write_feed_items("f1", [{"id": "a"}])
        assert not os.path.exists(store.items_path("f1") + ".tmp")
        assert not os.path.exists(store.metadata_path + ".tmp")

    def test_unserializable_items_fail_cleanly(self, store):
        assert store.write_feed_items("f1", [{"id": "a", "blob": object()}]) is False
        assert not os.path.exists(store.items_path("f1") + ".tmp")


# ── delete / read one feed ────────────────────────────────────

class TestFeedFiles:
    def test_delete_existing(self, store):
        store.write_feed_items("f1", [{"id": "a"}])
        assert store.delete_feed_storage("f1")
        assert not os.path.exists(store.items_path("f1"))

    def test_delete_absent_is_noop(self, store):
        store.initialize()
        assert store.delete_feed_storage("missing")

    def test_read_feed_items(self, store):
        store.write_feed_items("f1", [{"id": "a"}])
        assert store.read_feed_items("f1") == [{"id": "a"}]
        assert store.read_feed_items("missing") == []


# ── prune_all ─────────────────────────────────────────────────

class TestPruneAll:
    def test_removes_old_and_undated(self, store):
        _write(store.items_path("f1"), [
            {"id": "old", "isoDate": days_ago(40)},
            {"id": "recent", "isoDate": days_ago(10)},
            {"id": "undated"},
        ])
        result = store.prune_all(30)
        assert result.success
        assert result.removed_count == 2
        assert [it["id"] for it in _read(store.items_path("f1"))] == ["recent"]

    def test_invalid_date_removed(self, store):
        _write(store.items_path("f1"), [{"id": "a", "isoDate": "garbage", "pubDate": days_ago(1)}])
        assert store.prune_all(30).removed_count == 1

    def test_counts_across_files(self, store):
        _write(store.items_path("f1"), [{"id": "a", "isoDate": days_ago(50)}])
        _write(store.items_path("f2"), [{"id": "b", "isoDate": days_ago(50)}, {"id": "c", "isoDate": days_ago(1)}])
        assert store.prune_all(30).removed_count == 2

    def test_unchanged_file_not_rewritten(self, store):
        path = store.items_path("f1")
        os.makedirs(store.storage_dir, exist_ok=True)
        raw = json.dumps([{"id": "a", "isoDate": days_ago(1)}])
        with open(path, "w") as f:
            f.write(raw)
        store.prune_all(30)
        with open(path) as f:
            assert f.read() == raw

    def test_corrupt_file_isolated(self, store):
        _write(store.items_path("good"), [{"id": "a", "isoDate": days_ago(90)}])
        os.makedirs(store.storage_dir, exist_ok=True)
        with open(store.items_path("bad"), "w") as f:
            f.write("{oops")
        result = store.prune_all(30)
        assert result.success
        assert result.removed_count == 1
        assert result.failed_files == ["bad.json"]

    def test_ignores_non_json_and_non_arrays(self, store):
        os.makedirs(store.storage_dir, exist_ok=True)
        with open(os.path.join(store.storage_dir, "notes.txt"), "w") as f:
            f.write("hello")
        _write(store.items_path("obj"), {"not": "a list"})
        result = store.prune_all(30)
        assert result.removed_count == 0
        assert result.failed_files == []

    def test_custom_window(self, store):
        _write(store.items_path("f1"), [{"id": "a", "isoDate": days_ago(10)}])
        assert store.prune_all(7).removed_count == 1


def test_empty_aggregate_shape():
    agg = empty_aggregate()
    assert agg["feeds"] == [] and agg["folders"] == []
    assert agg["lastUpdated"].endswith("Z")
