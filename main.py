import sys
import argparse
import logging

from feedshelf import config
from feedshelf.monitoring import FeedHealth
from feedshelf.refresh import FeedRefresher
from feedshelf.storage import FeedStore
from feedshelf.subscriptions import subscribe, unsubscribe
from feedshelf.models import VIEW_TYPES, DEFAULT_VIEW_TYPE


log = logging.getLogger("feedshelf")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="feedshelf", description="File-backed feed reader storage.")
    p.add_argument("--data-dir", default="", help="override FEEDSHELF_DATA_DIR")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create the data layout and migrate legacy files")

    s = sub.add_parser("subscribe", help="add a feed")
    s.add_argument("url")
    s.add_argument("--title", default="")
    s.add_argument("--folder", default=None)
    s.add_argument("--view-type", choices=VIEW_TYPES, default=DEFAULT_VIEW_TYPE)

    u = sub.add_parser("unsubscribe", help="remove a feed and its items")
    u.add_argument("feed_id")

    sub.add_parser("refresh", help="fetch every feed and store new items")

    pr = sub.add_parser("prune", help="drop items older than N days and undated items")
    pr.add_argument("--days", type=int, default=config.PRUNE_DAYS)

    sub.add_parser("list", help="print feeds with item counts")
    return p


def run(argv=None) -> int:
    args = build_parser().parse_args(argv)
    store = FeedStore(config.load_store_config(args.data_dir))

    if args.command == "init":
        store.initialize()
        return 0

    if args.command == "subscribe":
        feed = subscribe(store, args.url, args.title, args.folder, args.view_type)
        if feed is None:
            return 1
        print(feed["id"])
        return 0

    if args.command == "unsubscribe":
        return 0 if unsubscribe(store, args.feed_id) else 1

    if args.command == "refresh":
        health = FeedHealth(config.FAILURE_ALERT_THRESHOLD, config.FETCH_COOLDOWN_MAX_MINUTES)
        results = FeedRefresher(store, health).refresh_all()
        failed = [r for r in results if not r.ok and not r.skipped]
        for r in failed:
            log.warning("Feed %s failed: %s", r.feed_id, health.last_error(r.feed_id) or r.error)
        failing = health.snapshot()
        if failing:
            log.warning("Consecutive failures per feed: %s", failing)
        log.info(
            "Refresh done: %d feed(s), %d new item(s), %d failure(s).",
            len(results), sum(r.new_items for r in results), len(failed),
        )
        return 1 if failed else 0

    if args.command == "prune":
        result = store.prune_all(args.days)
        print(result.removed_count)
        return 0 if result.success and not result.failed_files else 1

    if args.command == "list":
        aggregate = store.read_all()
        for feed in aggregate["feeds"]:
            items = feed.get("items", [])
            unread = sum(1 for it in items if not it.get("read"))
            print(f"{feed.get('id')}\t{feed.get('title') or feed.get('url')}\t{len(items)} items ({unread} unread)")
        return 0

    return 2


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    try:
        config.validate_env()
    except EnvironmentError as e:
        log.error("%s", e)
        sys.exit(2)
    sys.exit(run())


if __name__ == "__main__":
    main()
