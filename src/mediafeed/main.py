from __future__ import annotations

import argparse
import json
import logging
import os
import time

from .config import load_config
from .errors import AllSourcesFailedError
from .formatter import format_event_text, format_relative_time
from .models import utc_now
from .pagination import PageStatus
from .rules.filters import FeedFilter
from .session import FeedSession, build_session


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mediafeed", description="Nostr media feed (pictures and short videos)")
    p.add_argument("--config", default=None, help="Path to JSON config file (optional)")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env MEDIAFEED_LOG_LEVEL or INFO",
    )
    p.add_argument("--pages", type=int, default=0, help="Older pages to load after the initial feed")
    p.add_argument("--page-size", type=int, default=None, help="Events requested per older page")
    p.add_argument("--json", action="store_true", help="Print events as JSON lines")
    p.add_argument("--author", action="append", default=[], help="Only print events by this pubkey (repeatable)")
    p.add_argument("--hashtag", default=None, help="Only print events carrying this hashtag")
    p.add_argument(
        "--status-interval",
        type=int,
        default=30,
        help="Heartbeat interval seconds in --follow mode. Set 0 to disable.",
    )

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Load the feed, print it and exit")
    mode.add_argument("--follow", action="store_true", help="Keep the live subscription open until interrupted")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _print_events(session: FeedSession, *, as_json: bool, feed_filter: FeedFilter) -> None:
    for event in feed_filter.apply(session.snapshot()):
        if as_json:
            print(json.dumps(event.to_json_dict(), ensure_ascii=False))
        else:
            print(format_event_text(event, profile=session.profile(event.pubkey)))
            print()


def _load_pages(session: FeedSession, pages: int, page_size: int | None, logger: logging.Logger) -> None:
    for i in range(max(0, pages)):
        result = session.load_older_page(page_size)
        logger.info(
            "page %d: status=%s appended=%d cursor=%s queries=%d",
            i + 1,
            result.status.value,
            result.appended_count,
            result.cursor,
            result.queries,
        )
        if result.status in (PageStatus.EXHAUSTED, PageStatus.FAILED, PageStatus.SKIPPED):
            if result.error:
                logger.warning("pagination stopped: error=%s", result.error)
            break


def _follow(session: FeedSession, status_interval: int, logger: logging.Logger) -> None:
    last_ids: set[str] = {e.id for e in session.snapshot()}
    next_heartbeat_at = time.monotonic() + status_interval if status_interval > 0 else float("inf")
    while True:
        time.sleep(1.0)
        snapshot = session.snapshot()
        now = utc_now()
        for event in snapshot:
            if event.id in last_ids:
                continue
            logger.info(
                "new %s: id=%s author=%s age=%s media=%s",
                event.kind_name,
                event.id,
                event.pubkey[:12],
                format_relative_time(event.created_at, now=now),
                event.media[0].url,
            )
        last_ids = {e.id for e in snapshot}

        if time.monotonic() >= next_heartbeat_at:
            stats = session.stats()
            logger.info(
                "session alive: feed_size=%d seen=%d live_received=%d live_merged=%d live_duplicates=%d closed_relays=%d",
                stats.feed_size,
                stats.seen_count,
                stats.live_received,
                stats.live_merged,
                stats.live_duplicates,
                len(stats.live_closed),
            )
            next_heartbeat_at = time.monotonic() + status_interval


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    log_level = _resolve_log_level(args.log_level or os.environ.get("MEDIAFEED_LOG_LEVEL"))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("mediafeed")

    config = load_config(args.config)
    mode = "follow" if args.follow else "once"
    logger.info("mediafeed start: mode=%s config=%s", mode, args.config or "<defaults>")
    logger.info(
        "config: relays=%s max_live_events=%d initial_limit=%d page_size=%d",
        ",".join(config.relays),
        config.max_live_events,
        config.initial_limit,
        config.page_size,
    )

    session = build_session(config)
    try:
        try:
            report = session.start()
        except AllSourcesFailedError as e:
            for relay, error in sorted(e.failed.items()):
                logger.error("relay unavailable: relay=%s error=%s", relay, error)
            logger.error("%s", e)
            return 2
        if report.error:
            logger.warning("session degraded: error=%s", report.error)

        _load_pages(session, args.pages, args.page_size, logger)

        if args.follow:
            try:
                _follow(session, max(0, args.status_interval), logger)
            except KeyboardInterrupt:
                logger.info("interrupted")
        else:
            feed_filter = FeedFilter(authors=tuple(args.author), hashtag=args.hashtag)
            _print_events(session, as_json=args.json, feed_filter=feed_filter)
    finally:
        session.close()
        for name, (avg_ms, count) in sorted(session.timer.summary().items()):
            logger.info("timing: name=%s avg_ms=%.2f count=%d", name, avg_ms, count)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
