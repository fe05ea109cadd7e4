from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime

from .config import AppConfig, PaginationConfig
from .ingest.classifier import classify_record, classify_records
from .models import FeedEvent, RawRecord, utc_now
from .pagination import PageResult, PaginationController
from .retry import BackoffPolicy
from .sources.base import HistoricalFilter, LiveFilter, SourcePool
from .sources.pool import RelaySourcePool
from .state.merger import DeduplicatingMerger
from .state.profiles import ProfileCache, ProfileMetadata
from .timing import OperationTimer


logger = logging.getLogger(__name__)

# 启动时多取 50%，抵消跨 relay 重复与无媒体记录
INITIAL_OVERFETCH_RATIO = 1.5


@dataclass(slots=True)
class StartReport:
    started_at: datetime
    duration_ms: int
    relays_connected: tuple[str, ...]
    relays_failed: dict[str, str]
    records_fetched: int
    events_merged: int
    live_subscribed: bool
    error: str | None


@dataclass(slots=True)
class SessionStats:
    live_received: int = 0
    live_ignored: int = 0
    live_merged: int = 0
    live_duplicates: int = 0
    live_closed: dict[str, str] = field(default_factory=dict)
    pages_requested: int = 0
    events_paged: int = 0
    feed_size: int = 0
    seen_count: int = 0
    exhausted: bool = False


class FeedSession:
    """
    一个 feed 会话：持有 SourcePool、merger、翻页控制器与资料缓存。

    数据流：
    SourcePool -> classify -> merger（实时逐条 / 翻页批量）-> snapshot()

    生命周期：start() 连接并做首屏加载、打开实时订阅；close() 停止订阅、
    禁止再发起查询并关闭连接池。close 之后至多有一个进行中的查询完成合并。
    """

    def __init__(
        self,
        pool: SourcePool,
        *,
        max_live_events: int = 100,
        initial_limit: int = 50,
        page_size: int = 20,
        pagination: PaginationConfig | None = None,
        backoff: BackoffPolicy | None = None,
        timer: OperationTimer | None = None,
    ) -> None:
        pg = pagination or PaginationConfig()
        self._pool = pool
        self._initial_limit = initial_limit
        self._page_size = page_size
        self._merger = DeduplicatingMerger(max_live_events=max_live_events)
        self._paginator = PaginationController(
            pool,
            self._merger,
            duplicate_step_seconds=pg.duplicate_step_seconds,
            max_duplicate_pages=pg.max_duplicate_pages,
            backoff=backoff
            or BackoffPolicy(max_attempts=pg.max_query_attempts, base_delay_seconds=pg.backoff_base_seconds),
        )
        self._profiles = ProfileCache(pool)
        self._timer = timer or OperationTimer()
        self._stats_lock = threading.Lock()
        self._stats = SessionStats()
        self._dispose_live = None
        self._closed = False

    @property
    def merger(self) -> DeduplicatingMerger:
        return self._merger

    @property
    def paginator(self) -> PaginationController:
        return self._paginator

    @property
    def timer(self) -> OperationTimer:
        return self._timer

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> StartReport:
        """
        连接所有 relay（全部失败时抛 AllSourcesFailedError），加载首屏，打开实时订阅。

        首屏加载或订阅失败不会中断启动，错误写入 report.error。
        """
        started_at = utc_now()
        start_t = time.monotonic()

        connect = self._pool.connect_all()

        error: str | None = None
        records_fetched = 0
        events_merged = 0
        try:
            with self._timer.measure("initial_load"):
                fetch_limit = math.ceil(self._initial_limit * INITIAL_OVERFETCH_RATIO)
                records = self._pool.query_historical(HistoricalFilter(limit=fetch_limit))
                records_fetched = len(records)
                events = self._merger.filter_unseen(classify_records(records))
                events.sort(key=lambda e: e.created_at, reverse=True)
                events_merged = len(self._merger.merge_historical_batch(events[: self._initial_limit]))
        except Exception as e:  # noqa: BLE001
            error = f"{type(e).__name__}: {e}"
            logger.exception("initial load failed: relays=%d", len(connect.succeeded))

        live_subscribed = False
        try:
            self._dispose_live = self._pool.subscribe_live(
                LiveFilter(limit=self._merger.max_live_events),
                self._on_live_record,
                self._on_live_closed,
            )
            live_subscribed = True
        except Exception as e:  # noqa: BLE001
            error = error or f"{type(e).__name__}: {e}"
            logger.exception("live subscription failed")

        report = StartReport(
            started_at=started_at,
            duration_ms=int((time.monotonic() - start_t) * 1000),
            relays_connected=tuple(sorted(connect.succeeded)),
            relays_failed=dict(connect.failed),
            records_fetched=records_fetched,
            events_merged=events_merged,
            live_subscribed=live_subscribed,
            error=error,
        )
        logger.info(
            "session started: relays_ok=%d relays_failed=%d fetched=%d merged=%d live=%s duration_ms=%d",
            len(report.relays_connected),
            len(report.relays_failed),
            report.records_fetched,
            report.events_merged,
            report.live_subscribed,
            report.duration_ms,
        )
        return report

    def snapshot(self) -> tuple[FeedEvent, ...]:
        return self._merger.snapshot()

    def load_older_page(self, page_size: int | None = None) -> PageResult:
        with self._timer.measure("load_older_page"):
            result = self._paginator.load_older_page(page_size or self._page_size)
        with self._stats_lock:
            self._stats.pages_requested += 1
            self._stats.events_paged += result.appended_count
        return result

    def profile(self, pubkey: str) -> ProfileMetadata | None:
        if self._closed:
            return self._profiles.cached(pubkey)
        return self._profiles.get(pubkey)

    def stats(self) -> SessionStats:
        with self._stats_lock:
            s = self._stats
            return SessionStats(
                live_received=s.live_received,
                live_ignored=s.live_ignored,
                live_merged=s.live_merged,
                live_duplicates=s.live_duplicates,
                live_closed=dict(s.live_closed),
                pages_requested=s.pages_requested,
                events_paged=s.events_paged,
                feed_size=len(self._merger),
                seen_count=self._merger.seen_count,
                exhausted=self._paginator.exhausted,
            )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._paginator.close()
        dispose, self._dispose_live = self._dispose_live, None
        if dispose is not None:
            try:
                dispose()
            except Exception:  # noqa: BLE001
                logger.exception("live subscription dispose failed")
        self._pool.close()
        logger.info("session closed: feed_size=%d", len(self._merger))

    def __enter__(self) -> FeedSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _on_live_record(self, record: RawRecord) -> None:
        if self._closed:
            return
        event = classify_record(record)
        if event is None:
            with self._stats_lock:
                self._stats.live_received += 1
                self._stats.live_ignored += 1
            return
        merged = self._merger.merge_live(event)
        with self._stats_lock:
            self._stats.live_received += 1
            if merged:
                self._stats.live_merged += 1
            else:
                self._stats.live_duplicates += 1

    def _on_live_closed(self, relay: str, reason: str) -> None:
        logger.warning("live subscription closed: relay=%s reason=%s", relay, reason)
        with self._stats_lock:
            self._stats.live_closed[relay] = reason


def build_session(config: AppConfig) -> FeedSession:
    """
    根据配置装配 FeedSession；每个会话都有自己新建的 RelaySourcePool。
    """
    pool = RelaySourcePool(
        config.relays,
        connect_timeout_seconds=config.connect_timeout_seconds,
        query_timeout_seconds=config.query_timeout_seconds,
    )
    return FeedSession(
        pool,
        max_live_events=config.max_live_events,
        initial_limit=config.initial_limit,
        page_size=config.page_size,
        pagination=config.pagination,
    )
