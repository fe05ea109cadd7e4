from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from .ingest.classifier import classify_records
from .models import MEDIA_KINDS, RawRecord
from .retry import BackoffPolicy
from .sources.base import HistoricalFilter, SourcePool
from .state.merger import DeduplicatingMerger

logger = logging.getLogger(__name__)

ONE_DAY_SECONDS = 24 * 60 * 60


class PaginationState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    DUPLICATE_RETRY = "duplicate-retry"
    BACKOFF_RETRY = "backoff-retry"
    EXHAUSTED = "exhausted"


class PageStatus(str, Enum):
    MERGED = "merged"
    EXHAUSTED = "exhausted"
    DUPLICATES_EXHAUSTED = "duplicates-exhausted"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class PageResult:
    status: PageStatus
    appended_count: int = 0
    exhausted: bool = False
    error: str | None = None
    cursor: int | None = None
    queries: int = 0
    reason: str | None = None

    @property
    def duplicate_budget_exhausted(self) -> bool:
        return self.status is PageStatus.DUPLICATES_EXHAUSTED


class PaginationController:
    """
    向过去翻页的控制器：用一个只会后退的时间游标驱动有界历史查询。

    一次 load_older_page 的流程：
    - 前置条件：未耗尽、没有正在进行的加载、feed 非空（游标可初始化）
    - 查询 until=cursor 的一页；返回 0 条 -> 标记 exhausted（终态）
    - 归一 + 去掉 merger 已见过的 id；有新事件 -> 合并，游标移到新事件的最小时间戳
    - 全是重复 -> 游标后退一个步长（默认一天）并重试，连续 max_duplicate_pages 页后
      返回 DUPLICATES_EXHAUSTED（可恢复，不设置 exhausted，下次调用从新游标继续）
    - 查询本身失败 -> 同一游标指数退避重试，耗尽后返回 FAILED，游标不变
    """

    def __init__(
        self,
        pool: SourcePool,
        merger: DeduplicatingMerger,
        *,
        kinds: tuple[int, ...] = MEDIA_KINDS,
        duplicate_step_seconds: int = ONE_DAY_SECONDS,
        max_duplicate_pages: int = 3,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        self._pool = pool
        self._merger = merger
        self._kinds = kinds
        self._duplicate_step_seconds = duplicate_step_seconds
        self._max_duplicate_pages = max_duplicate_pages
        self._backoff = backoff or BackoffPolicy()
        self._loading = threading.Lock()
        self._cursor: int | None = None
        self._exhausted = False
        self._duplicate_pages = 0
        self._state = PaginationState.IDLE
        self._closed = False

    @property
    def cursor(self) -> int | None:
        return self._cursor

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def state(self) -> PaginationState:
        return self._state

    @property
    def duplicate_pages(self) -> int:
        return self._duplicate_pages

    @property
    def is_loading(self) -> bool:
        return self._loading.locked()

    def close(self) -> None:
        self._closed = True

    def _skipped(self, reason: str) -> PageResult:
        return PageResult(status=PageStatus.SKIPPED, exhausted=self._exhausted, cursor=self._cursor, reason=reason)

    def load_older_page(self, page_size: int) -> PageResult:
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        if self._closed:
            return self._skipped("closed")
        if self._exhausted:
            return self._skipped("exhausted")
        if not self._loading.acquire(blocking=False):
            return self._skipped("already loading")
        try:
            if self._cursor is None:
                oldest = self._merger.oldest_created_at()
                if oldest is None:
                    return self._skipped("feed is empty")
                self._cursor = oldest
            return self._load(page_size)
        finally:
            if not self._exhausted:
                self._state = PaginationState.IDLE
            self._loading.release()

    def _load(self, page_size: int) -> PageResult:
        queries = 0
        while True:
            cursor = self._cursor
            assert cursor is not None
            flt = HistoricalFilter(kinds=self._kinds, until=cursor, limit=page_size)

            def query() -> list[RawRecord]:
                nonlocal queries
                queries += 1
                self._state = PaginationState.LOADING
                try:
                    return self._pool.query_historical(flt)
                except Exception:
                    self._state = PaginationState.BACKOFF_RETRY
                    raise

            try:
                records = self._backoff.run(query, what=f"historical query until={cursor}")
            except Exception as e:  # noqa: BLE001
                logger.error(
                    "historical page failed: cursor=%d attempts=%d error=%s: %s",
                    cursor,
                    self._backoff.max_attempts,
                    type(e).__name__,
                    e,
                )
                return PageResult(
                    status=PageStatus.FAILED,
                    error=f"{type(e).__name__}: {e}",
                    cursor=cursor,
                    queries=queries,
                )

            if not records:
                self._exhausted = True
                self._state = PaginationState.EXHAUSTED
                logger.info("history exhausted: cursor=%d", cursor)
                return PageResult(status=PageStatus.EXHAUSTED, exhausted=True, cursor=cursor, queries=queries)

            fresh = self._merger.filter_unseen(classify_records(records))
            # live 路径可能在 filter 与 merge 之间写入同一事件，以实际合并结果为准
            merged = self._merger.merge_historical_batch(fresh) if fresh else []
            if merged:
                self._cursor = min(cursor, min(e.created_at for e in merged))
                self._duplicate_pages = 0
                logger.debug(
                    "historical page merged: appended=%d cursor=%d queries=%d",
                    len(merged),
                    self._cursor,
                    queries,
                )
                return PageResult(
                    status=PageStatus.MERGED,
                    appended_count=len(merged),
                    cursor=self._cursor,
                    queries=queries,
                )

            self._duplicate_pages += 1
            self._cursor = cursor - self._duplicate_step_seconds
            self._state = PaginationState.DUPLICATE_RETRY
            logger.info(
                "page had no new events, stepping cursor back: records=%d cursor=%d duplicate_pages=%d/%d",
                len(records),
                self._cursor,
                self._duplicate_pages,
                self._max_duplicate_pages,
            )
            if self._duplicate_pages >= self._max_duplicate_pages:
                self._duplicate_pages = 0
                logger.warning("no distinguishable history left: cursor=%d", self._cursor)
                return PageResult(status=PageStatus.DUPLICATES_EXHAUSTED, cursor=self._cursor, queries=queries)
            if self._closed:
                return self._skipped("closed")
