from __future__ import annotations

import bisect
import logging
import threading
from typing import Iterable

from ..models import FeedEvent


logger = logging.getLogger(__name__)

DEFAULT_MAX_LIVE_EVENTS = 100


class DeduplicatingMerger:
    """
    feed 的唯一事实来源（FeedState）：seen 集合 + 按 created_at 降序的事件序列。

    两条写入路径：
    - merge_live：实时订阅逐条写入，二分定位插入点；超出 max(上限, 写入前长度) 时淘汰最旧的事件，
      因此纯实时序列不超过上限，而翻页加载的历史不会被实时写入截掉
    - merge_historical_batch：分页批量写入，追加后整体稳定重排，不做截断

    被淘汰事件的 id 仍保留在 seen 集合中，防止旧事件被“复活”。
    所有读写都在同一把锁内完成（常驻事件规模在百级，单锁足够）。
    """

    def __init__(self, max_live_events: int = DEFAULT_MAX_LIVE_EVENTS) -> None:
        if max_live_events < 1:
            raise ValueError(f"max_live_events must be positive, got {max_live_events}")
        self._max_live_events = max_live_events
        self._lock = threading.Lock()
        self._seen: set[str] = set()
        self._events: list[FeedEvent] = []
        # -created_at，升序；与 _events 一一对应，用于 bisect
        self._keys: list[int] = []

    @property
    def max_live_events(self) -> int:
        return self._max_live_events

    def merge_live(self, event: FeedEvent) -> bool:
        """幂等写入单个实时事件；返回 False 表示该 id 已见过（无操作）。"""
        with self._lock:
            if event.id in self._seen:
                return False
            self._seen.add(event.id)

            # 实时路径只回收自己带来的增长：翻页已扩展的历史保持不动
            cap = max(self._max_live_events, len(self._events))

            # bisect_right：时间戳相同的事件排在已有事件之后（先合并者占位）
            key = -event.created_at
            pos = bisect.bisect_right(self._keys, key)
            self._keys.insert(pos, key)
            self._events.insert(pos, event)

            overflow = len(self._events) - cap
            if overflow > 0:
                del self._events[-overflow:]
                del self._keys[-overflow:]
                logger.debug("live merge evicted oldest events: count=%d", overflow)
            return True

    def merge_historical_batch(self, events: Iterable[FeedEvent]) -> list[FeedEvent]:
        with self._lock:
            fresh: list[FeedEvent] = []
            for event in events:
                if event.id in self._seen:
                    continue
                self._seen.add(event.id)
                fresh.append(event)
            if not fresh:
                return []

            self._events.extend(fresh)
            # sorted 是稳定排序：同一时间戳保持合并先后顺序
            self._events = sorted(self._events, key=lambda e: -e.created_at)
            self._keys = [-e.created_at for e in self._events]
            return fresh

    def snapshot(self) -> tuple[FeedEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def has_seen(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._seen

    def filter_unseen(self, events: Iterable[FeedEvent]) -> list[FeedEvent]:
        """返回未见过的事件（同批次内重复的 id 只保留第一个），不修改状态。"""
        with self._lock:
            batch_ids: set[str] = set()
            result: list[FeedEvent] = []
            for event in events:
                if event.id in self._seen or event.id in batch_ids:
                    continue
                batch_ids.add(event.id)
                result.append(event)
            return result

    def oldest_created_at(self) -> int | None:
        with self._lock:
            if not self._events:
                return None
            return self._events[-1].created_at

    @property
    def seen_count(self) -> int:
        with self._lock:
            return len(self._seen)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
