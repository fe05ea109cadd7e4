from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Sequence

from ..errors import AllSourcesFailedError, RelayError, SourceQueryError
from ..models import RawRecord
from .base import ClosedHandler, ConnectReport, Disposer, HistoricalFilter, LiveFilter, RecordHandler
from .relay import RelayConnection

logger = logging.getLogger(__name__)

RelayFactory = Callable[[str], RelayConnection]


class RelaySourcePool:
    """
    一组 relay 连接，由 feed 会话持有并显式关闭（不存在进程级共享状态）。

    - connect_all：并发连接，部分失败只记录，全部失败才抛 AllSourcesFailedError
    - query_historical：并发查询所有已连接 relay，结果按 id 去重、按时间倒序、截断到 limit
    - subscribe_live：在每个已连接 relay 上建立订阅，返回统一的 disposer
    """

    def __init__(
        self,
        relays: Sequence[str],
        *,
        connect_timeout_seconds: float = 10.0,
        query_timeout_seconds: float = 8.0,
        relay_factory: RelayFactory | None = None,
    ) -> None:
        self._relays = tuple(relays)
        self._connect_timeout_seconds = connect_timeout_seconds
        self._query_timeout_seconds = query_timeout_seconds
        self._relay_factory = relay_factory or self._default_relay_factory
        self._lock = threading.Lock()
        self._connections: dict[str, RelayConnection] = {}

    @property
    def relays(self) -> tuple[str, ...]:
        return self._relays

    def connected_relays(self) -> tuple[str, ...]:
        return tuple(self._active_connections())

    def _default_relay_factory(self, url: str) -> RelayConnection:
        return RelayConnection(url, connect_timeout=self._connect_timeout_seconds)

    def _active_connections(self) -> dict[str, RelayConnection]:
        with self._lock:
            return {url: conn for url, conn in self._connections.items() if conn.connected}

    def _connect_one(self, url: str) -> RelayConnection:
        with self._lock:
            existing = self._connections.get(url)
        if existing is not None and existing.connected:
            return existing
        conn = self._relay_factory(url)
        conn.connect()
        return conn

    def connect_all(self, relays: Sequence[str] | None = None) -> ConnectReport:
        targets = tuple(relays) if relays is not None else self._relays
        if not targets:
            raise AllSourcesFailedError({})

        succeeded: set[str] = set()
        failed: dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="relay-connect") as executor:
            futures = {executor.submit(self._connect_one, url): url for url in targets}
            for future in as_completed(futures):
                url = futures[future]
                try:
                    conn = future.result()
                except Exception as e:  # noqa: BLE001
                    failed[url] = f"{type(e).__name__}: {e}"
                    logger.warning("relay connect failed: relay=%s error=%s", url, failed[url])
                    continue
                with self._lock:
                    self._connections[url] = conn
                succeeded.add(url)
                logger.info("relay connected: relay=%s", url)

        if not succeeded:
            raise AllSourcesFailedError(failed)
        if failed:
            logger.warning("connected to %d of %d relays", len(succeeded), len(targets))
        return ConnectReport(succeeded=frozenset(succeeded), failed=failed)

    def query_historical(self, flt: HistoricalFilter) -> list[RawRecord]:
        connections = self._active_connections()
        if not connections:
            raise SourceQueryError("no connected relays")

        per_relay: dict[str, list[RawRecord]] = {}
        errors: dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=len(connections), thread_name_prefix="relay-query") as executor:
            futures = {
                executor.submit(conn.query, flt, self._query_timeout_seconds): url
                for url, conn in connections.items()
            }
            for future in as_completed(futures):
                url = futures[future]
                try:
                    per_relay[url] = future.result()
                except Exception as e:  # noqa: BLE001
                    errors[url] = f"{type(e).__name__}: {e}"
                    logger.warning("relay query failed: relay=%s error=%s", url, errors[url])

        if not per_relay:
            raise SourceQueryError(f"historical query failed on all {len(errors)} relays")
        if errors:
            logger.warning("historical query partially failed: ok=%d failed=%d", len(per_relay), len(errors))

        # 按连接顺序合并，保证同 id 的取舍稳定
        unique: dict[str, RawRecord] = {}
        for url in connections:
            for record in per_relay.get(url, ()):
                unique.setdefault(record.id, record)
        records = sorted(unique.values(), key=lambda r: r.created_at, reverse=True)
        return records[: flt.limit]

    def subscribe_live(self, flt: LiveFilter, on_record: RecordHandler, on_closed: ClosedHandler) -> Disposer:
        connections = self._active_connections()
        subscriptions: list[tuple[RelayConnection, str]] = []
        for url, conn in connections.items():
            try:
                subscriptions.append((conn, conn.subscribe(flt, on_record, on_closed)))
            except RelayError as e:
                logger.warning("live subscribe failed: relay=%s error=%s", url, e)

        if not subscriptions:
            raise SourceQueryError("live subscription failed on every relay")

        disposed = threading.Event()

        def dispose() -> None:
            if disposed.is_set():
                return
            disposed.set()
            for conn, sub_id in subscriptions:
                conn.unsubscribe(sub_id)

        return dispose

    def close(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for conn in connections:
            conn.close()
