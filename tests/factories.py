from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from mediafeed.models import RawRecord
from mediafeed.sources.base import ConnectReport, HistoricalFilter, LiveFilter


def imeta(url: str, mime: str = "image/jpeg", *extra: str) -> tuple[str, ...]:
    return ("imeta", f"url {url}", f"m {mime}", *extra)


def media_record(
    record_id: str,
    created_at: int,
    *,
    kind: int = 20,
    pubkey: str = "npub-author",
    tags: tuple[tuple[str, ...], ...] | None = None,
) -> RawRecord:
    return RawRecord(
        id=record_id,
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        content=f"content of {record_id}",
        tags=tags if tags is not None else (imeta(f"https://cdn.example/{record_id}.jpg"),),
    )


@dataclass
class FakeSourcePool:
    """
    纯内存 SourcePool：
    - history 不为 None 时按 until/limit 模拟 relay 的窗口查询
    - 否则 query_historical 依次返回 pages 中的预设结果（Exception 实例会被抛出），耗尽后返回空列表
    - subscribe_live 记录回调，测试里通过 push 直接投递记录
    """

    pages: list = field(default_factory=list)
    history: list[RawRecord] | None = None
    queries: list[HistoricalFilter] = field(default_factory=list)
    on_record: Callable | None = None
    on_closed: Callable | None = None
    disposed: int = 0
    closed: bool = False
    connect_error: Exception | None = None

    def connect_all(self, relays=None) -> ConnectReport:  # noqa: ANN001
        if self.connect_error is not None:
            raise self.connect_error
        return ConnectReport(succeeded=frozenset({"wss://a"}), failed={"wss://b": "OSError: refused"})

    def query_historical(self, flt: HistoricalFilter) -> list[RawRecord]:
        self.queries.append(flt)
        if self.history is not None:
            rows = [r for r in self.history if flt.until is None or r.created_at <= flt.until]
            rows.sort(key=lambda r: r.created_at, reverse=True)
            return rows[: flt.limit]
        if not self.pages:
            return []
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return list(page)

    def subscribe_live(self, flt: LiveFilter, on_record, on_closed):  # noqa: ANN001
        self.on_record = on_record
        self.on_closed = on_closed

        def dispose() -> None:
            self.disposed += 1

        return dispose

    def push(self, record: RawRecord) -> None:
        assert self.on_record is not None
        self.on_record(record)

    def close(self) -> None:
        self.closed = True
