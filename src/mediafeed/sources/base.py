from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence

from ..models import MEDIA_KINDS, RawRecord

RecordHandler = Callable[[RawRecord], None]
ClosedHandler = Callable[[str, str], None]
Disposer = Callable[[], None]


@dataclass(frozen=True, slots=True)
class HistoricalFilter:
    """
    有界查询条件。until 为包含式上界（与 relay 的语义一致）。
    """

    kinds: tuple[int, ...] = MEDIA_KINDS
    limit: int = 50
    until: int | None = None
    authors: tuple[str, ...] = ()

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {"kinds": list(self.kinds), "limit": self.limit}
        if self.until is not None:
            wire["until"] = self.until
        if self.authors:
            wire["authors"] = list(self.authors)
        return wire


@dataclass(frozen=True, slots=True)
class LiveFilter:
    kinds: tuple[int, ...] = MEDIA_KINDS
    limit: int = 100

    def to_wire(self) -> dict[str, Any]:
        return {"kinds": list(self.kinds), "limit": self.limit}


@dataclass(frozen=True, slots=True)
class ConnectReport:
    succeeded: frozenset[str]
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return not self.succeeded


class SourcePool(Protocol):
    """
    数据源池接口：连接（容忍部分失败）、实时订阅、有界历史查询。

    约定：
    - connect_all 只有在全部失败时才抛 AllSourcesFailedError
    - query_historical 返回少于 limit（或 0）条即表示该条件下数据已到底
    - subscribe_live 异步回调，返回 disposer 用于关闭订阅
    """

    def connect_all(self, relays: Sequence[str] | None = None) -> ConnectReport: ...

    def query_historical(self, flt: HistoricalFilter) -> list[RawRecord]: ...

    def subscribe_live(self, flt: LiveFilter, on_record: RecordHandler, on_closed: ClosedHandler) -> Disposer: ...

    def close(self) -> None: ...
