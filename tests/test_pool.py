import logging
from dataclasses import dataclass, field

import pytest

from factories import media_record
from mediafeed.errors import AllSourcesFailedError, RelayError, SourceQueryError
from mediafeed.sources.base import HistoricalFilter, LiveFilter
from mediafeed.sources.pool import RelaySourcePool


@dataclass
class FakeRelay:
    """
    纯内存 RelayConnection：连接/查询行为由构造参数决定。
    """

    url: str
    fail_connect: bool = False
    records: list = field(default_factory=list)
    query_error: Exception | None = None
    connected: bool = False
    subscriptions: dict = field(default_factory=dict)
    closed: bool = False
    connect_calls: int = 0

    def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise RelayError(self.url, "connect failed: OSError: refused")
        self.connected = True

    def query(self, flt: HistoricalFilter, timeout: float) -> list:  # noqa: ARG002
        if self.query_error is not None:
            raise self.query_error
        return list(self.records)

    def subscribe(self, flt: LiveFilter, on_record, on_closed) -> str:  # noqa: ANN001, ARG002
        sub_id = f"live-{len(self.subscriptions) + 1}"
        self.subscriptions[sub_id] = (on_record, on_closed)
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        self.subscriptions.pop(sub_id, None)

    def close(self) -> None:
        self.closed = True
        self.connected = False


def _pool(relays: dict[str, FakeRelay]) -> RelaySourcePool:
    return RelaySourcePool(list(relays), relay_factory=lambda url: relays[url])


def test_connect_all_tolerates_partial_failure(caplog) -> None:  # noqa: ANN001
    relays = {
        "wss://a": FakeRelay("wss://a"),
        "wss://b": FakeRelay("wss://b", fail_connect=True),
        "wss://c": FakeRelay("wss://c"),
    }
    pool = _pool(relays)

    caplog.set_level(logging.WARNING)
    report = pool.connect_all()

    assert report.succeeded == frozenset({"wss://a", "wss://c"})
    assert set(report.failed) == {"wss://b"}
    assert "RelayError" in report.failed["wss://b"]
    assert not report.all_failed
    assert set(pool.connected_relays()) == {"wss://a", "wss://c"}
    assert "relay connect failed" in caplog.text


def test_connect_all_raises_when_every_relay_fails() -> None:
    relays = {url: FakeRelay(url, fail_connect=True) for url in ("wss://a", "wss://b")}
    pool = _pool(relays)

    with pytest.raises(AllSourcesFailedError) as exc_info:
        pool.connect_all()
    assert set(exc_info.value.failed) == {"wss://a", "wss://b"}


def test_connect_all_with_no_relays_raises() -> None:
    with pytest.raises(AllSourcesFailedError):
        RelaySourcePool([]).connect_all()


def test_connect_all_reuses_live_connections() -> None:
    relays = {"wss://a": FakeRelay("wss://a")}
    pool = _pool(relays)
    pool.connect_all()
    pool.connect_all()
    assert relays["wss://a"].connect_calls == 1


def test_query_merges_dedupes_sorts_and_limits() -> None:
    relays = {
        "wss://a": FakeRelay("wss://a", records=[media_record("x", 30), media_record("y", 10)]),
        "wss://b": FakeRelay("wss://b", records=[media_record("x", 30), media_record("z", 20), media_record("w", 5)]),
    }
    pool = _pool(relays)
    pool.connect_all()

    records = pool.query_historical(HistoricalFilter(limit=3))

    assert [r.id for r in records] == ["x", "z", "y"]


def test_query_partial_failure_is_logged_not_raised(caplog) -> None:  # noqa: ANN001
    relays = {
        "wss://a": FakeRelay("wss://a", records=[media_record("x", 30)]),
        "wss://b": FakeRelay("wss://b", query_error=RelayError("wss://b", "connection lost")),
    }
    pool = _pool(relays)
    pool.connect_all()

    caplog.set_level(logging.WARNING)
    records = pool.query_historical(HistoricalFilter(limit=10))

    assert [r.id for r in records] == ["x"]
    assert "historical query partially failed" in caplog.text


def test_query_total_failure_raises() -> None:
    relays = {"wss://a": FakeRelay("wss://a", query_error=RelayError("wss://a", "timeout"))}
    pool = _pool(relays)
    pool.connect_all()

    with pytest.raises(SourceQueryError):
        pool.query_historical(HistoricalFilter())


def test_query_without_connections_raises() -> None:
    with pytest.raises(SourceQueryError):
        RelaySourcePool(["wss://a"]).query_historical(HistoricalFilter())


def test_subscribe_live_returns_idempotent_disposer() -> None:
    relays = {"wss://a": FakeRelay("wss://a"), "wss://b": FakeRelay("wss://b")}
    pool = _pool(relays)
    pool.connect_all()

    dispose = pool.subscribe_live(LiveFilter(), lambda r: None, lambda relay, reason: None)
    assert all(len(r.subscriptions) == 1 for r in relays.values())

    dispose()
    dispose()
    assert all(not r.subscriptions for r in relays.values())


def test_close_closes_every_connection() -> None:
    relays = {"wss://a": FakeRelay("wss://a"), "wss://b": FakeRelay("wss://b")}
    pool = _pool(relays)
    pool.connect_all()
    pool.close()

    assert all(r.closed for r in relays.values())
    assert pool.connected_relays() == ()


def test_filter_wire_format() -> None:
    assert HistoricalFilter(limit=5).to_wire() == {"kinds": [20, 22], "limit": 5}
    assert HistoricalFilter(kinds=(0,), limit=1, until=99, authors=("pk",)).to_wire() == {
        "kinds": [0],
        "limit": 1,
        "until": 99,
        "authors": ["pk"],
    }
