"""Single relay connection: NIP-01 REQ/EVENT/EOSE/CLOSE over a websocket."""

from __future__ import annotations

import itertools
import json
import logging
import queue
import threading
import time
from typing import Any, Callable

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as ws_connect

from ..errors import RelayError
from ..models import RawRecord
from .base import ClosedHandler, HistoricalFilter, LiveFilter, RecordHandler

logger = logging.getLogger(__name__)

WebSocketFactory = Callable[[str, float], Any]

def open_websocket(url: str, timeout: float) -> Any:
    return ws_connect(url, open_timeout=timeout, close_timeout=timeout)


class RelayConnection:
    """
    一个 relay 的 websocket 连接。

    - 连接建立后启动一个 reader 线程，按 subscription id 把消息路由给
      历史查询（队列）或实时订阅（回调）
    - 发送通过锁串行化；查询与订阅可以在不同线程中同时进行
    - 连接断开时：进行中的查询抛 RelayError，实时订阅收到 on_closed 回调
    """

    def __init__(
        self,
        url: str,
        *,
        connect_timeout: float = 10.0,
        ws_factory: WebSocketFactory | None = None,
    ) -> None:
        self.url = url
        self._connect_timeout = connect_timeout
        self._ws_factory = ws_factory or open_websocket
        self._ws: Any = None
        self._reader: threading.Thread | None = None
        self._send_lock = threading.Lock()
        self._routes_lock = threading.Lock()
        self._queries: dict[str, queue.Queue[tuple[str, Any]]] = {}
        self._subscriptions: dict[str, tuple[RecordHandler, ClosedHandler]] = {}
        self._closing = False
        self._disconnected = threading.Event()
        self._sub_ids = itertools.count(1)

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._disconnected.is_set()

    def connect(self) -> None:
        try:
            self._ws = self._ws_factory(self.url, self._connect_timeout)
        except Exception as e:  # noqa: BLE001
            raise RelayError(self.url, f"connect failed: {type(e).__name__}: {e}") from e
        self._disconnected.clear()
        self._reader = threading.Thread(target=self._read_loop, name=f"relay-reader:{self.url}", daemon=True)
        self._reader.start()

    def query(self, flt: HistoricalFilter, timeout: float) -> list[RawRecord]:
        """
        发送 REQ 并收集 EVENT，直到 EOSE / CLOSED / 超时。

        超时且已收到记录时返回部分结果；一条都没收到则抛 RelayError，
        避免把慢 relay 误当成“历史已到底”。
        """
        if not self.connected:
            raise RelayError(self.url, "not connected")

        sub_id = self._new_sub_id("q")
        inbox: queue.Queue[tuple[str, Any]] = queue.Queue()
        with self._routes_lock:
            self._queries[sub_id] = inbox

        records: list[RawRecord] = []
        try:
            self._send(["REQ", sub_id, flt.to_wire()])
            deadline = time.monotonic() + timeout
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        "relay query timed out: relay=%s sub_id=%s received=%d",
                        self.url,
                        sub_id,
                        len(records),
                    )
                    if not records:
                        raise RelayError(self.url, "query timed out")
                    break
                try:
                    verb, payload = inbox.get(timeout=remaining)
                except queue.Empty:
                    continue
                if verb == "EVENT":
                    records.append(payload)
                elif verb == "EOSE":
                    break
                elif verb == "CLOSED":
                    if not records:
                        raise RelayError(self.url, f"query closed by relay: {payload}")
                    break
                elif verb == "DISCONNECTED":
                    raise RelayError(self.url, f"connection lost during query: {payload}")
        finally:
            with self._routes_lock:
                self._queries.pop(sub_id, None)
            self._send_close(sub_id)
        return records

    def subscribe(self, flt: LiveFilter, on_record: RecordHandler, on_closed: ClosedHandler) -> str:
        if not self.connected:
            raise RelayError(self.url, "not connected")
        sub_id = self._new_sub_id("live")
        with self._routes_lock:
            self._subscriptions[sub_id] = (on_record, on_closed)
        try:
            self._send(["REQ", sub_id, flt.to_wire()])
        except RelayError:
            with self._routes_lock:
                self._subscriptions.pop(sub_id, None)
            raise
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        with self._routes_lock:
            removed = self._subscriptions.pop(sub_id, None)
        if removed is not None:
            self._send_close(sub_id)

    def close(self) -> None:
        self._closing = True
        ws = self._ws
        if ws is not None:
            try:
                ws.close()
            except Exception:  # noqa: BLE001
                logger.debug("relay close raised: relay=%s", self.url, exc_info=True)
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self._connect_timeout)

    def _new_sub_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._sub_ids)}"

    def _send(self, message: list[Any]) -> None:
        ws = self._ws
        if ws is None:
            raise RelayError(self.url, "not connected")
        payload = json.dumps(message, ensure_ascii=False, separators=(",", ":"))
        try:
            with self._send_lock:
                ws.send(payload)
        except Exception as e:  # noqa: BLE001
            raise RelayError(self.url, f"send failed: {type(e).__name__}: {e}") from e

    def _send_close(self, sub_id: str) -> None:
        if not self.connected:
            return
        try:
            self._send(["CLOSE", sub_id])
        except RelayError:
            logger.debug("relay CLOSE not delivered: relay=%s sub_id=%s", self.url, sub_id, exc_info=True)

    def _read_loop(self) -> None:
        ws = self._ws
        reason = "connection closed"
        try:
            while True:
                self._route(ws.recv())
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except Exception as e:  # noqa: BLE001
            reason = f"{type(e).__name__}: {e}"
            logger.exception("relay reader crashed: relay=%s", self.url)
        finally:
            self._disconnected.set()
            self._fail_routes(reason)

    def _fail_routes(self, reason: str) -> None:
        with self._routes_lock:
            inboxes = list(self._queries.values())
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for inbox in inboxes:
            inbox.put(("DISCONNECTED", reason))
        if self._closing:
            return
        logger.warning("relay disconnected: relay=%s reason=%s", self.url, reason)
        for _on_record, on_closed in subscriptions:
            self._call_closed(on_closed, reason)

    def _route(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug("relay sent non-JSON message: relay=%s", self.url)
            return
        if not isinstance(msg, list) or not msg or not isinstance(msg[0], str):
            return

        verb = msg[0]
        if verb == "NOTICE":
            logger.info("relay notice: relay=%s message=%s", self.url, msg[1] if len(msg) > 1 else "")
            return
        if len(msg) < 2 or not isinstance(msg[1], str):
            return

        sub_id = msg[1]
        with self._routes_lock:
            inbox = self._queries.get(sub_id)
            handlers = self._subscriptions.get(sub_id)

        if verb == "EVENT":
            record = RawRecord.from_wire(msg[2] if len(msg) > 2 else None)
            if record is None:
                logger.debug("relay sent malformed event: relay=%s sub_id=%s", self.url, sub_id)
                return
            if inbox is not None:
                inbox.put(("EVENT", record))
            elif handlers is not None:
                self._call_record(handlers[0], record)
        elif verb == "EOSE":
            if inbox is not None:
                inbox.put(("EOSE", None))
            elif handlers is not None:
                logger.debug("end of stored events: relay=%s sub_id=%s", self.url, sub_id)
        elif verb == "CLOSED":
            message = msg[2] if len(msg) > 2 and isinstance(msg[2], str) else ""
            if inbox is not None:
                inbox.put(("CLOSED", message))
            elif handlers is not None:
                with self._routes_lock:
                    self._subscriptions.pop(sub_id, None)
                self._call_closed(handlers[1], message or "closed by relay")

    def _call_record(self, handler: RecordHandler, record: RawRecord) -> None:
        try:
            handler(record)
        except Exception:  # noqa: BLE001
            logger.exception("live record handler failed: relay=%s record_id=%s", self.url, record.id)

    def _call_closed(self, handler: ClosedHandler, reason: str) -> None:
        try:
            handler(self.url, reason)
        except Exception:  # noqa: BLE001
            logger.exception("live closed handler failed: relay=%s", self.url)
