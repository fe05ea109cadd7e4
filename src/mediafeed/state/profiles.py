from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping

from ..sources.base import HistoricalFilter, SourcePool

logger = logging.getLogger(__name__)

KIND_PROFILE_METADATA = 0


@dataclass(frozen=True, slots=True)
class ProfileMetadata:
    name: str | None = None
    display_name: str | None = None
    picture: str | None = None
    about: str | None = None
    nip05: str | None = None

    @classmethod
    def from_json_dict(cls, obj: Mapping[str, Any]) -> ProfileMetadata:
        def _opt(key: str) -> str | None:
            v = obj.get(key)
            return v if isinstance(v, str) else None

        return cls(
            name=_opt("name"),
            display_name=_opt("display_name"),
            picture=_opt("picture"),
            about=_opt("about"),
            nip05=_opt("nip05"),
        )

    def label(self) -> str | None:
        return self.display_name or self.name


class ProfileCache:
    """
    作者资料缓存：pubkey -> ProfileMetadata。

    - 只缓存成功解析的结果；查询失败或内容无法解析返回 None，下次会重新查询
    - 无淘汰策略（会话级生命周期）
    - 与 merger 一样用一把锁保护，实时线程与分页线程可同时访问
    """

    def __init__(self, pool: SourcePool) -> None:
        self._pool = pool
        self._lock = threading.Lock()
        self._cache: dict[str, ProfileMetadata] = {}

    def cached(self, pubkey: str) -> ProfileMetadata | None:
        with self._lock:
            return self._cache.get(pubkey)

    def get(self, pubkey: str) -> ProfileMetadata | None:
        hit = self.cached(pubkey)
        if hit is not None:
            return hit

        try:
            records = self._pool.query_historical(
                HistoricalFilter(kinds=(KIND_PROFILE_METADATA,), authors=(pubkey,), limit=1)
            )
        except Exception:  # noqa: BLE001
            logger.exception("profile query failed: pubkey=%s", pubkey)
            return None

        if not records:
            return None
        record = max(records, key=lambda r: r.created_at)
        try:
            obj = json.loads(record.content)
        except ValueError:
            logger.warning("profile content is not JSON: pubkey=%s record_id=%s", pubkey, record.id)
            return None
        if not isinstance(obj, dict):
            logger.warning("profile content is not an object: pubkey=%s record_id=%s", pubkey, record.id)
            return None

        metadata = ProfileMetadata.from_json_dict(obj)
        with self._lock:
            self._cache[pubkey] = metadata
        return metadata

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
