from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Mapping

RELAYS_ENV = "MEDIAFEED_RELAYS"

DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://nostr.wine",
    "wss://nostr.data.haus",
    "wss://relay.damus.io",
    "wss://relay.nostr.band",
    "wss://nos.lol",
    "wss://relay.snort.social",
)


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _get_str_list(d: Mapping[str, Any], key: str, default: list[str]) -> list[str]:
    v = d.get(key, default)
    if v is None:
        return list(default)
    if isinstance(v, list):
        return [str(x) for x in v]
    return list(default)


def normalize_relays(values: list[str]) -> tuple[str, ...]:
    """
    去空白、去重（保序），只保留 ws:// / wss:// 地址。
    """
    seen: set[str] = set()
    result: list[str] = []
    for v in values:
        url = v.strip()
        if not url.startswith(("wss://", "ws://")) or url in seen:
            continue
        seen.add(url)
        result.append(url)
    return tuple(result)


@dataclass(frozen=True, slots=True)
class PaginationConfig:
    """
    翻页策略参数。

    duplicate_step_seconds:
      - 整页都是重复事件时游标后退的步长（默认一天）
    max_duplicate_pages:
      - 连续重复页上限，达到后返回“无可区分的历史”
    max_query_attempts / backoff_base_seconds:
      - 查询失败时的总尝试次数与指数退避基数
    """

    duplicate_step_seconds: int = 86400
    max_duplicate_pages: int = 3
    max_query_attempts: int = 3
    backoff_base_seconds: float = 0.5


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    relays:
      - relay 地址列表；环境变量 MEDIAFEED_RELAYS（逗号分隔）优先
    max_live_events:
      - 实时路径下 feed 的常驻上限，历史翻页可以超过它
    initial_limit / page_size:
      - 启动时加载的事件数 / 每次向前翻页请求的条数
    """

    relays: tuple[str, ...] = DEFAULT_RELAYS
    connect_timeout_seconds: float = 10.0
    query_timeout_seconds: float = 8.0
    max_live_events: int = 100
    initial_limit: int = 50
    page_size: int = 20
    pagination: PaginationConfig = field(default_factory=PaginationConfig)


def relays_from_env(environ: Mapping[str, str] | None = None) -> tuple[str, ...] | None:
    env = os.environ if environ is None else environ
    raw = env.get(RELAYS_ENV)
    if not raw:
        return None
    return normalize_relays(raw.split(","))


def load_config(config_path: str | None = None, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    """
    JSON 配置（可选）+ 环境变量覆盖。

    JSON 顶层结构（示意）：
    {
      "relays": ["wss://relay.damus.io", "wss://nos.lol"],
      "timeouts": { "connect_seconds": 10, "query_seconds": 8 },
      "feed": { "max_live_events": 100, "initial_limit": 50, "page_size": 20 },
      "pagination": { "duplicate_step_seconds": 86400, "max_duplicate_pages": 3,
                      "max_query_attempts": 3, "backoff_base_seconds": 0.5 }
    }
    """
    root: Mapping[str, Any] = {}
    if config_path:
        with open(config_path, "rb") as f:
            raw = json.loads(f.read().decode("utf-8"))
        root = _require_dict(raw, where="$")

    relays = normalize_relays(_get_str_list(root, "relays", list(DEFAULT_RELAYS)))
    env_relays = relays_from_env(environ)
    if env_relays:
        relays = env_relays
    if not relays:
        raise ValueError("No usable relays configured (expected ws:// or wss:// URLs)")

    timeouts = _require_dict(root.get("timeouts", {}), where="$.timeouts")
    feed = _require_dict(root.get("feed", {}), where="$.feed")
    pg = _require_dict(root.get("pagination", {}), where="$.pagination")

    pagination = PaginationConfig(
        duplicate_step_seconds=max(1, _get_int(pg, "duplicate_step_seconds", 86400)),
        max_duplicate_pages=max(1, _get_int(pg, "max_duplicate_pages", 3)),
        max_query_attempts=max(1, _get_int(pg, "max_query_attempts", 3)),
        backoff_base_seconds=max(0.0, _get_float(pg, "backoff_base_seconds", 0.5)),
    )

    return AppConfig(
        relays=relays,
        connect_timeout_seconds=_get_float(timeouts, "connect_seconds", 10.0),
        query_timeout_seconds=_get_float(timeouts, "query_seconds", 8.0),
        max_live_events=max(1, _get_int(feed, "max_live_events", 100)),
        initial_limit=max(1, _get_int(feed, "initial_limit", 50)),
        page_size=max(1, _get_int(feed, "page_size", 20)),
        pagination=pagination,
    )
