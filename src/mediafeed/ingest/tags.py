from __future__ import annotations

from typing import Sequence

from ..models import MediaDescriptor

IMETA = "imeta"

# key -> MediaDescriptor 字段；fallback / image 可重复出现，按顺序累加
_SINGLE_KEYS: dict[str, str] = {
    "url": "url",
    "m": "mime_type",
    "dim": "dimensions",
    "blurhash": "blurhash",
    "alt": "alt",
    "x": "checksum",
    "service": "service",
}
_REPEATED_KEYS: dict[str, str] = {
    "fallback": "fallback_urls",
    "image": "image_urls",
}


def _split_entry(entry: object) -> tuple[str, str] | None:
    if not isinstance(entry, str):
        return None
    key, sep, value = entry.partition(" ")
    if not sep or not key:
        return None
    return key, value


def parse_imeta_tag(tag: Sequence[str]) -> MediaDescriptor | None:
    """
    将一个 imeta 标签解析为 MediaDescriptor。

    标签形如：
    ["imeta", "url https://x/a.jpg", "m image/jpeg", "fallback https://y/a.jpg", ...]

    约定：
    - 第 0 个元素必须是 "imeta"
    - 其余元素为 "<key> <value>"，value 取第一个空格之后的全部内容
    - 未识别的 key 直接忽略（向前兼容）
    - url 或 m 缺失时返回 None；任何畸形输入都只会得到 None，不抛异常
    """
    if not tag or tag[0] != IMETA:
        return None

    single: dict[str, str] = {}
    repeated: dict[str, list[str]] = {name: [] for name in _REPEATED_KEYS.values()}

    for entry in tag[1:]:
        parsed = _split_entry(entry)
        if parsed is None:
            continue
        key, value = parsed
        if key in _SINGLE_KEYS:
            single[_SINGLE_KEYS[key]] = value
        elif key in _REPEATED_KEYS:
            repeated[_REPEATED_KEYS[key]].append(value)

    url = single.pop("url", None)
    mime_type = single.pop("mime_type", None)
    if not url or not mime_type:
        return None

    return MediaDescriptor(
        url=url,
        mime_type=mime_type,
        fallback_urls=tuple(repeated["fallback_urls"]),
        image_urls=tuple(repeated["image_urls"]),
        **single,
    )
