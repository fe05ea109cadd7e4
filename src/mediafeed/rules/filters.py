from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..models import FeedEvent


def has_tag(event: FeedEvent, key: str, value: str | None = None) -> bool:
    for tag in event.tags:
        if not tag or tag[0] != key:
            continue
        if value is None:
            return True
        if len(tag) > 1 and tag[1] == value:
            return True
    return False


@dataclass(frozen=True, slots=True)
class FeedFilter:
    """
    对 snapshot 的纯投影（不属于核心状态），按调用时计算。

    - kinds / authors 为空表示不限制
    - tag_key 按原始标签过滤；tag_value 为 None 时只要求存在该 key
    - hashtag 匹配 "t" 标签（大小写不敏感）
    """

    kinds: tuple[int, ...] = ()
    authors: tuple[str, ...] = ()
    tag_key: str | None = None
    tag_value: str | None = None
    hashtag: str | None = None

    def matches(self, event: FeedEvent) -> bool:
        if self.kinds and event.kind not in self.kinds:
            return False
        if self.authors and event.pubkey not in self.authors:
            return False
        if self.tag_key and not has_tag(event, self.tag_key, self.tag_value):
            return False
        if self.hashtag:
            wanted = self.hashtag.strip().lstrip("#").lower()
            if not any(len(t) > 1 and t[0] == "t" and t[1].lower() == wanted for t in event.tags):
                return False
        return True

    def apply(self, events: Iterable[FeedEvent]) -> list[FeedEvent]:
        return [e for e in events if self.matches(e)]


def filter_by_tag(events: Iterable[FeedEvent], key: str, value: str | None = None) -> list[FeedEvent]:
    return FeedFilter(tag_key=key, tag_value=value).apply(events)


def filter_by_author(events: Iterable[FeedEvent], pubkey: str) -> list[FeedEvent]:
    return FeedFilter(authors=(pubkey,)).apply(events)
