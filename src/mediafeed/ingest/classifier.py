from __future__ import annotations

from typing import Iterable

from ..models import MEDIA_KINDS, FeedEvent, MediaDescriptor, RawRecord
from .tags import IMETA, parse_imeta_tag


def _first_tag_value(record: RawRecord, name: str) -> str | None:
    for tag in record.tags:
        if tag and tag[0] == name:
            return tag[1] if len(tag) > 1 else None
    return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    text = value.strip()
    if not text.lstrip("+-").isdigit():
        return None
    try:
        return int(text)
    except ValueError:
        return None


def classify_record(record: RawRecord) -> FeedEvent | None:
    """
    将原始记录归一为 FeedEvent。

    - kind 不是图片(20)/短视频(22) -> None
    - title / duration / published_at 取第一个同名标签；整数解析失败视为缺失
    - 每个 imeta 标签经 parse_imeta_tag 解析，仅保留成功的描述，保持标签顺序
    - 没有任何可用媒体 -> None（该记录不具备 feed 资格）
    """
    if record.kind not in MEDIA_KINDS:
        return None

    media: list[MediaDescriptor] = []
    for tag in record.tags:
        if tag and tag[0] == IMETA:
            descriptor = parse_imeta_tag(tag)
            if descriptor is not None:
                media.append(descriptor)
    if not media:
        return None

    return FeedEvent(
        id=record.id,
        pubkey=record.pubkey,
        created_at=record.created_at,
        kind=record.kind,
        content=record.content,
        tags=record.tags,
        media=tuple(media),
        title=_first_tag_value(record, "title"),
        duration=_parse_int(_first_tag_value(record, "duration")),
        published_at=_parse_int(_first_tag_value(record, "published_at")),
    )


def classify_records(records: Iterable[RawRecord]) -> list[FeedEvent]:
    events: list[FeedEvent] = []
    for record in records:
        event = classify_record(record)
        if event is not None:
            events.append(event)
    return events
