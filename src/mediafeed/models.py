from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Mapping

KIND_PICTURE = 20
KIND_SHORT_VIDEO = 22
MEDIA_KINDS: tuple[int, ...] = (KIND_PICTURE, KIND_SHORT_VIDEO)

KIND_NAMES: Mapping[int, str] = {
    KIND_PICTURE: "picture",
    KIND_SHORT_VIDEO: "short-video",
}


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def timestamp_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


@dataclass(frozen=True, slots=True)
class RawRecord:
    """
    来自数据源（relay）的原始记录，不做任何语义解释。

    tags 统一保存为 tuple[tuple[str, ...], ...]，保证记录在接收后不可变。
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    content: str
    tags: tuple[tuple[str, ...], ...] = ()

    @classmethod
    def from_wire(cls, obj: Any) -> RawRecord | None:
        """
        从 relay 下发的 JSON 对象构造记录。

        字段缺失或类型不对时返回 None（解析层降级，不抛异常）。
        """
        if not isinstance(obj, dict):
            return None
        record_id = obj.get("id")
        pubkey = obj.get("pubkey")
        created_at = obj.get("created_at")
        kind = obj.get("kind")
        content = obj.get("content", "")
        raw_tags = obj.get("tags", [])
        if not isinstance(record_id, str) or not record_id:
            return None
        if not isinstance(pubkey, str):
            return None
        if isinstance(created_at, bool) or not isinstance(created_at, int):
            return None
        if isinstance(kind, bool) or not isinstance(kind, int):
            return None
        if not isinstance(content, str) or not isinstance(raw_tags, list):
            return None

        tags: list[tuple[str, ...]] = []
        for tag in raw_tags:
            if not isinstance(tag, list) or not all(isinstance(x, str) for x in tag):
                continue
            tags.append(tuple(tag))
        return cls(
            id=record_id,
            pubkey=pubkey,
            created_at=created_at,
            kind=kind,
            content=content,
            tags=tuple(tags),
        )


@dataclass(frozen=True, slots=True)
class MediaDescriptor:
    """
    imeta 标签解析后的媒体描述。url 与 mime_type 必填，其余可选。
    """

    url: str
    mime_type: str
    dimensions: str | None = None
    blurhash: str | None = None
    alt: str | None = None
    checksum: str | None = None
    fallback_urls: tuple[str, ...] = ()
    image_urls: tuple[str, ...] = ()
    service: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "mime_type": self.mime_type,
            "dimensions": self.dimensions,
            "blurhash": self.blurhash,
            "alt": self.alt,
            "checksum": self.checksum,
            "fallback_urls": list(self.fallback_urls),
            "image_urls": list(self.image_urls),
            "service": self.service,
        }


@dataclass(frozen=True, slots=True)
class FeedEvent:
    """
    可进入 feed 的媒体事件（图片 / 短视频）。

    约束：
    - media 至少包含一个 MediaDescriptor，否则该记录不具备 feed 资格
    - id 在单个 relay 内唯一，跨 relay 可能重复，由 merger 负责去重
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    content: str
    tags: tuple[tuple[str, ...], ...]
    media: tuple[MediaDescriptor, ...]
    title: str | None = None
    duration: int | None = None
    published_at: int | None = None

    def __post_init__(self) -> None:
        if not self.media:
            raise ValueError(f"FeedEvent requires at least one media descriptor: id={self.id}")

    @property
    def kind_name(self) -> str:
        return KIND_NAMES.get(self.kind, str(self.kind))

    @property
    def is_picture(self) -> bool:
        return self.kind == KIND_PICTURE

    @property
    def is_video(self) -> bool:
        return self.kind == KIND_SHORT_VIDEO

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "kind_name": self.kind_name,
            "content": self.content,
            "tags": [list(t) for t in self.tags],
            "title": self.title,
            "media": [m.to_json_dict() for m in self.media],
            "duration": self.duration,
            "published_at": self.published_at,
        }
