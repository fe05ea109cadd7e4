from __future__ import annotations

from datetime import datetime

from .models import FeedEvent, timestamp_to_datetime
from .state.profiles import ProfileMetadata


def format_relative_time(created_at: int, *, now: datetime) -> str:
    seconds = max(0, int(now.timestamp()) - created_at)
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def format_duration(seconds: int | None) -> str:
    if seconds is None:
        return "-"
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes}:{secs:02d}"


def format_event_text(event: FeedEvent, *, profile: ProfileMetadata | None = None) -> str:
    """
    单个事件的纯文本展示（CLI 输出用），与渲染层无关。
    """
    author = (profile.label() if profile else None) or event.pubkey[:12]
    created = timestamp_to_datetime(event.created_at).isoformat()
    primary = event.media[0]

    lines = [
        f"[{event.kind_name}] {event.title or '-'}",
        f"id: {event.id}",
        f"author: {author}",
        f"created_at: {created}",
        f"media: {primary.url} ({primary.mime_type})" + (f" +{len(event.media) - 1}" if len(event.media) > 1 else ""),
    ]
    if event.is_video:
        lines.append(f"duration: {format_duration(event.duration)}")
    if event.published_at is not None:
        lines.append(f"published_at: {timestamp_to_datetime(event.published_at).isoformat()}")
    if event.content:
        lines.append("")
        lines.append(event.content)
    return "\n".join(lines)
