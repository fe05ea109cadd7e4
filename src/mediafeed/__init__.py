"""
Media Feed (mediafeed)

从多个相互独立、可能不可靠的 Nostr relay 拉取图片 / 短视频事件，
归一为统一的 FeedEvent 模型，合并为一个去重、严格按时间倒序、
可向过去翻页扩展的 feed。
"""

from .models import FeedEvent, MediaDescriptor, RawRecord

__all__ = [
    "FeedEvent",
    "MediaDescriptor",
    "RawRecord",
]
