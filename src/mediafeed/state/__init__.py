from .merger import DeduplicatingMerger
from .profiles import ProfileCache, ProfileMetadata

__all__ = [
    "DeduplicatingMerger",
    "ProfileCache",
    "ProfileMetadata",
]
