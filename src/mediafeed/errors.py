from __future__ import annotations


class MediaFeedError(Exception):
    """Base class for errors surfaced by mediafeed."""


class RelayError(MediaFeedError):
    """A single relay failed to connect or answer; the pool tallies these."""

    def __init__(self, relay: str, message: str) -> None:
        super().__init__(f"{relay}: {message}")
        self.relay = relay


class AllSourcesFailedError(MediaFeedError):
    """Every configured source failed to connect; the session cannot proceed."""

    def __init__(self, failed: dict[str, str]) -> None:
        super().__init__(f"failed to connect to any relay ({len(failed)} tried)")
        self.failed = dict(failed)


class SourceQueryError(MediaFeedError):
    """Every connected source failed to answer a historical query."""
