from .base import ConnectReport, HistoricalFilter, LiveFilter, SourcePool
from .pool import RelaySourcePool
from .relay import RelayConnection

__all__ = [
    "ConnectReport",
    "HistoricalFilter",
    "LiveFilter",
    "RelayConnection",
    "RelaySourcePool",
    "SourcePool",
]
