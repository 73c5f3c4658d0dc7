from search_sync.shared.exceptions.base import SyncException
from search_sync.shared.exceptions.sync import (
    MalformedRowError,
    SinkRejectedError,
    SourceUnavailableError,
    SyncConfigError,
    WatermarkStoreError,
)

__all__ = [
    "SyncException",
    "SyncConfigError",
    "SourceUnavailableError",
    "SinkRejectedError",
    "MalformedRowError",
    "WatermarkStoreError",
]
