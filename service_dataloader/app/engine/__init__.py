"""
Loader engine package.

Exposes the single-flight ``DataLoader`` with its options, state snapshots
and lifecycle events. Obtain the process-wide engine with
``get_data_loader()`` or construct one and inject it.
"""

from .events import (
    CacheCleanup,
    CacheCleared,
    CacheHit,
    EventBus,
    LoadFailed,
    LoaderEvent,
    LoadStarted,
    LoadSucceeded,
    RequestCancelled,
    RequestDeduplicated,
    RetryScheduled,
)
from .loader import DataLoader, destroy_data_loader, get_data_loader
from .state import LoaderMetrics, LoadingState, LoadOptions, LoadStatus

__all__ = [
    "CacheCleanup",
    "CacheCleared",
    "CacheHit",
    "DataLoader",
    "EventBus",
    "LoadFailed",
    "LoaderEvent",
    "LoaderMetrics",
    "LoadingState",
    "LoadOptions",
    "LoadStarted",
    "LoadStatus",
    "LoadSucceeded",
    "RequestCancelled",
    "RequestDeduplicated",
    "RetryScheduled",
    "destroy_data_loader",
    "get_data_loader",
]
