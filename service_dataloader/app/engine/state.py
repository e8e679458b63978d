"""
Per-key state, call options and counters for the loader engine.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from .progress import ProgressTracker


class LoadStatus(Enum):
    """Lifecycle of a key."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class LoadOptions:
    """Per-call options; ``None`` means "use the engine default"."""

    retries: Optional[int] = None
    retry_delay: Union[float, Callable[[int], float], None] = None
    backoff: Optional[str] = None
    timeout: Optional[float] = None
    cache_ttl: Optional[float] = None
    skip_cache: bool = False
    on_progress: Optional[Callable[[float], None]] = None

    def merged(self, **overrides) -> "LoadOptions":
        unknown = set(overrides) - set(self.__dataclass_fields__)
        if unknown:
            raise TypeError(f"Unknown load option(s): {', '.join(sorted(unknown))}")
        return replace(self, **overrides)


@dataclass
class LoadEntry:
    """Engine bookkeeping for one key."""

    key: str
    status: LoadStatus = LoadStatus.IDLE
    task: Optional[asyncio.Task] = None
    value: Any = None
    cached_at: Optional[float] = None
    expires_at: Optional[float] = None
    progress: Optional[ProgressTracker] = None
    attempt: int = 1
    error: Optional[BaseException] = None
    started_at: Optional[float] = None
    size: int = 0
    access_count: int = 0
    last_accessed: float = 0.0
    # Value being refreshed by a skip_cache load; restored if the refresh fails.
    stale: Optional["LoadEntry"] = None

    @property
    def has_value(self) -> bool:
        """Whether the entry holds a cached value (possibly expired)."""
        return self.status is LoadStatus.SUCCEEDED

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now


@dataclass(frozen=True)
class LoadingState:
    """Read-only snapshot returned by ``DataLoader.get_loading_state``."""

    is_loading: bool
    progress: float
    attempt: int
    error: Optional[BaseException] = None
    start_time: Optional[float] = None
    estimated_time_remaining: Optional[float] = None


@dataclass
class LoaderMetrics:
    """Usage counters.

    ``cache_hits + cache_misses == total_requests`` always holds: every call
    that is not answered from the cache, deduplicated calls included, counts
    as a miss.
    """

    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    deduplicated_requests: int = 0
    producer_invocations: int = 0
    active_requests: int = 0
    failed_loads: int = 0
    completed_loads: int = 0
    average_load_time: float = 0.0
    error_rate: float = 0.0
    memory_usage: int = 0

    def record_load_time(self, load_time: float) -> None:
        self.completed_loads += 1
        self.average_load_time += (load_time - self.average_load_time) / self.completed_loads

    def record_failure(self) -> None:
        self.failed_loads += 1
        self.error_rate = self.failed_loads / max(1, self.total_requests)

    def copy(self) -> "LoaderMetrics":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

