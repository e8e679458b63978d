"""
Tracks when each key was last loaded, driven by loader events.
"""

import time
from typing import Callable, Dict, Optional

from shared.logging import get_logger
from ..engine.events import LoadFailed, LoadSucceeded
from ..engine.loader import DataLoader


class FreshnessMonitor:
    """Subscriber recording the latest success and failure per key.

    Consistency checks use it to react to freshly loaded data without
    polling the cache. ``on_fresh_data`` is called for every success.
    """

    def __init__(self,
                 loader: DataLoader,
                 on_fresh_data: Optional[Callable[[LoadSucceeded], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.loader = loader
        self.on_fresh_data = on_fresh_data
        self._clock = clock
        self.logger = get_logger("dataloader.freshness")

        self._loaded_at: Dict[str, float] = {}
        self._errors: Dict[str, BaseException] = {}
        self._unsubscribers = [
            loader.subscribe(self._handle_success, LoadSucceeded),
            loader.subscribe(self._handle_failure, LoadFailed),
        ]

    def _handle_success(self, event: LoadSucceeded) -> None:
        self._loaded_at[event.key] = self._clock()
        self._errors.pop(event.key, None)
        if self.on_fresh_data is not None:
            self.on_fresh_data(event)

    def _handle_failure(self, event: LoadFailed) -> None:
        self._errors[event.key] = event.error
        self.logger.debug("Recorded load failure", key=event.key, error=str(event.error))

    def last_loaded_at(self, key: str) -> Optional[float]:
        return self._loaded_at.get(key)

    def last_error(self, key: str) -> Optional[BaseException]:
        return self._errors.get(key)

    def is_fresh(self, key: str, max_age: float) -> bool:
        """True when ``key`` loaded successfully within the last ``max_age`` seconds."""
        loaded_at = self._loaded_at.get(key)
        return loaded_at is not None and (self._clock() - loaded_at) <= max_age

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
