"""
Base class for feature services that load through the engine.
"""

import re
from typing import Any, Optional

from shared.logging import get_logger
from ..engine.loader import DataLoader, Producer, get_data_loader


DEFAULT_SERVICE_TTL = 300.0


class CachedDataService:
    """Namespaced access to the loader for one kind of resource.

    Keys are built as ``<namespace>-<part>-<part>`` so a whole namespace can
    be invalidated with one pattern.
    """

    namespace: str = "data"
    default_ttl: Optional[float] = DEFAULT_SERVICE_TTL
    default_retries: int = 2
    default_retry_delay: float = 0.5

    def __init__(self, loader: Optional[DataLoader] = None):
        self.loader = loader or get_data_loader()
        self.logger = get_logger(f"dataloader.services.{self.namespace}")

    def make_key(self, *parts: Any) -> str:
        """Generate a load key."""
        if not parts:
            raise ValueError("at least one key part is required")
        return "-".join([self.namespace] + [str(part) for part in parts])

    async def load(self, parts: tuple, producer: Producer, **options) -> Any:
        """Load through the engine with the service's defaults."""
        return await self.load_key(self.make_key(*parts), producer, **options)

    async def load_key(self, key: str, producer: Producer, **options) -> Any:
        """Load a fully built key with the service's defaults."""
        options.setdefault("cache_ttl", self.default_ttl)
        options.setdefault("retries", self.default_retries)
        options.setdefault("retry_delay", self.default_retry_delay)
        return await self.loader.load_data(key, producer, **options)

    def is_loading(self, *parts: Any) -> bool:
        return self.loader.is_loading(self.make_key(*parts))

    def invalidate(self, *parts: Any) -> bool:
        """Evict one cached resource."""
        key = self.make_key(*parts)
        removed = self.loader.clear_cache(f"^{re.escape(key)}$")
        if removed:
            self.logger.info("Invalidated cached resource", key=key)
        return removed > 0

    def invalidate_all(self) -> int:
        """Evict every resource in this service's namespace."""
        removed = self.loader.clear_cache(f"^{re.escape(self.namespace)}-")
        self.logger.info("Invalidated namespace", namespace=self.namespace, removed=removed)
        return removed
