"""
Consumer-side services built on the loader engine.

Services receive a ``DataLoader`` by injection and fall back to the
process-wide instance. Prefer namespaced keys and explicit invalidation.
"""

from .base import CachedDataService
from .freshness import FreshnessMonitor
from .politicians import PoliticianService

__all__ = ["CachedDataService", "FreshnessMonitor", "PoliticianService"]
