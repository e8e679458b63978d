"""
Politician records service.
"""

import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..engine.loader import DataLoader
from .base import CachedDataService

FetchPolitician = Callable[[str], Awaitable[Dict[str, Any]]]
FetchPoliticians = Callable[[], Awaitable[List[Dict[str, Any]]]]

# Outside the "politician-<id>" key space, so no id can collide with it.
LIST_KEY = "politicians-all"


class PoliticianService(CachedDataService):
    """Cached politician lookups.

    The fetch callables do the actual I/O; the service only decides keys,
    TTLs and retry settings.
    """

    namespace = "politician"

    def __init__(self,
                 fetch_politician: FetchPolitician,
                 fetch_politicians: Optional[FetchPoliticians] = None,
                 loader: Optional[DataLoader] = None):
        super().__init__(loader)
        self._fetch_politician = fetch_politician
        self._fetch_politicians = fetch_politicians

    async def get_politician(self, politician_id: str) -> Dict[str, Any]:
        """Get one politician record, cached under ``politician-<id>``."""
        return await self.load((politician_id,), lambda: self._fetch_politician(politician_id))

    async def refresh_politician(self, politician_id: str) -> Dict[str, Any]:
        """Fetch a politician again even if a cached record exists.

        If the fetch fails the cached record stays in place.
        """
        return await self.load(
            (politician_id,),
            lambda: self._fetch_politician(politician_id),
            skip_cache=True,
        )

    async def list_politicians(self) -> List[Dict[str, Any]]:
        """Get all politician records, cached under ``politicians-all``."""
        if self._fetch_politicians is None:
            raise RuntimeError("PoliticianService was created without fetch_politicians")
        return await self.load_key(LIST_KEY, self._fetch_politicians)

    def invalidate_all(self) -> int:
        """Evict every politician record and the cached list."""
        removed = super().invalidate_all()
        return removed + self.loader.clear_cache(f"^{re.escape(LIST_KEY)}$")
