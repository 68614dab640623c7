"""
Brand connection lookup.

Maps a brand identifier to the ads-platform credentials stored for it. The
store behind it is a collaborator; this service only ships a settings-backed
store and a TTL-cached wrapper.
"""

from typing import Dict, Optional

import structlog
from pydantic import BaseModel

from campaign_insights.services.cache import TTLCache

logger = structlog.get_logger(__name__)


class BrandConnection(BaseModel):
    access_token: str
    ad_account_id: Optional[str] = None


class BrandConnectionStore:
    """Interface: brand id -> connection, or None when none is configured."""

    async def get_connection(self, brand_id: str) -> Optional[BrandConnection]:
        raise NotImplementedError


class SettingsBrandConnectionStore(BrandConnectionStore):
    """Connections supplied through ``Settings.brand_connections``."""

    def __init__(self, connections: Dict[str, Dict[str, str]]):
        self._connections = connections

    async def get_connection(self, brand_id: str) -> Optional[BrandConnection]:
        raw = self._connections.get(brand_id)
        if not raw or not raw.get("access_token"):
            return None
        return BrandConnection.model_validate(raw)


class CachedBrandConnectionStore(BrandConnectionStore):
    def __init__(self, store: BrandConnectionStore, cache: TTLCache):
        self.store = store
        self.cache = cache

    async def get_connection(self, brand_id: str) -> Optional[BrandConnection]:
        key = ("brand_connection", brand_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        connection = await self.store.get_connection(brand_id)
        if connection is not None:
            self.cache.set(key, connection)
        else:
            logger.warning("brand_connection_missing", brand_id=brand_id)
        return connection
