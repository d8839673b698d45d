"""
Cache Service
Time-bounded review cache keyed by (app_id, star tier).
Entries older than the TTL are treated as absent whether or not they have
been purged yet.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from services.store import AnalysisStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewCache:
    """Review cache on top of the store's review_cache table"""

    def __init__(
        self,
        store: AnalysisStore,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ttl = ttl
        self.clock = clock

    def cache_key(self, app_id: str, star_tier: int) -> str:
        """
        Human-readable key used in logs

        Format: reviews:{app_id}:{star_tier}
        """
        return f"reviews:{app_id}:{star_tier}"

    def is_fresh(self, cached_at: Optional[datetime]) -> bool:
        if cached_at is None:
            return False
        return self.clock() - cached_at < self.ttl

    async def get_fresh(self, app_id: str, star_tier: int) -> Optional[List[Dict[str, Any]]]:
        """
        Get cached reviews for one tier

        Returns:
            The cached review dicts, or None if missing or older than the TTL
        """
        key = self.cache_key(app_id, star_tier)
        entry = await self.store.get_cache_entry(app_id, star_tier)
        if entry is None:
            logger.info(f"❌ Cache MISS: {key}")
            return None
        if not self.is_fresh(entry.cached_at):
            logger.info(f"⏰ Cache EXPIRED: {key} (cached at {entry.cached_at})")
            return None
        logger.info(f"✅ Cache HIT: {key} ({len(entry.reviews)} reviews)")
        return entry.reviews

    async def put(self, app_id: str, star_tier: int, reviews: List[Dict[str, Any]]) -> None:
        await self.store.upsert_cache_entry(app_id, star_tier, reviews, self.clock())
        logger.info(f"💾 Cached: {self.cache_key(app_id, star_tier)} ({len(reviews)} reviews, TTL: {self.ttl})")

    async def count_expired(self) -> int:
        return await self.store.count_cache_before(self.clock() - self.ttl)

    async def purge_expired(self) -> int:
        """Delete entries older than the TTL; returns the number removed"""
        deleted = await self.store.purge_cache_before(self.clock() - self.ttl)
        if deleted:
            logger.info(f"🗑️ Purged {deleted} expired review cache entries")
        return deleted
