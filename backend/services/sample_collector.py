"""
Sample Collector
Collects normalized review samples for one app, one star tier at a time,
through the review cache.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List

from errors import SourceUnavailableError
from models.schemas import AppMetadata, ReviewSample
from services.cache_service import ReviewCache
from services.review_source import ReviewSource

logger = logging.getLogger(__name__)

TIERS = (1, 2, 3)


def normalize_review(raw: Dict[str, Any]) -> ReviewSample:
    """Keep the fields the pipeline needs; the author's name is never kept"""
    at = raw.get("at")
    if isinstance(at, datetime):
        date = at.isoformat()
    else:
        date = str(at) if at else None
    return ReviewSample(
        text=raw.get("content") or raw.get("text") or "",
        score=int(raw.get("score") or 0),
        date=date,
        thumbs_up=int(raw.get("thumbsUpCount") or 0),
    )


class SampleCollector:
    """Cache-first review collection per (app, tier)"""

    def __init__(self, source: ReviewSource, cache: ReviewCache, per_tier: int = 100):
        self.source = source
        self.cache = cache
        self.per_tier = per_tier

    async def fetch_metadata(self, app_id: str) -> AppMetadata:
        return await self.source.fetch_metadata(app_id)

    async def collect(self, app_id: str, star_tier: int) -> List[ReviewSample]:
        """
        Samples for one tier

        A fresh cache entry is returned without touching the source. On a miss
        the source is called once; a non-empty result is cached.

        Raises:
            SubjectNotFoundError: the source says the app does not exist
        """
        cached = await self.cache.get_fresh(app_id, star_tier)
        if cached is not None:
            return [ReviewSample.from_dict(item) for item in cached]

        try:
            raw = await self.source.fetch_reviews(app_id, star_tier, self.per_tier)
        except SourceUnavailableError as e:
            logger.warning(f"Tier {star_tier} unavailable for {app_id}, continuing without it: {e}")
            return []

        matching = [r for r in raw if int(r.get("score") or 0) == star_tier]
        if not matching and raw:
            # Source ignored the score filter; accept what it returned
            logger.info(f"No {star_tier}★ reviews matched for {app_id}, using {len(raw)} unfiltered reviews")
            matching = raw

        samples = [normalize_review(r) for r in matching]
        if samples:
            await self.cache.put(app_id, star_tier, [s.to_dict() for s in samples])

        logger.info(f"Collected {len(samples)} reviews for {app_id} (tier {star_tier})")
        return samples
