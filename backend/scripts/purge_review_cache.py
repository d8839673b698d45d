#!/usr/bin/env python3
"""
Maintenance Script: Purge Review Cache
Deletes review cache entries older than the cache TTL (24h by default).
Stale entries are already ignored on read; this only reclaims storage.
"""
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import get_settings
from dependencies import get_store
from services.cache_service import ReviewCache
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def purge_review_cache(cache: ReviewCache, dry_run: bool = False) -> int:
    """
    Purge expired review cache entries

    Args:
        cache: Review cache to purge
        dry_run: If True, only count what would be deleted

    Returns:
        Number of entries deleted (or that would be deleted)
    """
    if dry_run:
        count = await cache.count_expired()
        logger.info(f"DRY RUN - Would delete {count} cache entries older than {cache.ttl}")
        return count

    deleted = await cache.purge_expired()
    logger.info(f"✅ Deleted {deleted} cache entries older than {cache.ttl}")
    return deleted


async def main(dry_run: bool, ttl_hours: int) -> int:
    store = await get_store()
    if not get_settings().use_supabase:
        from database import engine, Base
        import models  # noqa: F401
        Base.metadata.create_all(bind=engine)
    cache = ReviewCache(store, ttl=timedelta(hours=ttl_hours))
    return await purge_review_cache(cache, dry_run=dry_run)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Delete review cache entries older than the TTL")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be deleted without deleting")
    parser.add_argument(
        "--ttl-hours",
        type=int,
        default=get_settings().review_cache_ttl_hours,
        help="Entries older than this many hours are deleted",
    )
    args = parser.parse_args()

    asyncio.run(main(args.dry_run, args.ttl_hours))
