"""
Service wiring for routes

Supabase-backed store and realtime broadcaster when SUPABASE_URL and the
service role key are set; SQLAlchemy store and in-process broadcaster otherwise.
"""
from datetime import timedelta
from functools import lru_cache
import logging

from fastapi import Request

from config import get_settings
from services.analysis_service import AnalysisService
from services.cache_service import ReviewCache
from services.extraction_client import ExtractionClient
from services.progress_broadcaster import LocalBroadcaster, ProgressBroadcaster, RealtimeBroadcaster
from services.review_source import GooglePlayReviewSource, ReviewSource
from services.sample_collector import SampleCollector
from services.store import AnalysisStore
from services.task_runner import BackgroundTaskRunner

logger = logging.getLogger(__name__)


_store: AnalysisStore = None
_service: AnalysisService = None


async def get_store() -> AnalysisStore:
    """Get or create the global analysis store"""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.use_supabase:
            from supabase_client import get_supabase
            from services.supabase_store import SupabaseAnalysisStore
            _store = SupabaseAnalysisStore(await get_supabase())
            logger.info("✓ Using Supabase analysis store")
        else:
            from database import SessionLocal
            from services.sql_store import SqlAnalysisStore
            _store = SqlAnalysisStore(SessionLocal)
            logger.info("✓ Using SQL analysis store")
    return _store


@lru_cache()
def get_broadcaster() -> ProgressBroadcaster:
    settings = get_settings()
    if settings.use_supabase:
        return RealtimeBroadcaster(settings.supabase_url, settings.supabase_service_role_key)
    logger.warning("Supabase not configured, progress events stay in-process")
    return LocalBroadcaster()


@lru_cache()
def get_review_source() -> ReviewSource:
    settings = get_settings()
    return GooglePlayReviewSource(lang=settings.play_store_lang, country=settings.play_store_country)


@lru_cache()
def get_extraction_client() -> ExtractionClient:
    return ExtractionClient()


async def get_analysis_service() -> AnalysisService:
    """Get or create the global analysis service"""
    global _service
    if _service is None:
        settings = get_settings()
        store = await get_store()
        cache = ReviewCache(store, ttl=timedelta(hours=settings.review_cache_ttl_hours))
        collector = SampleCollector(get_review_source(), cache, per_tier=settings.reviews_per_tier)
        _service = AnalysisService(
            store=store,
            collector=collector,
            extractor=get_extraction_client(),
            broadcaster=get_broadcaster(),
            free_tier_limit=settings.free_tier_limit,
            diagnostic_max_length=settings.diagnostic_max_length,
        )
    return _service


def get_task_runner(request: Request) -> BackgroundTaskRunner:
    return request.app.state.task_runner
