"""
Shared fixtures: SQLite-backed store, fake review source, mocked extractor.
"""

import os
import time

# Must be set before config/database are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = ""
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-enough-bytes-for-hs256"
os.environ["OPENAI_API_KEY"] = "test-openai-key"

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import jwt
import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine
from errors import SourceUnavailableError, SubjectNotFoundError
from models import Account
from models.schemas import AppMetadata
from services.analysis_service import AnalysisService
from services.cache_service import ReviewCache
from services.extraction_client import ExtractionClient
from services.progress_broadcaster import LocalBroadcaster
from services.review_source import ReviewSource
from services.sample_collector import SampleCollector
from services.sql_store import SqlAnalysisStore

JWT_SECRET = os.environ["SUPABASE_JWT_SECRET"]


class FakeClock:
    """Controllable UTC clock"""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeReviewSource(ReviewSource):
    """In-memory review source with call counting"""

    def __init__(self, reviews_by_tier: Dict[int, List[Dict[str, Any]]] = None, title: str = "Example App"):
        self.reviews_by_tier = reviews_by_tier or {}
        self.title = title
        self.not_found = False
        self.metadata_unavailable = False
        self.unavailable_tiers = set()
        self.metadata_calls = 0
        self.review_calls: List[int] = []

    async def fetch_metadata(self, app_id: str) -> AppMetadata:
        self.metadata_calls += 1
        if self.not_found:
            raise SubjectNotFoundError(app_id)
        if self.metadata_unavailable:
            raise SourceUnavailableError("metadata down")
        return AppMetadata(app_id=app_id, title=self.title, icon="https://img/icon.png", score=4.2, installs="1,000,000+")

    async def fetch_reviews(self, app_id: str, star_tier: int, count: int) -> List[Dict[str, Any]]:
        self.review_calls.append(star_tier)
        if self.not_found:
            raise SubjectNotFoundError(app_id)
        if star_tier in self.unavailable_tiers:
            raise SourceUnavailableError("throttled")
        return list(self.reviews_by_tier.get(star_tier, []))[:count]


def make_review(score: int, text: str = None, name: str = "Jane Realname") -> Dict[str, Any]:
    return {
        "content": text or f"This app keeps failing when I open it ({score} stars)",
        "score": score,
        "at": datetime(2025, 1, 1, 9, 30),
        "thumbsUpCount": 3,
        "userName": name,
    }


def make_reviews(score: int, n: int) -> List[Dict[str, Any]]:
    return [make_review(score, f"Review number {i} about crashes and slow loading, {score} stars") for i in range(n)]


def make_finding(severity: str = "High", frequency: int = 12, **overrides) -> Dict[str, Any]:
    finding = {
        "category": "Bug",
        "severity": severity,
        "frequency": frequency,
        "description": "App crashes on launch after the latest update",
        "representative_quotes": ["crashes every time", "can't even open it"],
        "improvement": {
            "recommendation": "Add crash reporting and fix the startup regression",
            "phase": "Quick Win",
            "effort": "Low",
            "impact": "High",
        },
    }
    finding.update(overrides)
    return finding


def make_token(sub="user-1", aud="authenticated", exp_offset=3600, secret=JWT_SECRET, **claims) -> str:
    payload = {"aud": aud, "exp": int(time.time()) + exp_offset, "email": "dev@example.com", **claims}
    if sub is not None:
        payload["sub"] = sub
    return jwt.encode(payload, secret, algorithm="HS256")


def set_account(session_factory, user_id: str, plan: str = "free", analysis_count: int = 0) -> None:
    session = session_factory()
    try:
        session.merge(Account(id=user_id, plan=plan, analysis_count=analysis_count))
        session.commit()
    finally:
        session.close()


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so background tasks and request handlers get their own connections
    engine = build_engine(f"sqlite:///{tmp_path}/insightstore-test.db")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlAnalysisStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(store, clock):
    return ReviewCache(store, ttl=timedelta(hours=24), clock=clock)


@pytest.fixture
def source():
    return FakeReviewSource({1: make_reviews(1, 10), 2: make_reviews(2, 8), 3: make_reviews(3, 6)})


@pytest.fixture
def collector(source, cache):
    return SampleCollector(source, cache, per_tier=100)


@pytest.fixture
def extractor():
    mock = AsyncMock(spec=ExtractionClient)
    mock.extract.return_value = [make_finding("High", 12), make_finding("Medium", 30), make_finding("Low", 4)]
    return mock


@pytest.fixture
def broadcaster():
    return LocalBroadcaster(record=True)


@pytest.fixture
def service(store, collector, extractor, broadcaster):
    return AnalysisService(
        store=store,
        collector=collector,
        extractor=extractor,
        broadcaster=broadcaster,
        free_tier_limit=5,
        diagnostic_max_length=200,
    )
