"""
Review Source
Fetches app metadata and star-filtered reviews from Google Play.

google-play-scraper is synchronous, so calls run in the threadpool.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from fastapi.concurrency import run_in_threadpool
from google_play_scraper import Sort, app as play_app, reviews as play_reviews
from google_play_scraper.exceptions import NotFoundError

from errors import SourceUnavailableError, SubjectNotFoundError
from models.schemas import AppMetadata

logger = logging.getLogger(__name__)

PACKAGE_ID_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")


def is_valid_package_id(app_id: str) -> bool:
    return bool(app_id) and bool(PACKAGE_ID_PATTERN.match(app_id))


def extract_package_id(query: str) -> Optional[str]:
    """
    Accept a Play Store URL or a bare package id

    Examples:
        https://play.google.com/store/apps/details?id=com.spotify.music -> com.spotify.music
        com.spotify.music -> com.spotify.music
    """
    query = (query or "").strip()
    if not query:
        return None
    if "://" in query or query.startswith("play.google.com"):
        parsed = urlparse(query if "://" in query else f"https://{query}")
        candidates = parse_qs(parsed.query).get("id") or []
        query = candidates[0] if candidates else ""
    return query if is_valid_package_id(query) else None


class ReviewSource(ABC):
    """Remote source of app metadata and reviews"""

    @abstractmethod
    async def fetch_metadata(self, app_id: str) -> AppMetadata:
        """Raises SubjectNotFoundError or SourceUnavailableError"""

    @abstractmethod
    async def fetch_reviews(self, app_id: str, star_tier: int, count: int) -> List[Dict[str, Any]]:
        """
        Raw reviews for one star rating

        Each item carries at least ``content`` and ``score``; ``at``,
        ``thumbsUpCount`` and ``userName`` when the source has them.
        Raises SubjectNotFoundError or SourceUnavailableError.
        """


class GooglePlayReviewSource(ReviewSource):
    """ReviewSource backed by google-play-scraper"""

    def __init__(self, lang: str = "en", country: str = "us"):
        self.lang = lang
        self.country = country

    async def fetch_metadata(self, app_id: str) -> AppMetadata:
        try:
            info = await run_in_threadpool(play_app, app_id, lang=self.lang, country=self.country)
        except NotFoundError as e:
            raise SubjectNotFoundError(app_id) from e
        except Exception as e:
            logger.error(f"Metadata fetch failed for {app_id}: {e}")
            raise SourceUnavailableError(f"Metadata fetch failed: {e}", {"app_id": app_id}) from e

        score = info.get("score")
        return AppMetadata(
            app_id=app_id,
            title=info.get("title") or app_id,
            icon=info.get("icon"),
            score=round(score, 1) if score is not None else None,
            installs=info.get("installs"),
        )

    async def fetch_reviews(self, app_id: str, star_tier: int, count: int) -> List[Dict[str, Any]]:
        try:
            result, _token = await run_in_threadpool(
                play_reviews,
                app_id,
                lang=self.lang,
                country=self.country,
                sort=Sort.NEWEST,
                count=count,
                filter_score_with=star_tier,
            )
        except NotFoundError as e:
            raise SubjectNotFoundError(app_id) from e
        except Exception as e:
            logger.warning(f"Review fetch failed for {app_id} (tier {star_tier}): {e}")
            raise SourceUnavailableError(
                f"Review fetch failed: {e}", {"app_id": app_id, "star_tier": star_tier}
            ) from e

        return result or []
