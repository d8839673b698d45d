"""
Analysis Store
Persistence contract for accounts, analysis jobs, findings and the review cache.

Two backends implement it:
- SupabaseAnalysisStore (production, PostgREST through supabase-py)
- SqlAnalysisStore (local development and tests, SQLAlchemy)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class AccountRecord:
    id: str
    plan: str = "free"
    analysis_count: int = 0


@dataclass
class JobRecord:
    id: str
    user_id: str
    app_id: str
    status: str = "pending"
    diagnostic: Optional[str] = None
    review_counts: Optional[Dict[str, int]] = None
    app_name: Optional[str] = None
    app_icon_url: Optional[str] = None
    app_rating: Optional[float] = None
    app_installs: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CacheEntry:
    app_id: str
    star_tier: int
    reviews: List[Dict[str, Any]] = field(default_factory=list)
    cached_at: Optional[datetime] = None


JOB_FIELDS = {
    "status", "diagnostic", "review_counts",
    "app_name", "app_icon_url", "app_rating", "app_installs",
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC (SQLite drops tzinfo)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AnalysisStore(ABC):
    """Async persistence interface used by the services"""

    # Accounts
    @abstractmethod
    async def get_account(self, user_id: str) -> Optional[AccountRecord]:
        ...

    @abstractmethod
    async def ensure_account(self, user_id: str) -> AccountRecord:
        """Return the account, creating a free-plan row on first use"""

    @abstractmethod
    async def increment_analysis_count(self, user_id: str) -> int:
        """Atomically add one to the owner's lifetime counter; returns the new value"""

    # Jobs
    @abstractmethod
    async def create_job(self, user_id: str, app_id: str) -> JobRecord:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    async def list_jobs(self, user_id: str, limit: int = 50) -> List[JobRecord]:
        """Owner's jobs, newest first"""

    @abstractmethod
    async def update_job(self, job_id: str, **fields: Any) -> None:
        ...

    @abstractmethod
    async def delete_job(self, job_id: str) -> None:
        """Delete a job and, by cascade, its findings"""

    # Findings
    @abstractmethod
    async def insert_findings(self, analysis_id: str, rows: List[Dict[str, Any]]) -> int:
        """Insert all rows as one batch; either all land or none do"""

    @abstractmethod
    async def list_findings(self, analysis_id: str) -> List[Dict[str, Any]]:
        ...

    # Review cache
    @abstractmethod
    async def get_cache_entry(self, app_id: str, star_tier: int) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    async def upsert_cache_entry(
        self,
        app_id: str,
        star_tier: int,
        reviews: List[Dict[str, Any]],
        cached_at: datetime,
    ) -> None:
        """Insert or replace the entry for (app_id, star_tier); last writer wins"""

    @abstractmethod
    async def count_cache_before(self, cutoff: datetime) -> int:
        ...

    @abstractmethod
    async def purge_cache_before(self, cutoff: datetime) -> int:
        """Delete entries cached before ``cutoff``; returns how many were removed"""

    @staticmethod
    def _check_job_fields(fields: Dict[str, Any]) -> None:
        unknown = set(fields) - JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown analysis fields: {sorted(unknown)}")
