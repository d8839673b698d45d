"""
Supabase Analysis Store
AnalysisStore over Supabase PostgREST, using the async service-role client.
Schema lives in supabase/migrations/001_initial_schema.sql.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import AsyncClient

from errors import PersistenceError
from services.store import AccountRecord, AnalysisStore, CacheEntry, JobRecord

logger = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _job_record(row: Dict[str, Any]) -> JobRecord:
    return JobRecord(
        id=row["id"],
        user_id=row["user_id"],
        app_id=row["app_id"],
        status=row.get("status") or "pending",
        diagnostic=row.get("diagnostic"),
        review_counts=row.get("review_counts"),
        app_name=row.get("app_name"),
        app_icon_url=row.get("app_icon_url"),
        app_rating=row.get("app_rating"),
        app_installs=row.get("app_installs"),
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _rows(result) -> List[Dict[str, Any]]:
    # maybe_single() returns None instead of a response when nothing matches
    if result is None or not result.data:
        return []
    return result.data if isinstance(result.data, list) else [result.data]


class SupabaseAnalysisStore(AnalysisStore):
    """AnalysisStore backed by Supabase tables and RPC"""

    def __init__(self, client: AsyncClient):
        self.client = client

    # ============================================
    # ACCOUNTS
    # ============================================

    async def get_account(self, user_id: str) -> Optional[AccountRecord]:
        result = await self.client.table("users") \
            .select("id, plan, analysis_count") \
            .eq("id", user_id) \
            .maybe_single() \
            .execute()
        rows = _rows(result)
        if not rows:
            return None
        row = rows[0]
        return AccountRecord(id=row["id"], plan=row.get("plan") or "free", analysis_count=row.get("analysis_count") or 0)

    async def ensure_account(self, user_id: str) -> AccountRecord:
        account = await self.get_account(user_id)
        if account is not None:
            return account
        await self.client.table("users") \
            .upsert({"id": user_id, "plan": "free", "analysis_count": 0}, on_conflict="id", ignore_duplicates=True) \
            .execute()
        logger.info(f"Created account row for {user_id}")
        return await self.get_account(user_id) or AccountRecord(id=user_id)

    async def increment_analysis_count(self, user_id: str) -> int:
        result = await self.client.rpc("increment_analysis_count", {"p_user_id": user_id}).execute()
        return int(result.data or 0)

    # ============================================
    # JOBS
    # ============================================

    async def create_job(self, user_id: str, app_id: str) -> JobRecord:
        result = await self.client.table("analyses") \
            .insert({"user_id": user_id, "app_id": app_id, "status": "pending"}) \
            .execute()
        rows = _rows(result)
        if not rows:
            raise PersistenceError("Failed to create analysis", {"app_id": app_id})
        return _job_record(rows[0])

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        # analyses.id is a uuid column; PostgREST rejects anything else with 22P02
        if not _is_uuid(job_id):
            return None
        result = await self.client.table("analyses").select("*").eq("id", job_id).maybe_single().execute()
        rows = _rows(result)
        return _job_record(rows[0]) if rows else None

    async def list_jobs(self, user_id: str, limit: int = 50) -> List[JobRecord]:
        result = await self.client.table("analyses") \
            .select("*") \
            .eq("user_id", user_id) \
            .order("created_at", desc=True) \
            .limit(limit) \
            .execute()
        return [_job_record(row) for row in _rows(result)]

    async def update_job(self, job_id: str, **fields: Any) -> None:
        self._check_job_fields(fields)
        await self.client.table("analyses").update(fields).eq("id", job_id).execute()

    async def delete_job(self, job_id: str) -> None:
        if not _is_uuid(job_id):
            return
        # pain_points rows go with it (ON DELETE CASCADE)
        await self.client.table("analyses").delete().eq("id", job_id).execute()

    # ============================================
    # FINDINGS
    # ============================================

    async def insert_findings(self, analysis_id: str, rows: List[Dict[str, Any]]) -> int:
        payload = [{**row, "analysis_id": analysis_id} for row in rows]
        try:
            await self.client.table("pain_points").insert(payload).execute()
        except APIError as e:
            raise PersistenceError(f"Failed to insert findings: {e.message}", {"analysis_id": analysis_id}) from e
        return len(payload)

    async def list_findings(self, analysis_id: str) -> List[Dict[str, Any]]:
        result = await self.client.table("pain_points").select("*").eq("analysis_id", analysis_id).execute()
        findings = []
        for row in _rows(result):
            row = dict(row)
            row["created_at"] = parse_timestamp(row.get("created_at"))
            row["representative_quotes"] = row.get("representative_quotes") or []
            row["improvement"] = row.get("improvement") or {}
            findings.append(row)
        return findings

    # ============================================
    # REVIEW CACHE
    # ============================================

    async def get_cache_entry(self, app_id: str, star_tier: int) -> Optional[CacheEntry]:
        result = await self.client.table("review_cache") \
            .select("app_id, star_tier, reviews, cached_at") \
            .eq("app_id", app_id) \
            .eq("star_tier", star_tier) \
            .maybe_single() \
            .execute()
        rows = _rows(result)
        if not rows:
            return None
        row = rows[0]
        return CacheEntry(
            app_id=row["app_id"],
            star_tier=row["star_tier"],
            reviews=row.get("reviews") or [],
            cached_at=parse_timestamp(row.get("cached_at")),
        )

    async def upsert_cache_entry(
        self,
        app_id: str,
        star_tier: int,
        reviews: List[Dict[str, Any]],
        cached_at: datetime,
    ) -> None:
        await self.client.table("review_cache") \
            .upsert(
                {
                    "app_id": app_id,
                    "star_tier": star_tier,
                    "reviews": reviews,
                    "cached_at": cached_at.isoformat(),
                },
                on_conflict="app_id,star_tier",
            ) \
            .execute()

    async def count_cache_before(self, cutoff: datetime) -> int:
        result = await self.client.table("review_cache") \
            .select("id", count="exact") \
            .lt("cached_at", cutoff.isoformat()) \
            .execute()
        return result.count or 0

    async def purge_cache_before(self, cutoff: datetime) -> int:
        result = await self.client.table("review_cache").delete().lt("cached_at", cutoff.isoformat()).execute()
        return len(_rows(result))
