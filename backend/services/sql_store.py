"""
SQL Analysis Store
SQLAlchemy implementation of AnalysisStore. Sessions are synchronous, so every
call runs in the threadpool.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from errors import PersistenceError
from models import Account, AnalysisJob, Finding, ReviewCacheEntry
from services.store import AccountRecord, AnalysisStore, CacheEntry, JobRecord, as_utc

logger = logging.getLogger(__name__)


def _job_record(job: AnalysisJob) -> JobRecord:
    return JobRecord(
        id=job.id,
        user_id=job.user_id,
        app_id=job.app_id,
        status=job.status,
        diagnostic=job.diagnostic,
        review_counts=job.review_counts,
        app_name=job.app_name,
        app_icon_url=job.app_icon_url,
        app_rating=job.app_rating,
        app_installs=job.app_installs,
        created_at=as_utc(job.created_at),
        updated_at=as_utc(job.updated_at),
    )


def _finding_dict(finding: Finding) -> Dict[str, Any]:
    return {
        "id": finding.id,
        "analysis_id": finding.analysis_id,
        "category": finding.category,
        "severity": finding.severity,
        "frequency": finding.frequency,
        "description": finding.description,
        "representative_quotes": finding.representative_quotes or [],
        "improvement": finding.improvement or {},
        "created_at": as_utc(finding.created_at),
    }


class SqlAnalysisStore(AnalysisStore):
    """AnalysisStore backed by a SQLAlchemy session factory"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def _run(self, fn, *args):
        def work():
            session: Session = self.session_factory()
            try:
                result = fn(session, *args)
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        return await run_in_threadpool(work)

    # ============================================
    # ACCOUNTS
    # ============================================

    async def get_account(self, user_id: str) -> Optional[AccountRecord]:
        def fn(session: Session):
            account = session.get(Account, user_id)
            if account is None:
                return None
            return AccountRecord(id=account.id, plan=account.plan, analysis_count=account.analysis_count)

        return await self._run(fn)

    async def ensure_account(self, user_id: str) -> AccountRecord:
        def fn(session: Session):
            account = session.get(Account, user_id)
            if account is None:
                account = Account(id=user_id, plan="free", analysis_count=0)
                session.add(account)
                try:
                    session.flush()
                except IntegrityError:
                    # Created concurrently by another request
                    session.rollback()
                    account = session.get(Account, user_id)
                logger.info(f"Created account row for {user_id}")
            return AccountRecord(id=account.id, plan=account.plan, analysis_count=account.analysis_count)

        return await self._run(fn)

    async def increment_analysis_count(self, user_id: str) -> int:
        def fn(session: Session):
            session.execute(
                update(Account)
                .where(Account.id == user_id)
                .values(analysis_count=Account.analysis_count + 1)
            )
            return session.execute(
                select(Account.analysis_count).where(Account.id == user_id)
            ).scalar_one()

        return await self._run(fn)

    # ============================================
    # JOBS
    # ============================================

    async def create_job(self, user_id: str, app_id: str) -> JobRecord:
        def fn(session: Session):
            job = AnalysisJob(user_id=user_id, app_id=app_id, status="pending")
            session.add(job)
            session.flush()
            session.refresh(job)
            return _job_record(job)

        return await self._run(fn)

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        def fn(session: Session):
            job = session.get(AnalysisJob, job_id)
            return _job_record(job) if job else None

        return await self._run(fn)

    async def list_jobs(self, user_id: str, limit: int = 50) -> List[JobRecord]:
        def fn(session: Session):
            jobs = session.execute(
                select(AnalysisJob)
                .where(AnalysisJob.user_id == user_id)
                .order_by(AnalysisJob.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return [_job_record(job) for job in jobs]

        return await self._run(fn)

    async def update_job(self, job_id: str, **fields: Any) -> None:
        self._check_job_fields(fields)

        def fn(session: Session):
            session.execute(update(AnalysisJob).where(AnalysisJob.id == job_id).values(**fields))

        await self._run(fn)

    async def delete_job(self, job_id: str) -> None:
        def fn(session: Session):
            job = session.get(AnalysisJob, job_id)
            if job is not None:
                session.delete(job)

        await self._run(fn)

    # ============================================
    # FINDINGS
    # ============================================

    async def insert_findings(self, analysis_id: str, rows: List[Dict[str, Any]]) -> int:
        def fn(session: Session):
            session.add_all([Finding(**{**row, "analysis_id": analysis_id}) for row in rows])
            session.flush()
            return len(rows)

        try:
            return await self._run(fn)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to insert findings: {e}", {"analysis_id": analysis_id}) from e

    async def list_findings(self, analysis_id: str) -> List[Dict[str, Any]]:
        def fn(session: Session):
            findings = session.execute(
                select(Finding).where(Finding.analysis_id == analysis_id)
            ).scalars().all()
            return [_finding_dict(f) for f in findings]

        return await self._run(fn)

    # ============================================
    # REVIEW CACHE
    # ============================================

    async def get_cache_entry(self, app_id: str, star_tier: int) -> Optional[CacheEntry]:
        def fn(session: Session):
            entry = session.execute(
                select(ReviewCacheEntry).where(
                    ReviewCacheEntry.app_id == app_id,
                    ReviewCacheEntry.star_tier == star_tier,
                )
            ).scalar_one_or_none()
            if entry is None:
                return None
            return CacheEntry(
                app_id=entry.app_id,
                star_tier=entry.star_tier,
                reviews=list(entry.reviews or []),
                cached_at=as_utc(entry.cached_at),
            )

        return await self._run(fn)

    async def upsert_cache_entry(
        self,
        app_id: str,
        star_tier: int,
        reviews: List[Dict[str, Any]],
        cached_at: datetime,
    ) -> None:
        def fn(session: Session):
            entry = session.execute(
                select(ReviewCacheEntry).where(
                    ReviewCacheEntry.app_id == app_id,
                    ReviewCacheEntry.star_tier == star_tier,
                )
            ).scalar_one_or_none()
            if entry is None:
                session.add(ReviewCacheEntry(
                    app_id=app_id, star_tier=star_tier, reviews=reviews, cached_at=cached_at
                ))
            else:
                entry.reviews = reviews
                entry.cached_at = cached_at

        await self._run(fn)

    async def count_cache_before(self, cutoff: datetime) -> int:
        def fn(session: Session):
            return session.execute(
                select(func.count()).select_from(ReviewCacheEntry).where(ReviewCacheEntry.cached_at < cutoff)
            ).scalar_one()

        return await self._run(fn)

    async def purge_cache_before(self, cutoff: datetime) -> int:
        def fn(session: Session):
            result = session.execute(delete(ReviewCacheEntry).where(ReviewCacheEntry.cached_at < cutoff))
            return result.rowcount or 0

        return await self._run(fn)
