"""
Analysis service - job creation and the review analysis pipeline

Pipeline stages and progress events:
    pending 0 -> collecting 5 -> collecting_tier_1..3 (10/20/30)
    -> collection_complete 40 -> extracting 50 -> extraction_complete 85
    -> persisting 95 -> complete 100
Any failure ends the job with status ``error`` and a single ``error`` event.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from errors import (
    AnalysisNotCompleteError,
    AnalysisNotFoundError,
    ExtractionError,
    InvalidSubjectError,
    PersistenceError,
    PipelineAbort,
    QuotaExceededError,
    SourceUnavailableError,
    SubjectNotFoundError,
)
from models.schemas import SEVERITY_RANK, AppMetadata, ExtractedFinding, JobStatus, Plan, ReviewSample
from services.extraction_client import ExtractionClient
from services.progress_broadcaster import ProgressBroadcaster
from services.review_source import extract_package_id, is_valid_package_id
from services.sample_collector import TIERS, SampleCollector
from services.store import AnalysisStore, JobRecord

logger = logging.getLogger(__name__)

TIER_PROGRESS = {1: 10, 2: 20, 3: 30}


def star_distribution(review_counts: Optional[Dict[str, int]]) -> List[Dict[str, Any]]:
    """Per-tier count and share of collected samples"""
    counts = {str(tier): int((review_counts or {}).get(str(tier), 0)) for tier in TIERS}
    total = sum(counts.values())
    return [
        {
            "stars": int(tier),
            "count": count,
            "percent": round(count * 100 / total, 1) if total else 0.0,
        }
        for tier, count in counts.items()
    ]


def sort_findings(findings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Most severe first, then most frequent"""
    return sorted(
        findings,
        key=lambda f: (SEVERITY_RANK.get(f.get("severity"), len(SEVERITY_RANK)), -int(f.get("frequency") or 0)),
    )


class AnalysisService:
    """Orchestrates analysis jobs from creation to a terminal state"""

    def __init__(
        self,
        store: AnalysisStore,
        collector: SampleCollector,
        extractor: ExtractionClient,
        broadcaster: ProgressBroadcaster,
        free_tier_limit: int = 5,
        diagnostic_max_length: int = 200,
    ):
        self.store = store
        self.collector = collector
        self.extractor = extractor
        self.broadcaster = broadcaster
        self.free_tier_limit = free_tier_limit
        self.diagnostic_max_length = diagnostic_max_length

    # ============================================
    # JOB CREATION
    # ============================================

    @staticmethod
    def validate_subject_id(app_id: str) -> str:
        app_id = (app_id or "").strip()
        if not is_valid_package_id(app_id):
            raise InvalidSubjectError(app_id)
        return app_id

    async def create_job(self, owner_id: str, app_id: str) -> JobRecord:
        """
        Validate the request and create a pending job

        Args:
            owner_id: Authenticated user id
            app_id: Google Play package name

        Returns:
            The new job (status pending)

        Raises:
            InvalidSubjectError: malformed package name
            QuotaExceededError: free plan with no analyses left
        """
        app_id = self.validate_subject_id(app_id)

        account = await self.store.ensure_account(owner_id)
        if account.plan == Plan.FREE.value and account.analysis_count >= self.free_tier_limit:
            logger.info(f"Quota exceeded for {owner_id} ({account.analysis_count}/{self.free_tier_limit})")
            raise QuotaExceededError(account.analysis_count, self.free_tier_limit)

        job = await self.store.create_job(owner_id, app_id)
        logger.info(f"Created analysis job {job.id} for {app_id} (owner {owner_id})")
        return job

    # ============================================
    # PIPELINE
    # ============================================

    async def run_pipeline(self, job_id: str) -> None:
        """
        Run the full pipeline (background task)

        Never raises: every failure is recorded on the job and broadcast as
        one terminal ``error`` event.
        """
        job = await self.store.get_job(job_id)
        if job is None:
            logger.error(f"Analysis job not found: {job_id}")
            return

        try:
            await self._run_stages(job)
        except PipelineAbort as abort:
            logger.warning(f"❌ Analysis {job_id} aborted: {abort.diagnostic}")
            await self._finish_with_error(job_id, abort.diagnostic)
        except asyncio.CancelledError:
            await self._finish_with_error(job_id, "cancelled")
            raise
        except Exception as e:
            logger.error(f"❌ Analysis {job_id} failed unexpectedly: {e}", exc_info=True)
            await self._finish_with_error(job_id, str(e) or type(e).__name__)

    async def _run_stages(self, job: JobRecord) -> None:
        job_id, app_id = job.id, job.app_id
        await self._publish(job_id, "pending", 0)

        # ===== STAGE 1: Collect =====
        await self.store.update_job(job_id, status=JobStatus.COLLECTING.value)
        await self._publish(job_id, "collecting", 5)

        try:
            metadata = await self.collector.fetch_metadata(app_id)
            await self.store.update_job(job_id, **metadata.to_job_fields())
        except SubjectNotFoundError:
            raise PipelineAbort("subject_not_found")
        except SourceUnavailableError as e:
            logger.warning(f"Continuing {job_id} without app metadata: {e}")

        samples: List[ReviewSample] = []
        review_counts: Dict[str, int] = {}
        for tier in TIERS:
            await self._publish(job_id, f"collecting_tier_{tier}", TIER_PROGRESS[tier])
            try:
                tier_samples = await self.collector.collect(app_id, tier)
            except SubjectNotFoundError:
                raise PipelineAbort("subject_not_found")
            review_counts[str(tier)] = len(tier_samples)
            samples.extend(tier_samples)

        await self._publish(job_id, "collection_complete", 40)
        if not samples:
            raise PipelineAbort("no_samples")

        await self.store.update_job(job_id, review_counts=review_counts)
        logger.info(f"📁 Collected {len(samples)} reviews for {app_id}: {review_counts}")

        # ===== STAGE 2: Extract =====
        await self.store.update_job(job_id, status=JobStatus.EXTRACTING.value)
        await self._publish(job_id, "extracting", 50)

        try:
            raw_findings = await self.extractor.extract(samples)
        except ExtractionError as e:
            raise PipelineAbort(f"extraction_failed: {e.message}")

        await self._publish(job_id, "extraction_complete", 85)
        findings = self.validate_findings(raw_findings)
        if not findings:
            raise PipelineAbort("extraction_failed: no valid findings")

        # ===== STAGE 3: Persist =====
        await self._publish(job_id, "persisting", 95)
        try:
            await self.store.insert_findings(job_id, [f.to_row(job_id) for f in findings])
        except PersistenceError as e:
            raise PipelineAbort(f"persistence_failed: {e.message}")

        await self.store.update_job(job_id, status=JobStatus.COMPLETE.value, diagnostic=None)
        try:
            count = await self.store.increment_analysis_count(job.user_id)
            logger.info(f"Analysis count for {job.user_id} is now {count}")
        except Exception as e:
            # Job is already complete; a missed increment only loosens the quota
            logger.error(f"Failed to increment analysis count for {job.user_id}: {e}", exc_info=True)

        logger.info(f"✅ Analysis {job_id} complete: {len(findings)} pain points")
        await self._publish(job_id, "complete", 100)

    @staticmethod
    def validate_findings(raw_findings: List[Any]) -> List[ExtractedFinding]:
        """Keep the findings that satisfy the schema; drop and log the rest"""
        valid = []
        for index, raw in enumerate(raw_findings):
            try:
                valid.append(ExtractedFinding.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Dropping invalid finding #{index}: {e.error_count()} error(s)")
        if len(valid) != len(raw_findings):
            logger.info(f"Kept {len(valid)}/{len(raw_findings)} findings")
        return valid

    async def _finish_with_error(self, job_id: str, diagnostic: str) -> None:
        diagnostic = diagnostic[:self.diagnostic_max_length]
        try:
            await self.store.update_job(job_id, status=JobStatus.ERROR.value, diagnostic=diagnostic)
        except Exception as e:
            logger.error(f"Failed to record error status for {job_id}: {e}", exc_info=True)
        await self._publish(job_id, "error", 100)

    async def _publish(self, job_id: str, stage: str, percent: int) -> None:
        await self.broadcaster.publish(job_id, stage, percent)

    # ============================================
    # READS
    # ============================================

    async def get_job(self, owner_id: str, job_id: str) -> JobRecord:
        """Owner's job; other owners' jobs look missing"""
        job = await self.store.get_job(job_id)
        if job is None or job.user_id != owner_id:
            raise AnalysisNotFoundError(job_id)
        return job

    async def list_jobs(self, owner_id: str, limit: int = 50) -> List[JobRecord]:
        return await self.store.list_jobs(owner_id, limit)

    async def get_findings(self, owner_id: str, job_id: str) -> List[Dict[str, Any]]:
        job = await self.get_job(owner_id, job_id)
        if job.status != JobStatus.COMPLETE.value:
            raise AnalysisNotCompleteError(job_id, job.status)
        return sort_findings(await self.store.list_findings(job_id))

    async def delete_job(self, owner_id: str, job_id: str) -> None:
        await self.get_job(owner_id, job_id)
        await self.store.delete_job(job_id)
        logger.info(f"Deleted analysis {job_id}")

    async def lookup_app(self, query: str) -> AppMetadata:
        """Metadata preview for a Play Store URL or package name"""
        app_id = extract_package_id(query)
        if app_id is None:
            raise InvalidSubjectError(query)
        return await self.collector.fetch_metadata(app_id)
