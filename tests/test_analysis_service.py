"""
Tests for the analysis service (job creation and pipeline).
"""

from unittest.mock import AsyncMock

import pytest

from errors import (
    AnalysisNotCompleteError,
    AnalysisNotFoundError,
    ExtractionError,
    InvalidSubjectError,
    PersistenceError,
    QuotaExceededError,
)

from conftest import make_finding, set_account

APP_ID = "com.example.app"
OWNER = "user-1"

TERMINAL = {"complete", "error"}


def stages(broadcaster, job_id):
    return [e.stage for e in broadcaster.events_for(job_id)]


def assert_single_terminal(broadcaster, job_id, expected):
    events = broadcaster.events_for(job_id)
    terminal = [e for e in events if e.stage in TERMINAL]
    assert [e.stage for e in terminal] == [expected]
    assert events[-1].stage == expected


class TestCreateJob:

    @pytest.mark.asyncio
    async def test_creates_pending_job(self, service, store):
        job = await service.create_job(OWNER, APP_ID)

        assert job.status == "pending"
        assert job.app_id == APP_ID
        assert (await store.get_account(OWNER)).plan == "free"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("app_id", ["", "spotify", "1com.example", "com..example", "com.example.", "com.exa mple"])
    async def test_invalid_subject(self, service, store, app_id):
        with pytest.raises(InvalidSubjectError):
            await service.create_job(OWNER, app_id)

        assert await store.list_jobs(OWNER) == []

    @pytest.mark.asyncio
    async def test_quota_exceeded_on_free_plan(self, service, store, session_factory):
        set_account(session_factory, OWNER, plan="free", analysis_count=5)

        with pytest.raises(QuotaExceededError):
            await service.create_job(OWNER, APP_ID)

        assert await store.list_jobs(OWNER) == []

    @pytest.mark.asyncio
    async def test_paid_plan_has_no_ceiling(self, service, session_factory):
        set_account(session_factory, OWNER, plan="pro", analysis_count=50)

        job = await service.create_job(OWNER, APP_ID)

        assert job.status == "pending"


class TestRunPipeline:

    @pytest.mark.asyncio
    async def test_end_to_end(self, service, store, extractor, broadcaster):
        extractor.extract.return_value = [
            make_finding("High", 12),
            make_finding("Medium", 30),
            make_finding("Low", 4),
            make_finding("Low", 2, improvement={"recommendation": "Do something", "effort": "Low", "impact": "Low"}),
        ]
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        done = await store.get_job(job.id)
        assert done.status == "complete"
        assert done.diagnostic is None
        assert done.review_counts == {"1": 10, "2": 8, "3": 6}
        assert done.app_name == "Example App"
        assert done.app_rating == 4.2
        assert len(await store.list_findings(job.id)) == 3
        assert (await store.get_account(OWNER)).analysis_count == 1

        assert stages(broadcaster, job.id) == [
            "pending", "collecting",
            "collecting_tier_1", "collecting_tier_2", "collecting_tier_3",
            "collection_complete", "extracting", "extraction_complete",
            "persisting", "complete",
        ]
        percents = [e.percent for e in broadcaster.events_for(job.id)]
        assert percents == sorted(percents)
        assert percents[-1] == 100
        assert_single_terminal(broadcaster, job.id, "complete")

        samples = extractor.extract.await_args.args[0]
        assert len(samples) == 24

    @pytest.mark.asyncio
    async def test_subject_not_found(self, service, store, source, extractor, broadcaster):
        source.not_found = True
        job = await service.create_job(OWNER, "com.does.not.exist")

        await service.run_pipeline(job.id)

        failed = await store.get_job(job.id)
        assert failed.status == "error"
        assert failed.diagnostic == "subject_not_found"
        extractor.extract.assert_not_awaited()
        assert_single_terminal(broadcaster, job.id, "error")

    @pytest.mark.asyncio
    async def test_missing_metadata_is_tolerated(self, service, store, source):
        source.metadata_unavailable = True
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        done = await store.get_job(job.id)
        assert done.status == "complete"
        assert done.app_name is None

    @pytest.mark.asyncio
    async def test_no_samples(self, service, store, source, extractor, broadcaster):
        source.reviews_by_tier = {}
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        failed = await store.get_job(job.id)
        assert failed.status == "error"
        assert failed.diagnostic == "no_samples"
        extractor.extract.assert_not_awaited()
        assert_single_terminal(broadcaster, job.id, "error")

    @pytest.mark.asyncio
    async def test_one_tier_unavailable(self, service, store, source):
        source.unavailable_tiers = {2}
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        done = await store.get_job(job.id)
        assert done.status == "complete"
        assert done.review_counts == {"1": 10, "2": 0, "3": 6}

    @pytest.mark.asyncio
    async def test_extraction_failure(self, service, store, extractor, broadcaster):
        extractor.extract.side_effect = ExtractionError("RateLimitError: status 429")
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        failed = await store.get_job(job.id)
        assert failed.status == "error"
        assert failed.diagnostic == "extraction_failed: RateLimitError: status 429"
        assert await store.list_findings(job.id) == []
        assert (await store.get_account(OWNER)).analysis_count == 0
        assert_single_terminal(broadcaster, job.id, "error")

    @pytest.mark.asyncio
    async def test_no_valid_findings(self, service, store, extractor, broadcaster):
        extractor.extract.return_value = [
            make_finding(category="Crash"),
            make_finding(frequency=-1),
            {"description": "no fields"},
            "not a dict",
        ]
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        failed = await store.get_job(job.id)
        assert failed.status == "error"
        assert failed.diagnostic == "extraction_failed: no valid findings"
        assert_single_terminal(broadcaster, job.id, "error")

    @pytest.mark.asyncio
    async def test_persistence_failure(self, service, store, broadcaster):
        store.insert_findings = AsyncMock(side_effect=PersistenceError("database unavailable"))
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        failed = await store.get_job(job.id)
        assert failed.status == "error"
        assert failed.diagnostic == "persistence_failed: database unavailable"
        assert (await store.get_account(OWNER)).analysis_count == 0
        assert_single_terminal(broadcaster, job.id, "error")

    @pytest.mark.asyncio
    async def test_unexpected_error_is_truncated(self, service, store, extractor, broadcaster):
        extractor.extract.side_effect = RuntimeError("x" * 500)
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        failed = await store.get_job(job.id)
        assert failed.status == "error"
        assert failed.diagnostic == "x" * 200
        assert_single_terminal(broadcaster, job.id, "error")

    @pytest.mark.asyncio
    async def test_quota_increment_failure_keeps_complete(self, service, store, broadcaster):
        store.increment_analysis_count = AsyncMock(side_effect=RuntimeError("rpc down"))
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        assert (await store.get_job(job.id)).status == "complete"
        assert_single_terminal(broadcaster, job.id, "complete")

    @pytest.mark.asyncio
    async def test_second_run_uses_cache(self, service, source):
        first = await service.create_job(OWNER, APP_ID)
        second = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(first.id)
        await service.run_pipeline(second.id)

        assert source.review_calls == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_fail_job(self, service, store, broadcaster):
        async def broken(job_id, event):
            raise ConnectionError("realtime down")

        broadcaster._deliver = broken
        job = await service.create_job(OWNER, APP_ID)

        await service.run_pipeline(job.id)

        assert (await store.get_job(job.id)).status == "complete"

    @pytest.mark.asyncio
    async def test_unknown_job_is_ignored(self, service, broadcaster):
        await service.run_pipeline("missing-job")

        assert broadcaster.history == []


class TestReads:

    @pytest.mark.asyncio
    async def test_findings_sorted_by_severity_then_frequency(self, service, extractor):
        extractor.extract.return_value = [
            make_finding("Low", 40),
            make_finding("High", 5),
            make_finding("Medium", 9),
            make_finding("High", 20),
        ]
        job = await service.create_job(OWNER, APP_ID)
        await service.run_pipeline(job.id)

        findings = await service.get_findings(OWNER, job.id)

        assert [(f["severity"], f["frequency"]) for f in findings] == [
            ("High", 20), ("High", 5), ("Medium", 9), ("Low", 40),
        ]

    @pytest.mark.asyncio
    async def test_findings_before_complete(self, service):
        job = await service.create_job(OWNER, APP_ID)

        with pytest.raises(AnalysisNotCompleteError):
            await service.get_findings(OWNER, job.id)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_read(self, service):
        job = await service.create_job(OWNER, APP_ID)

        with pytest.raises(AnalysisNotFoundError):
            await service.get_job("someone-else", job.id)

    @pytest.mark.asyncio
    async def test_delete_cascades_findings(self, service, store):
        job = await service.create_job(OWNER, APP_ID)
        await service.run_pipeline(job.id)

        await service.delete_job(OWNER, job.id)

        assert await store.get_job(job.id) is None
        assert await store.list_findings(job.id) == []

    @pytest.mark.asyncio
    async def test_lookup_app_from_url(self, service):
        metadata = await service.lookup_app("https://play.google.com/store/apps/details?id=com.example.app&hl=en")

        assert metadata.app_id == "com.example.app"
        assert metadata.title == "Example App"

    @pytest.mark.asyncio
    async def test_lookup_rejects_garbage(self, service):
        with pytest.raises(InvalidSubjectError):
            await service.lookup_app("https://example.com/not-a-store-link")
