"""
Analyses Routes
Start, poll, list and delete review analyses; read their pain points.

Features:
- POST returns immediately (202); the pipeline runs in the background
- Progress is pushed on analysis:<id>; GET /api/analyses/{id} is the polling fallback
- Every read is scoped to the authenticated owner
"""
from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel
from typing import List, Optional, Dict, Any
from datetime import datetime
from auth_middleware import verify_token, AuthContext
from dependencies import get_analysis_service, get_task_runner
from services.analysis_service import AnalysisService, star_distribution
from services.store import JobRecord
from services.task_runner import BackgroundTaskRunner
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["analyses"])


# ============================================
# REQUEST/RESPONSE MODELS
# ============================================

class StartAnalysisRequest(BaseModel):
    app_id: str


class StartAnalysisResponse(BaseModel):
    analysis_id: str
    status: str = "started"


class AppInfo(BaseModel):
    name: Optional[str] = None
    icon_url: Optional[str] = None
    rating: Optional[float] = None
    installs: Optional[str] = None


class AnalysisResponse(BaseModel):
    analysis_id: str
    app_id: str
    status: str
    diagnostic: Optional[str] = None
    review_counts: Optional[Dict[str, int]] = None
    app: AppInfo
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnalysisDetailResponse(AnalysisResponse):
    star_distribution: List[Dict[str, Any]]


class ImprovementResponse(BaseModel):
    recommendation: str
    phase: str
    effort: str
    impact: str


class FindingResponse(BaseModel):
    id: Optional[str] = None
    category: str
    severity: str
    frequency: int
    description: str
    representative_quotes: List[str]
    improvement: ImprovementResponse


class FindingsResponse(BaseModel):
    analysis_id: str
    count: int
    pain_points: List[FindingResponse]


# ============================================
# HELPER FUNCTIONS
# ============================================

def _analysis_fields(job: JobRecord) -> Dict[str, Any]:
    return {
        "analysis_id": job.id,
        "app_id": job.app_id,
        "status": job.status,
        "diagnostic": job.diagnostic,
        "review_counts": job.review_counts,
        "app": AppInfo(
            name=job.app_name,
            icon_url=job.app_icon_url,
            rating=job.app_rating,
            installs=job.app_installs,
        ),
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


# ============================================
# ANALYSES ROUTES
# ============================================

@router.post("/analyses", response_model=StartAnalysisResponse, status_code=202)
async def start_analysis(
    request: StartAnalysisRequest,
    auth: AuthContext = Depends(verify_token),
    service: AnalysisService = Depends(get_analysis_service),
    task_runner: BackgroundTaskRunner = Depends(get_task_runner),
):
    """
    Start a review analysis for a Google Play app

    The job id is returned before any collection starts; subscribe to
    ``analysis:<analysis_id>`` or poll GET /api/analyses/{id} for progress.
    """
    job = await service.create_job(auth.user_id, request.app_id)
    task_runner.submit(service.run_pipeline, job.id, name=f"analysis:{job.id}")
    logger.info(f"🔍 Started analysis {job.id} for {job.app_id}")
    return StartAnalysisResponse(analysis_id=job.id)


@router.get("/analyses", response_model=List[AnalysisResponse])
async def list_analyses(
    limit: int = Query(50, ge=1, le=200),
    auth: AuthContext = Depends(verify_token),
    service: AnalysisService = Depends(get_analysis_service),
):
    """List the caller's analyses, newest first"""
    jobs = await service.list_jobs(auth.user_id, limit)
    return [AnalysisResponse(**_analysis_fields(job)) for job in jobs]


@router.get("/analyses/{analysis_id}", response_model=AnalysisDetailResponse)
async def get_analysis(
    analysis_id: str,
    auth: AuthContext = Depends(verify_token),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Current status of one analysis (polling fallback for the progress channel)"""
    job = await service.get_job(auth.user_id, analysis_id)
    return AnalysisDetailResponse(
        **_analysis_fields(job),
        star_distribution=star_distribution(job.review_counts),
    )


@router.get("/analyses/{analysis_id}/findings", response_model=FindingsResponse)
async def get_analysis_findings(
    analysis_id: str,
    auth: AuthContext = Depends(verify_token),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Pain points of a complete analysis, most severe and most frequent first"""
    findings = await service.get_findings(auth.user_id, analysis_id)
    return FindingsResponse(
        analysis_id=analysis_id,
        count=len(findings),
        pain_points=[FindingResponse(**f) for f in findings],
    )


@router.delete("/analyses/{analysis_id}", status_code=204)
async def delete_analysis(
    analysis_id: str,
    auth: AuthContext = Depends(verify_token),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Delete an analysis and its pain points"""
    await service.delete_job(auth.user_id, analysis_id)
    return Response(status_code=204)
