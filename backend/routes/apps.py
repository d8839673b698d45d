"""
App lookup route
Preview a Google Play app before starting an analysis
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import Optional
from dependencies import get_analysis_service
from services.analysis_service import AnalysisService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/apps", tags=["apps"])


class AppLookupResponse(BaseModel):
    app_id: str
    title: str
    icon: Optional[str] = None
    score: Optional[float] = None
    installs: Optional[str] = None


@router.get("/lookup", response_model=AppLookupResponse)
async def lookup_app(
    query: str = Query(..., min_length=1, description="Play Store URL or package name"),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Resolve a Play Store URL or package name to app metadata"""
    metadata = await service.lookup_app(query)
    logger.info(f"Looked up {metadata.app_id}: {metadata.title}")
    return AppLookupResponse(**metadata.to_dict())
