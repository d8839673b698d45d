"""
Business Logic Services for review analysis

This package provides:
- Review collection through a 24h cache
- Pain-point extraction with retry/backoff
- Progress broadcasting and observation
- Job orchestration and background execution
- Persistence backends (Supabase and SQLAlchemy)
"""

from .analysis_service import AnalysisService
from .cache_service import ReviewCache
from .extraction_client import ExtractionClient
from .progress_broadcaster import LocalBroadcaster, ProgressBroadcaster, RealtimeBroadcaster
from .progress_observer import ProgressObserver, ProgressState
from .sample_collector import SampleCollector
from .task_runner import BackgroundTaskRunner

__all__ = [
    "AnalysisService",
    "ReviewCache",
    "ExtractionClient",
    "ProgressBroadcaster",
    "RealtimeBroadcaster",
    "LocalBroadcaster",
    "ProgressObserver",
    "ProgressState",
    "SampleCollector",
    "BackgroundTaskRunner",
]
