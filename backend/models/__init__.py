"""
Database models
"""
from .account import Account
from .analysis_job import AnalysisJob
from .finding import Finding
from .review_cache import ReviewCacheEntry

__all__ = ["Account", "AnalysisJob", "Finding", "ReviewCacheEntry"]
