"""
Custom exceptions for the InsightStore backend.

Every error the API can surface carries a machine-readable ``code`` and the
HTTP ``status_code`` it maps to; ``main.py`` renders them as
``{"error": code, "detail": message}``.
"""
from typing import Any, Dict, Optional


class InsightStoreError(Exception):
    """Base exception for all InsightStore errors."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ============================================
# REQUEST ERRORS
# ============================================

class InvalidSubjectError(InsightStoreError):
    """App id is not a well-formed Google Play package name."""

    code = "invalid_subject"
    status_code = 400

    def __init__(self, app_id: str) -> None:
        super().__init__(f"Invalid app id: {app_id!r}", {"app_id": app_id})


class QuotaExceededError(InsightStoreError):
    """Owner has used up the free-tier analysis allowance."""

    code = "quota_exceeded"
    status_code = 403

    def __init__(self, used: int, limit: int) -> None:
        super().__init__(
            f"Free tier limit reached ({used}/{limit} analyses). Upgrade to continue.",
            {"used": used, "limit": limit},
        )


class UnauthenticatedError(InsightStoreError):
    code = "unauthenticated"
    status_code = 401


class AnalysisNotFoundError(InsightStoreError):
    code = "analysis_not_found"
    status_code = 404

    def __init__(self, analysis_id: str) -> None:
        super().__init__(f"Analysis not found: {analysis_id}", {"analysis_id": analysis_id})


class AnalysisNotCompleteError(InsightStoreError):
    code = "analysis_not_complete"
    status_code = 403

    def __init__(self, analysis_id: str, status: str) -> None:
        super().__init__(
            f"Analysis {analysis_id} is not complete (status: {status})",
            {"analysis_id": analysis_id, "status": status},
        )


# ============================================
# REVIEW SOURCE ERRORS
# ============================================

class SubjectNotFoundError(InsightStoreError):
    """Review source reports the app does not exist."""

    code = "subject_not_found"
    status_code = 404

    def __init__(self, app_id: str) -> None:
        super().__init__(f"App not found on Google Play: {app_id}", {"app_id": app_id})


class SourceUnavailableError(InsightStoreError):
    """Transient review-source failure (network, throttling, bad payload)."""

    code = "source_unavailable"
    status_code = 502


# ============================================
# EXTRACTION ERRORS
# ============================================

class ExtractionError(InsightStoreError):
    """Extraction failed after retries, or failed fatally."""

    code = "extraction_failed"
    status_code = 502


class NoValidInputError(ExtractionError):
    """Nothing left to send after sample filtering."""

    def __init__(self) -> None:
        super().__init__("No valid review text to analyze")


class ExtractionParseError(ExtractionError):
    """Model response could not be parsed into findings."""


# ============================================
# PERSISTENCE / PIPELINE
# ============================================

class PersistenceError(InsightStoreError):
    code = "persistence_failed"
    status_code = 500


class PipelineAbort(Exception):
    """Raised inside the pipeline to stop a job with a diagnostic."""

    def __init__(self, diagnostic: str) -> None:
        super().__init__(diagnostic)
        self.diagnostic = diagnostic
