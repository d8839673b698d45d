"""
Domain types shared across services: job states, finding vocabularies,
review samples and app metadata
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    PENDING = "pending"
    COLLECTING = "collecting"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    ERROR = "error"


class Category(str, Enum):
    BUG = "Bug"
    UX_ISSUE = "UX Issue"
    PERFORMANCE = "Performance"
    FEATURE_GAP = "Feature Gap"
    PRIVACY = "Privacy"
    SUPPORT = "Support"


class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# Sort ascending for most severe first
SEVERITY_RANK = {"High": 0, "Medium": 1, "Low": 2}


class Phase(str, Enum):
    QUICK_WIN = "Quick Win"
    SHORT_TERM = "Short-Term"
    LONG_TERM = "Long-Term"


class Level(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Plan(str, Enum):
    FREE = "free"
    BUILDER = "builder"
    PRO = "pro"
    AGENCY = "agency"


# ============================================
# EXTRACTED FINDINGS
# ============================================

class ImprovementPlan(BaseModel):
    recommendation: str = Field(min_length=1)
    phase: Phase
    effort: Level
    impact: Level


class ExtractedFinding(BaseModel):
    """A pain point as returned by the model, validated before persistence"""

    category: Category
    severity: Severity
    frequency: int = Field(ge=0)
    description: str = Field(min_length=1)
    representative_quotes: List[str] = Field(default_factory=list)
    improvement: ImprovementPlan

    @field_validator("representative_quotes")
    @classmethod
    def keep_two_quotes(cls, quotes: List[str]) -> List[str]:
        return quotes[:2]

    def to_row(self, analysis_id: str) -> Dict[str, Any]:
        """Row payload for the pain_points table"""
        return {
            "analysis_id": analysis_id,
            **self.model_dump(mode="json"),
        }


# ============================================
# REVIEW SAMPLES
# ============================================

REVIEWER_PLACEHOLDER = "reviewer"


@dataclass
class ReviewSample:
    """Normalized review, with the author replaced by a fixed placeholder"""

    text: str
    score: int
    date: Optional[str] = None
    thumbs_up: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "score": self.score,
            "date": self.date,
            "thumbsUpCount": self.thumbs_up,
            "userName": REVIEWER_PLACEHOLDER,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewSample":
        return cls(
            text=data.get("text") or "",
            score=int(data.get("score") or 0),
            date=data.get("date"),
            thumbs_up=int(data.get("thumbsUpCount") or 0),
        )


@dataclass
class AppMetadata:
    app_id: str
    title: str
    icon: Optional[str] = None
    score: Optional[float] = None
    installs: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_job_fields(self) -> Dict[str, Any]:
        """Columns stored on the analyses row"""
        return {
            "app_name": self.title,
            "app_icon_url": self.icon,
            "app_rating": self.score,
            "app_installs": self.installs,
        }
