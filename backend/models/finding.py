"""
Finding model - one extracted pain point of an analysis
"""
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, JSON, Integer
from sqlalchemy.orm import relationship
import uuid
from database import Base
from models.account import utcnow


class Finding(Base):
    __tablename__ = "pain_points"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    analysis_id = Column(String, ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, index=True)

    # Classification
    category = Column(String(50), nullable=False)  # Bug, UX Issue, Performance, Feature Gap, Privacy, Support
    severity = Column(String(20), nullable=False)  # High, Medium, Low
    frequency = Column(Integer, nullable=False, default=0)

    # Content
    description = Column(Text, nullable=False)
    representative_quotes = Column(JSON)  # At most 2 strings
    improvement = Column(JSON)  # recommendation, phase, effort, impact

    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    job = relationship("AnalysisJob", back_populates="findings")

    def __repr__(self):
        return f"<Finding {self.severity} {self.category}: {self.description[:40]}>"
