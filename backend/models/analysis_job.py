"""
Analysis Job model - one review analysis run for a Google Play app
"""
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, JSON, Float
from sqlalchemy.orm import relationship
import uuid
from database import Base
from models.account import utcnow


class AnalysisJob(Base):
    __tablename__ = "analyses"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Subject
    app_id = Column(String(255), nullable=False)
    app_name = Column(String(255))
    app_icon_url = Column(Text)
    app_rating = Column(Float)
    app_installs = Column(String(50))

    # Status
    status = Column(String(20), nullable=False, default="pending")  # pending, collecting, extracting, complete, error
    diagnostic = Column(Text)  # Last error text (if failed)

    # Per-tier sample counts, e.g. {"1": 100, "2": 87, "3": 64}
    review_counts = Column(JSON)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    owner = relationship("Account", back_populates="analyses")
    findings = relationship("Finding", back_populates="job", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<AnalysisJob {self.id} - {self.status}>"
