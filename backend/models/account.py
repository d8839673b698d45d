"""
Account model - per-owner plan and lifetime analysis counter
"""
from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # auth subject (Supabase user id)
    plan = Column(String(20), nullable=False, default="free")  # free, builder, pro, agency
    analysis_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    analyses = relationship("AnalysisJob", back_populates="owner", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Account {self.id} - {self.plan} ({self.analysis_count})>"
