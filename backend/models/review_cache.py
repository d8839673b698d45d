"""
Review cache model - normalized reviews per (app, star tier)
"""
from sqlalchemy import Column, String, DateTime, Integer, JSON, UniqueConstraint
import uuid
from database import Base
from models.account import utcnow


class ReviewCacheEntry(Base):
    __tablename__ = "review_cache"
    __table_args__ = (UniqueConstraint("app_id", "star_tier", name="uq_review_cache_app_tier"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    app_id = Column(String(255), nullable=False)
    star_tier = Column(Integer, nullable=False)  # 1, 2 or 3
    reviews = Column(JSON, nullable=False)
    cached_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<ReviewCacheEntry {self.app_id} tier={self.star_tier}>"
