"""
Database connection and session management (SQL backend)
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from config import get_settings
import logging

logger = logging.getLogger(__name__)
settings = get_settings()

# Base class for models
Base = declarative_base()


def build_engine(database_url: str):
    """Create an engine, tuned for SQLite or a pooled server database"""
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # Single shared connection so every session sees the same in-memory DB
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )


# Create database engine - use SQLite fallback if no DATABASE_URL
database_url = settings.database_url
if not database_url:
    database_url = "sqlite:///./insightstore.db"
    logger.warning("No DATABASE_URL configured, using local SQLite database")

engine = build_engine(database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
