# app/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy with PostgreSQL (SQLite works for tests and local runs).
All models are auto-imported here so create_tables() creates every table in one call.
"""

from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from app.config import settings


def build_engine(url: str):
    """Create an engine with pool settings suited to the backend in use."""
    if url.startswith("sqlite"):
        # SQLite serialises writers; wait on the lock instead of failing fast
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
    return create_engine(
        url,
        pool_pre_ping=True,          # Auto-reconnect if DB connection drops
        pool_size=10,
        max_overflow=20,
        echo=False,                  # Set True to log all SQL queries (debug only)
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency — yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from app.models.credential import Credential             # noqa
    from app.models.occupancy_event import OccupancyEvent    # noqa
    from app.models.evidence_item import EvidenceItem        # noqa

    Base.metadata.create_all(bind=bind or engine)
