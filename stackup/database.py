"""
Database models for the stage state store.

Each stage owns one row in stage_states; stage_locks holds at most one
leased lock per stage. SQLite in the workspace by default, any SQLAlchemy
URL (e.g. PostgreSQL) when STACKUP_DB_URL is set.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores datetimes without zone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StageStateRecord(Base):
    """Last successful apply of a stage."""

    __tablename__ = "stage_states"

    stage = Column(String(100), primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    inputs = Column(JSON, nullable=False, default=dict)
    outputs = Column(JSON, nullable=False, default=dict)
    resources = Column(JSON, nullable=False, default=list)
    applied_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class StageLock(Base):
    """Leased lock serializing applies of one stage."""

    __tablename__ = "stage_locks"

    stage = Column(String(100), primary_key=True)
    owner = Column(String(255), nullable=False)
    acquired_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)


def create_state_engine(db_url: str) -> Engine:
    """Create engine, making sure a SQLite file's directory exists."""
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(db_url)


def get_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
