"""
Database engine, session factory and declarative base.
"""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings


def build_engine(database_url: str):
    """
    Create an engine for the given URL.

    SQLite connections are shared across threads because the conversation
    store runs its queries in the thread pool. In-memory SQLite uses a single
    static connection so every session sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
