# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
SQLAlchemy engine, session factory, declarative base, and the FastAPI
dependency that provides a transactional DB session per request.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from core.config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite is only used by the test-suite and local experiments.  An
        # in-memory database must be shared by every connection.
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    # pool_pre_ping keeps idle connections alive across MySQL's wait_timeout
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    FastAPI dependency.  Yields a session for the duration of the request,
    then closes it.  Use with Depends(get_db).

    Anything left uncommitted when the request ends is rolled back by
    ``close()``; services commit once, at the end of each operation.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
