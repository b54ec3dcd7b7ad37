"""
Database Session
Provides engine and session factories for the engines, tasks and scripts.
"""

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from catalog_loader.config.settings import get_settings
from catalog_loader.db.models import Base


def create_db_engine(database_url: str, pool_size: int = 5, max_overflow: int = 10) -> Engine:
    """
    Create a SQLAlchemy engine.

    SQLite connections are shared across worker threads, so the
    same-thread check is disabled there; other backends get a pool.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})

    return create_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,  # Verify connections before using
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    # Results are read after commit, so keep attributes loaded
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@lru_cache()
def get_engine() -> Engine:
    settings = get_settings()
    engine = create_db_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    init_db(engine)
    return engine


@lru_cache()
def get_session_factory() -> sessionmaker:
    return create_session_factory(get_engine())
