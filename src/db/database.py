from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.db.models.base import Base


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the offline cache and make sure its tables exist.

    File-backed sqlite URLs get their parent directory created. The cache is
    written from a worker thread, so sqlite connections are not pinned to the
    creating thread.
    """
    url = make_url(database_url)
    kwargs: dict[str, object] = {"echo": echo, "pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database and url.database != ":memory:":
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        else:
            # one shared connection, otherwise each thread sees its own empty database
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)
    init_db(engine)
    return engine


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)
    logger.debug(f"Offline cache tables initialized on {engine.url}")


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()
