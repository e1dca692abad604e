"""Metadata database engine and session helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Declarative base for every metadata record."""


_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def set_engine(engine: Engine) -> None:
    """Set the global engine (called from app lifespan or a CLI entry point)."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)


def get_engine() -> Engine:
    """Return the global engine. Raises RuntimeError if not set."""
    if _engine is None:
        raise RuntimeError("Metadata database engine not initialized")
    return _engine


def init_schema() -> None:
    """Create the metadata tables that do not exist yet."""
    # Model modules register their tables on Base when imported
    import datastores.services  # noqa: F401
    import metastore.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def new_session() -> Session:
    get_engine()
    return _session_factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session closed on exit. Record methods commit their own changes."""
    session = new_session()
    try:
        yield session
    finally:
        session.close()


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a metadata session."""
    with session_scope() as session:
        yield session
