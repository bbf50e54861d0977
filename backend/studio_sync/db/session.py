from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from studio_sync import config

_engine: Optional[Engine] = None


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # in-memory SQLite must share a single connection across threads
        return create_engine(
            url,
            echo=config.SQL_ECHO,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=config.SQL_ECHO, pool_pre_ping=True)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _build_engine(config.DATABASE_URL)
    return _engine


def configure_engine(url: str) -> Engine:
    """Replace the process engine (tests, scripts) and create the tables on it."""
    from studio_sync.models import order  # noqa: F401  registers the tables

    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(url)
    SQLModel.metadata.create_all(_engine)
    return _engine


def get_session() -> Session:
    return Session(get_engine())
