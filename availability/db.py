"""SQLAlchemy engine and session factory for the response store."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

_IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_db_engine(url: str, echo: bool = False) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in _IN_MEMORY_URLS:
        # one shared connection, otherwise every pooled connection gets its own empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=echo, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create tables for every model registered on ``Base``."""
    # the table module registers ResponseRow on Base when imported
    from availability.repos import sql  # noqa: F401

    Base.metadata.create_all(bind=engine)
