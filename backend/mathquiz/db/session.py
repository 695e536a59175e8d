from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mathquiz.core.config import settings
from mathquiz.db.base import Base


def make_engine(url: str | None = None) -> Engine:
    use_url = (url or settings.local_database_url or "").strip()
    if use_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in use_url:
            kwargs["poolclass"] = StaticPool
        return create_engine(use_url, **kwargs)
    return create_engine(use_url, pool_pre_ping=True)


def make_session_factory(engine: Engine, *, create_tables: bool = True) -> sessionmaker:
    if create_tables:
        # Import models so they are registered in Base.metadata before create_all.
        from mathquiz.models import attempt, user  # noqa: F401

        Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
