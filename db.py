"""SQLAlchemy engine and session factory."""

import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

import config

Base = declarative_base()


def make_engine(url: Optional[str] = None) -> Engine:
    url = url or config.DATABASE_URL
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        path = url.split("///", 1)[1] if "///" in url else ""
        if not path or path == ":memory:":
            kwargs["poolclass"] = StaticPool
        elif os.path.dirname(path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
        return create_engine(url, **kwargs)

    return create_engine(
        url,
        pool_size=int(os.getenv("DB_POOL_SIZE", 5)),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", 10)),
        pool_pre_ping=True,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    # registers the tables on Base.metadata
    import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
