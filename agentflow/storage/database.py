"""Database engine and session management."""

from typing import Any, Dict, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()


def create_database_engine(database_url: str, echo: bool = False,
                           connect_args: Optional[Dict[str, Any]] = None) -> Engine:
    """Create a SQLAlchemy engine for ``database_url``."""
    if database_url.startswith("sqlite"):
        if connect_args is None:
            connect_args = {"check_same_thread": False}
        kwargs: Dict[str, Any] = {"connect_args": connect_args, "echo": echo}
        # In-memory SQLite must share one connection or every session sees an empty database.
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args or {},
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine):
    """Create all database tables."""
    # Import models so they register on Base.metadata.
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_tables(engine: Engine):
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def ping(engine: Engine) -> bool:
    """Run a trivial query; raises on connection failure."""
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True
