"""
Database connection using SQLAlchemy.

SQLite by default (``sqlite:///callsense.db``). In-memory SQLite URLs share a
single connection so every session sees the same data.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for the given URL."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    if _is_memory_url(database_url):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, connect_args={"check_same_thread": False})


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory. Rows stay readable after commit."""
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables if they don't exist."""
    from callsense.storage import tables  # noqa: F401 (registers tables with Base)
    Base.metadata.create_all(bind=engine)
