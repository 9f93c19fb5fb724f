"""Persistence for calls, rule specs and pipeline outputs."""

from .database import Base, create_db_engine, create_session_factory, init_db
from .store import PipelineStore

__all__ = [
    "Base",
    "PipelineStore",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
