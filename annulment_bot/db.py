"""Database engine utilities for the annulment ledger."""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from annulment_bot.config import get_settings


@lru_cache()
def get_engine() -> Engine:
    """Create or return a cached SQLAlchemy engine for the ledger database."""

    settings = get_settings()
    return create_engine(settings.database_url, future=True, echo=False, pool_pre_ping=True)


@contextmanager
def connection_scope(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Provide a transactional connection; commits on success, rolls back on error."""

    with (engine or get_engine()).begin() as connection:
        yield connection
