"""
Engine and session factory helpers
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import SyncConfig

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections are shared across worker threads"""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(database_url, pool_pre_ping=True)


def create_session_factory(config: Optional[SyncConfig] = None, engine: Optional[Engine] = None) -> sessionmaker:
    """Build a sessionmaker bound to the configured database"""
    if engine is None:
        config = config or SyncConfig()
        engine = create_db_engine(config.database_url)
    return sessionmaker(bind=engine, expire_on_commit=False)


def dialect_insert(session: Session, table):
    """
    Return an INSERT construct supporting ON CONFLICT for the session's dialect

    PostgreSQL is the production store; SQLite is used for local runs and tests.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported for dialect '{dialect}'")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
