"""
Database initialization script
Creates the transcript, turn, session and event tables
"""

import logging
import sys
from typing import Optional

from sqlalchemy.engine import Engine

from src.ingestion.config import SyncConfig
from src.ingestion.database import create_db_engine
from src.ingestion.models import Base

logger = logging.getLogger(__name__)


def _engine(config: Optional[SyncConfig], engine: Optional[Engine]) -> Engine:
    if engine is not None:
        return engine
    config = config or SyncConfig()
    logger.info(f"Connecting to database: {config.database_url.split('@')[-1]}")  # Hide credentials
    return create_db_engine(config.database_url)


def init_database(config: Optional[SyncConfig] = None, engine: Optional[Engine] = None) -> Engine:
    """Create all tables that do not exist yet"""
    engine = _engine(config, engine)

    logger.info("Creating database tables...")
    Base.metadata.create_all(engine)

    logger.info(f"Database ready: {', '.join(Base.metadata.tables.keys())}")
    return engine


def drop_all_tables(config: Optional[SyncConfig] = None, engine: Optional[Engine] = None) -> None:
    """Drop all tables (use with caution!)"""
    engine = _engine(config, engine)

    logger.warning("Dropping all tables...")
    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")


def reset_database(config: Optional[SyncConfig] = None) -> None:
    """Reset database (drop and recreate)"""
    logger.warning("Resetting database...")
    engine = _engine(config, None)
    drop_all_tables(engine=engine)
    init_database(engine=engine)
    logger.info("Database reset complete")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if len(sys.argv) > 1:
        command = sys.argv[1]

        if command == "init":
            init_database()
        elif command == "drop":
            response = input("Are you sure you want to drop all tables? (yes/no): ")
            if response.lower() == "yes":
                drop_all_tables()
            else:
                logger.info("Operation cancelled")
        elif command == "reset":
            response = input("Are you sure you want to reset the database? (yes/no): ")
            if response.lower() == "yes":
                reset_database()
            else:
                logger.info("Operation cancelled")
        else:
            print(f"Unknown command: {command}")
            print("Usage: python -m src.ingestion.init_db [init|drop|reset]")
    else:
        init_database()
