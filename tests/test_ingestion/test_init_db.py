"""
Tests for database initialization
"""

from sqlalchemy import inspect

from src.ingestion.database import create_db_engine
from src.ingestion.init_db import drop_all_tables, init_database

TABLES = {"vf_transcripts", "vf_turns", "vf_sessions", "vf_events"}


class TestInitDatabase:
    """Test table creation and teardown"""

    def test_creates_tables(self, tmp_path):
        engine = init_database(engine=create_db_engine(f"sqlite:///{tmp_path / 'init.db'}"))

        assert TABLES <= set(inspect(engine).get_table_names())

    def test_idempotent_and_droppable(self, engine):
        init_database(engine=engine)
        drop_all_tables(engine=engine)

        assert not TABLES & set(inspect(engine).get_table_names())
