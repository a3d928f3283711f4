"""
Tests for the SQLAlchemy Core schema of the snapshot store.
"""

import pytest
from sqlalchemy import create_engine, inspect

from rankharvest.storage import schema


@pytest.mark.unit
class TestSchema:
    def test_create_all_on_memory_engine(self):
        engine = create_engine("sqlite:///:memory:")

        schema.metadata.create_all(engine)

        inspector = inspect(engine)
        assert set(inspector.get_table_names()) == {"targets", "snapshots", "records", "update_log"}
        engine.dispose()

    def test_record_foreign_key_is_named_by_convention(self):
        (fk,) = schema.records_table.foreign_key_constraints

        assert fk.name == "fk_records_snapshot_id_snapshots"
        assert fk.referred_table is schema.snapshots_table

    def test_snapshot_rank_index(self):
        names = {index.name for index in schema.records_table.indexes}

        assert "ix_records_snapshot_rank" in names
