"""
Database schema definition for the RankHarvest snapshot store.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, MetaData, Table, Text

# Using a standard naming convention for database objects
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

targets_table = Table(
    "targets",
    metadata,
    Column("key", Text, primary_key=True),
    Column("region", Text, nullable=False),
    Column("server", Text, nullable=False),
    Column("region_id", Integer),
    Column("server_id", Integer),
    Column("is_active", Boolean, nullable=False, default=True, server_default="1"),
    Column("inactive_reason", Text),
    Column("last_update", DateTime),
)

snapshots_table = Table(
    "snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("target_key", Text, nullable=False, index=True),
    Column("captured_at", DateTime, nullable=False),
    Column("source_tag", Text, nullable=False),
    Column("content_hash", Text, nullable=False),
    Column("record_count", Integer, nullable=False),
)

records_table = Table(
    "records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("snapshot_id", Integer, ForeignKey("snapshots.id", ondelete="CASCADE"), nullable=False),
    Column("rank", Integer, nullable=False),
    Column("name", Text, nullable=False),
    Column("character_class", Text, nullable=False),
    Column("server", Text),
    Column("clan", Text),
    Column("power_score", Integer, nullable=False, default=0),
    Column("region", Text),
)

Index("ix_records_snapshot_rank", records_table.c.snapshot_id, records_table.c.rank)

update_log_table = Table(
    "update_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("update_type", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("started_at", DateTime, nullable=False),
    Column("finished_at", DateTime),
    Column("affected_targets", Integer, default=0),
    Column("error_message", Text),
)
