"""
Manages the SQLite database holding targets, snapshots and the update log.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Sequence

import aiosqlite
import structlog
from sqlalchemy import create_engine

from rankharvest.config.config import SQLiteConfig
from rankharvest.protocols import Digest, Record, Snapshot, Target, compute_content_hash, utcnow

from .schema import metadata as db_metadata

logger = structlog.get_logger(__name__)

# Incremented whenever the schema in schema.py changes.
CURRENT_SCHEMA_VERSION = 1

_RECORD_COLUMNS = "rank, name, character_class, server, clan, power_score, region"


def _split_key(target_key: str) -> tuple[str, str]:
    """Region names never contain "_", so the first one ends the region."""
    region, _, server = target_key.partition("_")
    return region, server


def _parse_time(value: str | datetime | None) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return utcnow()
    return datetime.fromisoformat(value)


class SnapshotStore:
    """Persistent snapshot storage with atomic per-target replacement."""

    def __init__(self, config: SQLiteConfig):
        self.config = config
        self.db_path = Path(config.db_path)
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=config.pool_size)
        self._connections: List[aiosqlite.Connection] = []
        self._write_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Creates the connection pool and runs migrations."""
        if self._initialized:
            return
        for _ in range(self.config.pool_size):
            conn = await self._create_connection()
            self._connections.append(conn)
            await self._pool.put(conn)

        async with self.get_connection() as conn:
            await self._run_migrations(conn)
        self._initialized = True

    async def close(self) -> None:
        for conn in self._connections:
            await conn.close()
        self._connections.clear()
        self._pool = asyncio.Queue(maxsize=self.config.pool_size)
        self._initialized = False

    async def _create_connection(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path)
        if self.config.wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        await conn.execute("PRAGMA busy_timeout = 5000;")
        conn.row_factory = aiosqlite.Row
        return conn

    @asynccontextmanager
    async def get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Gets a connection from the pool."""
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """A write transaction; rolled back if the body raises."""
        async with self._write_lock, self.get_connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def _run_migrations(self, conn: aiosqlite.Connection) -> None:
        cursor = await conn.execute("PRAGMA user_version;")
        version_row = await cursor.fetchone()
        current_version = version_row[0] if version_row is not None else 0

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info("Migrating database schema", current=current_version, target=CURRENT_SCHEMA_VERSION)
            engine = create_engine(f"sqlite:///{self.db_path}")
            try:
                await asyncio.to_thread(db_metadata.create_all, engine)
            finally:
                engine.dispose()
            await conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION};")
            await conn.commit()
            logger.info("Database migration complete")

    # --- Targets ---

    async def register_targets(self, targets: Iterable[Target]) -> None:
        """Insert or refresh the configured targets without touching their status."""
        rows = [(t.key, t.region, t.server, t.region_id, t.server_id) for t in targets]
        if not rows:
            return
        async with self.transaction() as conn:
            await conn.executemany(
                """
                INSERT INTO targets (key, region, server, region_id, server_id, is_active)
                VALUES (?, ?, ?, ?, ?, 1)
                ON CONFLICT(key) DO UPDATE SET
                    region = excluded.region,
                    server = excluded.server,
                    region_id = excluded.region_id,
                    server_id = excluded.server_id
                """,
                rows,
            )

    async def _set_active(self, target_key: str, active: bool, reason: str | None) -> None:
        region, server = _split_key(target_key)
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO targets (key, region, server, is_active, inactive_reason, last_update)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    is_active = excluded.is_active,
                    inactive_reason = excluded.inactive_reason,
                    last_update = excluded.last_update
                """,
                (target_key, region, server, int(active), reason, utcnow().isoformat()),
            )

    async def mark_target_active(self, target_key: str) -> None:
        await self._set_active(target_key, True, None)

    async def mark_target_inactive(self, target_key: str, reason: str | None = None) -> None:
        await self._set_active(target_key, False, reason)
        logger.warning("Target marked inactive", target=target_key, reason=reason)

    async def is_target_active(self, target_key: str) -> Optional[bool]:
        async with self.get_connection() as conn:
            cursor = await conn.execute("SELECT is_active FROM targets WHERE key = ?", (target_key,))
            row = await cursor.fetchone()
        return None if row is None else bool(row["is_active"])

    async def list_active_targets(self) -> List[Target]:
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT region, server, region_id, server_id FROM targets
                WHERE is_active = 1
                ORDER BY region, server
                """
            )
            rows = await cursor.fetchall()
        return [
            Target(region=r["region"], server=r["server"], region_id=r["region_id"] or 0, server_id=r["server_id"] or 0)
            for r in rows
        ]

    # --- Snapshots ---

    async def replace_snapshot(self, target_key: str, records: Sequence[Record], source_tag: str) -> Snapshot:
        """Store a new snapshot for the target and drop those beyond the retained history.

        Insert and delete happen in one transaction, so readers see either the
        previous or the new snapshot, never a partial one.
        """
        captured_at = utcnow()
        content_hash = compute_content_hash(records)
        keep = self.config.keep_history + 1
        region, server = _split_key(target_key)

        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO snapshots (target_key, captured_at, source_tag, content_hash, record_count)
                VALUES (?, ?, ?, ?, ?)
                """,
                (target_key, captured_at.isoformat(), source_tag, content_hash, len(records)),
            )
            snapshot_id = cursor.lastrowid
            await conn.executemany(
                f"INSERT INTO records (snapshot_id, {_RECORD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        snapshot_id,
                        r.rank,
                        r.name,
                        r.character_class.value,
                        r.server,
                        r.clan,
                        r.power_score,
                        r.region,
                    )
                    for r in records
                ],
            )
            await conn.execute(
                """
                DELETE FROM snapshots
                WHERE target_key = ? AND id NOT IN (
                    SELECT id FROM snapshots WHERE target_key = ? ORDER BY id DESC LIMIT ?
                )
                """,
                (target_key, target_key, keep),
            )
            await conn.execute(
                """
                INSERT INTO targets (key, region, server, is_active, last_update)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(key) DO UPDATE SET
                    is_active = 1, inactive_reason = NULL, last_update = excluded.last_update
                """,
                (target_key, region, server, captured_at.isoformat()),
            )

        logger.info("Snapshot stored", target=target_key, snapshot_id=snapshot_id, records=len(records))
        return Snapshot(
            id=snapshot_id,
            target_key=target_key,
            captured_at=captured_at,
            source_tag=source_tag,
            content_hash=content_hash,
            records=tuple(records),
        )

    async def _load_snapshot(self, target_key: str, offset: int) -> Optional[Snapshot]:
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM snapshots WHERE target_key = ? ORDER BY id DESC LIMIT 1 OFFSET ?",
                (target_key, offset),
            )
            header = await cursor.fetchone()
            if header is None:
                return None
            cursor = await conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE snapshot_id = ? ORDER BY rank, id",
                (header["id"],),
            )
            rows = await cursor.fetchall()

        return Snapshot(
            id=header["id"],
            target_key=header["target_key"],
            captured_at=_parse_time(header["captured_at"]),
            source_tag=header["source_tag"],
            content_hash=header["content_hash"],
            records=tuple(Record.from_dict(dict(row)) for row in rows),
        )

    async def get_latest_snapshot(self, target_key: str) -> Optional[Snapshot]:
        return await self._load_snapshot(target_key, 0)

    async def get_previous_snapshot(self, target_key: str) -> Optional[Snapshot]:
        return await self._load_snapshot(target_key, 1)

    async def get_digest(self, target_key: str, top_n: int = 10) -> Optional[Digest]:
        """Digest of the latest snapshot, loading only its top records."""
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, record_count, content_hash FROM snapshots WHERE target_key = ? ORDER BY id DESC LIMIT 1",
                (target_key,),
            )
            header = await cursor.fetchone()
            if header is None:
                return None
            cursor = await conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE snapshot_id = ? ORDER BY rank, id LIMIT ?",
                (header["id"], top_n),
            )
            rows = await cursor.fetchall()

        return Digest(
            target_key=target_key,
            record_count=header["record_count"],
            top_records=tuple(Record.from_dict(dict(row)) for row in rows),
            hash=header["content_hash"],
        )

    # --- Update log ---

    async def start_update_log(self, update_type: str) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO update_log (update_type, status, started_at) VALUES (?, 'running', ?)",
                (update_type, utcnow().isoformat()),
            )
            return cursor.lastrowid

    async def finish_update_log(
        self, log_id: int, status: str, affected_targets: int = 0, error_message: str | None = None
    ) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                UPDATE update_log
                SET status = ?, finished_at = ?, affected_targets = ?, error_message = ?
                WHERE id = ?
                """,
                (status, utcnow().isoformat(), affected_targets, error_message, log_id),
            )

    async def recent_update_logs(self, limit: int = 10) -> List[dict]:
        async with self.get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM update_log ORDER BY id DESC LIMIT ?", (limit,))
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]
