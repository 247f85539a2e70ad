"""
Sync state storage engine for corsync.

This module provides the SyncStore class which persists, in one SQLite
database, everything the sync engine needs to remember between runs:

    connections     One row per tenant: encrypted credentials, audit
                    metadata and rolling sync statistics
    sync_log        One row per export run (never deleted here)
    item_mappings   One row per exported record; the idempotency ledger
    export_locks    Advisory per-tenant lock held while an export runs

Storage Structure:
    data/
        corsync.db

Design Decisions:
    - Connection-per-operation with explicit transactions where a
      read-then-write must be atomic (connection upsert, lock acquisition)
    - Item mappings are upserted on their natural key
    - Timestamps are ISO 8601 strings in UTC

Thread Safety:
    The store uses SQLite's thread-safe mode and connection-per-operation
    pattern. Multiple processes should use separate SyncStore instances.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from corsync.storage.models import (
    Connection,
    ConnectionStats,
    ItemMapping,
    SyncErrorEntry,
    SyncLog,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


# Database schema version for migrations
SCHEMA_VERSION = 1


CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Platform connections, one per tenant
CREATE TABLE IF NOT EXISTS connections (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL UNIQUE,
    encrypted_api_key TEXT NOT NULL,
    api_key_hint TEXT NOT NULL,
    api_endpoint TEXT NOT NULL,
    organization_id TEXT,
    organization_name TEXT,
    audit_id TEXT,
    connection_status TEXT NOT NULL DEFAULT 'active'
        CHECK (connection_status IN ('active', 'invalid_key', 'expired', 'disconnected')),
    last_validated_at TEXT,
    last_sync_at TEXT,
    last_sync_status TEXT
        CHECK (last_sync_status IS NULL OR last_sync_status IN ('success', 'failed', 'partial')),
    last_sync_error TEXT,
    sync_enabled INTEGER NOT NULL DEFAULT 0,
    sync_frequency TEXT NOT NULL DEFAULT 'manual'
        CHECK (sync_frequency IN ('realtime', 'daily', 'manual')),
    audit_scheduled_date TEXT,
    audit_status TEXT
        CHECK (audit_status IS NULL OR audit_status IN ('pending', 'in_progress', 'completed')),
    auditor_name TEXT,
    auditor_email TEXT,
    total_items_synced INTEGER NOT NULL DEFAULT 0,
    last_export_summary_json TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Export run history
CREATE TABLE IF NOT EXISTS sync_log (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    sync_type TEXT NOT NULL
        CHECK (sync_type IN ('full_export', 'incremental', 'single_item', 'manual')),
    sync_trigger TEXT NOT NULL
        CHECK (sync_trigger IN ('user_initiated', 'auto_sync', 'scheduled', 'api_webhook')),
    status TEXT NOT NULL
        CHECK (status IN ('in_progress', 'completed', 'failed', 'partial')),
    started_at TEXT NOT NULL,
    completed_at TEXT,
    duration_seconds REAL,
    items_attempted INTEGER NOT NULL DEFAULT 0,
    items_succeeded INTEGER NOT NULL DEFAULT 0,
    items_failed INTEGER NOT NULL DEFAULT 0,
    error_details_json TEXT,
    sync_details_json TEXT,
    initiated_by TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_log_tenant ON sync_log(tenant_id, started_at);

-- Internal record to external evidence mappings
CREATE TABLE IF NOT EXISTS item_mappings (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    internal_item_type TEXT NOT NULL,
    internal_item_id TEXT NOT NULL,
    external_item_id TEXT NOT NULL,
    external_item_type TEXT NOT NULL DEFAULT 'evidence',
    cor_element INTEGER NOT NULL CHECK (cor_element BETWEEN 1 AND 14),
    question_id TEXT,
    sync_status TEXT NOT NULL DEFAULT 'synced'
        CHECK (sync_status IN ('synced', 'needs_update', 'deleted', 'failed')),
    sync_error TEXT,
    synced_at TEXT NOT NULL,
    last_updated_at TEXT,
    UNIQUE (tenant_id, internal_item_type, internal_item_id)
);

CREATE INDEX IF NOT EXISTS idx_mappings_tenant_status ON item_mappings(tenant_id, sync_status);

-- Advisory per-tenant export locks
CREATE TABLE IF NOT EXISTS export_locks (
    tenant_id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    acquired_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""

# Columns callers may change through update_connection()
UPDATABLE_CONNECTION_COLUMNS = {
    "encrypted_api_key",
    "api_key_hint",
    "api_endpoint",
    "organization_id",
    "organization_name",
    "audit_id",
    "connection_status",
    "last_validated_at",
    "last_sync_at",
    "last_sync_status",
    "last_sync_error",
    "sync_enabled",
    "sync_frequency",
    "audit_scheduled_date",
    "audit_status",
    "auditor_name",
    "auditor_email",
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class SyncStore:
    """
    Persistent storage for connections, run history and item mappings.

    Example:
        store = SyncStore(data_dir=Path("./data"))

        connection = store.get_connection("tenant-1")
        store.save_mapping(mapping)
        history = store.get_sync_history("tenant-1", limit=20)

    Attributes:
        data_dir: Base directory for data storage.
        db_path: Path to the SQLite database file.
    """

    def __init__(self, data_dir: Path | str | None = None) -> None:
        """
        Initialize the sync store.

        Args:
            data_dir: Base directory for data storage. Defaults to ~/.corsync/data
        """
        if data_dir is None:
            data_dir = Path.home() / ".corsync" / "data"
        elif isinstance(data_dir, str):
            data_dir = Path(data_dir)

        self.data_dir = data_dir
        self.db_path = data_dir / "corsync.db"

        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(CREATE_TABLES_SQL)

            cursor = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, _now()),
                )
                logger.info(f"Initialized sync database schema version {SCHEMA_VERSION}")

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with row factory set.
        """
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,  # Autocommit mode, we manage transactions manually
            check_same_thread=False,
            timeout=30,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def _row_to_connection(self, row: sqlite3.Row) -> Connection:
        data = dict(row)
        summary = data.pop("last_export_summary_json", None)
        data["last_export_summary"] = json.loads(summary) if summary else None
        return Connection.from_dict(data)

    def get_connection(self, tenant_id: str) -> Connection | None:
        """Get the tenant's connection, or None if there is none."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM connections WHERE tenant_id = ?", (tenant_id,)
            ).fetchone()
        return self._row_to_connection(row) if row else None

    def upsert_connection(self, connection: Connection) -> Connection:
        """
        Insert or update the tenant's connection in one transaction.

        An existing row keeps its id, created_at, created_by and sync
        statistics; all credential and audit fields are replaced.

        Returns:
            The connection as stored.

        Raises:
            StorageError: If the write fails.
        """
        now = _now()
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                existing = conn.execute(
                    "SELECT id FROM connections WHERE tenant_id = ?",
                    (connection.tenant_id,),
                ).fetchone()

                if existing is None:
                    conn.execute(
                        """
                        INSERT INTO connections (
                            id, tenant_id, encrypted_api_key, api_key_hint,
                            api_endpoint, organization_id, organization_name,
                            audit_id, connection_status, last_validated_at,
                            sync_enabled, sync_frequency, audit_scheduled_date,
                            audit_status, auditor_name, auditor_email,
                            total_items_synced, created_by, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            connection.id,
                            connection.tenant_id,
                            connection.encrypted_api_key,
                            connection.api_key_hint,
                            connection.api_endpoint,
                            connection.organization_id,
                            connection.organization_name,
                            connection.audit_id,
                            connection.connection_status,
                            _db_value(connection.last_validated_at),
                            _db_value(connection.sync_enabled),
                            connection.sync_frequency,
                            connection.audit_scheduled_date,
                            connection.audit_status,
                            connection.auditor_name,
                            connection.auditor_email,
                            connection.total_items_synced,
                            connection.created_by,
                            now,
                            now,
                        ),
                    )
                else:
                    conn.execute(
                        """
                        UPDATE connections SET
                            encrypted_api_key = ?, api_key_hint = ?,
                            api_endpoint = ?, organization_id = ?,
                            organization_name = ?, audit_id = ?,
                            connection_status = ?, last_validated_at = ?,
                            audit_scheduled_date = ?, audit_status = ?,
                            auditor_name = ?, auditor_email = ?, updated_at = ?
                        WHERE tenant_id = ?
                        """,
                        (
                            connection.encrypted_api_key,
                            connection.api_key_hint,
                            connection.api_endpoint,
                            connection.organization_id,
                            connection.organization_name,
                            connection.audit_id,
                            connection.connection_status,
                            _db_value(connection.last_validated_at),
                            connection.audit_scheduled_date,
                            connection.audit_status,
                            connection.auditor_name,
                            connection.auditor_email,
                            now,
                            connection.tenant_id,
                        ),
                    )

                row = conn.execute(
                    "SELECT * FROM connections WHERE tenant_id = ?",
                    (connection.tenant_id,),
                ).fetchone()
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                logger.error(f"Failed to save connection for tenant {connection.tenant_id}: {e}")
                raise StorageError(f"Failed to save connection: {e}") from e

        action = "Created" if existing is None else "Updated"
        logger.info(f"{action} connection for tenant {connection.tenant_id}")
        return self._row_to_connection(row)

    def update_connection(self, tenant_id: str, **fields: Any) -> bool:
        """
        Update selected connection columns.

        Returns:
            True if a row was updated.

        Raises:
            ValueError: If a column is not updatable.
        """
        unknown = set(fields) - UPDATABLE_CONNECTION_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update connection column(s): {', '.join(sorted(unknown))}")
        if not fields:
            return False

        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [_db_value(v) for v in fields.values()]
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE connections SET {assignments}, updated_at = ? WHERE tenant_id = ?",
                (*values, _now(), tenant_id),
            )
        return cursor.rowcount > 0

    def record_sync_outcome(
        self,
        tenant_id: str,
        status: str,
        error: str | None = None,
        items_synced: int = 0,
        summary: dict[str, Any] | None = None,
    ) -> bool:
        """
        Update a connection's rolling sync statistics after a run.

        items_synced is added to the cumulative total. The previous export
        summary is kept when summary is None.
        """
        now = _now()
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE connections SET
                    last_sync_at = ?,
                    last_sync_status = ?,
                    last_sync_error = ?,
                    total_items_synced = total_items_synced + ?,
                    last_export_summary_json = COALESCE(?, last_export_summary_json),
                    updated_at = ?
                WHERE tenant_id = ?
                """,
                (
                    now,
                    status,
                    error,
                    items_synced,
                    json.dumps(summary, default=str) if summary is not None else None,
                    now,
                    tenant_id,
                ),
            )
        return cursor.rowcount > 0

    def delete_connection(self, tenant_id: str) -> bool:
        """
        Delete the tenant's connection.

        Returns:
            True if a connection existed.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM connections WHERE tenant_id = ?", (tenant_id,)
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted connection for tenant {tenant_id}")
        return deleted

    # -------------------------------------------------------------------------
    # Sync log
    # -------------------------------------------------------------------------

    def create_sync_log(self, log: SyncLog) -> None:
        """Insert a new sync log row."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_log (
                    id, tenant_id, sync_type, sync_trigger, status, started_at,
                    completed_at, duration_seconds, items_attempted,
                    items_succeeded, items_failed, error_details_json,
                    sync_details_json, initiated_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    log.id,
                    log.tenant_id,
                    log.sync_type,
                    log.sync_trigger,
                    log.status,
                    log.started_at.isoformat(),
                    _db_value(log.completed_at),
                    log.duration_seconds,
                    log.items_attempted,
                    log.items_succeeded,
                    log.items_failed,
                    json.dumps([e.to_dict() for e in log.error_details]),
                    json.dumps(log.sync_details, default=str),
                    log.initiated_by,
                ),
            )

    def finish_sync_log(self, log: SyncLog) -> None:
        """
        Write the terminal state of a run.

        Raises:
            StorageError: If the log does not exist.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_log SET
                    status = ?, completed_at = ?, duration_seconds = ?,
                    items_attempted = ?, items_succeeded = ?, items_failed = ?,
                    error_details_json = ?, sync_details_json = ?
                WHERE id = ?
                """,
                (
                    log.status,
                    _db_value(log.completed_at),
                    log.duration_seconds,
                    log.items_attempted,
                    log.items_succeeded,
                    log.items_failed,
                    json.dumps([e.to_dict() for e in log.error_details]),
                    json.dumps(log.sync_details, default=str),
                    log.id,
                ),
            )
        if cursor.rowcount == 0:
            raise StorageError(f"Sync log not found: {log.id}")

    def _row_to_sync_log(self, row: sqlite3.Row) -> SyncLog:
        errors = json.loads(row["error_details_json"]) if row["error_details_json"] else []
        return SyncLog(
            id=row["id"],
            tenant_id=row["tenant_id"],
            sync_type=row["sync_type"],
            sync_trigger=row["sync_trigger"],
            status=row["status"],
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
            ),
            duration_seconds=row["duration_seconds"],
            items_attempted=row["items_attempted"],
            items_succeeded=row["items_succeeded"],
            items_failed=row["items_failed"],
            error_details=[SyncErrorEntry.from_dict(e) for e in errors],
            sync_details=(
                json.loads(row["sync_details_json"]) if row["sync_details_json"] else {}
            ),
            initiated_by=row["initiated_by"],
        )

    def get_sync_log(self, log_id: str) -> SyncLog | None:
        """Get a sync log by ID."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM sync_log WHERE id = ?", (log_id,)).fetchone()
        return self._row_to_sync_log(row) if row else None

    def get_sync_history(
        self, tenant_id: str, limit: int = 20, offset: int = 0
    ) -> list[SyncLog]:
        """Get the tenant's runs, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM sync_log WHERE tenant_id = ?
                ORDER BY started_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                (tenant_id, limit, offset),
            ).fetchall()
        return [self._row_to_sync_log(row) for row in rows]

    # -------------------------------------------------------------------------
    # Item mappings
    # -------------------------------------------------------------------------

    def save_mapping(self, mapping: ItemMapping) -> None:
        """
        Insert a mapping, or replace the existing one for the same record.

        Raises:
            StorageError: If the write fails.
        """
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO item_mappings (
                        id, tenant_id, internal_item_type, internal_item_id,
                        external_item_id, external_item_type, cor_element,
                        question_id, sync_status, sync_error, synced_at,
                        last_updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (tenant_id, internal_item_type, internal_item_id)
                    DO UPDATE SET
                        external_item_id = excluded.external_item_id,
                        external_item_type = excluded.external_item_type,
                        cor_element = excluded.cor_element,
                        question_id = excluded.question_id,
                        sync_status = excluded.sync_status,
                        sync_error = excluded.sync_error,
                        synced_at = excluded.synced_at,
                        last_updated_at = excluded.last_updated_at
                    """,
                    (
                        mapping.id,
                        mapping.tenant_id,
                        mapping.internal_item_type,
                        mapping.internal_item_id,
                        mapping.external_item_id,
                        mapping.external_item_type,
                        mapping.cor_element,
                        mapping.question_id,
                        mapping.sync_status,
                        mapping.sync_error,
                        mapping.synced_at.isoformat(),
                        _db_value(mapping.last_updated_at),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save item mapping: {e}") from e

    def _row_to_mapping(self, row: sqlite3.Row) -> ItemMapping:
        return ItemMapping(
            id=row["id"],
            tenant_id=row["tenant_id"],
            internal_item_type=row["internal_item_type"],
            internal_item_id=row["internal_item_id"],
            external_item_id=row["external_item_id"],
            external_item_type=row["external_item_type"],
            cor_element=row["cor_element"],
            question_id=row["question_id"],
            sync_status=row["sync_status"],
            sync_error=row["sync_error"],
            synced_at=datetime.fromisoformat(row["synced_at"]),
            last_updated_at=(
                datetime.fromisoformat(row["last_updated_at"])
                if row["last_updated_at"]
                else None
            ),
        )

    def get_mapping(
        self, tenant_id: str, item_type: str, item_id: str
    ) -> ItemMapping | None:
        """Get the mapping for one internal record."""
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM item_mappings
                WHERE tenant_id = ? AND internal_item_type = ? AND internal_item_id = ?
                """,
                (tenant_id, item_type, item_id),
            ).fetchone()
        return self._row_to_mapping(row) if row else None

    def has_mapping(self, tenant_id: str, item_type: str, item_id: str) -> bool:
        """Check whether a record has already been exported."""
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM item_mappings
                WHERE tenant_id = ? AND internal_item_type = ? AND internal_item_id = ?
                """,
                (tenant_id, item_type, item_id),
            ).fetchone()
        return row is not None

    def get_mapped_ids(self, tenant_id: str, item_type: str) -> set[str]:
        """Get the ids of all exported records of one type."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT internal_item_id FROM item_mappings
                WHERE tenant_id = ? AND internal_item_type = ?
                """,
                (tenant_id, item_type),
            ).fetchall()
        return {row[0] for row in rows}

    def list_mappings(
        self,
        tenant_id: str,
        item_type: str | None = None,
        sync_status: str | None = None,
    ) -> list[ItemMapping]:
        """List a tenant's mappings, optionally filtered."""
        sql = "SELECT * FROM item_mappings WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if item_type is not None:
            sql += " AND internal_item_type = ?"
            params.append(item_type)
        if sync_status is not None:
            sql += " AND sync_status = ?"
            params.append(sync_status)
        sql += " ORDER BY synced_at"

        with self._get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_mapping(row) for row in rows]

    def update_mapping_status(
        self,
        tenant_id: str,
        item_type: str,
        item_id: str,
        sync_status: str,
        sync_error: str | None = None,
    ) -> bool:
        """
        Change a mapping's sync status.

        Returns:
            True if the mapping exists.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE item_mappings SET
                    sync_status = ?, sync_error = ?, last_updated_at = ?
                WHERE tenant_id = ? AND internal_item_type = ? AND internal_item_id = ?
                """,
                (sync_status, sync_error, _now(), tenant_id, item_type, item_id),
            )
        return cursor.rowcount > 0

    def count_mappings(self, tenant_id: str) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM item_mappings WHERE tenant_id = ?", (tenant_id,)
            ).fetchone()
        return row[0]

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self, tenant_id: str) -> ConnectionStats | None:
        """
        Summarize a tenant's connection and run history.

        Returns:
            ConnectionStats, or None if the tenant has no connection.
        """
        connection = self.get_connection(tenant_id)
        if connection is None:
            return None

        with self._get_connection() as conn:
            pending = conn.execute(
                """
                SELECT COUNT(*) FROM item_mappings
                WHERE tenant_id = ? AND sync_status = 'needs_update'
                """,
                (tenant_id,),
            ).fetchone()[0]
            runs = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS ok,
                    COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS failed
                FROM sync_log WHERE tenant_id = ?
                """,
                (tenant_id,),
            ).fetchone()

        return ConnectionStats(
            is_connected=connection.is_active,
            connection_status=connection.connection_status,
            total_items_synced=connection.total_items_synced,
            last_sync_at=connection.last_sync_at,
            last_sync_status=connection.last_sync_status,
            pending_sync_items=pending,
            total_sync_operations=runs["total"],
            successful_syncs=runs["ok"],
            failed_syncs=runs["failed"],
        )

    # -------------------------------------------------------------------------
    # Export locks
    # -------------------------------------------------------------------------

    def acquire_export_lock(
        self, tenant_id: str, owner: str, timeout_seconds: int = 3600
    ) -> bool:
        """
        Take the tenant's export lock unless another live owner holds it.

        A lock older than its expiry is treated as abandoned and replaced.

        Returns:
            True if the lock was acquired.
        """
        now = datetime.now(UTC)
        expires = now + timedelta(seconds=timeout_seconds)
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT owner, expires_at FROM export_locks WHERE tenant_id = ?",
                    (tenant_id,),
                ).fetchone()
                if row is not None and datetime.fromisoformat(row["expires_at"]) > now:
                    conn.execute("ROLLBACK")
                    return False
                if row is not None:
                    logger.warning(
                        f"Replacing stale export lock for tenant {tenant_id} "
                        f"held by {row['owner']}"
                    )
                conn.execute(
                    """
                    INSERT OR REPLACE INTO export_locks (tenant_id, owner, acquired_at, expires_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (tenant_id, owner, now.isoformat(), expires.isoformat()),
                )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(f"Failed to acquire export lock: {e}") from e
        return True

    def release_export_lock(self, tenant_id: str, owner: str) -> None:
        """Release the tenant's export lock if this owner holds it."""
        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM export_locks WHERE tenant_id = ? AND owner = ?",
                (tenant_id, owner),
            )
