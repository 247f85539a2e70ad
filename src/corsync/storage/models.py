"""
Data models for sync state storage.

This module defines the dataclasses used to represent platform connections,
export run history and per-item mappings in the sync database.

Schema Design Decisions:
    - IDs are UUIDs stored as strings for portability
    - Timestamps are stored as ISO format strings in UTC
    - JSON data is stored as TEXT in SQLite for flexibility
    - One connection per tenant; one mapping per (tenant, type, item)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

CONNECTION_STATUSES = ("active", "invalid_key", "expired", "disconnected")
LAST_SYNC_STATUSES = ("success", "failed", "partial")
SYNC_FREQUENCIES = ("realtime", "daily", "manual")
AUDIT_STATUSES = ("pending", "in_progress", "completed")

SYNC_TYPES = ("full_export", "incremental", "single_item", "manual")
SYNC_TRIGGERS = ("user_initiated", "auto_sync", "scheduled", "api_webhook")
RUN_STATUSES = ("in_progress", "completed", "failed", "partial")

MAPPING_STATUSES = ("synced", "needs_update", "deleted", "failed")

ITEM_TYPES = (
    "form_submission",
    "document",
    "certification",
    "training_record",
    "maintenance_record",
    "incident_report",
    "meeting_minutes",
    "inspection",
)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Connection:
    """
    A tenant's connection to the external audit platform.

    Exactly one row exists per tenant. The API key is only ever held in
    encrypted form; api_key_hint is computed when the key is saved.

    Database Table: connections
    """

    tenant_id: str
    encrypted_api_key: str
    api_key_hint: str
    api_endpoint: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    organization_id: str | None = None
    organization_name: str | None = None
    audit_id: str | None = None
    connection_status: str = "active"
    last_validated_at: datetime | None = None
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    last_sync_error: str | None = None
    sync_enabled: bool = False
    sync_frequency: str = "manual"
    audit_scheduled_date: str | None = None
    audit_status: str | None = None
    auditor_name: str | None = None
    auditor_email: str | None = None
    total_items_synced: int = 0
    last_export_summary: dict[str, Any] | None = None
    created_by: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_active(self) -> bool:
        return self.connection_status == "active"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage and display."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "encrypted_api_key": self.encrypted_api_key,
            "api_key_hint": self.api_key_hint,
            "api_endpoint": self.api_endpoint,
            "organization_id": self.organization_id,
            "organization_name": self.organization_name,
            "audit_id": self.audit_id,
            "connection_status": self.connection_status,
            "last_validated_at": _format_dt(self.last_validated_at),
            "last_sync_at": _format_dt(self.last_sync_at),
            "last_sync_status": self.last_sync_status,
            "last_sync_error": self.last_sync_error,
            "sync_enabled": self.sync_enabled,
            "sync_frequency": self.sync_frequency,
            "audit_scheduled_date": self.audit_scheduled_date,
            "audit_status": self.audit_status,
            "auditor_name": self.auditor_name,
            "auditor_email": self.auditor_email,
            "total_items_synced": self.total_items_synced,
            "last_export_summary": self.last_export_summary,
            "created_by": self.created_by,
            "created_at": _format_dt(self.created_at),
            "updated_at": _format_dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            encrypted_api_key=data["encrypted_api_key"],
            api_key_hint=data.get("api_key_hint") or "****",
            api_endpoint=data["api_endpoint"],
            organization_id=data.get("organization_id"),
            organization_name=data.get("organization_name"),
            audit_id=data.get("audit_id"),
            connection_status=data.get("connection_status", "active"),
            last_validated_at=_parse_dt(data.get("last_validated_at")),
            last_sync_at=_parse_dt(data.get("last_sync_at")),
            last_sync_status=data.get("last_sync_status"),
            last_sync_error=data.get("last_sync_error"),
            sync_enabled=bool(data.get("sync_enabled", False)),
            sync_frequency=data.get("sync_frequency", "manual"),
            audit_scheduled_date=data.get("audit_scheduled_date"),
            audit_status=data.get("audit_status"),
            auditor_name=data.get("auditor_name"),
            auditor_email=data.get("auditor_email"),
            total_items_synced=int(data.get("total_items_synced", 0)),
            last_export_summary=data.get("last_export_summary"),
            created_by=data.get("created_by"),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(UTC),
            updated_at=_parse_dt(data.get("updated_at")) or datetime.now(UTC),
        )


@dataclass
class SyncErrorEntry:
    """One failed item (or a whole-run failure) recorded in a sync log."""

    item_type: str
    item_id: str
    error: str
    item_name: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_type": self.item_type,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncErrorEntry:
        return cls(
            item_type=data["item_type"],
            item_id=data["item_id"],
            item_name=data.get("item_name"),
            error=data["error"],
            timestamp=_parse_dt(data.get("timestamp")) or datetime.now(UTC),
        )


@dataclass
class SyncLog:
    """
    Record of one export run.

    Created when a run starts and updated once when it ends. A run that
    fails its preconditions is written once with status "failed".

    Database Table: sync_log
    """

    id: str
    tenant_id: str
    sync_type: str
    sync_trigger: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    items_attempted: int = 0
    items_succeeded: int = 0
    items_failed: int = 0
    error_details: list[SyncErrorEntry] = field(default_factory=list)
    sync_details: dict[str, Any] = field(default_factory=dict)
    initiated_by: str | None = None

    @classmethod
    def create(
        cls,
        tenant_id: str,
        sync_type: str,
        sync_trigger: str,
        initiated_by: str | None = None,
        sync_details: dict[str, Any] | None = None,
        status: str = "in_progress",
    ) -> SyncLog:
        """
        Create a new SyncLog with auto-generated ID and start time.

        Raises:
            ValueError: If sync_type, sync_trigger or status is unknown.
        """
        if sync_type not in SYNC_TYPES:
            raise ValueError(f"Invalid sync_type: {sync_type}")
        if sync_trigger not in SYNC_TRIGGERS:
            raise ValueError(f"Invalid sync_trigger: {sync_trigger}")
        if status not in RUN_STATUSES:
            raise ValueError(f"Invalid status: {status}")
        return cls(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            sync_type=sync_type,
            sync_trigger=sync_trigger,
            status=status,
            started_at=datetime.now(UTC),
            initiated_by=initiated_by,
            sync_details=sync_details or {},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sync_type": self.sync_type,
            "sync_trigger": self.sync_trigger,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": _format_dt(self.completed_at),
            "duration_seconds": self.duration_seconds,
            "items_attempted": self.items_attempted,
            "items_succeeded": self.items_succeeded,
            "items_failed": self.items_failed,
            "error_details": [e.to_dict() for e in self.error_details],
            "sync_details": self.sync_details,
            "initiated_by": self.initiated_by,
        }


@dataclass
class ItemMapping:
    """
    Link between an internal record and the evidence created for it.

    The existence of a mapping is what makes incremental exports skip a
    record.

    Database Table: item_mappings
        UNIQUE (tenant_id, internal_item_type, internal_item_id)
    """

    tenant_id: str
    internal_item_type: str
    internal_item_id: str
    external_item_id: str
    cor_element: int
    question_id: str | None = None
    external_item_type: str = "evidence"
    sync_status: str = "synced"
    sync_error: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    synced_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "internal_item_type": self.internal_item_type,
            "internal_item_id": self.internal_item_id,
            "external_item_id": self.external_item_id,
            "external_item_type": self.external_item_type,
            "cor_element": self.cor_element,
            "question_id": self.question_id,
            "sync_status": self.sync_status,
            "sync_error": self.sync_error,
            "synced_at": self.synced_at.isoformat(),
            "last_updated_at": _format_dt(self.last_updated_at),
        }


@dataclass
class ConnectionStats:
    """Summary of a tenant's connection and sync activity."""

    is_connected: bool
    connection_status: str
    total_items_synced: int
    last_sync_at: datetime | None
    last_sync_status: str | None
    pending_sync_items: int
    total_sync_operations: int
    successful_syncs: int
    failed_syncs: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "connection_status": self.connection_status,
            "total_items_synced": self.total_items_synced,
            "last_sync_at": _format_dt(self.last_sync_at),
            "last_sync_status": self.last_sync_status,
            "pending_sync_items": self.pending_sync_items,
            "total_sync_operations": self.total_sync_operations,
            "successful_syncs": self.successful_syncs,
            "failed_syncs": self.failed_syncs,
        }
