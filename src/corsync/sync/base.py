"""
Shared types for evidence export runs.

This module provides the sync error hierarchy, the options accepted by an
export run, progress events, and the per-type and per-run result objects.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from corsync.records.source import DateRange
from corsync.storage.models import SyncErrorEntry

# -----------------------------------------------------------------------------
# Error Classes
# -----------------------------------------------------------------------------


class SyncError(Exception):
    """Base exception for sync engine errors."""

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        self.message = message
        self.tenant_id = tenant_id
        super().__init__(message)


class ConnectionNotConfiguredError(SyncError):
    """Raised when a tenant has no platform connection."""

    pass


class ConnectionInactiveError(SyncError):
    """
    Raised when a tenant's connection cannot be used.

    This includes connections marked invalid_key, expired or disconnected,
    and connections whose stored key cannot be decrypted.
    """

    pass


class CredentialValidationError(SyncError):
    """
    Raised when the platform rejects an API key being saved.

    Attributes:
        reason: Failure category reported by the client
            (e.g. "rejected", "timeout", "network").
    """

    def __init__(
        self,
        message: str,
        tenant_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, tenant_id)
        self.reason = reason


class PreconditionFailedError(SyncError):
    """Raised when an export cannot start, e.g. no audit is assigned."""

    pass


class ExportInProgressError(SyncError):
    """Raised when another export is already running for the tenant."""

    pass


# -----------------------------------------------------------------------------
# Options and Progress
# -----------------------------------------------------------------------------


@dataclass
class ExportProgress:
    """
    A progress event emitted during an export run.

    Attributes:
        phase: Human readable description, e.g. "Exporting documents...".
        current: Index of the current phase (0-based) or total when complete.
        total: Number of phases in the run.
        percentage: 0-100.
    """

    phase: str
    current: int
    total: int
    percentage: int


ProgressCallback = Callable[[ExportProgress], None]


@dataclass
class ExportOptions:
    """
    Parameters of an export run.

    Attributes:
        actor_id: User who started the run, if any.
        incremental: Skip records that already have a mapping.
        date_range: Restrict dated record types to this window.
        elements: Only export records filed under these COR elements.
        include_types: Only run exporters for these item types.
        trigger: What started the run (user_initiated, auto_sync, ...).
        on_progress: Receives ExportProgress events.
        only_item_id: Narrow candidates to a single record id.
    """

    actor_id: str | None = None
    incremental: bool = True
    date_range: DateRange | None = None
    elements: list[int] | None = None
    include_types: list[str] | None = None
    trigger: str = "user_initiated"
    on_progress: ProgressCallback | None = None
    only_item_id: str | None = None

    def details(self) -> dict[str, Any]:
        """Filter parameters recorded in the run's sync_details."""
        return {
            "incremental": self.incremental,
            "date_range": self.date_range.to_dict() if self.date_range else None,
            "elements": self.elements,
            "include_types": self.include_types,
        }


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass
class TypeExportResult:
    """
    Outcome of one exporter.

    Invariant: succeeded + failed == total - skipped, and failed equals the
    number of error entries.
    """

    item_type: str
    summary_key: str
    total: int = 0
    skipped: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[SyncErrorEntry] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.total - self.skipped

    def breakdown(self) -> dict[str, int]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass
class ExportResult:
    """
    Outcome of a full export run.

    Attributes:
        success: True if no item failed.
        status: Terminal run status ("completed" or "partial").
        sync_log_id: The run's sync log row.
        summary: Succeeded count per exporter summary key.
        errors: Every item failure, in export order.
        by_type: Full per-exporter results keyed by summary key.
    """

    success: bool
    status: str
    sync_log_id: str
    summary: dict[str, int] = field(default_factory=dict)
    errors: list[SyncErrorEntry] = field(default_factory=list)
    by_type: dict[str, TypeExportResult] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def total_exported(self) -> int:
        return sum(r.succeeded for r in self.by_type.values())

    @property
    def total_failed(self) -> int:
        return sum(r.failed for r in self.by_type.values())

    @property
    def total_skipped(self) -> int:
        return sum(r.skipped for r in self.by_type.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "sync_log_id": self.sync_log_id,
            "summary": self.summary,
            "errors": [e.to_dict() for e in self.errors],
            "by_type": {k: v.breakdown() for k, v in self.by_type.items()},
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class SingleItemResult:
    """Outcome of exporting one record on demand."""

    success: bool
    external_item_id: str | None = None
    error: str | None = None
    sync_log_id: str | None = None


@dataclass
class UpdatePushResult:
    """Outcome of pushing changed records to existing evidence."""

    total: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[SyncErrorEntry] = field(default_factory=list)
    sync_log_id: str | None = None
