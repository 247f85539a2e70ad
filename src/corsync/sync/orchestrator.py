"""
Export orchestration.

The ExportOrchestrator runs export jobs for one tenant at a time: it checks
preconditions, runs the selected exporters in their fixed order, reports
progress, and records every run in the sync log and on the connection's
rolling statistics.

Run lifecycle:
    1. Precondition failure: one "failed" sync log is written, the
       connection is marked failed, and the error is raised
    2. Otherwise an "in_progress" sync log is created
    3. Exporters run sequentially; item failures only count against the run
    4. The log ends "completed" (no failures) or "partial"
    5. An unexpected error ends the log "failed" and is re-raised

Only one export may run per tenant at a time. The guard is an in-process
lock plus an advisory lock row in the sync store, so a second process is
refused too.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from corsync.client.base import ALL_ELEMENTS, AuditPlatformError, validate_elements
from corsync.config.credentials import redact_secrets
from corsync.records.source import BlobStore, RecordSource
from corsync.storage.models import ItemMapping, SyncErrorEntry, SyncLog
from corsync.storage.sync_store import SyncStore
from corsync.sync.base import (
    ExportInProgressError,
    ExportOptions,
    ExportProgress,
    ExportResult,
    PreconditionFailedError,
    SingleItemResult,
    SyncError,
    TypeExportResult,
    UpdatePushResult,
)
from corsync.sync.connection_manager import ConnectionManager
from corsync.sync.exporters import (
    EvidenceExporter,
    ExportContext,
    ExporterRegistry,
    invalid_data_error,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 3600


class ExportOrchestrator:
    """
    Coordinates evidence export runs.

    Example:
        orchestrator = ExportOrchestrator(store, manager, source, blobs)
        result = orchestrator.export_all_evidence(
            "tenant-1", ExportOptions(actor_id="user-1", incremental=True)
        )
        print(result.summary)

    Attributes:
        store: Sync state storage.
        connections: Connection manager supplying clients.
        source: Tenant record source.
        blobs: Attachment store.
        lock_timeout_seconds: Age after which an export lock is abandoned.
    """

    def __init__(
        self,
        store: SyncStore,
        connections: ConnectionManager,
        source: RecordSource,
        blobs: BlobStore,
        lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self.connections = connections
        self.source = source
        self.blobs = blobs
        self.lock_timeout_seconds = lock_timeout_seconds
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Single-flight guard
    # -------------------------------------------------------------------------

    @contextmanager
    def _single_flight(self, tenant_id: str) -> Generator[None, None, None]:
        """
        Hold the tenant's export lock for the duration of a run.

        Raises:
            ExportInProgressError: If another run holds the lock.
        """
        with self._locks_guard:
            local = self._locks.setdefault(tenant_id, threading.Lock())
        if not local.acquire(blocking=False):
            raise ExportInProgressError(
                "An export is already running for this tenant", tenant_id
            )
        owner = str(uuid.uuid4())
        try:
            if not self.store.acquire_export_lock(
                tenant_id, owner, self.lock_timeout_seconds
            ):
                raise ExportInProgressError(
                    "An export is already running for this tenant", tenant_id
                )
            try:
                yield
            finally:
                self.store.release_export_lock(tenant_id, owner)
        finally:
            local.release()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _notify(self, options: ExportOptions, progress: ExportProgress) -> None:
        if options.on_progress is None:
            return
        try:
            options.on_progress(progress)
        except Exception:
            logger.warning("Progress callback raised an exception", exc_info=True)

    def _finish_log(
        self,
        log: SyncLog,
        status: str,
        started: float,
        errors: list[SyncErrorEntry] | None = None,
    ) -> None:
        log.status = status
        log.completed_at = datetime.now(UTC)
        log.duration_seconds = round(time.monotonic() - started, 3)
        if errors is not None:
            log.error_details = errors
        self.store.finish_sync_log(log)

    def _record_precondition_failure(
        self,
        tenant_id: str,
        sync_type: str,
        options: ExportOptions,
        error: SyncError,
    ) -> SyncLog:
        message = redact_secrets(error.message)
        log = SyncLog.create(
            tenant_id=tenant_id,
            sync_type=sync_type,
            sync_trigger=options.trigger,
            initiated_by=options.actor_id,
            sync_details=options.details(),
            status="failed",
        )
        log.completed_at = log.started_at
        log.duration_seconds = 0.0
        log.error_details = [SyncErrorEntry(item_type="export", item_id="all", error=message)]
        self.store.create_sync_log(log)
        self.store.record_sync_outcome(tenant_id, "failed", message)
        logger.warning(f"Export for tenant {tenant_id} not started: {message}")
        return log

    def _prepare(self, tenant_id: str) -> tuple[str, Any]:
        """
        Check run preconditions.

        Returns:
            (audit_id, client)

        Raises:
            ConnectionNotConfiguredError, ConnectionInactiveError,
            PreconditionFailedError
        """
        connection, client = self.connections.require_client(tenant_id)
        if not connection.audit_id:
            client.close()
            raise PreconditionFailedError(
                "No audit ID configured. Please validate your connection first.", tenant_id
            )
        return connection.audit_id, client

    def _context(
        self, tenant_id: str, audit_id: str, client: Any, options: ExportOptions
    ) -> ExportContext:
        return ExportContext(
            tenant_id=tenant_id,
            audit_id=audit_id,
            client=client,
            store=self.store,
            source=self.source,
            blobs=self.blobs,
            options=options,
        )

    # -------------------------------------------------------------------------
    # Full export
    # -------------------------------------------------------------------------

    def export_all_evidence(
        self, tenant_id: str, options: ExportOptions | None = None
    ) -> ExportResult:
        """
        Export every selected evidence type for a tenant.

        Args:
            tenant_id: Tenant to export.
            options: Run parameters; defaults to an incremental run of
                every type.

        Returns:
            ExportResult with per-type counts and item errors.

        Raises:
            ValueError: If options name unknown elements or item types.
            ExportInProgressError: If the tenant already has a run going.
            ConnectionNotConfiguredError, ConnectionInactiveError,
            PreconditionFailedError: If the run cannot start.
            Exception: Any unexpected failure during the run, after it has
                been recorded.
        """
        options = options or ExportOptions()
        validate_elements(options.elements)
        exporters = ExporterRegistry.create_all(options.include_types)
        sync_type = "incremental" if options.incremental else "full_export"

        with self._single_flight(tenant_id):
            try:
                audit_id, client = self._prepare(tenant_id)
            except SyncError as e:
                self._record_precondition_failure(tenant_id, sync_type, options, e)
                raise

            log = SyncLog.create(
                tenant_id=tenant_id,
                sync_type=sync_type,
                sync_trigger=options.trigger,
                initiated_by=options.actor_id,
                sync_details=options.details(),
            )
            self.store.create_sync_log(log)
            started = time.monotonic()
            logger.info(
                f"Starting {sync_type} export for tenant {tenant_id} "
                f"({len(exporters)} evidence types)"
            )

            try:
                results = self._run_exporters(
                    exporters, self._context(tenant_id, audit_id, client, options)
                )
            except Exception as e:
                message = redact_secrets(str(e)) or type(e).__name__
                self._finish_log(
                    log,
                    "failed",
                    started,
                    [SyncErrorEntry(item_type="export", item_id="all", error=message)],
                )
                self.store.record_sync_outcome(tenant_id, "failed", message)
                logger.exception(f"Export failed for tenant {tenant_id}")
                raise
            finally:
                client.close()

            return self._complete(tenant_id, log, started, options, results)

    def _run_exporters(
        self, exporters: list[EvidenceExporter], ctx: ExportContext
    ) -> list[TypeExportResult]:
        results = []
        total = len(exporters)
        for index, exporter in enumerate(exporters):
            self._notify(
                ctx.options,
                ExportProgress(
                    phase=f"Exporting {exporter.label}...",
                    current=index,
                    total=total,
                    percentage=round(index / total * 100),
                ),
            )
            results.append(exporter.export(ctx))
        self._notify(
            ctx.options,
            ExportProgress(phase="Export complete!", current=total, total=total, percentage=100),
        )
        return results

    def _complete(
        self,
        tenant_id: str,
        log: SyncLog,
        started: float,
        options: ExportOptions,
        results: list[TypeExportResult],
    ) -> ExportResult:
        errors = [e for r in results for e in r.errors]
        succeeded = sum(r.succeeded for r in results)
        failed = sum(r.failed for r in results)
        status = "completed" if failed == 0 else "partial"

        log.items_attempted = sum(r.attempted for r in results)
        log.items_succeeded = succeeded
        log.items_failed = failed
        log.sync_details = {
            **options.details(),
            "by_type": {r.summary_key: r.breakdown() for r in results},
        }
        self._finish_log(log, status, started, errors)

        summary = {
            "exported_at": log.completed_at.isoformat() if log.completed_at else None,
            "items_exported": succeeded,
            "elements_exported": options.elements or list(ALL_ELEMENTS),
            "date_range": options.date_range.label() if options.date_range else "all",
            "total_items": sum(r.total for r in results),
            "duration_seconds": log.duration_seconds,
        }
        self.store.record_sync_outcome(
            tenant_id,
            "success" if failed == 0 else "partial",
            f"{failed} items failed to export" if failed else None,
            items_synced=succeeded,
            summary=summary,
        )

        logger.info(
            f"Export {log.id} for tenant {tenant_id} {status}: "
            f"{succeeded} exported, {failed} failed, "
            f"{sum(r.skipped for r in results)} skipped"
        )
        return ExportResult(
            success=failed == 0,
            status=status,
            sync_log_id=log.id,
            summary={r.summary_key: r.succeeded for r in results},
            errors=errors,
            by_type={r.summary_key: r for r in results},
            duration_seconds=log.duration_seconds or 0.0,
        )

    # -------------------------------------------------------------------------
    # Single item
    # -------------------------------------------------------------------------

    def export_single_item(
        self,
        tenant_id: str,
        item_type: str,
        item_id: str,
        actor_id: str | None = None,
    ) -> SingleItemResult:
        """
        Export one record now, whether or not it was exported before.

        Only the requested record is uploaded. Failures are reported in the
        result and recorded in a single_item sync log; nothing is raised.
        """
        options = ExportOptions(
            actor_id=actor_id,
            incremental=False,
            trigger="user_initiated" if actor_id else "auto_sync",
            only_item_id=item_id,
        )
        log = SyncLog.create(
            tenant_id=tenant_id,
            sync_type="single_item",
            sync_trigger=options.trigger,
            initiated_by=actor_id,
            sync_details={"item_type": item_type, "item_id": item_id},
        )
        self.store.create_sync_log(log)
        started = time.monotonic()

        def fail(message: str) -> SingleItemResult:
            message = redact_secrets(message)
            self._finish_log(
                log,
                "failed",
                started,
                [SyncErrorEntry(item_type=item_type, item_id=item_id, error=message)],
            )
            logger.warning(f"Single item export of {item_type} {item_id} failed: {message}")
            return SingleItemResult(success=False, error=message, sync_log_id=log.id)

        if not ExporterRegistry.is_registered(item_type):
            return fail(f"Unknown item type: {item_type}")

        try:
            with self._single_flight(tenant_id):
                audit_id, client = self._prepare(tenant_id)
                try:
                    exporter = ExporterRegistry.create(item_type)
                    result = exporter.export(
                        self._context(tenant_id, audit_id, client, options)
                    )
                finally:
                    client.close()
        except SyncError as e:
            return fail(e.message)
        except Exception as e:
            logger.exception(f"Single item export of {item_type} {item_id} raised")
            return fail(str(e) or type(e).__name__)

        if result.total == 0:
            return fail("Item not found or not eligible for export")

        log.items_attempted = result.attempted
        log.items_succeeded = result.succeeded
        log.items_failed = result.failed
        if result.succeeded == 0:
            error = result.errors[0].error if result.errors else "Export failed"
            self._finish_log(log, "failed", started, result.errors)
            return SingleItemResult(success=False, error=error, sync_log_id=log.id)

        self._finish_log(log, "completed", started, [])
        mapping = self.store.get_mapping(tenant_id, item_type, item_id)
        return SingleItemResult(
            success=True,
            external_item_id=mapping.external_item_id if mapping else None,
            sync_log_id=log.id,
        )

    # -------------------------------------------------------------------------
    # History and maintenance of exported items
    # -------------------------------------------------------------------------

    def get_sync_history(
        self, tenant_id: str, limit: int = 20, offset: int = 0
    ) -> list[SyncLog]:
        """The tenant's export runs, newest first."""
        return self.store.get_sync_history(tenant_id, limit=limit, offset=offset)

    def mark_item_changed(self, tenant_id: str, item_type: str, item_id: str) -> bool:
        """
        Flag an exported record for an evidence update.

        Returns:
            True if the record has a mapping.
        """
        mapping = self.store.get_mapping(tenant_id, item_type, item_id)
        if mapping is None or mapping.sync_status == "deleted":
            return False
        return self.store.update_mapping_status(tenant_id, item_type, item_id, "needs_update")

    def push_pending_updates(
        self, tenant_id: str, actor_id: str | None = None
    ) -> UpdatePushResult:
        """
        Refresh existing evidence for every mapping flagged needs_update.

        Updated mappings return to "synced"; failures keep "needs_update"
        with the error recorded on the mapping.

        Raises:
            ExportInProgressError, ConnectionNotConfiguredError,
            ConnectionInactiveError, PreconditionFailedError
        """
        trigger = "user_initiated" if actor_id else "auto_sync"
        with self._single_flight(tenant_id):
            audit_id, client = self._prepare(tenant_id)
            log = SyncLog.create(
                tenant_id=tenant_id,
                sync_type="manual",
                sync_trigger=trigger,
                initiated_by=actor_id,
                sync_details={"operation": "push_updates"},
            )
            self.store.create_sync_log(log)
            started = time.monotonic()
            pending = self.store.list_mappings(tenant_id, sync_status="needs_update")
            outcome = UpdatePushResult(total=len(pending), sync_log_id=log.id)
            ctx = self._context(
                tenant_id, audit_id, client, ExportOptions(actor_id=actor_id, incremental=False)
            )

            try:
                by_type: dict[str, list[ItemMapping]] = {}
                for mapping in pending:
                    by_type.setdefault(mapping.internal_item_type, []).append(mapping)

                for item_type, mappings in by_type.items():
                    exporter = ExporterRegistry.create(item_type)
                    records = {r.id: r for r in exporter.fetch(ctx)}
                    for mapping in mappings:
                        error = self._push_update(ctx, exporter, mapping, records)
                        if error is None:
                            outcome.updated += 1
                        else:
                            outcome.failed += 1
                            outcome.errors.append(
                                SyncErrorEntry(
                                    item_type=item_type,
                                    item_id=mapping.internal_item_id,
                                    error=error,
                                )
                            )
            except Exception as e:
                self._finish_log(
                    log,
                    "failed",
                    started,
                    [SyncErrorEntry(item_type="update", item_id="all", error=redact_secrets(str(e)))],
                )
                raise
            finally:
                client.close()

            log.items_attempted = outcome.total
            log.items_succeeded = outcome.updated
            log.items_failed = outcome.failed
            self._finish_log(
                log, "completed" if outcome.failed == 0 else "partial", started, outcome.errors
            )

        logger.info(
            f"Pushed updates for tenant {tenant_id}: {outcome.updated} updated, "
            f"{outcome.failed} failed"
        )
        return outcome

    def _push_update(
        self,
        ctx: ExportContext,
        exporter: EvidenceExporter,
        mapping: ItemMapping,
        records: dict[str, Any],
    ) -> str | None:
        record = records.get(mapping.internal_item_id)
        if record is None:
            error = "Record is no longer available for export"
        else:
            error = invalid_data_error(record)
        if error is None:
            payload = exporter.update_payload(ctx, record)
            update = ctx.client.update_evidence(mapping.external_item_id, payload)
            if update.success:
                mapping.sync_status = "synced"
                mapping.sync_error = None
                mapping.cor_element = payload["cor_element"]
                mapping.question_id = payload["question_id"]
                mapping.last_updated_at = datetime.now(UTC)
                self.store.save_mapping(mapping)
                return None
            error = update.error or "Failed to update evidence"

        error = redact_secrets(error)
        self.store.update_mapping_status(
            ctx.tenant_id,
            mapping.internal_item_type,
            mapping.internal_item_id,
            "needs_update",
            error,
        )
        return error

    def remove_item(self, tenant_id: str, item_type: str, item_id: str) -> bool:
        """
        Delete a record's evidence from the platform and mark its mapping deleted.

        The mapping is kept so incremental exports do not upload it again.

        Returns:
            False if the record was never exported or is already deleted.

        Raises:
            ConnectionNotConfiguredError, ConnectionInactiveError: If no
                usable connection exists.
            AuditPlatformError: If the platform refuses the delete.
        """
        mapping = self.store.get_mapping(tenant_id, item_type, item_id)
        if mapping is None or mapping.sync_status == "deleted":
            return False

        _, client = self.connections.require_client(tenant_id)
        try:
            client.delete_evidence(mapping.external_item_id)
        except AuditPlatformError as e:
            self.store.update_mapping_status(
                tenant_id, item_type, item_id, mapping.sync_status, redact_secrets(e.message)
            )
            raise
        finally:
            client.close()

        self.store.update_mapping_status(tenant_id, item_type, item_id, "deleted")
        logger.info(
            f"Removed evidence {mapping.external_item_id} for {item_type} {item_id} "
            f"(tenant {tenant_id})"
        )
        return True
