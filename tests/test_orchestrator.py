"""
Tests for export orchestration.

Uses Python's unittest module.
Runs complete exports against a record database, a sync store and a
simulated platform that can be told to fail specific uploads.
"""

from __future__ import annotations

import shutil
import tempfile
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import Mock, patch

from corsync.client.audit_client import AuditPlatformClient
from corsync.client.base import ALL_ELEMENTS, AuditPlatformError
from corsync.client.transport import SimulatedTransport, TransportResponse
from corsync.config.credentials import CredentialCipher, generate_encryption_key
from corsync.records import SqliteRecordSource
from corsync.records.source import BlobStore, RecordSourceError
from corsync.storage import ItemMapping, SyncStore
from corsync.sync.base import (
    ConnectionNotConfiguredError,
    ExportInProgressError,
    ExportOptions,
    ExportProgress,
    PreconditionFailedError,
)
from corsync.sync.connection_manager import ConnectionManager
from corsync.sync.orchestrator import ExportOrchestrator

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"
API_KEY = "ask_live_0123456789abcdefWXYZ"


class FlakyPlatform(SimulatedTransport):
    """Simulated platform that answers HTTP 500 to chosen uploads (1-based)."""

    def __init__(self) -> None:
        super().__init__()
        self.failing_uploads: set[int] = set()
        self.upload_count = 0

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        timeout: float,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> TransportResponse:
        if method == "POST" and url.endswith("/evidence"):
            self.upload_count += 1
            if self.upload_count in self.failing_uploads:
                return TransportResponse(500, {"message": "Internal server error"})
        return super().request(
            method, url, headers, timeout, json=json, data=data, files=files
        )


class OrchestratorTestCase(unittest.TestCase):
    """Shared fixtures for orchestrator tests."""

    def setUp(self) -> None:
        """Create stores, a connected tenant and an orchestrator."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = SyncStore(Path(self.temp_dir) / "sync")
        self.source = SqliteRecordSource(Path(self.temp_dir) / "records.db")
        self.platform = FlakyPlatform()
        self.manager = ConnectionManager(
            self.store,
            CredentialCipher(generate_encryption_key()),
            self.client_factory,
            "https://api.test",
        )
        self.blobs = Mock(spec=BlobStore)
        self.blobs.download.return_value = b"file-bytes"
        self.orchestrator = ExportOrchestrator(
            self.store, self.manager, self.source, self.blobs
        )
        self.manager.save_connection(TENANT, API_KEY)

    def tearDown(self) -> None:
        """Clean up the temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def client_factory(
        self, api_key: str, tenant_id: str, endpoint: str
    ) -> AuditPlatformClient:
        return AuditPlatformClient(api_key, tenant_id, endpoint=endpoint, transport=self.platform)

    def add_forms(self, tenant_id: str = TENANT, count: int = 3) -> None:
        self.source.insert_rows("form_submissions", [
            {"id": f"{tenant_id}-f{i}", "tenant_id": tenant_id, "status": "submitted",
             "form_number": f"F-{i}", "submitted_at": f"2025-03-0{i}T09:00:00+00:00"}
            for i in range(1, count + 1)
        ])

    def calls(self, method: str) -> list[Any]:
        return [c for c in self.platform.calls if c.method == method]


class TestExportAllEvidence(OrchestratorTestCase):
    """Tests for full export runs."""

    def test_missing_audit_fails_before_exporting(self) -> None:
        """Test a connection without an audit records one failed run and raises."""
        self.store.update_connection(TENANT, audit_id=None)
        self.add_forms()

        with self.assertLogs("corsync.sync.orchestrator", level="WARNING"):
            with self.assertRaises(PreconditionFailedError) as cm:
                self.orchestrator.export_all_evidence(TENANT)

        self.assertIn("No audit ID configured", cm.exception.message)
        history = self.orchestrator.get_sync_history(TENANT)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].status, "failed")
        self.assertEqual(history[0].error_details[0].item_id, "all")
        self.assertEqual(self.store.get_connection(TENANT).last_sync_status, "failed")
        self.assertEqual(self.platform.uploads, [])

    def test_missing_connection(self) -> None:
        """Test an unconfigured tenant cannot export."""
        with self.assertLogs("corsync.sync.orchestrator", level="WARNING"):
            with self.assertRaises(ConnectionNotConfiguredError):
                self.orchestrator.export_all_evidence(OTHER_TENANT)

        self.assertEqual(self.orchestrator.get_sync_history(OTHER_TENANT)[0].status, "failed")

    def test_partial_failure(self) -> None:
        """Test one failed upload makes the run partial and the rest still export."""
        self.add_forms()
        self.platform.failing_uploads = {2}

        result = self.orchestrator.export_all_evidence(TENANT)

        self.assertFalse(result.success)
        self.assertEqual(result.status, "partial")
        self.assertEqual(result.summary["form_submissions"], 2)
        self.assertEqual(result.total_failed, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].item_type, "form_submission")
        self.assertEqual(result.errors[0].item_id, f"{TENANT}-f2")
        self.assertEqual(result.errors[0].error, "Internal server error")

        log = self.store.get_sync_log(result.sync_log_id)
        self.assertEqual(log.status, "partial")
        self.assertEqual(
            (log.items_attempted, log.items_succeeded, log.items_failed), (3, 2, 1)
        )
        self.assertEqual(log.sync_details["by_type"]["form_submissions"]["failed"], 1)

        connection = self.store.get_connection(TENANT)
        self.assertEqual(connection.last_sync_status, "partial")
        self.assertEqual(connection.last_sync_error, "1 items failed to export")
        self.assertEqual(connection.total_items_synced, 2)

    def test_clean_run(self) -> None:
        """Test a run without failures completes and records a summary."""
        self.add_forms()

        result = self.orchestrator.export_all_evidence(TENANT)

        self.assertTrue(result.success)
        self.assertEqual(result.status, "completed")
        self.assertEqual(set(result.summary), {
            "form_submissions", "documents", "certifications", "maintenance_records",
            "training_records", "meeting_minutes", "inspections", "incidents",
        })
        self.assertEqual(result.total_exported, 3)

        connection = self.store.get_connection(TENANT)
        self.assertEqual(connection.last_sync_status, "success")
        self.assertIsNone(connection.last_sync_error)
        summary = connection.last_export_summary
        self.assertEqual(summary["items_exported"], 3)
        self.assertEqual(summary["elements_exported"], list(ALL_ELEMENTS))
        self.assertEqual(summary["date_range"], "all")
        self.assertEqual(summary["total_items"], 3)

    def test_incremental_rerun_uploads_nothing(self) -> None:
        """Test a second incremental run skips everything already exported."""
        self.add_forms()
        self.orchestrator.export_all_evidence(TENANT)

        second = self.orchestrator.export_all_evidence(TENANT, ExportOptions(incremental=True))

        self.assertEqual(len(self.platform.uploads), 3)
        self.assertEqual(second.total_exported, 0)
        self.assertEqual(second.total_skipped, 3)
        self.assertEqual(second.summary["form_submissions"], 0)
        log = self.store.get_sync_log(second.sync_log_id)
        self.assertEqual(log.sync_type, "incremental")

    def test_incremental_rerun_retries_failures(self) -> None:
        """Test records that failed before are attempted again."""
        self.add_forms()
        self.platform.failing_uploads = {2}
        self.orchestrator.export_all_evidence(TENANT)

        second = self.orchestrator.export_all_evidence(TENANT)

        self.assertEqual(second.summary["form_submissions"], 1)
        self.assertIsNotNone(self.store.get_mapping(TENANT, "form_submission", f"{TENANT}-f2"))

    def test_full_export(self) -> None:
        """Test a non-incremental run exports everything again."""
        self.add_forms()
        self.orchestrator.export_all_evidence(TENANT)

        second = self.orchestrator.export_all_evidence(TENANT, ExportOptions(incremental=False))

        self.assertEqual(second.summary["form_submissions"], 3)
        self.assertEqual(self.store.get_sync_log(second.sync_log_id).sync_type, "full_export")

    def test_progress_events(self) -> None:
        """Test progress is reported before each type and at completion."""
        events: list[ExportProgress] = []
        options = ExportOptions(
            include_types=["training_record", "document"], on_progress=events.append
        )

        self.orchestrator.export_all_evidence(TENANT, options)

        self.assertEqual(
            [(e.phase, e.current, e.total, e.percentage) for e in events],
            [
                ("Exporting documents...", 0, 2, 0),
                ("Exporting training records...", 1, 2, 50),
                ("Export complete!", 2, 2, 100),
            ],
        )

    def test_progress_callback_errors_ignored(self) -> None:
        """Test a failing progress callback does not stop the run."""
        self.add_forms()
        options = ExportOptions(on_progress=Mock(side_effect=RuntimeError("ui gone")))

        with self.assertLogs("corsync.sync.orchestrator", level="WARNING"):
            result = self.orchestrator.export_all_evidence(TENANT, options)

        self.assertTrue(result.success)
        self.assertEqual(result.total_exported, 3)

    def test_include_types(self) -> None:
        """Test only the requested exporters run."""
        self.add_forms()

        result = self.orchestrator.export_all_evidence(
            TENANT, ExportOptions(include_types=["document"])
        )

        self.assertEqual(result.summary, {"documents": 0})
        self.assertEqual(self.platform.uploads, [])

    def test_invalid_options_rejected_before_run(self) -> None:
        """Test unknown elements or types fail without a sync log."""
        with self.assertRaises(ValueError):
            self.orchestrator.export_all_evidence(TENANT, ExportOptions(elements=[15]))
        with self.assertRaises(ValueError):
            self.orchestrator.export_all_evidence(TENANT, ExportOptions(include_types=["x"]))

        self.assertEqual(self.orchestrator.get_sync_history(TENANT), [])

    def test_element_filter(self) -> None:
        """Test an element filter limits what is exported and is summarized."""
        self.add_forms()

        result = self.orchestrator.export_all_evidence(TENANT, ExportOptions(elements=[5]))

        self.assertEqual(result.total_exported, 0)
        summary = self.store.get_connection(TENANT).last_export_summary
        self.assertEqual(summary["elements_exported"], [5])

    def test_unexpected_error_fails_run(self) -> None:
        """Test a record source failure ends the run failed and is raised."""
        options = ExportOptions(include_types=["form_submission"])

        with patch.object(
            self.source, "get_submitted_forms", side_effect=RecordSourceError("db down")
        ):
            with self.assertLogs("corsync.sync.orchestrator", level="ERROR"):
                with self.assertRaises(RecordSourceError):
                    self.orchestrator.export_all_evidence(TENANT, options)

        log = self.orchestrator.get_sync_history(TENANT)[0]
        self.assertEqual(log.status, "failed")
        self.assertEqual(log.error_details[0].error, "db down")
        connection = self.store.get_connection(TENANT)
        self.assertEqual(connection.last_sync_status, "failed")
        self.assertEqual(connection.last_sync_error, "db down")

    def test_unreadable_record_does_not_abort_run(self) -> None:
        """Test a record with an unreadable date fails alone and the rest export."""
        self.add_forms()
        self.source.insert_rows("form_submissions", [
            {"id": "bad-date", "tenant_id": TENANT, "status": "submitted",
             "submitted_at": "31/03/2025"},
        ])

        with self.assertLogs("corsync.sync.exporters.form_submission", level="WARNING"):
            result = self.orchestrator.export_all_evidence(TENANT)

        self.assertEqual(result.status, "partial")
        self.assertEqual(result.summary["form_submissions"], 3)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].item_id, "bad-date")
        self.assertIn("Invalid record data", result.errors[0].error)
        self.assertIn("submitted_at", result.errors[0].error)
        self.assertEqual(len(self.platform.uploads), 3)
        for i in (1, 2, 3):
            self.assertIsNotNone(
                self.store.get_mapping(TENANT, "form_submission", f"{TENANT}-f{i}")
            )
        self.assertIsNone(self.store.get_mapping(TENANT, "form_submission", "bad-date"))
        self.assertEqual(self.store.get_connection(TENANT).last_sync_status, "partial")

    def test_unreadable_template_elements_do_not_abort_run(self) -> None:
        """Test a form whose template lists a non-numeric element fails alone."""
        self.add_forms(count=2)
        self.source.insert_rows("form_templates", [
            {"id": "tpl-bad", "tenant_id": TENANT, "name": "Hazard Assessment",
             "form_code": "HAZARD", "cor_elements_json": '["two"]'},
        ])
        self.source.insert_rows("form_submissions", [
            {"id": "bad-template", "tenant_id": TENANT, "template_id": "tpl-bad",
             "status": "submitted", "submitted_at": "2025-03-05T09:00:00+00:00"},
        ])

        with self.assertLogs("corsync.sync.exporters.form_submission", level="WARNING"):
            result = self.orchestrator.export_all_evidence(TENANT)

        self.assertEqual(result.status, "partial")
        self.assertEqual(result.summary["form_submissions"], 2)
        self.assertEqual([e.item_id for e in result.errors], ["bad-template"])
        self.assertEqual(self.store.count_mappings(TENANT), 2)

    def test_tenant_isolation(self) -> None:
        """Test a tenant's run only exports that tenant's records."""
        self.manager.save_connection(OTHER_TENANT, API_KEY)
        self.add_forms(TENANT, 2)
        self.add_forms(OTHER_TENANT, 3)

        result = self.orchestrator.export_all_evidence(TENANT)

        self.assertEqual(result.summary["form_submissions"], 2)
        self.assertEqual(self.store.count_mappings(OTHER_TENANT), 0)
        self.assertTrue(
            all(c.headers["X-Tenant-ID"] == TENANT for c in self.platform.uploads)
        )


class TestSingleFlight(OrchestratorTestCase):
    """Tests for the one-export-per-tenant guard."""

    def test_in_process_contention(self) -> None:
        """Test a second run in the same process is refused."""
        with self.orchestrator._single_flight(TENANT):
            with self.assertRaises(ExportInProgressError):
                self.orchestrator.export_all_evidence(TENANT)

    def test_cross_process_contention(self) -> None:
        """Test a lock held by another process is respected."""
        self.assertTrue(self.store.acquire_export_lock(TENANT, "other-process"))

        with self.assertRaises(ExportInProgressError):
            self.orchestrator.export_all_evidence(TENANT)
        with self.assertRaises(ExportInProgressError):
            self.orchestrator.push_pending_updates(TENANT)

    def test_lock_released_after_run(self) -> None:
        """Test the lock is released after success and after failure."""
        self.orchestrator.export_all_evidence(TENANT)
        self.assertTrue(self.store.acquire_export_lock(TENANT, "lock-check"))
        self.store.release_export_lock(TENANT, "lock-check")

        self.store.update_connection(TENANT, audit_id=None)
        with self.assertLogs("corsync.sync.orchestrator", level="WARNING"):
            with self.assertRaises(PreconditionFailedError):
                self.orchestrator.export_all_evidence(TENANT)
        self.assertTrue(self.store.acquire_export_lock(TENANT, "lock-check"))

    def test_other_tenants_not_blocked(self) -> None:
        """Test one tenant's run does not block another tenant."""
        self.manager.save_connection(OTHER_TENANT, API_KEY)

        with self.orchestrator._single_flight(TENANT):
            result = self.orchestrator.export_all_evidence(OTHER_TENANT)

        self.assertTrue(result.success)


class TestSingleItem(OrchestratorTestCase):
    """Tests for on-demand single record export."""

    def setUp(self) -> None:
        """Add form data."""
        super().setUp()
        self.add_forms()

    def test_export_single_item(self) -> None:
        """Test only the requested record is uploaded."""
        item_id = f"{TENANT}-f2"

        result = self.orchestrator.export_single_item(
            TENANT, "form_submission", item_id, actor_id="user-1"
        )

        self.assertTrue(result.success)
        self.assertEqual(len(self.platform.uploads), 1)
        mapping = self.store.get_mapping(TENANT, "form_submission", item_id)
        self.assertEqual(result.external_item_id, mapping.external_item_id)

        log = self.store.get_sync_log(result.sync_log_id)
        self.assertEqual(log.sync_type, "single_item")
        self.assertEqual(log.sync_trigger, "user_initiated")
        self.assertEqual(log.status, "completed")
        self.assertEqual(self.store.get_connection(TENANT).total_items_synced, 0)

    def test_single_item_reexports(self) -> None:
        """Test an already exported record is uploaded again."""
        item_id = f"{TENANT}-f1"
        first = self.orchestrator.export_single_item(TENANT, "form_submission", item_id)

        second = self.orchestrator.export_single_item(TENANT, "form_submission", item_id)

        self.assertTrue(second.success)
        self.assertNotEqual(first.external_item_id, second.external_item_id)
        log = self.store.get_sync_log(second.sync_log_id)
        self.assertEqual(log.sync_trigger, "auto_sync")

    def test_single_item_failures(self) -> None:
        """Test failures are returned, not raised."""
        cases = [
            ("photos", f"{TENANT}-f1", "Unknown item type: photos"),
            ("form_submission", "missing", "Item not found or not eligible for export"),
            ("inspection", f"{TENANT}-f1", "Item not found or not eligible for export"),
        ]
        for item_type, item_id, expected in cases:
            with self.subTest(item_type=item_type, item_id=item_id):
                with self.assertLogs("corsync.sync.orchestrator", level="WARNING"):
                    result = self.orchestrator.export_single_item(TENANT, item_type, item_id)

                self.assertFalse(result.success)
                self.assertEqual(result.error, expected)
                self.assertEqual(self.store.get_sync_log(result.sync_log_id).status, "failed")

    def test_single_item_upload_failure(self) -> None:
        """Test a failed upload is reported with the platform message."""
        self.platform.failing_uploads = {1}

        with self.assertLogs("corsync.sync", level="WARNING"):
            result = self.orchestrator.export_single_item(
                TENANT, "form_submission", f"{TENANT}-f1"
            )

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Internal server error")

    def test_single_item_without_connection(self) -> None:
        """Test a missing connection is reported as an error."""
        with self.assertLogs("corsync.sync.orchestrator", level="WARNING"):
            result = self.orchestrator.export_single_item(OTHER_TENANT, "document", "d1")

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Audit platform connection not configured")


class TestEvidenceMaintenance(OrchestratorTestCase):
    """Tests for updating and removing exported evidence."""

    def setUp(self) -> None:
        """Export two forms."""
        super().setUp()
        self.add_forms(count=2)
        self.orchestrator.export_all_evidence(TENANT)
        self.item_id = f"{TENANT}-f1"

    def test_mark_item_changed(self) -> None:
        """Test flagging exported and unexported records."""
        self.assertTrue(
            self.orchestrator.mark_item_changed(TENANT, "form_submission", self.item_id)
        )
        self.assertFalse(self.orchestrator.mark_item_changed(TENANT, "form_submission", "nope"))
        mapping = self.store.get_mapping(TENANT, "form_submission", self.item_id)
        self.assertEqual(mapping.sync_status, "needs_update")
        self.assertEqual(self.store.get_stats(TENANT).pending_sync_items, 1)

    def test_push_pending_updates(self) -> None:
        """Test flagged records are pushed and return to synced."""
        self.orchestrator.mark_item_changed(TENANT, "form_submission", self.item_id)
        mapping = self.store.get_mapping(TENANT, "form_submission", self.item_id)
        with self.source._get_connection() as conn:
            conn.execute(
                "UPDATE form_submissions SET attachments_json = ? WHERE id = ?",
                ('["photos/site.jpg"]', self.item_id),
            )
        self.blobs.download.reset_mock()

        result = self.orchestrator.push_pending_updates(TENANT, actor_id="user-1")

        self.assertEqual((result.total, result.updated, result.failed), (1, 1, 0))
        self.blobs.download.assert_not_called()
        patches = self.calls("PATCH")
        self.assertEqual(len(patches), 1)
        self.assertEqual(patches[0].path, f"/v1/evidence/{mapping.external_item_id}")
        self.assertEqual(patches[0].json["question_id"], "form_unknown")

        updated = self.store.get_mapping(TENANT, "form_submission", self.item_id)
        self.assertEqual(updated.sync_status, "synced")
        self.assertIsNotNone(updated.last_updated_at)

        log = self.store.get_sync_log(result.sync_log_id)
        self.assertEqual(log.sync_type, "manual")
        self.assertEqual(log.sync_details, {"operation": "push_updates"})
        self.assertEqual(log.status, "completed")

    def test_push_update_for_vanished_record(self) -> None:
        """Test a record that is no longer exportable stays flagged with an error."""
        self.orchestrator.mark_item_changed(TENANT, "form_submission", self.item_id)
        with self.source._get_connection() as conn:
            conn.execute(
                "UPDATE form_submissions SET status = 'draft' WHERE id = ?", (self.item_id,)
            )

        result = self.orchestrator.push_pending_updates(TENANT)

        self.assertEqual((result.updated, result.failed), (0, 1))
        mapping = self.store.get_mapping(TENANT, "form_submission", self.item_id)
        self.assertEqual(mapping.sync_status, "needs_update")
        self.assertEqual(mapping.sync_error, "Record is no longer available for export")
        self.assertEqual(self.store.get_sync_log(result.sync_log_id).status, "partial")

    def test_push_update_for_unreadable_record(self) -> None:
        """Test a record that can no longer be read stays flagged with the reason."""
        self.orchestrator.mark_item_changed(TENANT, "form_submission", self.item_id)
        with self.source._get_connection() as conn:
            conn.execute(
                "UPDATE form_submissions SET submitted_at = '31/03/2025' WHERE id = ?",
                (self.item_id,),
            )

        result = self.orchestrator.push_pending_updates(TENANT)

        self.assertEqual((result.updated, result.failed), (0, 1))
        self.assertEqual(self.calls("PATCH"), [])
        mapping = self.store.get_mapping(TENANT, "form_submission", self.item_id)
        self.assertEqual(mapping.sync_status, "needs_update")
        self.assertIn("submitted_at", mapping.sync_error)

    def test_push_with_nothing_pending(self) -> None:
        """Test pushing with no flagged records."""
        result = self.orchestrator.push_pending_updates(TENANT)
        self.assertEqual(result.total, 0)
        self.assertEqual(self.calls("PATCH"), [])

    def test_remove_item(self) -> None:
        """Test removing evidence keeps a deleted mapping that blocks re-export."""
        mapping = self.store.get_mapping(TENANT, "form_submission", self.item_id)

        self.assertTrue(self.orchestrator.remove_item(TENANT, "form_submission", self.item_id))

        deletes = self.calls("DELETE")
        self.assertEqual(deletes[0].path, f"/v1/evidence/{mapping.external_item_id}")
        removed = self.store.get_mapping(TENANT, "form_submission", self.item_id)
        self.assertEqual(removed.sync_status, "deleted")
        self.assertFalse(self.orchestrator.remove_item(TENANT, "form_submission", self.item_id))
        self.assertFalse(
            self.orchestrator.mark_item_changed(TENANT, "form_submission", self.item_id)
        )

        uploads_before = len(self.platform.uploads)
        self.orchestrator.export_all_evidence(TENANT)
        self.assertEqual(len(self.platform.uploads), uploads_before)

    def test_remove_unknown_item(self) -> None:
        """Test removing a record that was never exported."""
        self.assertFalse(self.orchestrator.remove_item(TENANT, "document", "d1"))
        self.assertEqual(self.calls("DELETE"), [])

    def test_remove_item_platform_error(self) -> None:
        """Test a refused delete is raised and recorded on the mapping."""
        self.store.save_mapping(
            ItemMapping(
                tenant_id=TENANT,
                internal_item_type="document",
                internal_item_id="d1",
                external_item_id="EV-MISSING",
                cor_element=1,
            )
        )

        with self.assertRaises(AuditPlatformError):
            self.orchestrator.remove_item(TENANT, "document", "d1")

        mapping = self.store.get_mapping(TENANT, "document", "d1")
        self.assertEqual(mapping.sync_status, "synced")
        self.assertEqual(mapping.sync_error, "Evidence not found")


if __name__ == "__main__":
    unittest.main()
