"""
Tests for the record source and blob store.

Uses Python's unittest module.
Tests tenant scoping, status filters, date windows, joined rows,
and attachment downloads.
"""

from __future__ import annotations

import shutil
import tempfile
import unittest
from datetime import UTC, date, datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from corsync.records import (
    DateRange,
    FileSystemBlobStore,
    SqliteRecordSource,
)
from corsync.records.source import BlobNotFoundError, RecordSourceError


class TestDateRange(unittest.TestCase):
    """Tests for DateRange."""

    def test_start_after_end_rejected(self) -> None:
        """Test an inverted range is rejected."""
        with self.assertRaises(ValueError):
            DateRange(start=date(2025, 2, 1), end=date(2025, 1, 1))

    def test_contains(self) -> None:
        """Test inclusive bounds."""
        window = DateRange(start=date(2025, 1, 1), end=date(2025, 1, 31))

        self.assertTrue(window.contains(date(2025, 1, 1)))
        self.assertTrue(window.contains(date(2025, 1, 31)))
        self.assertTrue(window.contains(datetime(2025, 1, 15, 12, 0, tzinfo=UTC)))
        self.assertFalse(window.contains(date(2024, 12, 31)))
        self.assertFalse(window.contains(date(2025, 2, 1)))
        self.assertFalse(window.contains(None))

    def test_open_ended(self) -> None:
        """Test a range with only a start."""
        window = DateRange(start=date(2025, 1, 1))
        self.assertTrue(window.contains(date(2030, 1, 1)))
        self.assertEqual(window.label(), "2025-01-01 to now")

    def test_label_and_dict(self) -> None:
        """Test summary label and serialization."""
        window = DateRange(end=date(2025, 6, 30))
        self.assertEqual(window.label(), "beginning to 2025-06-30")
        self.assertEqual(window.to_dict(), {"start": None, "end": "2025-06-30"})


class TestSqliteRecordSource(unittest.TestCase):
    """Tests for SqliteRecordSource."""

    def setUp(self) -> None:
        """Create a record database with two tenants."""
        self.temp_dir = tempfile.mkdtemp()
        self.source = SqliteRecordSource(Path(self.temp_dir) / "records.db")
        self.source.insert_rows("people", [
            {"id": "p1", "tenant_id": "t1", "full_name": "Ana Ruiz", "employee_number": "E-1"},
            {"id": "p2", "tenant_id": "t2", "full_name": "Other", "employee_number": "E-9"},
        ])

    def tearDown(self) -> None:
        """Clean up the temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_unknown_table_rejected(self) -> None:
        """Test inserting into an unknown table fails."""
        with self.assertRaises(ValueError):
            self.source.insert_rows("sqlite_master", [{"name": "x"}])

    def test_submitted_forms(self) -> None:
        """Test submitted forms are joined with template and submitter."""
        self.source.insert_rows("form_templates", [
            {"id": "tpl1", "tenant_id": "t1", "name": "Site Inspection",
             "form_code": "INSPECTION", "cor_elements_json": [6, 7]},
        ])
        self.source.insert_rows("form_submissions", [
            {"id": "f1", "tenant_id": "t1", "template_id": "tpl1", "submitted_by": "p1",
             "form_number": "INS-001", "status": "submitted",
             "submitted_at": "2025-03-02T09:30:00+00:00",
             "form_data_json": {"hazards": "none"},
             "attachments_json": ["photos/a.jpg"], "signatures_json": [{"by": "p1"}]},
            {"id": "f2", "tenant_id": "t1", "template_id": "tpl1", "status": "draft",
             "submitted_at": "2025-03-03T09:30:00"},
            {"id": "f3", "tenant_id": "t2", "template_id": "tpl1", "status": "submitted",
             "submitted_at": "2025-03-04T09:30:00"},
        ])

        forms = self.source.get_submitted_forms("t1")

        self.assertEqual([f.id for f in forms], ["f1"])
        form = forms[0]
        self.assertEqual(form.form_code, "INSPECTION")
        self.assertEqual(form.form_name, "Site Inspection")
        self.assertEqual(form.template_elements, [6, 7])
        self.assertEqual(form.submitter.full_name, "Ana Ruiz")
        self.assertEqual(form.form_data, {"hazards": "none"})
        self.assertEqual(form.attachments, ["photos/a.jpg"])
        self.assertEqual(form.signatures, [{"by": "p1"}])
        self.assertEqual(form.submitted_at, datetime(2025, 3, 2, 9, 30, tzinfo=UTC))

    def test_naive_timestamps_are_utc(self) -> None:
        """Test timestamps without an offset are read as UTC."""
        self.source.insert_rows("form_submissions", [
            {"id": "f1", "tenant_id": "t1", "status": "submitted",
             "submitted_at": "2025-03-02T09:30:00"},
        ])

        form = self.source.get_submitted_forms("t1")[0]

        self.assertEqual(form.submitted_at.tzinfo, UTC)
        self.assertIsNone(form.template)
        self.assertIsNone(form.submitter)
        self.assertEqual(form.form_code, "")

    def test_forms_date_filter(self) -> None:
        """Test the date window applies to submitted_at."""
        self.source.insert_rows("form_submissions", [
            {"id": f"f{day}", "tenant_id": "t1", "status": "submitted",
             "submitted_at": f"2025-01-{day:02d}T23:00:00"}
            for day in (1, 15, 31)
        ])

        forms = self.source.get_submitted_forms(
            "t1", DateRange(start=date(2025, 1, 15), end=date(2025, 1, 31))
        )

        self.assertEqual([f.id for f in forms], ["f15", "f31"])

    def test_malformed_json_ignored(self) -> None:
        """Test a malformed JSON column falls back to an empty value."""
        self.source.insert_rows("form_submissions", [
            {"id": "f1", "tenant_id": "t1", "status": "submitted",
             "form_data_json": "{not json"},
        ])

        form = self.source.get_submitted_forms("t1")[0]

        self.assertEqual(form.form_data, {})
        self.assertEqual(form.data_errors, [])

    def test_unreadable_values_reported_on_record(self) -> None:
        """Test bad dates and elements are left empty and listed in data_errors."""
        self.source.insert_rows("form_templates", [
            {"id": "tpl1", "tenant_id": "t1", "name": "Hazard Assessment",
             "form_code": "HAZARD", "cor_elements_json": '[3, "two"]'},
        ])
        self.source.insert_rows("form_submissions", [
            {"id": "f1", "tenant_id": "t1", "template_id": "tpl1", "status": "submitted",
             "submitted_at": "31/03/2025"},
            {"id": "f2", "tenant_id": "t1", "status": "submitted",
             "submitted_at": "2025-03-02T09:30:00"},
        ])
        self.source.insert_rows("documents", [
            {"id": "d1", "tenant_id": "t1", "title": "Policy", "status": "active",
             "cor_elements_json": '{"element": 2}', "effective_date": "soon"},
        ])

        forms = {f.id: f for f in self.source.get_submitted_forms("t1")}
        document = self.source.get_active_documents("t1")[0]

        bad = forms["f1"]
        self.assertIsNone(bad.submitted_at)
        self.assertEqual(bad.template_elements, [3])
        self.assertEqual(len(bad.data_errors), 2)
        self.assertIn("submitted_at", bad.data_errors[1])
        self.assertIn("'two'", bad.data_errors[0])
        self.assertEqual(forms["f2"].data_errors, [])

        self.assertEqual(document.cor_elements, [])
        self.assertIsNone(document.effective_date)
        self.assertEqual(len(document.data_errors), 2)

    def test_conversion_failure_raises_record_source_error(self) -> None:
        """Test an unexpected converter error surfaces as RecordSourceError."""
        self.source.insert_rows("training_records", [
            {"id": "r1", "tenant_id": "t1", "topic": "WHMIS"},
        ])

        with patch.object(self.source, "_row_to_training", side_effect=ValueError("bad row")):
            with self.assertRaises(RecordSourceError) as cm:
                self.source.get_training_records("t1")

        self.assertIn("r1", str(cm.exception))

    def test_active_documents(self) -> None:
        """Test only active documents are returned, optionally by type."""
        self.source.insert_rows("documents", [
            {"id": "d1", "tenant_id": "t1", "title": "Safety Policy", "status": "active",
             "document_type_code": "POL", "cor_elements_json": [1],
             "effective_date": date(2025, 1, 1), "created_at": "2025-01-01T00:00:00"},
            {"id": "d2", "tenant_id": "t1", "title": "Old", "status": "archived",
             "document_type_code": "POL"},
            {"id": "d3", "tenant_id": "t1", "title": "Lockout SWP", "status": "active",
             "document_type_code": "SWP", "created_at": "2025-01-02T00:00:00"},
        ])

        self.assertEqual([d.id for d in self.source.get_active_documents("t1")], ["d1", "d3"])
        policies = self.source.get_active_documents("t1", document_types=["POL"])
        self.assertEqual([d.id for d in policies], ["d1"])
        self.assertEqual(policies[0].cor_elements, [1])
        self.assertEqual(policies[0].effective_date, date(2025, 1, 1))

    def test_active_certifications(self) -> None:
        """Test certifications carry type and worker."""
        self.source.insert_rows("certification_types", [
            {"id": "ct1", "tenant_id": "t1", "name": "First Aid", "code": "FA"},
        ])
        self.source.insert_rows("worker_certifications", [
            {"id": "c1", "tenant_id": "t1", "worker_id": "p1", "certification_type_id": "ct1",
             "status": "active", "expiry_date": "2026-05-01"},
            {"id": "c2", "tenant_id": "t1", "worker_id": "p1", "certification_type_id": "ct1",
             "status": "expired"},
        ])

        certs = self.source.get_active_certifications("t1")

        self.assertEqual(len(certs), 1)
        self.assertEqual(certs[0].certification_name, "First Aid")
        self.assertEqual(certs[0].certification_code, "FA")
        self.assertEqual(certs[0].worker_name, "Ana Ruiz")
        self.assertEqual(certs[0].expiry_date, date(2026, 5, 1))
        self.assertEqual(certs[0].display_name, "First Aid - Ana Ruiz")

    def test_completed_maintenance_with_attachments(self) -> None:
        """Test maintenance is joined to equipment and grouped attachments."""
        self.source.insert_rows("equipment", [
            {"id": "eq1", "tenant_id": "t1", "equipment_number": "EX-12",
             "equipment_type": "Excavator"},
        ])
        self.source.insert_rows("maintenance_records", [
            {"id": "m1", "tenant_id": "t1", "equipment_id": "eq1", "status": "completed",
             "work_description": "Oil change", "cost": 120.5, "actual_date": "2025-04-01"},
            {"id": "m2", "tenant_id": "t1", "equipment_id": "eq1", "status": "completed",
             "work_description": "Track repair", "actual_date": "2025-04-02"},
            {"id": "m3", "tenant_id": "t1", "equipment_id": "eq1", "status": "scheduled"},
        ])
        self.source.insert_rows("maintenance_attachments", [
            {"id": "a1", "maintenance_record_id": "m1", "file_path": "m1/photo.jpg"},
            {"id": "a2", "maintenance_record_id": "m1", "file_path": "m1/receipt.pdf",
             "is_receipt": True},
        ])

        records = self.source.get_completed_maintenance("t1")

        self.assertEqual([r.id for r in records], ["m1", "m2"])
        self.assertEqual(records[0].equipment_number, "EX-12")
        self.assertEqual(records[0].cost, 120.5)
        self.assertEqual([a.id for a in records[0].attachments], ["a1", "a2"])
        self.assertEqual(records[0].primary_attachment().id, "a2")
        self.assertEqual(records[1].attachments, [])
        self.assertIsNone(records[1].primary_attachment())

    def test_maintenance_attachments_queried_in_chunks(self) -> None:
        """Test attachments are matched when record ids span several queries."""
        self.source.insert_rows("maintenance_records", [
            {"id": f"m{i}", "tenant_id": "t1", "status": "completed",
             "actual_date": f"2025-04-0{i}"}
            for i in range(1, 6)
        ])
        self.source.insert_rows("maintenance_attachments", [
            {"id": f"a{i}", "maintenance_record_id": f"m{i}", "file_path": f"m{i}/receipt.pdf"}
            for i in range(1, 6)
        ])

        with patch("corsync.records.sqlite_source.QUERY_CHUNK_SIZE", 2):
            records = self.source.get_completed_maintenance("t1")

        self.assertEqual(
            [[a.id for a in r.attachments] for r in records],
            [["a1"], ["a2"], ["a3"], ["a4"], ["a5"]],
        )

    def test_training_records(self) -> None:
        """Test training records are scoped and date filtered."""
        self.source.insert_rows("training_records", [
            {"id": "r1", "tenant_id": "t1", "worker_id": "p1", "topic": "WHMIS",
             "training_date": "2025-02-01", "passed": True, "duration_hours": 2.0},
            {"id": "r2", "tenant_id": "t1", "worker_id": "p1", "topic": "Fall Arrest",
             "training_date": "2024-02-01"},
            {"id": "r3", "tenant_id": "t2", "worker_id": "p2", "topic": "WHMIS",
             "training_date": "2025-02-01"},
        ])

        records = self.source.get_training_records("t1", DateRange(start=date(2025, 1, 1)))

        self.assertEqual([r.id for r in records], ["r1"])
        self.assertTrue(records[0].passed)
        self.assertEqual(records[0].worker_name, "Ana Ruiz")
        self.assertIsNone(self.source.get_training_records("t1")[0].passed)

    def test_tenant_with_no_records(self) -> None:
        """Test an unknown tenant sees nothing."""
        self.assertEqual(self.source.get_submitted_forms("nobody"), [])
        self.assertEqual(self.source.get_active_documents("nobody"), [])
        self.assertEqual(self.source.get_active_certifications("nobody"), [])
        self.assertEqual(self.source.get_completed_maintenance("nobody"), [])
        self.assertEqual(self.source.get_training_records("nobody"), [])

    def test_query_failure_raises_record_source_error(self) -> None:
        """Test a database error surfaces as RecordSourceError."""
        with self.source._get_connection() as conn:
            conn.execute("DROP TABLE documents")

        with self.assertRaises(RecordSourceError):
            self.source.get_active_documents("t1")


class TestFileSystemBlobStore(unittest.TestCase):
    """Tests for FileSystemBlobStore."""

    def setUp(self) -> None:
        """Create a blob root with one object."""
        self.temp_dir = tempfile.mkdtemp()
        bucket = Path(self.temp_dir) / "documents" / "policies"
        bucket.mkdir(parents=True)
        (bucket / "policy.pdf").write_bytes(b"%PDF-1.7")
        (Path(self.temp_dir) / "secret.txt").write_text("outside")
        self.store = FileSystemBlobStore(self.temp_dir)

    def tearDown(self) -> None:
        """Clean up the temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_download(self) -> None:
        """Test reading an object from its bucket."""
        self.assertEqual(self.store.download("documents", "policies/policy.pdf"), b"%PDF-1.7")
        self.assertEqual(self.store.download("documents", "/policies/policy.pdf"), b"%PDF-1.7")

    def test_missing_object(self) -> None:
        """Test a missing object raises BlobNotFoundError."""
        with self.assertRaises(BlobNotFoundError):
            self.store.download("documents", "policies/missing.pdf")

    def test_path_traversal_rejected(self) -> None:
        """Test paths cannot escape the bucket."""
        with self.assertRaises(RecordSourceError) as cm:
            self.store.download("documents", "../secret.txt")

        self.assertNotIsInstance(cm.exception, BlobNotFoundError)

    def test_url_download(self) -> None:
        """Test HTTPS references are fetched over the network."""
        response = MagicMock(status_code=200, content=b"image")
        response.__enter__.return_value = response
        response.__exit__.return_value = False

        with patch("corsync.records.blob_store.requests.get", return_value=response) as get:
            data = self.store.download("form-attachments", "https://files.example.com/a.jpg")

        self.assertEqual(data, b"image")
        get.assert_called_once_with("https://files.example.com/a.jpg", timeout=30.0)

    def test_url_not_found(self) -> None:
        """Test a 404 from a URL is BlobNotFoundError."""
        response = MagicMock(status_code=404)
        response.__enter__.return_value = response
        response.__exit__.return_value = False

        with patch("corsync.records.blob_store.requests.get", return_value=response):
            with self.assertRaises(BlobNotFoundError):
                self.store.download("form-attachments", "https://files.example.com/a.jpg")

    def test_url_network_error(self) -> None:
        """Test a network failure is RecordSourceError."""
        with patch(
            "corsync.records.blob_store.requests.get",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ):
            with self.assertRaises(RecordSourceError):
                self.store.download("form-attachments", "https://files.example.com/a.jpg")

    def test_plain_http_rejected(self) -> None:
        """Test non-HTTPS URLs are refused without a request."""
        with patch("corsync.records.blob_store.requests.get") as get:
            with self.assertRaises(RecordSourceError):
                self.store.download("form-attachments", "http://files.example.com/a.jpg")

        get.assert_not_called()


if __name__ == "__main__":
    unittest.main()
