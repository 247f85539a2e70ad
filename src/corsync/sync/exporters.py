"""
Evidence type exporters.

Each exporter turns one kind of tenant record into evidence on the audit
platform. They share a single algorithm, implemented once in
EvidenceExporter.export(); subclasses only supply the record query, the
COR element and question mapping, and the evidence content.

Algorithm per type:
    1. Skip the type entirely when an element filter excludes every
       element it can produce; otherwise query candidates and keep those
       whose elements overlap the filter
    2. In incremental mode, skip candidates that already have a mapping
    3. Report records the source could not fully read as failures;
       otherwise resolve the attachment, if any (a failure only drops
       the file)
    4. Build the EvidenceItem and upload it
    5. On success save an ItemMapping; on failure record an error entry
       and move on to the next candidate

Export order is fixed by EXPORT_ORDER.
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from corsync.client.audit_client import AuditPlatformClient
from corsync.client.base import EvidenceFile, EvidenceItem
from corsync.config.credentials import redact_secrets
from corsync.records.blob_store import (
    CERTIFICATIONS_BUCKET,
    DOCUMENTS_BUCKET,
    FORM_ATTACHMENTS_BUCKET,
    MAINTENANCE_BUCKET,
)
from corsync.records.models import (
    CertificationRecord,
    DocumentRecord,
    FormSubmissionRecord,
    MaintenanceRecord,
    TrainingRecord,
)
from corsync.records.source import BlobStore, RecordSource
from corsync.storage.models import ItemMapping, SyncErrorEntry
from corsync.storage.sync_store import StorageError, SyncStore
from corsync.sync.base import ExportOptions, TypeExportResult

MEETING_DOCUMENT_TYPES = ("MEETING_MINUTES", "JHSC_MINUTES", "SAFETY_MEETING")

INCIDENT_CODE_PATTERN = re.compile(r"INCIDENT|ACCIDENT|NEAR_MISS", re.IGNORECASE)


@dataclass
class ExportContext:
    """Everything an exporter needs for one tenant's run."""

    tenant_id: str
    audit_id: str
    client: AuditPlatformClient
    store: SyncStore
    source: RecordSource
    blobs: BlobStore
    options: ExportOptions


def _as_date(value: date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def invalid_data_error(record: Any) -> str | None:
    """Error message for a record the source could not fully read, or None."""
    errors = getattr(record, "data_errors", None)
    if not errors:
        return None
    return f"Invalid record data: {'; '.join(errors)}"


def _content_type(filename: str, declared: str | None = None) -> str:
    if declared and "/" in declared:
        return declared
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


# -----------------------------------------------------------------------------
# Base Exporter
# -----------------------------------------------------------------------------


class EvidenceExporter(ABC):
    """
    Abstract base class for evidence type exporters.

    Class Attributes:
        item_type: Internal item type recorded on mappings.
        summary_key: Key of this type in run summaries.
        label: Used in progress messages ("Exporting {label}...").
        evidence_type: Evidence tag sent to the platform.
        possible_elements: Every COR element this type can be filed
            under, or None when it depends on the record.
    """

    item_type: str = "base"
    summary_key: str = "base"
    label: str = "items"
    evidence_type: str = "document"
    possible_elements: frozenset[int] | None = None

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"corsync.sync.exporters.{self.item_type}")

    @abstractmethod
    def fetch(self, ctx: ExportContext) -> list[Any]:
        """Query candidate records for the tenant."""

    @abstractmethod
    def elements_for(self, record: Any) -> list[int]:
        """COR elements a record belongs to; the first is where it is filed."""

    @abstractmethod
    def question_id(self, record: Any) -> str:
        pass

    @abstractmethod
    def title(self, record: Any) -> str:
        pass

    def description(self, record: Any) -> str:
        return ""

    @abstractmethod
    def evidence_date(self, record: Any) -> date | None:
        pass

    def metadata(self, record: Any) -> dict[str, Any]:
        return {}

    def attachment(self, ctx: ExportContext, record: Any) -> EvidenceFile | None:
        """Resolve the record's attachment. Blob errors propagate to the caller."""
        return None

    def item_name(self, record: Any) -> str:
        return getattr(record, "display_name", None) or record.id

    def primary_element(self, record: Any) -> int:
        return self.elements_for(record)[0]

    def build_item(
        self, ctx: ExportContext, record: Any, with_file: bool = True
    ) -> EvidenceItem:
        """Build the evidence for a record, with its attachment when with_file is set."""
        file = None
        if with_file:
            try:
                file = self.attachment(ctx, record)
            except Exception as e:
                self.logger.warning(
                    f"Attachment unavailable for {self.item_type} {record.id}, "
                    f"exporting without file: {e}"
                )

        return EvidenceItem(
            audit_id=ctx.audit_id,
            cor_element=self.primary_element(record),
            question_id=self.question_id(record),
            evidence_type=self.evidence_type,
            title=self.title(record),
            description=self.description(record),
            date=self.evidence_date(record),
            file=file,
            metadata=self.metadata(record),
        )

    def excluded_by(self, elements: list[int] | None) -> bool:
        """True when an element filter rules out this whole type."""
        if not elements or self.possible_elements is None:
            return False
        return not (self.possible_elements & set(elements))

    def candidates(self, ctx: ExportContext) -> list[Any]:
        """Fetched records after the element filter and single-item narrowing."""
        options = ctx.options
        if self.excluded_by(options.elements):
            return []

        records = self.fetch(ctx)
        if options.only_item_id is not None:
            records = [r for r in records if r.id == options.only_item_id]
        if options.elements:
            wanted = set(options.elements)
            records = [r for r in records if wanted & set(self.elements_for(r))]
        return records

    def export(self, ctx: ExportContext) -> TypeExportResult:
        """
        Export this type's candidates for one tenant.

        Item failures are recorded in the result and never raised. Errors
        from the record query propagate.
        """
        result = TypeExportResult(item_type=self.item_type, summary_key=self.summary_key)

        records = self.candidates(ctx)
        result.total = len(records)
        if not records:
            return result

        already_mapped: set[str] = set()
        if ctx.options.incremental:
            already_mapped = ctx.store.get_mapped_ids(ctx.tenant_id, self.item_type)

        for record in records:
            if record.id in already_mapped:
                result.skipped += 1
                continue

            error = self._export_record(ctx, record)
            if error is None:
                result.succeeded += 1
            else:
                result.failed += 1
                result.errors.append(
                    SyncErrorEntry(
                        item_type=self.item_type,
                        item_id=record.id,
                        item_name=self.item_name(record),
                        error=redact_secrets(error),
                    )
                )

        self.logger.info(
            f"Exported {self.summary_key}: {result.succeeded} succeeded, "
            f"{result.failed} failed, {result.skipped} skipped of {result.total}"
        )
        return result

    def _export_record(self, ctx: ExportContext, record: Any) -> str | None:
        """Upload one record and save its mapping. Returns an error message on failure."""
        invalid = invalid_data_error(record)
        if invalid is not None:
            self.logger.warning(f"Skipping {self.item_type} {record.id}: {invalid}")
            return invalid

        try:
            item = self.build_item(ctx, record)
        except Exception as e:
            self.logger.warning(f"Cannot build evidence for {self.item_type} {record.id}: {e}")
            return f"Cannot build evidence: {e}"

        upload = ctx.client.upload_evidence(item)
        if not upload.success or not upload.external_item_id:
            self.logger.warning(
                f"Upload failed for {self.item_type} {record.id}: {upload.error}"
            )
            return upload.error or "Failed to upload evidence"

        mapping = ItemMapping(
            tenant_id=ctx.tenant_id,
            internal_item_type=self.item_type,
            internal_item_id=record.id,
            external_item_id=upload.external_item_id,
            cor_element=item.cor_element,
            question_id=item.question_id,
        )
        try:
            ctx.store.save_mapping(mapping)
        except StorageError as e:
            self.logger.error(
                f"Uploaded {self.item_type} {record.id} as {upload.external_item_id} "
                f"but could not record the mapping: {e}"
            )
            return f"Uploaded as {upload.external_item_id} but mapping was not saved: {e}"
        return None

    def update_payload(self, ctx: ExportContext, record: Any) -> dict[str, Any]:
        """Fields sent when refreshing existing evidence for a changed record."""
        item = self.build_item(ctx, record, with_file=False)
        return {
            "cor_element": item.cor_element,
            "question_id": item.question_id,
            "title": item.title,
            "description": item.description,
            "date": _iso(item.date),
            "metadata": item.metadata,
        }


class FixedElementExporter(EvidenceExporter):
    """Exporter whose records are always filed under one element."""

    element: int = 1

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.possible_elements = frozenset({cls.element})

    def elements_for(self, record: Any) -> list[int]:
        return [self.element]


# -----------------------------------------------------------------------------
# Exporter Registry
# -----------------------------------------------------------------------------


EXPORT_ORDER = (
    "form_submission",
    "document",
    "certification",
    "maintenance_record",
    "training_record",
    "meeting_minutes",
    "inspection",
    "incident_report",
)


class ExporterRegistry:
    """
    Registry of exporter classes keyed by item type.

    Example:
        @ExporterRegistry.register
        class MyExporter(EvidenceExporter):
            item_type = "my_type"

        exporters = ExporterRegistry.create_all(["document"])
    """

    _exporters: dict[str, type[EvidenceExporter]] = {}

    @classmethod
    def register(cls, exporter_class: type[EvidenceExporter]) -> type[EvidenceExporter]:
        """
        Register an exporter class. Usable as a decorator.

        Raises:
            ValueError: If the exporter has no item_type defined.
        """
        item_type = exporter_class.item_type
        if item_type == "base":
            raise ValueError(
                f"Exporter class {exporter_class.__name__} must define 'item_type'"
            )
        cls._exporters[item_type] = exporter_class
        logging.getLogger("corsync.sync.exporters.registry").debug(
            f"Registered exporter: {item_type} -> {exporter_class.__name__}"
        )
        return exporter_class

    @classmethod
    def get_item_types(cls) -> list[str]:
        """Registered item types in export order."""
        ordered = [t for t in EXPORT_ORDER if t in cls._exporters]
        return ordered + sorted(t for t in cls._exporters if t not in EXPORT_ORDER)

    @classmethod
    def is_registered(cls, item_type: str) -> bool:
        return item_type in cls._exporters

    @classmethod
    def create(cls, item_type: str) -> EvidenceExporter:
        """
        Raises:
            ValueError: If the item type is not registered.
        """
        exporter_class = cls._exporters.get(item_type)
        if exporter_class is None:
            raise ValueError(
                f"Unknown item type: {item_type}. "
                f"Available: {', '.join(cls.get_item_types())}"
            )
        return exporter_class()

    @classmethod
    def create_all(cls, include_types: list[str] | None = None) -> list[EvidenceExporter]:
        """
        Instantiate exporters in export order.

        Raises:
            ValueError: If include_types names an unknown item type.
        """
        if include_types:
            unknown = [t for t in include_types if t not in cls._exporters]
            if unknown:
                raise ValueError(
                    f"Unknown item type(s): {', '.join(unknown)}. "
                    f"Available: {', '.join(cls.get_item_types())}"
                )
        return [
            cls._exporters[t]()
            for t in cls.get_item_types()
            if not include_types or t in include_types
        ]


# -----------------------------------------------------------------------------
# Form-based Exporters
# -----------------------------------------------------------------------------


class _FormExporterMixin:
    """Helpers shared by exporters reading form submissions."""

    photo_filename = "form-photo.jpg"

    def _submission_date(self, record: FormSubmissionRecord) -> date | None:
        return _as_date(record.submitted_at or record.created_at)

    def _first_photo(
        self, ctx: ExportContext, record: FormSubmissionRecord
    ) -> EvidenceFile | None:
        if not record.attachments:
            return None
        content = ctx.blobs.download(FORM_ATTACHMENTS_BUCKET, record.attachments[0])
        return EvidenceFile(self.photo_filename, content, "image/jpeg")

    def _submitter(self, record: FormSubmissionRecord) -> str:
        return record.submitter.display_name if record.submitter else "Unknown"


@ExporterRegistry.register
class FormSubmissionExporter(_FormExporterMixin, EvidenceExporter):
    """Submitted forms, filed under their template's first COR element."""

    item_type = "form_submission"
    summary_key = "form_submissions"
    label = "form submissions"
    evidence_type = "form_submission"

    def fetch(self, ctx: ExportContext) -> list[FormSubmissionRecord]:
        return ctx.source.get_submitted_forms(ctx.tenant_id, ctx.options.date_range)

    def elements_for(self, record: FormSubmissionRecord) -> list[int]:
        return record.template_elements or [1]

    def question_id(self, record: FormSubmissionRecord) -> str:
        return f"form_{record.form_code or 'unknown'}"

    def title(self, record: FormSubmissionRecord) -> str:
        when = _iso(self._submission_date(record)) or "undated"
        return f"{record.form_name or 'Form'} - {when}"

    def description(self, record: FormSubmissionRecord) -> str:
        return f"Submitted by {self._submitter(record)}"

    def evidence_date(self, record: FormSubmissionRecord) -> date | None:
        return self._submission_date(record)

    def metadata(self, record: FormSubmissionRecord) -> dict[str, Any]:
        return {
            "form_name": record.form_name,
            "form_code": record.form_code or None,
            "form_number": record.form_number,
            "submitted_by": self._submitter(record),
            "submission_data": record.form_data,
            "signatures": record.signatures,
            "photos": record.attachments,
            "cor_elements": record.template_elements,
        }

    def attachment(self, ctx: ExportContext, record: FormSubmissionRecord) -> EvidenceFile | None:
        return self._first_photo(ctx, record)


@ExporterRegistry.register
class InspectionExporter(_FormExporterMixin, FixedElementExporter):
    """Submitted forms whose template code marks them as inspections."""

    item_type = "inspection"
    summary_key = "inspections"
    label = "inspections"
    evidence_type = "inspection"
    element = 4
    photo_filename = "inspection-photo.jpg"

    def fetch(self, ctx: ExportContext) -> list[FormSubmissionRecord]:
        forms = ctx.source.get_submitted_forms(ctx.tenant_id, ctx.options.date_range)
        return [f for f in forms if "INSPECTION" in f.form_code.upper()]

    def question_id(self, record: FormSubmissionRecord) -> str:
        return "workplace_inspections"

    def title(self, record: FormSubmissionRecord) -> str:
        when = _iso(self._submission_date(record)) or "undated"
        return f"{record.form_name or 'Inspection'} - {when}"

    def description(self, record: FormSubmissionRecord) -> str:
        return f"Inspected by {self._submitter(record)}"

    def evidence_date(self, record: FormSubmissionRecord) -> date | None:
        return self._submission_date(record)

    def metadata(self, record: FormSubmissionRecord) -> dict[str, Any]:
        return {
            "form_name": record.form_name,
            "form_code": record.form_code or None,
            "inspector": self._submitter(record),
            "inspection_data": record.form_data,
            "findings": record.form_data.get("findings"),
            "corrective_actions": record.form_data.get("corrective_actions"),
        }

    def attachment(self, ctx: ExportContext, record: FormSubmissionRecord) -> EvidenceFile | None:
        return self._first_photo(ctx, record)


@ExporterRegistry.register
class IncidentReportExporter(_FormExporterMixin, FixedElementExporter):
    """Incident, accident and near-miss reports."""

    item_type = "incident_report"
    summary_key = "incidents"
    label = "incident reports"
    evidence_type = "incident_report"
    element = 7
    photo_filename = "incident-photo.jpg"

    def fetch(self, ctx: ExportContext) -> list[FormSubmissionRecord]:
        forms = ctx.source.get_submitted_forms(ctx.tenant_id, ctx.options.date_range)
        return [f for f in forms if INCIDENT_CODE_PATTERN.search(f.form_code)]

    def question_id(self, record: FormSubmissionRecord) -> str:
        return "incident_investigation"

    def title(self, record: FormSubmissionRecord) -> str:
        when = _iso(self._submission_date(record)) or "undated"
        return f"{record.form_name or 'Incident Report'} - {when}"

    def description(self, record: FormSubmissionRecord) -> str:
        return f"Reported by {self._submitter(record)}"

    def evidence_date(self, record: FormSubmissionRecord) -> date | None:
        return self._submission_date(record)

    def metadata(self, record: FormSubmissionRecord) -> dict[str, Any]:
        data = record.form_data
        return {
            "form_name": record.form_name,
            "form_code": record.form_code or None,
            "reporter": self._submitter(record),
            "incident_data": data,
            "incident_type": data.get("incident_type"),
            "severity": data.get("severity"),
            "root_cause": data.get("root_cause"),
            "corrective_actions": data.get("corrective_actions"),
        }

    def attachment(self, ctx: ExportContext, record: FormSubmissionRecord) -> EvidenceFile | None:
        return self._first_photo(ctx, record)


# -----------------------------------------------------------------------------
# Document-based Exporters
# -----------------------------------------------------------------------------


def _document_file(ctx: ExportContext, record: DocumentRecord) -> EvidenceFile | None:
    if not record.file_path:
        return None
    filename = record.file_name or posixpath.basename(record.file_path)
    content = ctx.blobs.download(DOCUMENTS_BUCKET, record.file_path)
    return EvidenceFile(filename, content, _content_type(filename, record.file_type))


def _document_date(record: DocumentRecord) -> date | None:
    return record.effective_date or _as_date(record.created_at)


@ExporterRegistry.register
class DocumentExporter(EvidenceExporter):
    """Active controlled documents with their files."""

    item_type = "document"
    summary_key = "documents"
    label = "documents"
    evidence_type = "document"

    def fetch(self, ctx: ExportContext) -> list[DocumentRecord]:
        return ctx.source.get_active_documents(ctx.tenant_id)

    def elements_for(self, record: DocumentRecord) -> list[int]:
        return record.cor_elements or [1]

    def question_id(self, record: DocumentRecord) -> str:
        return f"doc_{record.document_type_code or 'document'}"

    def title(self, record: DocumentRecord) -> str:
        return record.display_name

    def description(self, record: DocumentRecord) -> str:
        return record.description or ""

    def evidence_date(self, record: DocumentRecord) -> date | None:
        return _document_date(record)

    def metadata(self, record: DocumentRecord) -> dict[str, Any]:
        return {
            "control_number": record.control_number,
            "document_type": record.document_type_code,
            "version": record.version,
            "folder": record.folder_name,
            "cor_elements": record.cor_elements,
            "effective_date": _iso(record.effective_date),
            "review_date": _iso(record.review_date),
        }

    def attachment(self, ctx: ExportContext, record: DocumentRecord) -> EvidenceFile | None:
        return _document_file(ctx, record)


@ExporterRegistry.register
class MeetingMinutesExporter(EvidenceExporter):
    """Meeting minutes; JHSC minutes go to element 9, the rest to element 1."""

    item_type = "meeting_minutes"
    summary_key = "meeting_minutes"
    label = "meeting minutes"
    evidence_type = "document"
    possible_elements = frozenset({1, 9})

    def fetch(self, ctx: ExportContext) -> list[DocumentRecord]:
        return ctx.source.get_active_documents(
            ctx.tenant_id, document_types=list(MEETING_DOCUMENT_TYPES)
        )

    def _is_jhsc(self, record: DocumentRecord) -> bool:
        return record.document_type_code == "JHSC_MINUTES"

    def elements_for(self, record: DocumentRecord) -> list[int]:
        return [9] if self._is_jhsc(record) else [1]

    def question_id(self, record: DocumentRecord) -> str:
        return "jhsc_meetings" if self._is_jhsc(record) else "management_meetings"

    def title(self, record: DocumentRecord) -> str:
        return record.display_name

    def description(self, record: DocumentRecord) -> str:
        if record.description:
            return record.description
        kind = "JHSC" if self._is_jhsc(record) else "Safety"
        return f"{kind} meeting minutes"

    def evidence_date(self, record: DocumentRecord) -> date | None:
        return _document_date(record)

    def metadata(self, record: DocumentRecord) -> dict[str, Any]:
        return {
            "document_type": record.document_type_code,
            "meeting_date": _iso(record.effective_date),
            "control_number": record.control_number,
        }

    def attachment(self, ctx: ExportContext, record: DocumentRecord) -> EvidenceFile | None:
        return _document_file(ctx, record)


# -----------------------------------------------------------------------------
# Worker and Equipment Exporters
# -----------------------------------------------------------------------------


@ExporterRegistry.register
class CertificationExporter(FixedElementExporter):
    """Active worker certifications."""

    item_type = "certification"
    summary_key = "certifications"
    label = "certifications"
    evidence_type = "training_record"
    element = 5

    def fetch(self, ctx: ExportContext) -> list[CertificationRecord]:
        return ctx.source.get_active_certifications(ctx.tenant_id)

    def question_id(self, record: CertificationRecord) -> str:
        return "training_certifications"

    def title(self, record: CertificationRecord) -> str:
        return record.display_name

    def description(self, record: CertificationRecord) -> str:
        parts = []
        if record.certificate_number:
            parts.append(f"Certificate #{record.certificate_number}")
        if record.issue_date:
            parts.append(f"Issued: {record.issue_date.isoformat()}")
        if record.expiry_date:
            parts.append(f"Expires: {record.expiry_date.isoformat()}")
        else:
            parts.append("No expiry")
        return " | ".join(parts)

    def evidence_date(self, record: CertificationRecord) -> date | None:
        return record.issue_date or _as_date(record.created_at)

    def metadata(self, record: CertificationRecord) -> dict[str, Any]:
        return {
            "worker_name": record.worker_name,
            "employee_number": record.worker.employee_number if record.worker else None,
            "certification_type": record.certification_name,
            "certification_code": record.certification_code,
            "certificate_number": record.certificate_number,
            "issue_date": _iso(record.issue_date),
            "expiry_date": _iso(record.expiry_date),
            "issuing_organization": record.issuing_organization,
            "status": record.status,
        }

    def attachment(self, ctx: ExportContext, record: CertificationRecord) -> EvidenceFile | None:
        if not record.file_path:
            return None
        content = ctx.blobs.download(CERTIFICATIONS_BUCKET, record.file_path)
        filename = f"cert_{record.certificate_number or record.id}.pdf"
        return EvidenceFile(filename, content, "application/pdf")


@ExporterRegistry.register
class MaintenanceRecordExporter(FixedElementExporter):
    """Completed equipment maintenance, with its receipt when available."""

    item_type = "maintenance_record"
    summary_key = "maintenance_records"
    label = "maintenance records"
    evidence_type = "maintenance_record"
    element = 10

    def fetch(self, ctx: ExportContext) -> list[MaintenanceRecord]:
        return ctx.source.get_completed_maintenance(ctx.tenant_id, ctx.options.date_range)

    def question_id(self, record: MaintenanceRecord) -> str:
        return "preventive_maintenance"

    def title(self, record: MaintenanceRecord) -> str:
        return record.display_name

    def description(self, record: MaintenanceRecord) -> str:
        text = (
            f"{record.maintenance_type or 'Scheduled'} maintenance on "
            f"{record.equipment_type or 'equipment'}"
        )
        if record.cost is not None:
            text += f" | Cost: ${record.cost:.2f}"
        return text

    def evidence_date(self, record: MaintenanceRecord) -> date | None:
        return record.actual_date or _as_date(record.created_at)

    def metadata(self, record: MaintenanceRecord) -> dict[str, Any]:
        return {
            "equipment_number": record.equipment_number,
            "equipment_type": record.equipment_type,
            "maintenance_type": record.maintenance_type,
            "work_description": record.work_description,
            "work_performed": record.work_performed,
            "vendor": record.vendor,
            "cost": record.cost,
            "attachment_count": len(record.attachments),
        }

    def attachment(self, ctx: ExportContext, record: MaintenanceRecord) -> EvidenceFile | None:
        chosen = record.primary_attachment()
        if chosen is None:
            return None
        filename = chosen.file_name or posixpath.basename(chosen.file_path)
        content = ctx.blobs.download(MAINTENANCE_BUCKET, chosen.file_path)
        return EvidenceFile(filename, content, _content_type(filename, chosen.file_type))


@ExporterRegistry.register
class TrainingRecordExporter(FixedElementExporter):
    """Worker training sessions."""

    item_type = "training_record"
    summary_key = "training_records"
    label = "training records"
    evidence_type = "training_record"
    element = 5

    def fetch(self, ctx: ExportContext) -> list[TrainingRecord]:
        return ctx.source.get_training_records(ctx.tenant_id, ctx.options.date_range)

    def question_id(self, record: TrainingRecord) -> str:
        return "training_records"

    def title(self, record: TrainingRecord) -> str:
        return record.display_name

    def description(self, record: TrainingRecord) -> str:
        parts = [record.training_type or "General training"]
        if record.duration_hours:
            parts.append(f"Duration: {record.duration_hours:g}hrs")
        if record.training_date:
            parts.append(f"Date: {record.training_date.isoformat()}")
        return " | ".join(parts)

    def evidence_date(self, record: TrainingRecord) -> date | None:
        return record.training_date or _as_date(record.created_at)

    def metadata(self, record: TrainingRecord) -> dict[str, Any]:
        return {
            "worker_name": record.worker_name,
            "employee_number": record.worker.employee_number if record.worker else None,
            "training_type": record.training_type,
            "topic": record.topic,
            "duration_hours": record.duration_hours,
            "trainer": record.trainer,
            "passed": record.passed,
            "location": record.location,
        }