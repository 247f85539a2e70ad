"""
Typed tenant records exported as evidence.

Each record type the exporters read is an explicit dataclass, produced by a
RecordSource's per-type converter. Related rows a record needs (form
template, submitter, worker, equipment, attachments) are joined in.

Schema Design Decisions:
    - Dates without a time component are datetime.date
    - Submission and creation instants are timezone-aware datetimes
    - Free-form JSON content stays a dict
    - Column values a converter cannot read are left empty and described
      in data_errors; such records are reported, never uploaded
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


@dataclass
class Person:
    """A worker or user referenced by a record."""

    id: str
    full_name: str | None = None
    employee_number: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or "Unknown"


@dataclass
class FormTemplate:
    """The template a form submission was filled from."""

    id: str
    name: str | None = None
    form_code: str | None = None
    cor_elements: list[int] = field(default_factory=list)


@dataclass
class FormSubmissionRecord:
    """
    A submitted form.

    Inspections and incident reports are form submissions whose template
    code identifies them.

    Attributes:
        form_data: Answers keyed by field name.
        attachments: Blob references of attached photos, in upload order.
        signatures: Captured signatures.
    """

    id: str
    status: str
    template: FormTemplate | None = None
    submitter: Person | None = None
    form_number: str | None = None
    submitted_at: datetime | None = None
    created_at: datetime | None = None
    form_data: dict[str, Any] = field(default_factory=dict)
    attachments: list[str] = field(default_factory=list)
    signatures: list[Any] = field(default_factory=list)
    data_errors: list[str] = field(default_factory=list)

    @property
    def form_code(self) -> str:
        return (self.template.form_code if self.template else None) or ""

    @property
    def form_name(self) -> str | None:
        return self.template.name if self.template else None

    @property
    def template_elements(self) -> list[int]:
        return list(self.template.cor_elements) if self.template else []

    @property
    def display_name(self) -> str:
        return self.form_number or self.form_name or self.id


@dataclass
class DocumentRecord:
    """A controlled document."""

    id: str
    title: str | None = None
    status: str = "active"
    control_number: str | None = None
    description: str | None = None
    document_type_code: str | None = None
    version: str | None = None
    folder_name: str | None = None
    cor_elements: list[int] = field(default_factory=list)
    effective_date: date | None = None
    review_date: date | None = None
    file_path: str | None = None
    file_name: str | None = None
    file_type: str | None = None
    created_at: datetime | None = None
    data_errors: list[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        if self.control_number and self.title:
            return f"{self.control_number}: {self.title}"
        return self.title or "Untitled Document"


@dataclass
class CertificationRecord:
    """A worker's certification."""

    id: str
    worker: Person | None = None
    certification_name: str | None = None
    certification_code: str | None = None
    certificate_number: str | None = None
    issue_date: date | None = None
    expiry_date: date | None = None
    issuing_organization: str | None = None
    status: str = "active"
    file_path: str | None = None
    created_at: datetime | None = None
    data_errors: list[str] = field(default_factory=list)

    @property
    def worker_name(self) -> str:
        return self.worker.display_name if self.worker else "Unknown"

    @property
    def display_name(self) -> str:
        return f"{self.certification_name or 'Certification'} - {self.worker_name}"


@dataclass
class MaintenanceAttachment:
    """A file attached to a maintenance record."""

    id: str
    file_path: str
    file_name: str | None = None
    file_type: str | None = None
    is_receipt: bool = False


@dataclass
class MaintenanceRecord:
    """A maintenance job on a piece of equipment."""

    id: str
    status: str = "completed"
    equipment_number: str | None = None
    equipment_type: str | None = None
    maintenance_type: str | None = None
    work_description: str | None = None
    work_performed: str | None = None
    vendor: str | None = None
    cost: float | None = None
    actual_date: date | None = None
    attachments: list[MaintenanceAttachment] = field(default_factory=list)
    created_at: datetime | None = None
    data_errors: list[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return (
            f"{self.equipment_number or 'Equipment'}: "
            f"{self.work_description or 'Maintenance'}"
        )

    def primary_attachment(self) -> MaintenanceAttachment | None:
        """The receipt if there is one, otherwise the first attachment."""
        for attachment in self.attachments:
            if attachment.is_receipt:
                return attachment
        return self.attachments[0] if self.attachments else None


@dataclass
class TrainingRecord:
    """A completed training session for one worker."""

    id: str
    worker: Person | None = None
    training_type: str | None = None
    topic: str | None = None
    duration_hours: float | None = None
    trainer: str | None = None
    training_date: date | None = None
    passed: bool | None = None
    location: str | None = None
    created_at: datetime | None = None
    data_errors: list[str] = field(default_factory=list)

    @property
    def worker_name(self) -> str:
        return self.worker.display_name if self.worker else "Unknown"

    @property
    def display_name(self) -> str:
        return f"{self.topic or 'Training'} - {self.worker_name}"
