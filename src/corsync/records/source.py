"""
Contracts for reading tenant records and their attachments.

The sync engine does not own the tenant data store. It reads it through a
RecordSource, whose queries are always scoped to one tenant, and fetches
attachments through a BlobStore.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime

from corsync.records.models import (
    CertificationRecord,
    DocumentRecord,
    FormSubmissionRecord,
    MaintenanceRecord,
    TrainingRecord,
)


class RecordSourceError(Exception):
    """Raised when the tenant data store cannot be queried."""

    pass


class BlobNotFoundError(RecordSourceError):
    """Raised when an attachment does not exist."""

    pass


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive date window. Either end may be open.

    Raises:
        ValueError: If start is after end.
    """

    start: date | None = None
    end: date | None = None

    def __post_init__(self) -> None:
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"Date range start {self.start} is after end {self.end}")

    def contains(self, value: date | datetime | None) -> bool:
        """Check whether a date falls in the window. Undated values never do."""
        if value is None:
            return False
        if isinstance(value, datetime):
            value = value.date()
        if self.start and value < self.start:
            return False
        if self.end and value > self.end:
            return False
        return True

    def label(self) -> str:
        """Human readable form used in export summaries."""
        start = self.start.isoformat() if self.start else "beginning"
        end = self.end.isoformat() if self.end else "now"
        return f"{start} to {end}"

    def to_dict(self) -> dict[str, str | None]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


class RecordSource(ABC):
    """
    Tenant-scoped, read-only queries over the records that become evidence.

    Implementations raise RecordSourceError when the store fails.
    """

    @abstractmethod
    def get_submitted_forms(
        self, tenant_id: str, date_range: DateRange | None = None
    ) -> list[FormSubmissionRecord]:
        """Submitted forms with template and submitter, filtered on submitted_at."""

    @abstractmethod
    def get_active_documents(
        self, tenant_id: str, document_types: list[str] | None = None
    ) -> list[DocumentRecord]:
        """Active documents, optionally limited to some document type codes."""

    @abstractmethod
    def get_active_certifications(self, tenant_id: str) -> list[CertificationRecord]:
        """Active worker certifications with type and worker."""

    @abstractmethod
    def get_completed_maintenance(
        self, tenant_id: str, date_range: DateRange | None = None
    ) -> list[MaintenanceRecord]:
        """Completed maintenance with equipment and attachments, filtered on actual_date."""

    @abstractmethod
    def get_training_records(
        self, tenant_id: str, date_range: DateRange | None = None
    ) -> list[TrainingRecord]:
        """Training records with worker, filtered on training_date."""


class BlobStore(ABC):
    """Object storage holding record attachments."""

    @abstractmethod
    def download(self, bucket: str, path: str) -> bytes:
        """
        Fetch one attachment.

        Raises:
            BlobNotFoundError: If the object does not exist.
            RecordSourceError: If the object cannot be read.
        """
