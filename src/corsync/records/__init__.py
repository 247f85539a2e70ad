"""
Tenant records and attachments read by the exporters.

The tenant data store is external to corsync. This package defines the
typed records the exporters consume, the RecordSource and BlobStore
contracts, and local SQLite and filesystem implementations of both.
"""

from corsync.records.blob_store import (
    CERTIFICATIONS_BUCKET,
    DOCUMENTS_BUCKET,
    FORM_ATTACHMENTS_BUCKET,
    MAINTENANCE_BUCKET,
    FileSystemBlobStore,
)
from corsync.records.models import (
    CertificationRecord,
    DocumentRecord,
    FormSubmissionRecord,
    FormTemplate,
    MaintenanceAttachment,
    MaintenanceRecord,
    Person,
    TrainingRecord,
)
from corsync.records.source import (
    BlobNotFoundError,
    BlobStore,
    DateRange,
    RecordSource,
    RecordSourceError,
)
from corsync.records.sqlite_source import SqliteRecordSource

__all__ = [
    # Contracts
    "RecordSource",
    "BlobStore",
    "DateRange",
    # Implementations
    "SqliteRecordSource",
    "FileSystemBlobStore",
    "DOCUMENTS_BUCKET",
    "CERTIFICATIONS_BUCKET",
    "MAINTENANCE_BUCKET",
    "FORM_ATTACHMENTS_BUCKET",
    # Records
    "Person",
    "FormTemplate",
    "FormSubmissionRecord",
    "DocumentRecord",
    "CertificationRecord",
    "MaintenanceAttachment",
    "MaintenanceRecord",
    "TrainingRecord",
    # Exceptions
    "RecordSourceError",
    "BlobNotFoundError",
]
