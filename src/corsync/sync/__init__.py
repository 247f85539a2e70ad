"""
Evidence sync engine.

Manages tenant connections to the audit platform and exports tenant
records as evidence, tracking what was exported so repeated runs only
upload new records.

Supported evidence types (in export order):
    - Form submissions (template COR elements)
    - Controlled documents (document COR elements)
    - Worker certifications (element 5)
    - Equipment maintenance records (element 10)
    - Training records (element 5)
    - Meeting minutes (element 1, JHSC minutes element 9)
    - Inspections (element 4)
    - Incident reports (element 7)

All exporters inherit from EvidenceExporter and register themselves
with the ExporterRegistry.
"""

from corsync.sync.base import (
    ConnectionInactiveError,
    ConnectionNotConfiguredError,
    CredentialValidationError,
    ExportInProgressError,
    ExportOptions,
    ExportProgress,
    ExportResult,
    PreconditionFailedError,
    ProgressCallback,
    SingleItemResult,
    SyncError,
    TypeExportResult,
    UpdatePushResult,
)
from corsync.sync.connection_manager import (
    ClientFactory,
    ConnectionManager,
    build_client_factory,
)

# Importing exporters registers every evidence type
from corsync.sync.exporters import (
    EXPORT_ORDER,
    EvidenceExporter,
    ExportContext,
    ExporterRegistry,
)
from corsync.sync.orchestrator import ExportOrchestrator

__all__ = [
    # Engine
    "ConnectionManager",
    "ExportOrchestrator",
    "ClientFactory",
    "build_client_factory",
    # Exporters
    "EvidenceExporter",
    "ExporterRegistry",
    "ExportContext",
    "EXPORT_ORDER",
    # Options and results
    "ExportOptions",
    "ExportProgress",
    "ProgressCallback",
    "ExportResult",
    "TypeExportResult",
    "SingleItemResult",
    "UpdatePushResult",
    # Exceptions
    "SyncError",
    "ConnectionNotConfiguredError",
    "ConnectionInactiveError",
    "CredentialValidationError",
    "PreconditionFailedError",
    "ExportInProgressError",
]
