"""
External audit platform client.

Provides an authenticated, paced, HTTPS-only client for the audit platform,
with pluggable transports (real HTTP or a local simulation).

Usage:
    from corsync.client import AuditPlatformClient, TokenBucket

    client = AuditPlatformClient(api_key, tenant_id, pacer=TokenBucket(10.0))
    result = client.validate_connection()
"""

from corsync.client.audit_client import AuditPlatformClient
from corsync.client.base import (
    ALL_ELEMENTS,
    COR_ELEMENTS,
    AuditElement,
    AuditPlatformError,
    AuditQuestion,
    AuditStatus,
    AuditStructure,
    BulkUploadError,
    BulkUploadResult,
    CorElement,
    EvidenceFile,
    EvidenceItem,
    InsecureEndpointError,
    InvalidResponseError,
    PlatformConnectionError,
    PlatformTimeoutError,
    UploadRejectedError,
    UploadResult,
    ValidationResult,
    validate_elements,
)
from corsync.client.pacing import NoPacing, Pacer, TokenBucket
from corsync.client.transport import (
    HttpTransport,
    SimulatedTransport,
    Transport,
    TransportResponse,
)

__all__ = [
    # Client
    "AuditPlatformClient",
    # Transports
    "Transport",
    "TransportResponse",
    "HttpTransport",
    "SimulatedTransport",
    # Pacing
    "Pacer",
    "NoPacing",
    "TokenBucket",
    # Data
    "COR_ELEMENTS",
    "ALL_ELEMENTS",
    "CorElement",
    "EvidenceFile",
    "EvidenceItem",
    "ValidationResult",
    "UploadResult",
    "BulkUploadResult",
    "BulkUploadError",
    "AuditStructure",
    "AuditElement",
    "AuditQuestion",
    "AuditStatus",
    "validate_elements",
    # Exceptions
    "AuditPlatformError",
    "InsecureEndpointError",
    "PlatformTimeoutError",
    "PlatformConnectionError",
    "UploadRejectedError",
    "InvalidResponseError",
]
