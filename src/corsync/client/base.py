"""
Shared types for the external audit platform client.

This module provides the error hierarchy raised by the client and its
transports, the COR element catalogue, and the dataclasses exchanged with
the platform (evidence items, upload results, audit structure and status).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

# -----------------------------------------------------------------------------
# Error Classes
# -----------------------------------------------------------------------------


class AuditPlatformError(Exception):
    """Base exception for audit platform errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InsecureEndpointError(AuditPlatformError):
    """Raised when the configured endpoint does not use HTTPS."""

    pass


class PlatformTimeoutError(AuditPlatformError):
    """Raised when a platform call exceeds its bounded wait."""

    pass


class PlatformConnectionError(AuditPlatformError):
    """
    Raised when the platform cannot be reached.

    This includes DNS failures, refused connections and TLS errors.
    """

    pass


class UploadRejectedError(AuditPlatformError):
    """Raised when the platform answers a request with a non-2xx status."""

    pass


class InvalidResponseError(AuditPlatformError):
    """Raised when a platform response does not have the expected shape."""

    pass


# -----------------------------------------------------------------------------
# COR Elements
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class CorElement:
    """One of the fourteen audit categories of a COR safety audit."""

    number: int
    name: str
    weight: int


COR_ELEMENTS: dict[int, CorElement] = {
    e.number: e
    for e in (
        CorElement(1, "Management Leadership & Organizational Commitment", 10),
        CorElement(2, "Hazard Identification & Assessment", 10),
        CorElement(3, "Hazard Control", 10),
        CorElement(4, "Ongoing Inspections", 5),
        CorElement(5, "Qualifications, Orientation & Training", 10),
        CorElement(6, "Emergency Response", 5),
        CorElement(7, "Incident Investigation", 10),
        CorElement(8, "Program Administration", 5),
        CorElement(9, "Joint Health & Safety Committee/Representative", 5),
        CorElement(10, "Preventive Maintenance", 5),
        CorElement(11, "Occupational Health", 10),
        CorElement(12, "First Aid", 5),
        CorElement(13, "Health & Safety Statistics", 5),
        CorElement(14, "Legislation", 5),
    )
}

ALL_ELEMENTS: tuple[int, ...] = tuple(sorted(COR_ELEMENTS))


def validate_elements(elements: list[int] | None) -> list[int] | None:
    """
    Check that every element number is a known COR element.

    Raises:
        ValueError: If an element number is outside 1-14.
    """
    if elements is None:
        return None
    unknown = [e for e in elements if e not in COR_ELEMENTS]
    if unknown:
        raise ValueError(
            f"Unknown COR element(s): {', '.join(str(e) for e in unknown)}. "
            f"Valid elements are 1-{len(COR_ELEMENTS)}"
        )
    return list(elements)


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


@dataclass
class EvidenceFile:
    """A file attached to an evidence upload."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class EvidenceItem:
    """
    One unit of evidence for the external platform.

    Attributes:
        audit_id: External audit the evidence belongs to.
        cor_element: COR element number (1-14).
        question_id: External audit question identifier.
        evidence_type: Platform evidence tag (e.g. "document", "inspection").
        title: Short human readable title.
        description: Longer description.
        date: Effective date of the evidence.
        file: Optional attachment.
        metadata: Free-form details sent as JSON.
    """

    audit_id: str
    cor_element: int
    question_id: str
    evidence_type: str
    title: str
    description: str = ""
    date: date | None = None
    file: EvidenceFile | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """
    Outcome of validating an API key against the platform.

    reason is set on failure and is one of "insecure_endpoint", "timeout",
    "network", "rejected" or "invalid_response".
    """

    valid: bool
    error: str | None = None
    reason: str | None = None
    organization_id: str | None = None
    organization_name: str | None = None
    audit_id: str | None = None
    audit_scheduled_date: str | None = None
    auditor_name: str | None = None
    auditor_email: str | None = None


@dataclass
class UploadResult:
    """Outcome of a single evidence upload or update."""

    success: bool
    external_item_id: str | None = None
    message: str | None = None
    error: str | None = None


@dataclass
class BulkUploadError:
    """A failed item in a bulk upload. index is the 1-based position."""

    index: int
    item: EvidenceItem
    error: str


@dataclass
class BulkUploadResult:
    """Aggregated outcome of a sequential bulk upload."""

    total: int
    succeeded: int = 0
    failed: int = 0
    results: list[UploadResult] = field(default_factory=list)
    errors: list[BulkUploadError] = field(default_factory=list)


@dataclass
class AuditQuestion:
    """A question within an audit element."""

    id: str
    text: str
    evidence_types: list[str] = field(default_factory=list)
    required: bool = False


@dataclass
class AuditElement:
    """An element of an audit with its questions."""

    number: int
    name: str
    weight: float
    questions: list[AuditQuestion] = field(default_factory=list)


@dataclass
class AuditStructure:
    """Elements and questions of an external audit."""

    audit_id: str
    name: str
    elements: list[AuditElement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditStructure:
        """Create from a platform response body."""
        return cls(
            audit_id=str(data["audit_id"]),
            name=str(data.get("name", "")),
            elements=[
                AuditElement(
                    number=int(e["number"]),
                    name=str(e.get("name", "")),
                    weight=float(e.get("weight", 0)),
                    questions=[
                        AuditQuestion(
                            id=str(q["id"]),
                            text=str(q.get("text", "")),
                            evidence_types=list(q.get("evidence_types", [])),
                            required=bool(q.get("required", False)),
                        )
                        for q in e.get("questions", [])
                    ],
                )
                for e in data.get("elements", [])
            ],
        )


@dataclass
class AuditStatus:
    """Progress of an external audit."""

    audit_id: str
    status: str
    completion_percentage: float = 0.0
    elements_status: dict[str, Any] = field(default_factory=dict)
    scheduled_date: str | None = None
    auditor_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditStatus:
        """Create from a platform response body."""
        return cls(
            audit_id=str(data["audit_id"]),
            status=str(data.get("status", "pending")),
            completion_percentage=float(data.get("completion_percentage", 0)),
            elements_status=dict(data.get("elements_status") or {}),
            scheduled_date=data.get("scheduled_date"),
            auditor_name=data.get("auditor_name"),
        )
