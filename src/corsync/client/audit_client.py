"""
Client for the external audit platform API.

One AuditPlatformClient represents an authenticated session for one tenant.
All requests pass through the configured pacer and transport, and every
endpoint must use HTTPS; the scheme is checked before anything is sent.

Methods that report outcomes as results (validate_connection,
upload_evidence, update_evidence, bulk_upload_evidence) never raise.
Methods that return platform data (get_audit_structure, get_audit_status,
delete_evidence) raise AuditPlatformError subclasses.

API Endpoints:
    POST   /v1/auth/validate
    GET    /v1/audits/{audit_id}/structure
    POST   /v1/audits/{audit_id}/evidence     (multipart)
    PATCH  /v1/evidence/{evidence_id}
    DELETE /v1/evidence/{evidence_id}
    GET    /v1/audits/{audit_id}/status
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from collections.abc import Callable
from typing import Any
from urllib.parse import urlparse

from corsync.client.base import (
    AuditPlatformError,
    AuditStatus,
    AuditStructure,
    BulkUploadError,
    BulkUploadResult,
    EvidenceItem,
    InsecureEndpointError,
    InvalidResponseError,
    PlatformConnectionError,
    PlatformTimeoutError,
    UploadRejectedError,
    UploadResult,
    ValidationResult,
)
from corsync.client.pacing import NoPacing, Pacer
from corsync.client.transport import HttpTransport, Transport, TransportResponse
from corsync.config.credentials import redact_secrets
from corsync.config.settings import DEFAULT_API_ENDPOINT, DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class AuditPlatformClient:
    """
    Authenticated client for one tenant's platform account.

    Example:
        client = AuditPlatformClient(api_key, tenant_id)
        result = client.validate_connection()
        if result.valid:
            upload = client.upload_evidence(item)

    Attributes:
        tenant_id: Tenant the session belongs to.
        endpoint: Base URL of the platform API.
        timeout: Bounded wait per request, in seconds.
    """

    def __init__(
        self,
        api_key: str,
        tenant_id: str,
        endpoint: str | None = None,
        transport: Transport | None = None,
        pacer: Pacer | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._api_key = api_key
        self.tenant_id = tenant_id
        self.endpoint = (endpoint or DEFAULT_API_ENDPOINT).rstrip("/")
        self.timeout = timeout
        self._transport = transport or HttpTransport()
        self._pacer = pacer or NoPacing()

    def _redact(self, text: str | None) -> str:
        return redact_secrets(text, self._api_key)

    def _check_endpoint(self) -> None:
        if urlparse(self.endpoint).scheme != "https":
            raise InsecureEndpointError(
                f"Platform endpoint must use HTTPS: {self.endpoint}"
            )

    def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> TransportResponse:
        """
        Send one paced request to the platform.

        Raises:
            InsecureEndpointError: If the endpoint is not HTTPS.
            PlatformTimeoutError: If the request times out.
            PlatformConnectionError: If the platform cannot be reached.
        """
        self._check_endpoint()
        self._pacer.acquire()

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "X-Tenant-ID": self.tenant_id,
        }
        start_time = time.time()
        response = self._transport.request(
            method,
            f"{self.endpoint}{path}",
            headers=headers,
            timeout=self.timeout,
            json=json_body,
            data=data,
            files=files,
        )
        duration_ms = (time.time() - start_time) * 1000
        self._log_api_call(method, path, response.status_code, duration_ms)
        return response

    def _log_api_call(
        self,
        method: str,
        path: str,
        status_code: int | None = None,
        duration_ms: float | None = None,
    ) -> None:
        msg = f"API call: {method} {path}"
        if status_code is not None:
            msg += f" -> {status_code}"
        if duration_ms is not None:
            msg += f" ({duration_ms:.0f}ms)"
        logger.info(msg)

    def _server_message(self, response: TransportResponse) -> str | None:
        if response.body and isinstance(response.body.get("message"), str):
            return response.body["message"]
        return None

    def _expect_ok(self, response: TransportResponse, default: str) -> dict[str, Any]:
        if not response.ok:
            message = self._server_message(response) or f"{default} (HTTP {response.status_code})"
            raise UploadRejectedError(self._redact(message), response.status_code)
        if response.body is None:
            raise InvalidResponseError("Platform returned an empty or non-JSON body")
        return response.body

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def validate_connection(self) -> ValidationResult:
        """
        Validate the API key and fetch organization and audit details.

        Never raises; failures are described by error and reason.
        """
        try:
            response = self._request("POST", "/v1/auth/validate")
        except InsecureEndpointError as e:
            return ValidationResult(valid=False, error=str(e), reason="insecure_endpoint")
        except PlatformTimeoutError as e:
            return ValidationResult(valid=False, error=self._redact(str(e)), reason="timeout")
        except PlatformConnectionError as e:
            return ValidationResult(valid=False, error=self._redact(str(e)), reason="network")

        if not response.ok:
            message = (
                self._server_message(response)
                or f"Invalid API key (HTTP {response.status_code})"
            )
            return ValidationResult(
                valid=False, error=self._redact(message), reason="rejected"
            )

        body = response.body or {}
        if not isinstance(body.get("organization_id"), str):
            return ValidationResult(
                valid=False,
                error="Invalid response from platform: missing organization_id",
                reason="invalid_response",
            )

        return ValidationResult(
            valid=True,
            organization_id=body["organization_id"],
            organization_name=body.get("organization_name"),
            audit_id=body.get("current_audit_id"),
            audit_scheduled_date=body.get("audit_scheduled_date"),
            auditor_name=body.get("auditor_name"),
            auditor_email=body.get("auditor_email"),
        )

    # -------------------------------------------------------------------------
    # Audits
    # -------------------------------------------------------------------------

    def get_audit_structure(self, audit_id: str) -> AuditStructure:
        """
        Fetch the elements and questions of an audit.

        Raises:
            AuditPlatformError: On any transport, status or shape failure.
        """
        response = self._request("GET", f"/v1/audits/{audit_id}/structure")
        body = self._expect_ok(response, "Failed to fetch audit structure")
        try:
            return AuditStructure.from_dict(body)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidResponseError(f"Malformed audit structure: {e}") from e

    def get_audit_status(self, audit_id: str) -> AuditStatus:
        """
        Fetch the current status of an audit.

        Raises:
            AuditPlatformError: On any transport, status or shape failure.
        """
        response = self._request("GET", f"/v1/audits/{audit_id}/status")
        body = self._expect_ok(response, "Failed to fetch audit status")
        try:
            return AuditStatus.from_dict(body)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidResponseError(f"Malformed audit status: {e}") from e

    # -------------------------------------------------------------------------
    # Evidence
    # -------------------------------------------------------------------------

    def _upload(self, item: EvidenceItem) -> UploadResult:
        data: dict[str, Any] = {
            "cor_element": str(item.cor_element),
            "question_id": item.question_id,
            "evidence_type": item.evidence_type,
            "title": item.title,
            "description": item.description,
        }
        if item.date is not None:
            data["date"] = item.date.isoformat()
        if item.metadata:
            data["metadata"] = json.dumps(item.metadata, default=str)

        files = None
        if item.file is not None:
            files = {
                "file": (item.file.filename, item.file.content, item.file.content_type)
            }

        response = self._request(
            "POST", f"/v1/audits/{item.audit_id}/evidence", data=data, files=files
        )
        if not response.ok:
            message = self._server_message(response) or "Failed to upload evidence"
            raise UploadRejectedError(self._redact(message), response.status_code)

        body = response.body or {}
        evidence_id = body.get("evidence_id")
        if not isinstance(evidence_id, str) or not evidence_id:
            raise InvalidResponseError("Platform response is missing evidence_id")

        return UploadResult(
            success=True,
            external_item_id=evidence_id,
            message=body.get("message"),
        )

    def upload_evidence(self, item: EvidenceItem) -> UploadResult:
        """
        Upload one evidence item with its optional attachment.

        Never raises; a failed upload is reported with success=False.
        """
        try:
            return self._upload(item)
        except AuditPlatformError as e:
            error = self._redact(e.message)
        except Exception as e:
            error = self._redact(str(e)) or "Failed to upload evidence"
        logger.warning(f"Evidence upload failed: {error}")
        return UploadResult(success=False, error=error)

    def bulk_upload_evidence(
        self,
        audit_id: str,
        items: list[EvidenceItem],
        on_progress: ProgressCallback | None = None,
    ) -> BulkUploadResult:
        """
        Upload items one at a time, in order.

        A failure of one item never stops the rest. on_progress is called
        with (current, total) after every item.

        Args:
            audit_id: Audit to attach the items to; overrides item.audit_id.
            items: Evidence to upload.
            on_progress: Optional progress callback.
        """
        total = len(items)
        result = BulkUploadResult(total=total)

        for position, item in enumerate(items, start=1):
            try:
                upload = self._upload(replace(item, audit_id=audit_id))
                result.results.append(upload)
                result.succeeded += 1
            except Exception as e:
                message = getattr(e, "message", None) or str(e) or "Unknown error"
                result.errors.append(
                    BulkUploadError(index=position, item=item, error=self._redact(message))
                )
                result.failed += 1
            if on_progress is not None:
                on_progress(position, total)

        logger.info(
            f"Bulk upload finished: {result.succeeded} succeeded, "
            f"{result.failed} failed of {total}"
        )
        return result

    def update_evidence(self, evidence_id: str, updates: dict[str, Any]) -> UploadResult:
        """
        Update fields of existing evidence.

        Never raises; a failed update is reported with success=False.
        """
        try:
            response = self._request(
                "PATCH", f"/v1/evidence/{evidence_id}", json_body=updates
            )
        except AuditPlatformError as e:
            return UploadResult(success=False, error=self._redact(e.message))

        if not response.ok:
            message = self._server_message(response) or "Failed to update evidence"
            return UploadResult(success=False, error=self._redact(message))

        body = response.body or {}
        return UploadResult(
            success=True,
            external_item_id=body.get("evidence_id") or evidence_id,
            message=body.get("message"),
        )

    def delete_evidence(self, evidence_id: str) -> None:
        """
        Delete evidence from the platform.

        Raises:
            AuditPlatformError: If the delete fails.
        """
        response = self._request("DELETE", f"/v1/evidence/{evidence_id}")
        if not response.ok:
            message = self._server_message(response) or "Failed to delete evidence"
            raise UploadRejectedError(self._redact(message), response.status_code)

    def close(self) -> None:
        self._transport.close()
