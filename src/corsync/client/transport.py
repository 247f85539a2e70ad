"""
Transports for the external audit platform.

The client never talks to the network directly; it hands every request to a
Transport. HttpTransport sends real HTTPS requests with the requests
library. SimulatedTransport answers locally with plausible platform
responses and records each call, for demos and offline development.
Which one is used is a configuration choice (platform.transport).
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlparse

import requests

from corsync.client.base import (
    COR_ELEMENTS,
    PlatformConnectionError,
    PlatformTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """A platform response reduced to what the client needs."""

    status_code: int
    body: dict[str, Any] | None = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class RecordedCall:
    """A request seen by SimulatedTransport."""

    method: str
    path: str
    headers: dict[str, str]
    data: dict[str, Any] | None = None
    json: dict[str, Any] | None = None
    files: dict[str, Any] | None = None


class Transport(ABC):
    """Sends one request and returns the response."""

    @abstractmethod
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
        """
        Send a request.

        Raises:
            PlatformTimeoutError: If no response arrives within timeout.
            PlatformConnectionError: If the platform cannot be reached.
        """

    def close(self) -> None:
        """Release any pooled resources."""
        return None


class HttpTransport(Transport):
    """Transport backed by a requests.Session."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})

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
        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                json=json,
                data=data,
                files=files,
                timeout=timeout,
            )
        except requests.exceptions.Timeout as e:
            raise PlatformTimeoutError(
                f"Request timeout after {timeout:g} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise PlatformConnectionError(f"Failed to connect to platform: {e}") from e
        except requests.exceptions.RequestException as e:
            raise PlatformConnectionError(f"Request failed: {e}") from e

        body: dict[str, Any] | None = None
        if response.content:
            try:
                parsed = response.json()
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                body = parsed

        return TransportResponse(
            status_code=response.status_code,
            body=body,
            text=response.text,
        )

    def close(self) -> None:
        self._session.close()


class SimulatedTransport(Transport):
    """
    Local stand-in for the platform.

    API keys are accepted when they start with "ask_" and are at least 20
    characters long. Organization and audit identifiers are derived from the
    tenant id sent in the X-Tenant-ID header.

    Attributes:
        calls: Every request received, in order.
    """

    MIN_KEY_LENGTH = 20

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._evidence: dict[str, dict[str, Any]] = {}

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
        path = urlparse(url).path
        self.calls.append(
            RecordedCall(
                method=method,
                path=path,
                headers=dict(headers),
                data=dict(data) if data else None,
                json=dict(json) if json else None,
                files=dict(files) if files else None,
            )
        )
        logger.debug(f"Simulated {method} {path}")

        api_key = headers.get("Authorization", "").removeprefix("Bearer ")
        if not self._key_accepted(api_key):
            return TransportResponse(401, {"message": "Invalid API key format"})

        tenant = headers.get("X-Tenant-ID", "") or "unknown"
        parts = [p for p in path.split("/") if p]

        if method == "POST" and parts == ["v1", "auth", "validate"]:
            return TransportResponse(200, self._organization(tenant))
        if method == "GET" and len(parts) == 4 and parts[1] == "audits":
            if parts[3] == "structure":
                return TransportResponse(200, self._structure(parts[2]))
            if parts[3] == "status":
                return TransportResponse(200, self._status(parts[2]))
        if method == "POST" and len(parts) == 4 and parts[3] == "evidence":
            evidence_id = f"EV-{uuid.uuid4().hex[:12].upper()}"
            self._evidence[evidence_id] = dict(data or {})
            return TransportResponse(
                201, {"evidence_id": evidence_id, "message": "Evidence uploaded"}
            )
        if len(parts) == 3 and parts[1] == "evidence":
            evidence_id = parts[2]
            if evidence_id not in self._evidence:
                return TransportResponse(404, {"message": "Evidence not found"})
            if method == "PATCH":
                self._evidence[evidence_id].update(json or {})
                return TransportResponse(
                    200, {"evidence_id": evidence_id, "message": "Evidence updated"}
                )
            if method == "DELETE":
                del self._evidence[evidence_id]
                return TransportResponse(204)

        return TransportResponse(404, {"message": f"No route for {method} {path}"})

    def _key_accepted(self, api_key: str) -> bool:
        return api_key.startswith("ask_") and len(api_key) >= self.MIN_KEY_LENGTH

    def _organization(self, tenant: str) -> dict[str, Any]:
        prefix = tenant[:8].upper()
        scheduled = datetime.now(UTC) + timedelta(days=90)
        return {
            "organization_id": f"ORG-{prefix}",
            "organization_name": "Simulated Organization",
            "current_audit_id": f"AUD-{prefix}-{datetime.now(UTC).year}",
            "audit_scheduled_date": scheduled.date().isoformat(),
            "auditor_name": "Assigned Auditor",
            "auditor_email": "auditor@auditsoft.co",
        }

    def _structure(self, audit_id: str) -> dict[str, Any]:
        return {
            "audit_id": audit_id,
            "name": "COR Safety Audit",
            "elements": [
                {
                    "number": e.number,
                    "name": e.name,
                    "weight": e.weight,
                    "questions": [
                        {
                            "id": f"element_{e.number}_evidence",
                            "text": f"Provide evidence for {e.name}",
                            "evidence_types": ["document"],
                            "required": True,
                        }
                    ],
                }
                for e in COR_ELEMENTS.values()
            ],
        }

    def _status(self, audit_id: str) -> dict[str, Any]:
        return {
            "audit_id": audit_id,
            "status": "in_progress",
            "completion_percentage": 0.0,
            "elements_status": {},
            "scheduled_date": None,
            "auditor_name": "Assigned Auditor",
        }

    @property
    def uploads(self) -> list[RecordedCall]:
        """Evidence upload calls received."""
        return [
            c for c in self.calls if c.method == "POST" and c.path.endswith("/evidence")
        ]
