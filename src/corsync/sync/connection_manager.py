"""
Connection management for tenant platform credentials.

The ConnectionManager owns each tenant's connection row: it validates API
keys against the platform before storing them, keeps them encrypted at
rest, hands out ready clients for active connections, and tracks
connection status and audit metadata.

A connection is only created after a successful validation. Later
validation failures never erase the last known organization and audit
details.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from corsync.client.audit_client import AuditPlatformClient
from corsync.client.base import AuditStatus, ValidationResult
from corsync.client.pacing import NoPacing, TokenBucket
from corsync.client.transport import HttpTransport, SimulatedTransport, Transport
from corsync.config.credentials import CredentialCipher, DecryptionError, key_hint
from corsync.config.settings import Settings
from corsync.storage.models import (
    AUDIT_STATUSES,
    SYNC_FREQUENCIES,
    Connection,
    ConnectionStats,
)
from corsync.storage.sync_store import SyncStore
from corsync.sync.base import (
    ConnectionInactiveError,
    ConnectionNotConfiguredError,
    CredentialValidationError,
    PreconditionFailedError,
)

logger = logging.getLogger(__name__)

# (api_key, tenant_id, endpoint) -> client
ClientFactory = Callable[[str, str, str], AuditPlatformClient]

# Validation failures that say the key itself is bad
KEY_REJECTED_REASONS = {"rejected", "invalid_response"}


def build_client_factory(settings: Settings) -> ClientFactory:
    """
    Create a client factory from configuration.

    The transport is chosen by platform.transport. A simulated transport
    is shared by every client the factory creates so its state persists
    across calls, and it is never paced.
    """
    simulated: SimulatedTransport | None = None
    if settings.platform.transport == "simulated":
        simulated = SimulatedTransport()
    pacer = (
        NoPacing()
        if simulated is not None
        else TokenBucket(settings.pacing.requests_per_second, settings.pacing.burst)
    )

    def factory(api_key: str, tenant_id: str, endpoint: str) -> AuditPlatformClient:
        transport: Transport = simulated if simulated is not None else HttpTransport()
        return AuditPlatformClient(
            api_key,
            tenant_id,
            endpoint=endpoint,
            transport=transport,
            pacer=pacer,
            timeout=settings.platform.timeout_seconds,
        )

    return factory


class ConnectionManager:
    """
    Manages tenant connections to the audit platform.

    Example:
        manager = ConnectionManager(store, CredentialCipher(key), factory)
        manager.save_connection("tenant-1", "ask_live_...", actor_id="user-1")
        client = manager.get_client("tenant-1")

    Attributes:
        store: Sync state storage.
        default_endpoint: Endpoint used when none is given on save.
    """

    def __init__(
        self,
        store: SyncStore,
        cipher: CredentialCipher,
        client_factory: ClientFactory,
        default_endpoint: str,
    ) -> None:
        self.store = store
        self._cipher = cipher
        self._client_factory = client_factory
        self.default_endpoint = default_endpoint

    @classmethod
    def from_settings(cls, settings: Settings, store: SyncStore) -> ConnectionManager:
        """
        Raises:
            EncryptionKeyError: If the encryption key is missing or malformed.
        """
        return cls(
            store,
            CredentialCipher(settings.security.encryption_key),
            build_client_factory(settings),
            settings.platform.api_endpoint,
        )

    def save_connection(
        self,
        tenant_id: str,
        api_key: str,
        actor_id: str | None = None,
        endpoint: str | None = None,
    ) -> Connection:
        """
        Validate an API key and store it for the tenant.

        Nothing is persisted if validation fails.

        Raises:
            CredentialValidationError: If the key is empty or rejected.
        """
        api_key = (api_key or "").strip()
        if not api_key:
            raise CredentialValidationError("API key is required", tenant_id, reason="missing")

        endpoint = endpoint or self.default_endpoint
        client = self._client_factory(api_key, tenant_id, endpoint)
        try:
            result = client.validate_connection()
        finally:
            client.close()

        if not result.valid:
            logger.warning(
                f"API key validation failed for tenant {tenant_id}: {result.error}"
            )
            raise CredentialValidationError(
                result.error or "API key validation failed", tenant_id, reason=result.reason
            )

        connection = Connection(
            tenant_id=tenant_id,
            encrypted_api_key=self._cipher.encrypt(api_key),
            api_key_hint=key_hint(api_key),
            api_endpoint=endpoint,
            organization_id=result.organization_id,
            organization_name=result.organization_name,
            audit_id=result.audit_id,
            connection_status="active",
            last_validated_at=datetime.now(UTC),
            audit_scheduled_date=result.audit_scheduled_date,
            audit_status="pending" if result.audit_id else None,
            auditor_name=result.auditor_name,
            auditor_email=result.auditor_email,
            created_by=actor_id,
        )
        saved = self.store.upsert_connection(connection)
        logger.info(
            f"Saved connection for tenant {tenant_id} "
            f"(organization {result.organization_id}, key {saved.api_key_hint})"
        )
        return saved

    def get_connection(self, tenant_id: str) -> Connection | None:
        return self.store.get_connection(tenant_id)

    def get_decrypted_api_key(self, tenant_id: str) -> str | None:
        """
        Decrypt the tenant's stored API key.

        Returns:
            The key, or None if there is no connection or it cannot be
            decrypted.
        """
        connection = self.store.get_connection(tenant_id)
        if connection is None:
            return None
        try:
            return self._cipher.decrypt(connection.encrypted_api_key)
        except DecryptionError:
            logger.error(f"Failed to decrypt stored API key for tenant {tenant_id}")
            return None

    def get_client(self, tenant_id: str) -> AuditPlatformClient | None:
        """Build a client for an active connection, or None."""
        connection = self.store.get_connection(tenant_id)
        if connection is None or not connection.is_active:
            return None
        api_key = self.get_decrypted_api_key(tenant_id)
        if api_key is None:
            return None
        return self._client_factory(api_key, tenant_id, connection.api_endpoint)

    def require_client(self, tenant_id: str) -> tuple[Connection, AuditPlatformClient]:
        """
        Get the tenant's connection and a ready client.

        Raises:
            ConnectionNotConfiguredError: If there is no connection.
            ConnectionInactiveError: If the connection is not active or
                its key cannot be decrypted.
        """
        connection = self.store.get_connection(tenant_id)
        if connection is None:
            raise ConnectionNotConfiguredError(
                "Audit platform connection not configured", tenant_id
            )
        if not connection.is_active:
            raise ConnectionInactiveError(
                f"Audit platform connection is {connection.connection_status}. "
                "Please update your API key.",
                tenant_id,
            )
        client = self.get_client(tenant_id)
        if client is None:
            raise ConnectionInactiveError(
                "Stored API key could not be decrypted. Please reconnect.", tenant_id
            )
        return connection, client

    def validate_connection(self, tenant_id: str) -> ValidationResult:
        """
        Re-validate the stored key and refresh connection state.

        A rejected key marks the connection invalid_key. Timeouts and
        network failures leave the status unchanged.
        """
        connection = self.store.get_connection(tenant_id)
        if connection is None:
            return ValidationResult(
                valid=False, error="No connection configured", reason="not_configured"
            )

        api_key = self.get_decrypted_api_key(tenant_id)
        if api_key is None:
            self.store.update_connection(tenant_id, connection_status="invalid_key")
            return ValidationResult(
                valid=False,
                error="Stored API key could not be decrypted",
                reason="decryption_failed",
            )

        client = self._client_factory(api_key, tenant_id, connection.api_endpoint)
        try:
            result = client.validate_connection()
        finally:
            client.close()

        if result.valid:
            updates: dict[str, Any] = {
                "connection_status": "active",
                "last_validated_at": datetime.now(UTC),
                "organization_id": result.organization_id,
            }
            for name in (
                "organization_name",
                "audit_id",
                "audit_scheduled_date",
                "auditor_name",
                "auditor_email",
            ):
                value = getattr(result, name)
                if value is not None:
                    updates[name] = value
            self.store.update_connection(tenant_id, **updates)
            logger.info(f"Connection validated for tenant {tenant_id}")
        elif result.reason in KEY_REJECTED_REASONS:
            self.store.update_connection(tenant_id, connection_status="invalid_key")
            logger.warning(f"Connection for tenant {tenant_id} marked invalid_key: {result.error}")
        else:
            logger.warning(
                f"Connection check for tenant {tenant_id} inconclusive ({result.reason}): "
                f"{result.error}"
            )
        return result

    def disconnect(self, tenant_id: str) -> bool:
        """
        Delete the tenant's connection.

        Returns:
            True if a connection existed.
        """
        return self.store.delete_connection(tenant_id)

    def update_sync_settings(
        self,
        tenant_id: str,
        sync_enabled: bool | None = None,
        sync_frequency: str | None = None,
    ) -> Connection:
        """
        Change automatic sync settings.

        Raises:
            ConnectionNotConfiguredError: If there is no connection.
            ValueError: If sync_frequency is unknown.
        """
        if sync_frequency is not None and sync_frequency not in SYNC_FREQUENCIES:
            raise ValueError(
                f"Invalid sync_frequency: {sync_frequency}. "
                f"Must be one of: {', '.join(SYNC_FREQUENCIES)}"
            )

        updates: dict[str, Any] = {}
        if sync_enabled is not None:
            updates["sync_enabled"] = sync_enabled
        if sync_frequency is not None:
            updates["sync_frequency"] = sync_frequency

        if updates and not self.store.update_connection(tenant_id, **updates):
            raise ConnectionNotConfiguredError(
                "Audit platform connection not configured", tenant_id
            )

        connection = self.store.get_connection(tenant_id)
        if connection is None:
            raise ConnectionNotConfiguredError(
                "Audit platform connection not configured", tenant_id
            )
        return connection

    def refresh_audit_status(self, tenant_id: str) -> AuditStatus:
        """
        Fetch the assigned audit's status and store it on the connection.

        Raises:
            ConnectionNotConfiguredError, ConnectionInactiveError: If no
                usable connection exists.
            PreconditionFailedError: If no audit is assigned.
            AuditPlatformError: If the platform call fails.
        """
        connection, client = self.require_client(tenant_id)
        try:
            if not connection.audit_id:
                raise PreconditionFailedError(
                    "No audit ID configured. Please validate your connection first.", tenant_id
                )
            status = client.get_audit_status(connection.audit_id)
        finally:
            client.close()

        updates: dict[str, Any] = {}
        if status.status in AUDIT_STATUSES:
            updates["audit_status"] = status.status
        if status.scheduled_date:
            updates["audit_scheduled_date"] = status.scheduled_date
        if status.auditor_name:
            updates["auditor_name"] = status.auditor_name
        if updates:
            self.store.update_connection(tenant_id, **updates)
        return status

    def get_stats(self, tenant_id: str) -> ConnectionStats | None:
        return self.store.get_stats(tenant_id)

    def get_safe_connection_info(self, tenant_id: str) -> dict[str, Any] | None:
        """Connection details safe to display: no encrypted key, a key hint instead."""
        connection = self.store.get_connection(tenant_id)
        if connection is None:
            return None
        info = connection.to_dict()
        info.pop("encrypted_api_key", None)
        return info
