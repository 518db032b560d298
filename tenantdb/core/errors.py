from __future__ import annotations

from typing import Any


class TenantDBError(Exception):
    """Base error for tenantdb."""


class ConfigError(TenantDBError):
    """Missing or invalid configuration."""


class IdentifierError(TenantDBError):
    """Generated or supplied identifier would be rejected by the provider."""


class ProviderError(TenantDBError):
    """Provider API call failed."""

    def __init__(self, message: str, *, code: str | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.operation = operation


class ProvisioningError(TenantDBError):
    """Provisioning failed for a client database.

    The record named by ``database_id`` is already in a failed state when this
    is raised; callers inspect ``context`` (e.g. ``provider_error_code``) to
    decide between regenerating identifiers and abandoning the request.
    """

    def __init__(
        self,
        message: str,
        *,
        client_id: int | None = None,
        database_id: int | None = None,
        service_id: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.client_id = client_id
        self.database_id = database_id
        self.service_id = service_id
        self.context = context or {}


class SchemaTemplateNotFoundError(TenantDBError):
    """Schema template reference has no script on disk."""