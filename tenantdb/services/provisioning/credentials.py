from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import boto3

from tenantdb.core.config import ProvisioningConfig


logger = logging.getLogger(__name__)

MANAGED_BY = "tenantdb"


@dataclass(frozen=True)
class ConnectionDetails:
    client_name: str
    client_slug: str
    service_name: str | None
    name: str
    host: str
    port: int | None
    database_name: str
    username: str
    password: str
    engine: str
    database_id: int | None = None

    def resource_tags(self, environment: str) -> dict[str, str]:
        return {
            "Client": self.client_name,
            "Service": self.service_name or "General",
            "Environment": environment,
            "ManagedBy": MANAGED_BY,
        }


class CredentialSink(Protocol):
    name: str

    async def write(self, details: ConnectionDetails) -> None: ...


class ParameterStoreSink:
    """Writes one SSM parameter per connection field."""

    name = "parameter_store"

    def __init__(self, client: Any, prefix: str) -> None:
        self._client = client
        self._prefix = prefix

    def base_path(self, details: ConnectionDetails) -> str:
        return f"{self._prefix}{details.client_slug}/{details.name}"

    async def write(self, details: ConnectionDetails) -> None:
        base = self.base_path(details)
        values = {
            "host": details.host,
            "port": details.port,
            "database": details.database_name,
            "username": details.username,
            "password": details.password,
        }
        for key, value in values.items():
            await self.put_parameter(f"{base}/{key}", "" if value is None else str(value), is_secret=key == "password")

    async def put_parameter(self, path: str, value: str, *, is_secret: bool) -> None:
        await asyncio.to_thread(
            self._client.put_parameter,
            Name=path,
            Value=value,
            Type="SecureString" if is_secret else "String",
            Overwrite=True,
        )


class SecretsManagerSink:
    """Creates one structured secret per database."""

    name = "secrets_manager"

    def __init__(self, client: Any, prefix: str, environment: str) -> None:
        self._client = client
        self._prefix = prefix
        self._environment = environment

    def secret_name(self, details: ConnectionDetails) -> str:
        return f"{self._prefix}{details.client_slug}/{details.name}"

    async def write(self, details: ConnectionDetails) -> None:
        payload = {
            "host": details.host,
            "port": details.port,
            "dbname": details.database_name,
            "username": details.username,
            "password": details.password,
            "engine": details.engine,
        }
        tags = [{"Key": key, "Value": value} for key, value in details.resource_tags(self._environment).items()]
        await self.create_secret(self.secret_name(details), json.dumps(payload), tags)

    async def create_secret(self, name: str, json_value: str, tags: list[dict[str, str]]) -> None:
        await asyncio.to_thread(
            self._client.create_secret,
            Name=name,
            Description=f"Database connection details for {name}",
            SecretString=json_value,
            Tags=tags,
        )


class CredentialDistributor:
    def __init__(self, sinks: list[CredentialSink] | None = None) -> None:
        self._sinks = list(sinks or [])

    @property
    def enabled(self) -> bool:
        return bool(self._sinks)

    async def distribute(self, details: ConnectionDetails) -> dict[str, bool]:
        # Best effort: a failed sink is logged and never fails provisioning.
        results: dict[str, bool] = {}
        for sink in self._sinks:
            try:
                await sink.write(details)
            except Exception:  # noqa: BLE001 - credential distribution is fire-and-forget
                logger.exception(
                    "credential_store_failed sink=%s database_id=%s", sink.name, details.database_id
                )
                results[sink.name] = False
                continue
            logger.info("credential_store_written sink=%s database_id=%s", sink.name, details.database_id)
            results[sink.name] = True
        return results


def build_credential_distributor(config: ProvisioningConfig, *, session: Any | None = None) -> CredentialDistributor:
    sinks: list[CredentialSink] = []
    if not (config.parameter_store_enabled or config.secrets_manager_enabled):
        return CredentialDistributor(sinks)
    if session is None:
        session = boto3.Session(region_name=config.region)
    if config.parameter_store_enabled:
        sinks.append(ParameterStoreSink(session.client("ssm"), config.parameter_store_prefix))
    if config.secrets_manager_enabled:
        sinks.append(
            SecretsManagerSink(session.client("secretsmanager"), config.secrets_manager_prefix, config.environment)
        )
    return CredentialDistributor(sinks)
