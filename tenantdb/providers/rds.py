"""RDS provider gateway.

Thin async wrapper over the boto3 RDS client. The gateway issues the calls
the provisioning engine needs and normalizes responses and failures; it holds
no provisioning state of its own.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from tenantdb.core.errors import ConfigError, ProviderError
from tenantdb.services.resilience import RetryPolicy, retry_async


logger = logging.getLogger(__name__)

_ALREADY_EXISTS_CODES = {"DBSubnetGroupAlreadyExists", "DBSubnetGroupAlreadyExistsFault"}


@dataclass(frozen=True)
class InstanceState:
    status: str
    address: str | None = None
    port: int | None = None

    @property
    def has_endpoint(self) -> bool:
        return bool(self.address)


@dataclass(frozen=True)
class CreateInstanceRequest:
    identifier: str
    db_name: str
    engine: str
    engine_version: str | None
    username: str
    password: str
    allocated_storage: int
    instance_class: str
    storage_type: str
    encrypted: bool
    backup_retention_days: int
    publicly_accessible: bool
    multi_az: bool
    subnet_group_name: str
    security_group_ids: tuple[str, ...]
    deletion_protection: bool
    max_allocated_storage: int | None = None
    tags: dict[str, str] = field(default_factory=dict)
    monitoring_interval: int = 0
    monitoring_role_arn: str | None = None

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "DBInstanceIdentifier": self.identifier,
            "DBName": self.db_name,
            "AllocatedStorage": self.allocated_storage,
            "DBInstanceClass": self.instance_class,
            "Engine": self.engine,
            "MasterUsername": self.username,
            "MasterUserPassword": self.password,
            "StorageType": self.storage_type,
            "StorageEncrypted": self.encrypted,
            "BackupRetentionPeriod": self.backup_retention_days,
            "PubliclyAccessible": self.publicly_accessible,
            "MultiAZ": self.multi_az,
            "DBSubnetGroupName": self.subnet_group_name,
            "VpcSecurityGroupIds": list(self.security_group_ids),
            "DeletionProtection": self.deletion_protection,
            "Tags": [{"Key": key, "Value": value} for key, value in self.tags.items()],
        }
        if self.engine_version:
            params["EngineVersion"] = self.engine_version
        if self.max_allocated_storage:
            params["MaxAllocatedStorage"] = self.max_allocated_storage
        # Enhanced monitoring needs both the interval and the role.
        if self.monitoring_interval > 0:
            params["MonitoringInterval"] = self.monitoring_interval
            if self.monitoring_role_arn:
                params["MonitoringRoleArn"] = self.monitoring_role_arn
        return params


def _error_code(exc: Exception) -> str | None:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if _error_code(exc) in {"Throttling", "ThrottlingException"}:
            return True
        return isinstance(status, int) and status >= 500
    return isinstance(exc, BotoCoreError)


class RdsGateway:
    def __init__(
        self,
        region: str,
        *,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if not region and client is None:
            raise ConfigError("aws region is required for the RDS gateway")
        self._region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client
        self._retry_policy = retry_policy or RetryPolicy(timeout_ms=15000, max_attempts=2, backoff_ms=500)

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        # Fall back to the default credential chain when keys are not configured.
        session = boto3.Session(
            aws_access_key_id=self._access_key_id,
            aws_secret_access_key=self._secret_access_key,
            region_name=self._region,
        )
        self._client = session.client("rds")
        return self._client

    async def _call(self, operation: str, method: Callable[..., Any], *, retry: bool = False, **params: Any) -> Any:
        async def _invoke() -> Any:
            return await asyncio.to_thread(method, **params)

        try:
            if retry:
                return await retry_async(_invoke, policy=self._retry_policy, retryable=_retryable)
            return await _invoke()
        except (BotoCoreError, ClientError) as exc:
            code = _error_code(exc)
            logger.warning("rds_call_failed operation=%s code=%s error=%s", operation, code, exc)
            raise ProviderError(str(exc), code=code, operation=operation) from exc
        except (asyncio.TimeoutError, ConnectionError, TimeoutError) as exc:
            logger.warning("rds_call_unreachable operation=%s error=%r", operation, exc)
            raise ProviderError(f"{operation} failed: {exc!r}", operation=operation) from exc

    async def create_subnet_group(self, name: str, description: str, subnet_ids: list[str] | tuple[str, ...]) -> bool:
        client = self._get_client()
        try:
            await self._call(
                "CreateDBSubnetGroup",
                client.create_db_subnet_group,
                DBSubnetGroupName=name,
                DBSubnetGroupDescription=description,
                SubnetIds=list(subnet_ids),
            )
        except ProviderError as exc:
            # An existing group with the same name is as good as a new one.
            if exc.code in _ALREADY_EXISTS_CODES or "DBSubnetGroupAlreadyExists" in exc.message:
                logger.info("rds_subnet_group_exists name=%s", name)
                return True
            raise
        return True

    async def create_instance(self, request: CreateInstanceRequest) -> str:
        client = self._get_client()
        response = await self._call("CreateDBInstance", client.create_db_instance, **request.to_params())
        instance = response.get("DBInstance", {}) if isinstance(response, dict) else {}
        return instance.get("DBInstanceIdentifier") or request.identifier

    async def describe_instance(self, identifier: str) -> InstanceState:
        client = self._get_client()
        response = await self._call(
            "DescribeDBInstances",
            client.describe_db_instances,
            retry=True,
            DBInstanceIdentifier=identifier,
        )
        instances = response.get("DBInstances", []) if isinstance(response, dict) else []
        if not instances:
            raise ProviderError(f"DB instance {identifier} not found", code="DBInstanceNotFound", operation="DescribeDBInstances")
        instance = instances[0]
        endpoint = instance.get("Endpoint") or {}
        port = endpoint.get("Port")
        return InstanceState(
            status=str(instance.get("DBInstanceStatus", "")),
            address=endpoint.get("Address"),
            port=int(port) if port is not None else None,
        )

    async def delete_instance(
        self,
        identifier: str,
        *,
        skip_final_snapshot: bool,
        final_snapshot_identifier: str | None = None,
    ) -> None:
        client = self._get_client()
        params: dict[str, Any] = {
            "DBInstanceIdentifier": identifier,
            "SkipFinalSnapshot": skip_final_snapshot,
        }
        if not skip_final_snapshot and final_snapshot_identifier:
            params["FinalDBSnapshotIdentifier"] = final_snapshot_identifier
        await self._call("DeleteDBInstance", client.delete_db_instance, **params)

    async def describe_engine_versions(self, engine: str) -> list[str]:
        client = self._get_client()
        response = await self._call(
            "DescribeDBEngineVersions",
            client.describe_db_engine_versions,
            retry=True,
            Engine=engine,
        )
        versions = response.get("DBEngineVersions", []) if isinstance(response, dict) else []
        return [str(item["EngineVersion"]) for item in versions if item.get("EngineVersion")]
