from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.core.config import ProvisioningConfig
from tenantdb.core.errors import IdentifierError, ProviderError, ProvisioningError
from tenantdb.domain import states
from tenantdb.domain.models import RdsInstance
from tenantdb.persistence.repos import rds_instances as instances_repo
from tenantdb.providers.rds import CreateInstanceRequest, RdsGateway
from tenantdb.services.provisioning.identifiers import random_instance_identifier, validate_username
from tenantdb.services.provisioning.reconcile import reconcile_instance


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


class _InstanceTarget:
    # Standalone instances only track status and endpoint; nothing runs on readiness.

    def __init__(self, service: "RdsInstanceService", instance: RdsInstance) -> None:
        self._service = service
        self._instance = instance

    @property
    def instance_identifier(self) -> str:
        return self._instance.instance_identifier

    async def record_status(self, status: str) -> None:
        async with self._service._session_factory() as session:
            await instances_repo.update_status(session, self._instance.id, status=status)
            await session.commit()
        self._instance.status = status

    async def record_read_failure(self, message: str) -> None:
        return None

    async def claim_endpoint(self, address: str, port: int | None) -> bool:
        async with self._service._session_factory() as session:
            claimed = await instances_repo.claim_endpoint(session, self._instance.id, endpoint=address, port=port)
            await session.commit()
        if claimed:
            self._instance.endpoint = address
            self._instance.port = port
        return claimed

    async def on_ready(self) -> None:
        return None


class RdsInstanceService:
    """Caller-named RDS instances tracked outside the client/service model."""

    def __init__(
        self,
        config: ProvisioningConfig,
        gateway: RdsGateway,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._session_factory = session_factory

    async def list_instances(self) -> list[RdsInstance]:
        async with self._session_factory() as session:
            return await instances_repo.list_instances(session)

    async def get_instance(self, instance_id: int) -> RdsInstance | None:
        async with self._session_factory() as session:
            return await instances_repo.get_instance(session, instance_id)

    async def create(
        self,
        client_ref: str,
        db_name: str,
        username: str,
        password: str,
        subnet_group_name: str | None = None,
    ) -> RdsInstance:
        validate_username(username, max_length=self._config.username_max_length)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise IdentifierError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")

        config = self._config
        subnet_group = subnet_group_name or config.subnet_group_name
        identifier = random_instance_identifier()
        request = CreateInstanceRequest(
            identifier=identifier,
            db_name=db_name,
            engine=config.engine,
            engine_version=config.engine_version,
            username=username,
            password=password,
            allocated_storage=config.allocated_storage,
            instance_class=config.instance_class,
            storage_type=config.storage_type,
            encrypted=config.encrypted,
            backup_retention_days=config.backup_retention_days,
            publicly_accessible=config.publicly_accessible,
            multi_az=config.multi_az,
            subnet_group_name=subnet_group,
            security_group_ids=config.security_group_ids,
            deletion_protection=config.deletion_protection,
            max_allocated_storage=config.max_allocated_storage,
            tags={"Client": client_ref, "Environment": config.environment, "ManagedBy": "tenantdb"},
        )
        try:
            await self._gateway.create_subnet_group(
                subnet_group, f"Subnet group for {client_ref}", config.subnet_ids
            )
            await self._gateway.create_instance(request)
        except ProviderError as exc:
            logger.error("rds_instance_create_failed client_ref=%s error=%s", client_ref, exc.message)
            raise ProvisioningError(
                f"Failed to create RDS instance: {exc.message}",
                context={"client_ref": client_ref, "provider_error_code": exc.code},
            ) from exc

        async with self._session_factory() as session:
            instance = await instances_repo.create_instance(
                session,
                client_ref=client_ref,
                instance_identifier=identifier,
                status=states.PROVIDER_CREATING,
            )
            await session.commit()
        logger.info("rds_instance_created client_ref=%s instance_identifier=%s", client_ref, identifier)
        return instance

    async def refresh(self, instance: RdsInstance) -> str:
        return await reconcile_instance(self._gateway, _InstanceTarget(self, instance))

    async def refresh_all(self) -> dict[str, Any]:
        results: dict[str, Any] = {}
        for instance in await self.list_instances():
            try:
                results[instance.instance_identifier] = await self.refresh(instance)
            except Exception as exc:  # noqa: BLE001 - one bad record must not hide the rest
                logger.error(
                    "rds_instance_refresh_failed instance_identifier=%s error=%s",
                    instance.instance_identifier,
                    exc,
                )
                results[instance.instance_identifier] = states.PROVIDER_ERROR
        return results

    async def delete(self, instance: RdsInstance) -> None:
        try:
            await self._gateway.delete_instance(instance.instance_identifier, skip_final_snapshot=True)
        except ProviderError as exc:
            logger.error(
                "rds_instance_delete_failed instance_identifier=%s error=%s",
                instance.instance_identifier,
                exc.message,
            )
            raise ProvisioningError(
                f"Failed to delete RDS instance: {exc.message}",
                context={"instance_identifier": instance.instance_identifier, "provider_error_code": exc.code},
            ) from exc
        async with self._session_factory() as session:
            await instances_repo.update_status(session, instance.id, status=states.PROVIDER_DELETING)
            await session.commit()
        instance.status = states.PROVIDER_DELETING
