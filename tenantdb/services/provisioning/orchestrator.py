"""Provisioning orchestrator for client databases.

Owns the Database lifecycle: writes the record, starts creation at the
provider, folds provider state back into the record, and runs the one-time
post-readiness steps (schema bootstrap, credential distribution). The local
record is the source of truth; every transition is committed as soon as it
happens so a crash leaves an inspectable state behind.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.core.config import ProvisioningConfig
from tenantdb.core.errors import ProviderError, ProvisioningError
from tenantdb.domain import states
from tenantdb.domain.models import Client, Database, Service
from tenantdb.persistence.repos import clients as clients_repo
from tenantdb.persistence.repos import databases as databases_repo
from tenantdb.persistence.repos import services as services_repo
from tenantdb.providers.rds import CreateInstanceRequest, RdsGateway
from tenantdb.services.provisioning.credentials import ConnectionDetails, CredentialDistributor
from tenantdb.services.provisioning.identifiers import generate_identifiers, generate_password
from tenantdb.services.provisioning.reconcile import reconcile_instance
from tenantdb.services.provisioning.schema import SchemaBootstrapper, SchemaTarget


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_final_snapshot_identifier(instance_identifier: str, *, now: datetime | None = None) -> str:
    # Microsecond suffix keeps back-to-back deletes distinct.
    moment = now or _utc_now()
    return f"{instance_identifier}-final-{moment.strftime('%Y%m%d%H%M%S%f')}"


class _DatabaseTarget:
    # Adapts one Database row to the shared reconcile primitive.

    def __init__(self, orchestrator: "ProvisioningOrchestrator", database: Database) -> None:
        self._orchestrator = orchestrator
        self._database = database

    @property
    def instance_identifier(self) -> str:
        return self._database.instance_identifier

    async def record_status(self, status: str) -> None:
        await self._orchestrator._apply(self._database, status=status)

    async def record_read_failure(self, message: str) -> None:
        await self._orchestrator._apply(self._database, error_message=message)

    async def claim_endpoint(self, address: str, port: int | None) -> bool:
        async with self._orchestrator._session_factory() as session:
            claimed = await databases_repo.claim_endpoint(
                session,
                self._database.id,
                host=address,
                port=port,
                provisioning_status=states.COMPLETED,
            )
            await session.commit()
        if claimed:
            self._database.host = address
            self._database.port = port
            self._database.provisioning_status = states.COMPLETED
        return claimed

    async def on_ready(self) -> None:
        await self._orchestrator._after_ready(self._database)


class ProvisioningOrchestrator:
    def __init__(
        self,
        config: ProvisioningConfig,
        gateway: RdsGateway,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        schema_bootstrapper: SchemaBootstrapper | None = None,
        credential_distributor: CredentialDistributor | None = None,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._session_factory = session_factory
        self._schema = schema_bootstrapper or SchemaBootstrapper(
            config.schema_template_dir, connect_timeout_s=config.schema_connect_timeout_s
        )
        self._credentials = credential_distributor or CredentialDistributor()
        self._engine_version: str | None = config.engine_version

    @property
    def config(self) -> ProvisioningConfig:
        return self._config

    async def _apply(self, database: Database, **fields: Any) -> None:
        # Commit each transition immediately and mirror it on the caller's object.
        async with self._session_factory() as session:
            await databases_repo.update_database(session, database.id, **fields)
            await session.commit()
        for key, value in fields.items():
            setattr(database, key, value)

    async def get_database(self, database_id: int) -> Database | None:
        async with self._session_factory() as session:
            return await databases_repo.get_database(session, database_id)

    async def get_client(self, client_id: int) -> Client | None:
        async with self._session_factory() as session:
            return await clients_repo.get_client(session, client_id)

    async def get_service(self, service_id: int) -> Service | None:
        async with self._session_factory() as session:
            return await services_repo.get_service(session, service_id)

    async def _resolve_engine_version(self) -> str | None:
        if self._engine_version:
            return self._engine_version
        versions = await self._gateway.describe_engine_versions(self._config.engine)
        # Provider lists versions oldest first.
        self._engine_version = versions[-1] if versions else None
        return self._engine_version

    async def provision_for_service(self, client: Client, service: Service) -> Database:
        return await self._provision(client, service)

    async def provision_for_client(self, client: Client) -> Database:
        """Provision a service-less database for the client."""
        return await self._provision(client, None)

    async def provision_for_all_active_services(self, client: Client) -> dict[str, dict[str, Any]]:
        logger.info("provisioning_started client_id=%s client=%s", client.id, client.name)
        async with self._session_factory() as session:
            services = await clients_repo.list_active_services(session, client.id)
        results: dict[str, dict[str, Any]] = {}
        if not services:
            logger.warning("provisioning_no_active_services client_id=%s", client.id)
            return results

        for service in services:
            try:
                database = await self.provision_for_service(client, service)
            except Exception as exc:  # noqa: BLE001 - one service failing must not stop the others
                logger.error(
                    "provisioning_service_failed client_id=%s service_id=%s error=%s",
                    client.id,
                    service.id,
                    exc,
                )
                result: dict[str, Any] = {
                    "success": False,
                    "message": f"Failed to provision database: {exc}",
                }
                if isinstance(exc, ProvisioningError) and exc.database_id is not None:
                    result["database_id"] = exc.database_id
                results[service.slug] = result
                continue
            results[service.slug] = {
                "success": True,
                "database_id": database.id,
                "message": f"Database for {service.name} provisioning initiated",
            }
        return results

    async def _provision(self, client: Client, service: Service | None) -> Database:
        # Naming errors surface here, before anything is written.
        identifiers = generate_identifiers(
            environment=self._config.environment,
            client_slug=client.slug,
            service_slug=service.slug if service else None,
            username_max_length=self._config.username_max_length,
        )
        service_id = service.id if service else None
        try:
            engine_version = await self._resolve_engine_version()
        except ProviderError as exc:
            raise ProvisioningError(
                f"Failed to resolve engine version: {exc.message}",
                client_id=client.id,
                service_id=service_id,
                context={"provider_error_code": exc.code, "provider_error": exc.message},
            ) from exc

        try:
            async with self._session_factory() as session:
                database = await databases_repo.create_database(
                    session,
                    client_id=client.id,
                    service_id=service_id,
                    name=identifiers.database_name,
                    instance_identifier=identifiers.instance_identifier,
                    database_name=identifiers.database_name,
                    username=identifiers.username,
                    password=generate_password(),
                    engine=self._config.engine,
                    engine_version=engine_version,
                    instance_class=self._config.instance_class,
                    storage_type=self._config.storage_type,
                    allocated_storage=self._config.allocated_storage,
                    encrypted=self._config.encrypted,
                    status="pending",
                    provisioning_status=states.QUEUED,
                )
                await session.commit()
        except IntegrityError as exc:
            raise ProvisioningError(
                f"Database {identifiers.database_name} or instance {identifiers.instance_identifier} already exists",
                client_id=client.id,
                service_id=service_id,
                context={"reason": "duplicate_identifier", "instance_identifier": identifiers.instance_identifier},
            ) from exc

        try:
            await self._create_instance(database, client, service)
        except ProviderError as exc:
            logger.error(
                "rds_create_failed client_id=%s database_id=%s code=%s error=%s",
                client.id,
                database.id,
                exc.code,
                exc.message,
            )
            await self._apply(
                database,
                status=states.PROVIDER_FAILED,
                provisioning_status=states.FAILED,
                error_message=exc.message,
            )
            raise ProvisioningError(
                f"Failed to create RDS instance: {exc.message}",
                client_id=client.id,
                database_id=database.id,
                service_id=service_id,
                context={"provider_error_code": exc.code, "provider_error": exc.message},
            ) from exc
        return database

    def _create_request(self, database: Database, client: Client, service: Service | None) -> CreateInstanceRequest:
        config = self._config
        return CreateInstanceRequest(
            identifier=database.instance_identifier,
            db_name=database.database_name,
            engine=database.engine,
            engine_version=database.engine_version,
            username=database.username,
            password=database.password,
            allocated_storage=database.allocated_storage,
            instance_class=database.instance_class,
            storage_type=database.storage_type,
            encrypted=database.encrypted,
            backup_retention_days=config.backup_retention_days,
            publicly_accessible=config.publicly_accessible,
            multi_az=config.multi_az,
            subnet_group_name=config.subnet_group_name,
            security_group_ids=config.security_group_ids,
            deletion_protection=config.deletion_protection,
            max_allocated_storage=config.max_allocated_storage,
            tags={
                "Client": client.name,
                "Service": service.name if service else "General",
                "Environment": config.environment,
                "ManagedBy": "tenantdb",
            },
            monitoring_interval=config.monitoring_interval,
            monitoring_role_arn=config.monitoring_role_arn,
        )

    async def _create_instance(self, database: Database, client: Client, service: Service | None) -> None:
        await self._apply(database, provisioning_status=states.CREATING_INSTANCE)
        provider_id = await self._gateway.create_instance(self._create_request(database, client, service))
        await self._apply(
            database,
            provider_instance_id=provider_id,
            status=states.PROVIDER_CREATING,
            provisioning_status=states.CREATING,
        )
        logger.info(
            "rds_create_started client_id=%s database_id=%s instance_identifier=%s",
            database.client_id,
            database.id,
            database.instance_identifier,
        )

    async def reconcile(self, database: Database) -> str:
        """Fold the provider's view of the instance into the record.

        Returns the provider status, or ``"error"`` when the provider could not
        be read (provisioning_status is left alone in that case).
        """
        return await reconcile_instance(self._gateway, _DatabaseTarget(self, database))

    async def _after_ready(self, database: Database) -> None:
        async with self._session_factory() as session:
            client = await clients_repo.get_client(session, database.client_id)
            service = (
                await services_repo.get_service(session, database.service_id)
                if database.service_id is not None
                else None
            )
        if service is not None and service.schema_template:
            await self._bootstrap_schema(database, client, service)
        if self._credentials.enabled and client is not None:
            await self._credentials.distribute(self._connection_details(database, client, service))

    async def _bootstrap_schema(self, database: Database, client: Client | None, service: Service) -> None:
        await self._apply(database, provisioning_status=states.INITIALIZING_SCHEMA)
        target = SchemaTarget(
            database_id=database.id,
            template=service.schema_template or "",
            engine=database.engine,
            host=database.host or "",
            port=database.port,
            database_name=database.database_name,
            username=database.username,
            password=database.password,
            context={
                "client_slug": client.slug if client else "",
                "service_slug": service.slug,
            },
        )
        outcome = await self._schema.run(target)
        fields: dict[str, Any] = {"provisioning_status": outcome.provisioning_status}
        if outcome.error_message:
            fields["error_message"] = outcome.error_message
        await self._apply(database, **fields)

    def _connection_details(self, database: Database, client: Client, service: Service | None) -> ConnectionDetails:
        return ConnectionDetails(
            client_name=client.name,
            client_slug=client.slug,
            service_name=service.name if service else None,
            name=database.name,
            host=database.host or "",
            port=database.port,
            database_name=database.database_name,
            username=database.username,
            password=database.password,
            engine=database.engine,
            database_id=database.id,
        )

    async def delete_instance(
        self,
        database: Database,
        skip_final_snapshot: bool = False,
        final_snapshot_identifier: str | None = None,
    ) -> bool:
        """Start deletion at the provider; returns False (never raises) on rejection."""
        if not skip_final_snapshot and not final_snapshot_identifier:
            final_snapshot_identifier = build_final_snapshot_identifier(database.instance_identifier)
        try:
            await self._gateway.delete_instance(
                database.instance_identifier,
                skip_final_snapshot=skip_final_snapshot,
                final_snapshot_identifier=None if skip_final_snapshot else final_snapshot_identifier,
            )
        except ProviderError as exc:
            logger.error(
                "rds_delete_failed database_id=%s instance_identifier=%s error=%s",
                database.id,
                database.instance_identifier,
                exc.message,
            )
            await self._apply(database, provisioning_status=states.DELETE_FAILED, error_message=exc.message)
            return False
        await self._apply(database, status=states.PROVIDER_DELETING, provisioning_status=states.DELETING)
        logger.info(
            "rds_delete_started database_id=%s instance_identifier=%s skip_final_snapshot=%s final_snapshot_identifier=%s",
            database.id,
            database.instance_identifier,
            skip_final_snapshot,
            final_snapshot_identifier,
        )
        return True

    async def mark_monitoring_failed(self, database: Database, reason: str) -> None:
        logger.error("rds_monitoring_failed database_id=%s reason=%s", database.id, reason)
        await self._apply(
            database,
            status=states.PROVIDER_ERROR,
            provisioning_status=states.MONITORING_FAILED,
            error_message=f"Status check failed: {reason}",
        )
