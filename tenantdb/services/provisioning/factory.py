from __future__ import annotations

import boto3
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.core.config import ProvisioningConfig, Settings, get_settings
from tenantdb.providers.rds import RdsGateway
from tenantdb.services.provisioning.credentials import build_credential_distributor
from tenantdb.services.provisioning.orchestrator import ProvisioningOrchestrator
from tenantdb.services.provisioning.schema import SchemaBootstrapper
from tenantdb.services.resilience import RetryPolicy


def build_gateway(settings: Settings) -> RdsGateway:
    return RdsGateway(
        settings.aws_region,
        access_key_id=settings.aws_access_key_id,
        secret_access_key=settings.aws_secret_access_key,
        retry_policy=RetryPolicy(
            timeout_ms=settings.ext_call_timeout_ms,
            max_attempts=settings.ext_retry_max_attempts,
            backoff_ms=settings.ext_retry_backoff_ms,
        ),
    )


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
) -> ProvisioningOrchestrator:
    # Resolve settings once; the orchestrator only ever sees the config object.
    settings = settings or get_settings()
    config = ProvisioningConfig.from_settings(settings)
    boto_session = None
    if config.parameter_store_enabled or config.secrets_manager_enabled:
        boto_session = boto3.Session(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
    return ProvisioningOrchestrator(
        config,
        build_gateway(settings),
        session_factory,
        schema_bootstrapper=SchemaBootstrapper(
            config.schema_template_dir, connect_timeout_s=config.schema_connect_timeout_s
        ),
        credential_distributor=build_credential_distributor(config, session=boto_session),
    )
