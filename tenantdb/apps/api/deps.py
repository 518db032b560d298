from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from tenantdb.core.config import ProvisioningConfig, get_settings
from tenantdb.persistence.db import SessionLocal, get_session
from tenantdb.services.instances import RdsInstanceService
from tenantdb.services.provisioning.factory import build_gateway, build_orchestrator
from tenantdb.services.provisioning.orchestrator import ProvisioningOrchestrator


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


@lru_cache
def get_orchestrator() -> ProvisioningOrchestrator:
    return build_orchestrator(SessionLocal)


@lru_cache
def get_instance_service() -> RdsInstanceService:
    settings = get_settings()
    return RdsInstanceService(ProvisioningConfig.from_settings(settings), build_gateway(settings), SessionLocal)
