from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdb.domain.models import RdsInstance


async def create_instance(
    session: AsyncSession, *, client_ref: str, instance_identifier: str, status: str
) -> RdsInstance:
    instance = RdsInstance(client_ref=client_ref, instance_identifier=instance_identifier, status=status)
    session.add(instance)
    await session.flush()
    return instance


async def get_instance(session: AsyncSession, instance_id: int) -> RdsInstance | None:
    result = await session.execute(select(RdsInstance).where(RdsInstance.id == instance_id))
    return result.scalar_one_or_none()


async def list_instances(session: AsyncSession) -> list[RdsInstance]:
    result = await session.execute(select(RdsInstance).order_by(RdsInstance.id))
    return list(result.scalars().all())


async def update_status(session: AsyncSession, instance_id: int, *, status: str) -> bool:
    result = await session.execute(
        update(RdsInstance)
        .where(RdsInstance.id == instance_id)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def claim_endpoint(session: AsyncSession, instance_id: int, *, endpoint: str, port: int | None) -> bool:
    # Endpoint is captured once; later observations leave it untouched.
    result = await session.execute(
        update(RdsInstance)
        .where(RdsInstance.id == instance_id, RdsInstance.endpoint.is_(None))
        .values(endpoint=endpoint, port=port)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
