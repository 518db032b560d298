from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdb.domain.models import Service


async def create_service(
    session: AsyncSession,
    *,
    name: str,
    slug: str,
    schema_template: str | None = None,
    description: str | None = None,
    is_active: bool = True,
) -> Service:
    service = Service(
        name=name,
        slug=slug,
        schema_template=schema_template,
        description=description,
        is_active=is_active,
    )
    session.add(service)
    await session.flush()
    return service


async def get_service(session: AsyncSession, service_id: int) -> Service | None:
    result = await session.execute(select(Service).where(Service.id == service_id))
    return result.scalar_one_or_none()
