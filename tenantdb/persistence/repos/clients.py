from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdb.domain.models import Client, ClientService, Service


async def create_client(session: AsyncSession, *, name: str, slug: str, is_active: bool = True) -> Client:
    client = Client(name=name, slug=slug, is_active=is_active)
    session.add(client)
    await session.flush()
    return client


async def get_client(session: AsyncSession, client_id: int) -> Client | None:
    result = await session.execute(select(Client).where(Client.id == client_id))
    return result.scalar_one_or_none()


async def subscribe(
    session: AsyncSession, *, client_id: int, service_id: int, is_active: bool = True
) -> ClientService:
    link = ClientService(client_id=client_id, service_id=service_id, is_active=is_active)
    session.add(link)
    await session.flush()
    return link


async def list_active_services(session: AsyncSession, client_id: int) -> list[Service]:
    # Only subscriptions flagged active on the join row are provisioned.
    result = await session.execute(
        select(Service)
        .join(ClientService, ClientService.service_id == Service.id)
        .where(ClientService.client_id == client_id, ClientService.is_active.is_(True))
        .order_by(Service.id)
    )
    return list(result.scalars().all())


async def is_subscribed(session: AsyncSession, *, client_id: int, service_id: int) -> bool:
    result = await session.execute(
        select(ClientService.id).where(
            ClientService.client_id == client_id,
            ClientService.service_id == service_id,
        )
    )
    return result.first() is not None
