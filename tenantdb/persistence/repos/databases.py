from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdb.domain.models import Database


async def create_database(session: AsyncSession, **fields: Any) -> Database:
    # Flush so the caller gets the primary key before the provider call.
    database = Database(**fields)
    session.add(database)
    await session.flush()
    return database


async def get_database(session: AsyncSession, database_id: int) -> Database | None:
    result = await session.execute(select(Database).where(Database.id == database_id))
    return result.scalar_one_or_none()


async def get_client_database(session: AsyncSession, client_id: int, database_id: int) -> Database | None:
    # Return None on client mismatch to keep 404 semantics.
    result = await session.execute(
        select(Database).where(Database.id == database_id, Database.client_id == client_id)
    )
    return result.scalar_one_or_none()


async def list_client_databases(session: AsyncSession, client_id: int) -> list[Database]:
    result = await session.execute(
        select(Database).where(Database.client_id == client_id).order_by(Database.id)
    )
    return list(result.scalars().all())


async def update_database(session: AsyncSession, database_id: int, **fields: Any) -> bool:
    # Last-write-wins on the named fields only.
    result = await session.execute(
        update(Database)
        .where(Database.id == database_id)
        .values(**fields)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def claim_endpoint(
    session: AsyncSession,
    database_id: int,
    *,
    host: str,
    port: int | None,
    provisioning_status: str,
) -> bool:
    """Set host/port only while host is still null.

    Returns True for exactly one caller per record, which then owns the
    post-readiness side effects.
    """
    result = await session.execute(
        update(Database)
        .where(Database.id == database_id, Database.host.is_(None))
        .values(host=host, port=port, provisioning_status=provisioning_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_stale_databases(
    session: AsyncSession, *, statuses: Iterable[str], updated_before: datetime
) -> list[Database]:
    result = await session.execute(
        select(Database)
        .where(
            Database.provisioning_status.in_(list(statuses)),
            Database.updated_at < updated_before,
        )
        .order_by(Database.updated_at)
    )
    return list(result.scalars().all())
