from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdb.apps.api.deps import get_db, get_orchestrator
from tenantdb.apps.api.response import get_request_id, success_response
from tenantdb.domain.models import Database
from tenantdb.persistence.repos import clients as clients_repo
from tenantdb.persistence.repos import databases as databases_repo
from tenantdb.persistence.repos import services as services_repo
from tenantdb.services.provisioning.orchestrator import ProvisioningOrchestrator
from tenantdb.services.provisioning.queue import ProvisionJobPayload, enqueue_provision_job


router = APIRouter(prefix="/clients/{client_id}/databases", tags=["databases"])


class DeleteDatabaseRequest(BaseModel):
    skip_final_snapshot: bool = Field(default=False)
    final_snapshot_identifier: str | None = Field(default=None)

    model_config = {"extra": "forbid"}


async def _require_client(db: AsyncSession, client_id: int):
    client = await clients_repo.get_client(db, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


async def _require_database(orchestrator: ProvisioningOrchestrator, client_id: int, database_id: int) -> Database:
    database = await orchestrator.get_database(database_id)
    # Databases of other clients are reported as missing.
    if database is None or database.client_id != client_id:
        raise HTTPException(status_code=404, detail="Database not found")
    return database


@router.get("")
async def list_databases(request: Request, client_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    await _require_client(db, client_id)
    databases = await databases_repo.list_client_databases(db, client_id)
    return success_response(request=request, data=[database.to_public_dict() for database in databases])


@router.get("/{database_id}")
async def get_database(
    request: Request, client_id: int, database_id: int, db: AsyncSession = Depends(get_db)
) -> dict:
    database = await databases_repo.get_client_database(db, client_id, database_id)
    if database is None:
        raise HTTPException(status_code=404, detail="Database not found")
    return success_response(request=request, data=database.to_public_dict())


@router.post("", status_code=202)
async def provision_all(request: Request, client_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    client = await _require_client(db, client_id)
    if not client.is_active:
        raise HTTPException(status_code=400, detail="Client is not active")
    job_id = await enqueue_provision_job(
        ProvisionJobPayload(client_id=client.id, scope="all_services"),
        job_id=f"provision:{client.id}:{uuid4()}",
    )
    data: dict[str, Any] = {
        "message": "Database provisioning has been initiated",
        "client_id": client.id,
        "job_id": job_id,
        "request_id": get_request_id(request),
    }
    return success_response(request=request, data=data)


@router.post("/services/{service_id}", status_code=202)
async def provision_service(
    request: Request, client_id: int, service_id: int, db: AsyncSession = Depends(get_db)
) -> dict:
    client = await _require_client(db, client_id)
    service = await services_repo.get_service(db, service_id)
    if service is None:
        raise HTTPException(status_code=404, detail="Service not found")
    if not await clients_repo.is_subscribed(db, client_id=client.id, service_id=service.id):
        raise HTTPException(status_code=400, detail="Client is not subscribed to this service")
    job_id = await enqueue_provision_job(
        ProvisionJobPayload(client_id=client.id, scope="service", service_id=service.id),
        job_id=f"provision:{client.id}:{service.id}:{uuid4()}",
    )
    data = {
        "message": f"Database provisioning for {service.name} has been initiated",
        "client_id": client.id,
        "service_id": service.id,
        "job_id": job_id,
    }
    return success_response(request=request, data=data)


@router.post("/{database_id}/status")
async def check_status(
    request: Request,
    client_id: int,
    database_id: int,
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
) -> dict:
    database = await _require_database(orchestrator, client_id, database_id)
    status = await orchestrator.reconcile(database)
    return success_response(request=request, data={"status": status, "database": database.to_public_dict()})


@router.delete("/{database_id}")
async def delete_database(
    request: Request,
    client_id: int,
    database_id: int,
    payload: DeleteDatabaseRequest | None = None,
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
) -> dict:
    payload = payload or DeleteDatabaseRequest()
    database = await _require_database(orchestrator, client_id, database_id)
    deleted = await orchestrator.delete_instance(
        database,
        skip_final_snapshot=payload.skip_final_snapshot,
        final_snapshot_identifier=payload.final_snapshot_identifier,
    )
    if not deleted:
        raise HTTPException(
            status_code=502,
            detail={"code": "PROVIDER_ERROR", "message": database.error_message or "Failed to delete database"},
        )
    return success_response(request=request, data=database.to_public_dict())
