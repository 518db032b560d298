from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from tenantdb.apps.api.deps import get_instance_service
from tenantdb.apps.api.response import success_response
from tenantdb.domain.models import RdsInstance
from tenantdb.services.instances import RdsInstanceService


router = APIRouter(prefix="/rds-instances", tags=["rds-instances"])


class CreateInstanceBody(BaseModel):
    client_id: str = Field(min_length=1)
    db_name: str = Field(min_length=1, max_length=63)
    username: str = Field(min_length=1)
    password: str = Field(min_length=8)
    subnet_group_name: str | None = None

    model_config = {"extra": "forbid"}


def _to_response(instance: RdsInstance) -> dict[str, Any]:
    created_at: datetime | None = instance.created_at
    return {
        "id": instance.id,
        "client_id": instance.client_ref,
        "instance_identifier": instance.instance_identifier,
        "status": instance.status,
        "endpoint": instance.endpoint,
        "port": instance.port,
        "created_at": created_at.isoformat() if created_at else None,
    }


async def _require_instance(service: RdsInstanceService, instance_id: int) -> RdsInstance:
    instance = await service.get_instance(instance_id)
    if instance is None:
        raise HTTPException(status_code=404, detail="RDS instance not found")
    return instance


@router.get("")
async def list_instances(
    request: Request, service: RdsInstanceService = Depends(get_instance_service)
) -> dict:
    # Listing refreshes every record from the provider first.
    await service.refresh_all()
    instances = await service.list_instances()
    return success_response(request=request, data=[_to_response(instance) for instance in instances])


@router.post("", status_code=201)
async def create_instance(
    request: Request,
    body: CreateInstanceBody,
    service: RdsInstanceService = Depends(get_instance_service),
) -> dict:
    instance = await service.create(
        body.client_id,
        body.db_name,
        body.username,
        body.password,
        subnet_group_name=body.subnet_group_name,
    )
    return success_response(request=request, data=_to_response(instance))


@router.get("/{instance_id}")
async def get_instance(
    request: Request, instance_id: int, service: RdsInstanceService = Depends(get_instance_service)
) -> dict:
    instance = await _require_instance(service, instance_id)
    await service.refresh(instance)
    return success_response(request=request, data=_to_response(instance))


@router.delete("/{instance_id}")
async def delete_instance(
    request: Request, instance_id: int, service: RdsInstanceService = Depends(get_instance_service)
) -> dict:
    instance = await _require_instance(service, instance_id)
    await service.delete(instance)
    return success_response(request=request, data=_to_response(instance))
