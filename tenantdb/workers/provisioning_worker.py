from __future__ import annotations

import logging

from arq.connections import RedisSettings

from tenantdb.core.config import get_settings
from tenantdb.core.logging import configure_logging
from tenantdb.persistence.db import SessionLocal
from tenantdb.services.provisioning.factory import build_orchestrator
from tenantdb.services.provisioning.queue import (
    ProvisionJobPayload,
    StatusPollPayload,
    process_provision_job,
    process_status_poll,
)


logger = logging.getLogger(__name__)


async def provision_databases(ctx, payload: dict) -> dict:
    # Parse and validate payloads in the worker to enforce schema contracts.
    job_payload = ProvisionJobPayload.model_validate(payload)
    settings = get_settings()
    return await process_provision_job(
        job_payload,
        orchestrator=ctx["orchestrator"],
        attempt=ctx.get("job_try", 1),
        max_tries=settings.provision_max_tries,
    )


async def check_database_status(ctx, payload: dict) -> str:
    job_payload = StatusPollPayload.model_validate(payload)
    settings = get_settings()
    return await process_status_poll(
        job_payload,
        orchestrator=ctx["orchestrator"],
        job_try=ctx.get("job_try", 1),
        max_tries=settings.provision_max_tries,
    )


async def _startup(ctx) -> None:
    # One orchestrator per worker process; it caches the resolved engine version.
    configure_logging()
    ctx["orchestrator"] = build_orchestrator(SessionLocal)
    logger.info("provisioning_worker_started queue=%s", get_settings().provision_queue_name)


async def _shutdown(ctx) -> None:
    ctx.pop("orchestrator", None)
    logger.info("provisioning_worker_stopped")


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.provision_queue_name
    max_tries = settings.provision_max_tries
    functions = [provision_databases, check_database_status]
    on_startup = _startup
    on_shutdown = _shutdown
