from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

from arq import Retry, create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel

from tenantdb.core.config import get_settings
from tenantdb.core.errors import IdentifierError, ProvisioningError
from tenantdb.domain import states
from tenantdb.domain.models import Database
from tenantdb.services.provisioning.orchestrator import ProvisioningOrchestrator


logger = logging.getLogger(__name__)

PROVISION_JOB = "provision_databases"
STATUS_POLL_JOB = "check_database_status"

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()


class ProvisionJobPayload(BaseModel):
    client_id: int
    # all_services: every active subscription; service: one subscription; client: service-less database.
    scope: Literal["all_services", "service", "client"] = "all_services"
    service_id: int | None = None


class StatusPollPayload(BaseModel):
    database_id: int
    # 1-based poll counter carried from one scheduled check to the next.
    attempt: int = 1

    def next_attempt(self) -> "StatusPollPayload":
        return StatusPollPayload(database_id=self.database_id, attempt=self.attempt + 1)

    @property
    def job_id(self) -> str:
        return f"poll:{self.database_id}:{self.attempt}"


async def get_redis_pool():
    # Cache the pool per event loop.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.provision_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def enqueue_provision_job(payload: ProvisionJobPayload, *, job_id: str | None = None) -> str | None:
    redis = await get_redis_pool()
    job = await redis.enqueue_job(
        PROVISION_JOB,
        payload.model_dump(),
        _job_id=job_id,
        _queue_name=get_settings().provision_queue_name,
    )
    return job.job_id if job else job_id


async def enqueue_status_poll(payload: StatusPollPayload, *, defer_s: int) -> str:
    # The job id is derived from (database, attempt) so a duplicate enqueue is a no-op.
    redis = await get_redis_pool()
    await redis.enqueue_job(
        STATUS_POLL_JOB,
        payload.model_dump(),
        _job_id=payload.job_id,
        _defer_by=defer_s,
        _queue_name=get_settings().provision_queue_name,
    )
    logger.info(
        "status_poll_scheduled database_id=%s attempt=%s delay_s=%s",
        payload.database_id,
        payload.attempt,
        defer_s,
    )
    return payload.job_id


async def process_provision_job(
    payload: ProvisionJobPayload,
    *,
    orchestrator: ProvisioningOrchestrator,
    attempt: int,
    max_tries: int,
) -> dict[str, Any]:
    client = await orchestrator.get_client(payload.client_id)
    if client is None:
        logger.warning("provision_job_client_missing client_id=%s", payload.client_id)
        return {}

    results: dict[str, Any]
    try:
        if payload.scope == "service":
            service = await orchestrator.get_service(payload.service_id) if payload.service_id else None
            if service is None:
                logger.warning(
                    "provision_job_service_missing client_id=%s service_id=%s", client.id, payload.service_id
                )
                return {}
            database = await orchestrator.provision_for_service(client, service)
            results = {service.slug: {"success": True, "database_id": database.id}}
        elif payload.scope == "client":
            database = await orchestrator.provision_for_client(client)
            results = {client.slug: {"success": True, "database_id": database.id}}
        else:
            results = await orchestrator.provision_for_all_active_services(client)
    except (ProvisioningError, IdentifierError) as exc:
        # The record (if any) already carries the failure; retrying would repeat it.
        logger.error(
            "provision_job_failed client_id=%s service_id=%s error=%s",
            client.id,
            payload.service_id,
            exc,
        )
        return {"success": False, "message": str(exc)}
    except Exception as exc:  # noqa: BLE001 - unexpected failures go back to the queue
        if attempt < max_tries:
            raise Retry(defer=attempt * 5) from exc
        logger.exception("provision_job_exhausted client_id=%s", client.id)
        raise

    for result in results.values():
        if result.get("success") and result.get("database_id") is not None:
            result["poll_scheduled"] = await _schedule_first_poll(orchestrator, result["database_id"])
    logger.info("provision_job_done client_id=%s results=%s", client.id, results)
    return results


async def _schedule_first_poll(orchestrator: ProvisioningOrchestrator, database_id: int) -> bool:
    # The instance exists by now; the provision job is never re-run for it.
    try:
        await enqueue_status_poll(
            StatusPollPayload(database_id=database_id), defer_s=orchestrator.config.poll_backoff_s
        )
    except Exception as exc:  # noqa: BLE001 - an unscheduled record must not stay silently in progress
        logger.exception("status_poll_schedule_failed database_id=%s", database_id)
        database = await orchestrator.get_database(database_id)
        if database is not None:
            await on_status_poll_exhausted(orchestrator, database, f"could not schedule status check: {exc}")
        return False
    return True


async def on_status_poll_exhausted(
    orchestrator: ProvisioningOrchestrator, database: Database, reason: str
) -> str:
    # Terminal backstop: no further polls are scheduled for this record.
    await orchestrator.mark_monitoring_failed(database, reason)
    return states.MONITORING_FAILED


async def process_status_poll(
    payload: StatusPollPayload,
    *,
    orchestrator: ProvisioningOrchestrator,
    job_try: int = 1,
    max_tries: int = 1,
) -> str:
    database = await orchestrator.get_database(payload.database_id)
    if database is None:
        logger.warning("status_poll_database_missing database_id=%s", payload.database_id)
        return "missing"

    logger.info(
        "status_poll database_id=%s instance_identifier=%s attempt=%s",
        database.id,
        database.instance_identifier,
        payload.attempt,
    )
    try:
        status = await orchestrator.reconcile(database)
    except Exception as exc:  # noqa: BLE001 - unexpected failures use the queue's retry budget
        if job_try < max_tries:
            raise Retry(defer=orchestrator.config.poll_backoff_s) from exc
        logger.exception("status_poll_failed database_id=%s", database.id)
        return await on_status_poll_exhausted(orchestrator, database, str(exc))

    # A ready instance without an endpoint has nothing to connect to yet; keep checking.
    awaiting_endpoint = status == states.PROVIDER_AVAILABLE and not database.host
    settled = status not in states.PROVIDER_PENDING_STATES and status != states.PROVIDER_ERROR
    if settled and not awaiting_endpoint:
        logger.info("status_poll_settled database_id=%s status=%s", database.id, status)
        return status

    max_attempts = orchestrator.config.poll_max_attempts
    if payload.attempt >= max_attempts:
        if status == states.PROVIDER_ERROR:
            reason = database.error_message or "provider status unavailable"
        elif awaiting_endpoint:
            reason = f"instance available without an endpoint after {payload.attempt} checks"
        else:
            reason = f"instance still '{status}' after {payload.attempt} checks"
        return await on_status_poll_exhausted(orchestrator, database, reason)

    try:
        await enqueue_status_poll(payload.next_attempt(), defer_s=orchestrator.config.poll_backoff_s)
    except Exception as exc:  # noqa: BLE001 - a lost reschedule uses the queue's retry budget
        if job_try < max_tries:
            raise Retry(defer=orchestrator.config.poll_backoff_s) from exc
        logger.exception("status_poll_reschedule_failed database_id=%s", database.id)
        return await on_status_poll_exhausted(orchestrator, database, f"could not schedule status check: {exc}")
    return status
