from __future__ import annotations

from typing import Any

import pytest

from tenantdb.providers.rds import RdsGateway
from tenantdb.services.provisioning import queue
from tenantdb.services.provisioning.orchestrator import ProvisioningOrchestrator
from tenantdb.tests.utils.fakes import make_config, seed_client
from tenantdb.workers import provisioning_worker


class FakeRedis:
    def __init__(self) -> None:
        self.jobs: list[dict[str, Any]] = []

    async def enqueue_job(self, function: str, payload: dict, **kwargs: Any):
        self.jobs.append({"function": function, "payload": payload, **kwargs})
        return None


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    redis = FakeRedis()

    async def _pool() -> FakeRedis:
        return redis

    monkeypatch.setattr(queue, "get_redis_pool", _pool)
    return redis


def test_worker_settings_register_jobs() -> None:
    names = {func.__name__ for func in provisioning_worker.WorkerSettings.functions}
    assert names == {queue.PROVISION_JOB, queue.STATUS_POLL_JOB}
    assert provisioning_worker.WorkerSettings.queue_name == "provisioning"


@pytest.mark.asyncio
async def test_worker_runs_provision_then_poll(session_factory, rds_client, fake_redis) -> None:
    client, _ = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = ProvisioningOrchestrator(make_config(), RdsGateway("us-east-1", client=rds_client), session_factory)
    ctx = {"orchestrator": orchestrator, "job_try": 1}

    results = await provisioning_worker.provision_databases(ctx, {"client_id": client.id})

    assert results["billing"]["success"] is True
    (poll,) = fake_redis.jobs
    assert poll["function"] == "check_database_status"

    rds_client.make_available("prod-acme-billing")
    status = await provisioning_worker.check_database_status(ctx, poll["payload"])
    assert status == "available"
    assert len(fake_redis.jobs) == 1
