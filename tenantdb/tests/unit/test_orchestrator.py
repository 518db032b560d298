from __future__ import annotations

import json
import re
from datetime import datetime, timezone

import pytest

from tenantdb.core.errors import IdentifierError, ProvisioningError
from tenantdb.domain import states
from tenantdb.persistence.repos import databases as databases_repo
from tenantdb.providers.rds import RdsGateway
from tenantdb.services.provisioning.credentials import (
    CredentialDistributor,
    ParameterStoreSink,
    SecretsManagerSink,
)
from tenantdb.services.provisioning.orchestrator import (
    ProvisioningOrchestrator,
    build_final_snapshot_identifier,
)
from tenantdb.services.provisioning.schema import SchemaBootstrapper
from tenantdb.tests.utils.fakes import (
    FakeSecretsClient,
    FakeSsmClient,
    RecordingExecutor,
    client_error,
    make_config,
    seed_client,
)


def _orchestrator(session_factory, rds_client, *, config=None, executor=None, template_dir=".", sinks=None):
    return ProvisioningOrchestrator(
        config or make_config(),
        RdsGateway("us-east-1", client=rds_client),
        session_factory,
        schema_bootstrapper=SchemaBootstrapper(template_dir, executor=executor or RecordingExecutor()),
        credential_distributor=CredentialDistributor(sinks or []),
    )


async def _stored(session_factory, database_id: int):
    async with session_factory() as session:
        return await databases_repo.get_database(session, database_id)


@pytest.mark.asyncio
async def test_provision_for_service_starts_instance(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)

    database = await orchestrator.provision_for_service(client, billing)

    stored = await _stored(session_factory, database.id)
    assert stored.instance_identifier == "prod-acme-billing"
    assert stored.database_name == "client_acme_billing_db"
    assert stored.username == "acme_billing_use"
    assert len(stored.password) == 32
    assert stored.status == "creating"
    assert stored.provisioning_status == states.CREATING
    assert stored.provider_instance_id == "prod-acme-billing"
    assert stored.host is None and stored.port is None

    (params,) = rds_client.calls_to("create_db_instance")
    assert params["DBInstanceIdentifier"] == "prod-acme-billing"
    assert params["DBName"] == "client_acme_billing_db"
    assert params["MasterUsername"] == "acme_billing_use"
    assert params["EngineVersion"] == "14.6"
    assert params["DBSubnetGroupName"] == "tenant-subnets"
    assert params["VpcSecurityGroupIds"] == ["sg-1"]
    assert {"Key": "Service", "Value": "Billing"} in params["Tags"]
    assert {"Key": "ManagedBy", "Value": "tenantdb"} in params["Tags"]
    assert "MonitoringInterval" not in params
    assert "MonitoringRoleArn" not in params


@pytest.mark.asyncio
async def test_provision_for_client_uses_general_tag(session_factory, rds_client) -> None:
    client, _ = await seed_client(session_factory)
    orchestrator = _orchestrator(session_factory, rds_client)

    database = await orchestrator.provision_for_client(client)

    assert database.instance_identifier == "prod-acme"
    assert database.database_name == "client_acme_db"
    (params,) = rds_client.calls_to("create_db_instance")
    assert {"Key": "Service", "Value": "General"} in params["Tags"]


@pytest.mark.asyncio
async def test_enhanced_monitoring_only_when_interval_set(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    config = make_config(monitoring_interval=60, monitoring_role_arn="arn:aws:iam::123:role/rds-monitoring")
    orchestrator = _orchestrator(session_factory, rds_client, config=config)

    await orchestrator.provision_for_service(client, billing)

    (params,) = rds_client.calls_to("create_db_instance")
    assert params["MonitoringInterval"] == 60
    assert params["MonitoringRoleArn"] == "arn:aws:iam::123:role/rds-monitoring"


@pytest.mark.asyncio
async def test_engine_version_resolved_from_provider_when_unpinned(session_factory, rds_client) -> None:
    client, (billing, crm) = await seed_client(
        session_factory, services=[("billing", "Billing", None), ("crm", "CRM", None)]
    )
    orchestrator = _orchestrator(session_factory, rds_client, config=make_config(engine_version=None))

    first = await orchestrator.provision_for_service(client, billing)
    second = await orchestrator.provision_for_service(client, crm)

    assert first.engine_version == "15.4"
    assert second.engine_version == "15.4"
    assert len(rds_client.calls_to("describe_db_engine_versions")) == 1


@pytest.mark.asyncio
async def test_provider_rejection_marks_record_failed(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    rds_client.create_error = client_error(
        "DBInstanceAlreadyExists", "DB instance already exists", "CreateDBInstance"
    )
    orchestrator = _orchestrator(session_factory, rds_client)

    with pytest.raises(ProvisioningError) as excinfo:
        await orchestrator.provision_for_service(client, billing)

    exc = excinfo.value
    assert exc.client_id == client.id
    assert exc.service_id == billing.id
    assert exc.database_id is not None
    assert exc.context["provider_error_code"] == "DBInstanceAlreadyExists"
    stored = await _stored(session_factory, exc.database_id)
    assert stored.status == "failed"
    assert stored.provisioning_status == states.FAILED
    assert "DBInstanceAlreadyExists" in stored.error_message


@pytest.mark.asyncio
async def test_duplicate_record_is_rejected_before_provider_call(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)
    await orchestrator.provision_for_service(client, billing)

    with pytest.raises(ProvisioningError) as excinfo:
        await orchestrator.provision_for_service(client, billing)

    assert excinfo.value.context["reason"] == "duplicate_identifier"
    assert len(rds_client.calls_to("create_db_instance")) == 1


@pytest.mark.asyncio
async def test_invalid_identifier_fails_before_any_write(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client, config=make_config(environment="9prod"))

    with pytest.raises(IdentifierError):
        await orchestrator.provision_for_service(client, billing)

    async with session_factory() as session:
        assert await databases_repo.list_client_databases(session, client.id) == []
    assert rds_client.calls == []


@pytest.mark.asyncio
async def test_all_active_services_isolates_failures(session_factory, rds_client) -> None:
    client, (billing, crm) = await seed_client(
        session_factory, services=[("billing", "Billing", None), ("crm", "CRM", None)]
    )
    # An instance left over from a previous run collides with the billing identifier.
    rds_client.instances["prod-acme-billing"] = {
        "DBInstanceIdentifier": "prod-acme-billing",
        "DBInstanceStatus": "available",
    }
    orchestrator = _orchestrator(session_factory, rds_client)

    results = await orchestrator.provision_for_all_active_services(client)

    assert set(results) == {"billing", "crm"}
    assert results["billing"]["success"] is False
    assert "database_id" in results["billing"]
    assert results["crm"]["success"] is True
    crm_record = await _stored(session_factory, results["crm"]["database_id"])
    assert crm_record.provisioning_status == states.CREATING
    billing_record = await _stored(session_factory, results["billing"]["database_id"])
    assert billing_record.provisioning_status == states.FAILED


@pytest.mark.asyncio
async def test_all_active_services_without_subscriptions(session_factory, rds_client) -> None:
    client, _ = await seed_client(session_factory)
    orchestrator = _orchestrator(session_factory, rds_client)

    assert await orchestrator.provision_for_all_active_services(client) == {}
    assert rds_client.calls == []


@pytest.mark.asyncio
async def test_reconcile_while_creating_is_idempotent(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)
    database = await orchestrator.provision_for_service(client, billing)

    assert await orchestrator.reconcile(database) == "creating"
    assert await orchestrator.reconcile(database) == "creating"

    stored = await _stored(session_factory, database.id)
    assert stored.status == "creating"
    assert stored.provisioning_status == states.CREATING
    assert stored.host is None


@pytest.mark.asyncio
async def test_reconcile_available_claims_endpoint_once(session_factory, rds_client, tmp_path) -> None:
    (tmp_path / "billing.sql").write_text("CREATE TABLE IF NOT EXISTS {{ client_slug }}_invoices (id int);\n")
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", "billing")])
    executor = RecordingExecutor()
    orchestrator = _orchestrator(session_factory, rds_client, executor=executor, template_dir=tmp_path)
    database = await orchestrator.provision_for_service(client, billing)
    rds_client.make_available("prod-acme-billing", address="acme.rds.example.com", port=5432)

    assert await orchestrator.reconcile(database) == "available"
    stored = await _stored(session_factory, database.id)
    assert stored.host == "acme.rds.example.com"
    assert stored.port == 5432
    assert stored.status == "available"
    assert stored.provisioning_status == states.SCHEMA_INITIALIZED
    assert executor.scripts == ["CREATE TABLE IF NOT EXISTS acme_invoices (id int);\n"]

    # A later observation with a different endpoint changes nothing and runs nothing.
    rds_client.make_available("prod-acme-billing", address="other.rds.example.com", port=6543)
    fresh = await _stored(session_factory, database.id)
    assert await orchestrator.reconcile(fresh) == "available"
    stored = await _stored(session_factory, database.id)
    assert stored.host == "acme.rds.example.com"
    assert stored.port == 5432
    assert stored.provisioning_status == states.SCHEMA_INITIALIZED
    assert len(executor.scripts) == 1


@pytest.mark.asyncio
async def test_reconcile_available_without_template_completes(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    executor = RecordingExecutor()
    orchestrator = _orchestrator(session_factory, rds_client, executor=executor)
    database = await orchestrator.provision_for_service(client, billing)
    rds_client.make_available("prod-acme-billing", address="db.example.com", port=5432)

    await orchestrator.reconcile(database)

    stored = await _stored(session_factory, database.id)
    assert stored.host == "db.example.com"
    assert stored.port == 5432
    assert stored.provisioning_status == states.COMPLETED
    assert executor.scripts == []


@pytest.mark.asyncio
async def test_missing_schema_template(session_factory, rds_client, tmp_path) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", "billing")])
    orchestrator = _orchestrator(session_factory, rds_client, template_dir=tmp_path)
    database = await orchestrator.provision_for_service(client, billing)
    rds_client.make_available("prod-acme-billing")

    await orchestrator.reconcile(database)

    stored = await _stored(session_factory, database.id)
    assert stored.provisioning_status == states.SCHEMA_NOT_FOUND
    assert stored.error_message.startswith("Schema template not found")
    assert stored.host is not None


@pytest.mark.asyncio
async def test_failing_schema_script(session_factory, rds_client, tmp_path) -> None:
    (tmp_path / "billing.sql").write_text("CREATE TABLE broken (;\n")
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", "billing")])
    executor = RecordingExecutor(error=RuntimeError("syntax error at or near \";\""))
    orchestrator = _orchestrator(session_factory, rds_client, executor=executor, template_dir=tmp_path)
    database = await orchestrator.provision_for_service(client, billing)
    rds_client.make_available("prod-acme-billing")

    await orchestrator.reconcile(database)

    stored = await _stored(session_factory, database.id)
    assert stored.provisioning_status == states.SCHEMA_FAILED
    assert stored.error_message.startswith("Schema initialization failed")
    assert stored.status == "available"


@pytest.mark.asyncio
async def test_credentials_distributed_best_effort(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    ssm = FakeSsmClient(fail=True)
    secrets = FakeSecretsClient()
    sinks = [ParameterStoreSink(ssm, "/production/database/"), SecretsManagerSink(secrets, "database/", "prod")]
    orchestrator = _orchestrator(session_factory, rds_client, sinks=sinks)
    database = await orchestrator.provision_for_service(client, billing)
    rds_client.make_available("prod-acme-billing", address="acme.rds.example.com")

    assert await orchestrator.reconcile(database) == "available"

    stored = await _stored(session_factory, database.id)
    assert stored.provisioning_status == states.COMPLETED
    secret = secrets.secrets["database/acme/client_acme_billing_db"]
    payload = json.loads(secret["SecretString"])
    assert payload["host"] == "acme.rds.example.com"
    assert payload["username"] == "acme_billing_use"
    assert {"Key": "Environment", "Value": "prod"} in secret["Tags"]


@pytest.mark.asyncio
async def test_describe_failure_returns_error_sentinel(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)
    database = await orchestrator.provision_for_service(client, billing)
    rds_client.describe_error = client_error("AccessDenied", "not authorized", "DescribeDBInstances")

    assert await orchestrator.reconcile(database) == "error"

    stored = await _stored(session_factory, database.id)
    assert stored.provisioning_status == states.CREATING
    assert stored.status == "creating"
    assert "AccessDenied" in stored.error_message


@pytest.mark.asyncio
async def test_delete_with_derived_snapshot(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)
    database = await orchestrator.provision_for_service(client, billing)

    assert await orchestrator.delete_instance(database) is True

    (params,) = rds_client.calls_to("delete_db_instance")
    assert params["SkipFinalSnapshot"] is False
    assert re.fullmatch(r"prod-acme-billing-final-\d{20}", params["FinalDBSnapshotIdentifier"])
    stored = await _stored(session_factory, database.id)
    assert stored.status == "deleting"
    assert stored.provisioning_status == states.DELETING


@pytest.mark.asyncio
async def test_delete_skipping_snapshot(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)
    database = await orchestrator.provision_for_service(client, billing)

    assert await orchestrator.delete_instance(database, skip_final_snapshot=True) is True

    (params,) = rds_client.calls_to("delete_db_instance")
    assert params["SkipFinalSnapshot"] is True
    assert "FinalDBSnapshotIdentifier" not in params


@pytest.mark.asyncio
async def test_delete_rejection_marks_delete_failed(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)
    database = await orchestrator.provision_for_service(client, billing)
    rds_client.delete_error = client_error(
        "InvalidParameterCombination", "deletion protection is enabled", "DeleteDBInstance"
    )

    assert await orchestrator.delete_instance(database) is False

    stored = await _stored(session_factory, database.id)
    assert stored.provisioning_status == states.DELETE_FAILED
    assert "deletion protection" in stored.error_message


@pytest.mark.asyncio
async def test_mark_monitoring_failed(session_factory, rds_client) -> None:
    client, (billing,) = await seed_client(session_factory, services=[("billing", "Billing", None)])
    orchestrator = _orchestrator(session_factory, rds_client)
    database = await orchestrator.provision_for_service(client, billing)

    await orchestrator.mark_monitoring_failed(database, "provider unreachable")

    stored = await _stored(session_factory, database.id)
    assert stored.status == "error"
    assert stored.provisioning_status == states.MONITORING_FAILED
    assert stored.error_message == "Status check failed: provider unreachable"


def test_final_snapshot_identifier_format() -> None:
    moment = datetime(2026, 3, 4, 5, 6, 7, 890123, tzinfo=timezone.utc)
    assert (
        build_final_snapshot_identifier("prod-acme-billing", now=moment)
        == "prod-acme-billing-final-20260304050607890123"
    )
