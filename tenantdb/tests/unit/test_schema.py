from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from tenantdb.core.errors import SchemaTemplateNotFoundError
from tenantdb.domain import states
from tenantdb.services.provisioning.schema import SchemaBootstrapper, SchemaTarget
from tenantdb.tests.utils.fakes import RecordingExecutor


TEMPLATE_DIR = Path(__file__).resolve().parents[3] / "schema_templates"


def _target(template: str = "billing", **context) -> SchemaTarget:
    return SchemaTarget(
        database_id=1,
        template=template,
        engine="postgres",
        host="acme.rds.example.com",
        port=5432,
        database_name="client_acme_billing_db",
        username="acme_billing_use",
        password="secret",
        context=context,
    )


def test_render_exposes_database_context(tmp_path) -> None:
    (tmp_path / "billing.sql").write_text("-- {{ database_name }} for {{ client_slug }} as {{ username }}\n")
    bootstrapper = SchemaBootstrapper(tmp_path)

    script = bootstrapper.render(_target(client_slug="acme"))

    assert script == "-- client_acme_billing_db for acme as acme_billing_use\n"


def test_render_missing_template(tmp_path) -> None:
    bootstrapper = SchemaBootstrapper(tmp_path)
    with pytest.raises(SchemaTemplateNotFoundError):
        bootstrapper.render(_target("nope"))


@pytest.mark.asyncio
async def test_run_reports_undefined_template_variables(tmp_path) -> None:
    (tmp_path / "billing.sql").write_text("CREATE SCHEMA {{ missing_variable }};\n")
    executor = RecordingExecutor()
    bootstrapper = SchemaBootstrapper(tmp_path, executor=executor)

    outcome = await bootstrapper.run(_target())

    assert outcome.provisioning_status == states.SCHEMA_FAILED
    assert executor.scripts == []


@pytest.mark.asyncio
async def test_run_executes_rendered_script(tmp_path) -> None:
    (tmp_path / "billing.sql").write_text("CREATE TABLE IF NOT EXISTS invoices (id int);\n")
    executor = RecordingExecutor()
    bootstrapper = SchemaBootstrapper(tmp_path, executor=executor)

    outcome = await bootstrapper.run(_target())

    assert outcome.provisioning_status == states.SCHEMA_INITIALIZED
    assert outcome.error_message is None
    assert executor.scripts == ["CREATE TABLE IF NOT EXISTS invoices (id int);\n"]


def test_bundled_billing_template_renders_for_both_engines() -> None:
    bootstrapper = SchemaBootstrapper(TEMPLATE_DIR)
    postgres = bootstrapper.render(_target(client_slug="acme", service_slug="billing"))
    assert "BIGSERIAL" in postgres
    mysql = bootstrapper.render(
        replace(_target(client_slug="acme"), engine="mysql")
    )
    assert "AUTO_INCREMENT" in mysql
