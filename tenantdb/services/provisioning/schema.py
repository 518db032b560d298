"""Template-driven schema bootstrap for freshly available databases.

Templates live at ``<template_dir>/<name>.sql`` and are rendered with Jinja2
before execution, so one template can serve every client. Scripts are
expected to be idempotent (``CREATE ... IF NOT EXISTS``).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, TemplateNotFound

from tenantdb.core.errors import SchemaTemplateNotFoundError
from tenantdb.domain.states import SCHEMA_FAILED, SCHEMA_INITIALIZED, SCHEMA_NOT_FOUND


logger = logging.getLogger(__name__)

_POSTGRES_ENGINES = {"postgres", "aurora-postgresql"}


@dataclass(frozen=True)
class SchemaTarget:
    database_id: int
    template: str
    engine: str
    host: str
    port: int | None
    database_name: str
    username: str
    password: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SchemaOutcome:
    provisioning_status: str
    error_message: str | None = None


ScriptExecutor = Callable[[SchemaTarget, str, int], Awaitable[None]]


async def _execute_postgres(target: SchemaTarget, script: str, timeout_s: int) -> None:
    import asyncpg

    conn = await asyncpg.connect(
        host=target.host,
        port=target.port or 5432,
        user=target.username,
        password=target.password,
        database=target.database_name,
        ssl="prefer",
        timeout=timeout_s,
    )
    try:
        # asyncpg runs multi-statement scripts when no arguments are bound.
        await conn.execute(script)
    finally:
        await conn.close()


def _execute_mysql_sync(target: SchemaTarget, script: str, timeout_s: int) -> None:
    from pymysql.constants import CLIENT
    from sqlalchemy import create_engine
    from sqlalchemy.engine import URL
    from sqlalchemy.pool import NullPool

    url = URL.create(
        "mysql+pymysql",
        username=target.username,
        password=target.password,
        host=target.host,
        port=target.port or 3306,
        database=target.database_name,
    )
    engine = create_engine(
        url,
        poolclass=NullPool,
        connect_args={"client_flag": CLIENT.MULTI_STATEMENTS, "connect_timeout": timeout_s},
    )
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql(script)
    finally:
        engine.dispose()


async def execute_script(target: SchemaTarget, script: str, timeout_s: int) -> None:
    # Short-lived administrative connection; nothing is pooled.
    if target.engine in _POSTGRES_ENGINES:
        await _execute_postgres(target, script, timeout_s)
        return
    await asyncio.to_thread(_execute_mysql_sync, target, script, timeout_s)


class SchemaBootstrapper:
    def __init__(
        self,
        template_dir: str | Path,
        *,
        executor: ScriptExecutor | None = None,
        connect_timeout_s: int = 30,
    ) -> None:
        self._template_dir = Path(template_dir)
        self._executor = executor or execute_script
        self._connect_timeout_s = connect_timeout_s
        self._env = Environment(
            loader=FileSystemLoader(str(self._template_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def template_path(self, template: str) -> Path:
        return self._template_dir / f"{template}.sql"

    def render(self, target: SchemaTarget) -> str:
        context = {
            "database_name": target.database_name,
            "username": target.username,
            "engine": target.engine,
            **target.context,
        }
        try:
            return self._env.get_template(f"{target.template}.sql").render(**context)
        except TemplateNotFound as exc:
            raise SchemaTemplateNotFoundError(str(self.template_path(target.template))) from exc

    async def run(self, target: SchemaTarget) -> SchemaOutcome:
        """Render and execute the template; never raises."""
        try:
            script = self.render(target)
        except SchemaTemplateNotFoundError as exc:
            logger.warning(
                "schema_template_not_found database_id=%s schema_template=%s path=%s",
                target.database_id,
                target.template,
                exc,
            )
            return SchemaOutcome(SCHEMA_NOT_FOUND, f"Schema template not found: {exc}")
        except TemplateError as exc:
            logger.error("schema_render_failed database_id=%s error=%s", target.database_id, exc)
            return SchemaOutcome(SCHEMA_FAILED, f"Schema initialization failed: {exc}")
        try:
            await self._executor(target, script, self._connect_timeout_s)
        except Exception as exc:  # noqa: BLE001 - driver errors vary by engine
            logger.error("schema_init_failed database_id=%s error=%s", target.database_id, exc)
            return SchemaOutcome(SCHEMA_FAILED, f"Schema initialization failed: {exc}")
        logger.info(
            "schema_initialized database_id=%s schema_template=%s", target.database_id, target.template
        )
        return SchemaOutcome(SCHEMA_INITIALIZED)
