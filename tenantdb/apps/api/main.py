from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantdb.apps.api.errors import (
    http_exception_handler,
    identifier_exception_handler,
    provisioning_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from tenantdb.apps.api.response import API_VERSION
from tenantdb.apps.api.routes.databases import router as databases_router
from tenantdb.apps.api.routes.health import router as health_router
from tenantdb.apps.api.routes.rds_instances import router as rds_instances_router
from tenantdb.core.config import get_settings
from tenantdb.core.errors import IdentifierError, ProvisioningError
from tenantdb.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IdentifierError, identifier_exception_handler)
    app.add_exception_handler(ProvisioningError, provisioning_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(databases_router, prefix=f"/{API_VERSION}")
    app.include_router(rds_instances_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
