from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from premiumcollect.apps.api.deps import drain_background_tasks
from premiumcollect.apps.api.errors import (
    domain_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from premiumcollect.apps.api.response import API_VERSION
from premiumcollect.apps.api.routes.api_keys_admin import router as api_keys_admin_router
from premiumcollect.apps.api.routes.audit import router as audit_router
from premiumcollect.apps.api.routes.captive import router as captive_router
from premiumcollect.apps.api.routes.cell_captives_admin import router as cell_captives_admin_router
from premiumcollect.apps.api.routes.collections_admin import router as collections_admin_router
from premiumcollect.apps.api.routes.health import router as health_router
from premiumcollect.apps.api.routes.realtime import router as realtime_router
from premiumcollect.apps.api.routes.webhooks import router as webhooks_router
from premiumcollect.core.config import get_settings
from premiumcollect.core.errors import DomainError
from premiumcollect.core.logging import configure_logging
from premiumcollect.persistence.bootstrap import bootstrap_database
from premiumcollect.persistence.db import engine


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.bootstrap_on_startup:
        try:
            await bootstrap_database()
        except Exception as exc:  # noqa: BLE001 - keep serving in demo mode without a database
            logger.warning("database_bootstrap_failed mode=demo error=%s", exc, exc_info=exc)
    yield
    await drain_background_tasks()
    await engine.dispose()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Premium Collection API", lifespan=lifespan)

    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(DomainError)
    async def _domain_error_handler(request: Request, exc: DomainError):
        return await domain_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    # Captive-facing webhook and self-service routes authenticate with API keys.
    app.include_router(webhooks_router, prefix=f"/{API_VERSION}")
    app.include_router(captive_router, prefix=f"/{API_VERSION}")
    # Staff back-office routes authenticate with session tokens.
    app.include_router(cell_captives_admin_router, prefix=f"/{API_VERSION}")
    app.include_router(api_keys_admin_router, prefix=f"/{API_VERSION}")
    app.include_router(collections_admin_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(realtime_router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Inject bearer auth and version metadata into the OpenAPI schema.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="Premium Collection API",
            version=API_VERSION,
            routes=app.routes,
        )
        schema["servers"] = [{"url": f"http://localhost:{settings.port}"}]
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        public_paths = {"/v1/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
