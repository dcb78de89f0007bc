from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..catalog import WooCommerceCatalog
from ..completion_client import CompletionClient
from ..config import REPO_ROOT, load_categorizer_settings, load_env_file
from ..errors import CatmatchError, ErrorKind
from .deps import Services
from .jobs import JobRegistry
from .routers import catalog as catalog_routes
from .routers import jobs as job_routes
from .settings import load_webui_settings

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.JOB_STATE: 409,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.CONFIG: 503,
    ErrorKind.TRANSPORT: 502,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.PERSISTENCE: 502,
    ErrorKind.PARSE: 502,
}


def build_services() -> Services:
    load_env_file(REPO_ROOT / ".env")
    settings = load_webui_settings()
    return Services(
        settings=settings,
        categorizer=load_categorizer_settings(),
        registry=JobRegistry(settings.max_jobs),
        catalog_factory=WooCommerceCatalog.from_config,
        client_factory=CompletionClient.from_config,
    )


def create_app(services: Services | None = None) -> FastAPI:
    services = services or build_services()
    settings = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services
        print(
            f"[start] webui-server listening on http://{settings.bind_host}:{settings.bind_port}{settings.base_path}",
            flush=True,
        )
        yield

    app = FastAPI(title="Catmatch Web UI", version="1.0", lifespan=lifespan)
    api_prefix = f"{settings.base_path}/api/v1"

    @app.get(f"{api_prefix}/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "base_path": settings.base_path, "version": __version__}

    app.include_router(job_routes.router, prefix=api_prefix)
    app.include_router(catalog_routes.router, prefix=api_prefix)

    @app.exception_handler(CatmatchError)
    async def catmatch_error_handler(_request: Request, exc: CatmatchError) -> JSONResponse:
        status_code = _STATUS_BY_KIND.get(exc.kind, 500)
        if status_code >= 500:
            logger.warning("request failed (%s): %s", exc.kind.value, exc)
        return JSONResponse(status_code=status_code, content={"error": exc.kind.value, "detail": str(exc)})

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(_request: Request, exc: RuntimeError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"error": "runtime_error", "detail": str(exc)})

    return app
