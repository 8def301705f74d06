from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .ad.errors import (
    DataSourceError,
    DirectoryConnectionError,
    DirectoryError,
    QueryError,
    QueryValidationError,
)
from .ad.service import ADService
from .routers import query, reports, system, users


logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (QueryValidationError, status.HTTP_400_BAD_REQUEST),
    (DataSourceError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DirectoryConnectionError, status.HTTP_502_BAD_GATEWAY),
    (QueryError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(err: DirectoryError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(err, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _directory_error_handler(request: Request, exc: DirectoryError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": exc.message, "code": exc.code}, status_code=code)


def create_app(service: Optional[ADService] = None) -> FastAPI:
    """App factory. Without a service, one is built from the environment on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service
        if svc is None:
            from .bootstrap import initialize_application

            svc = initialize_application()
        app.state.ad_service = svc
        await svc.open()
        try:
            yield
        finally:
            await svc.close()

    app = FastAPI(title="AD Reports", lifespan=lifespan)
    app.add_exception_handler(DirectoryError, _directory_error_handler)

    app.include_router(query.router)
    app.include_router(reports.router)
    app.include_router(users.router)
    app.include_router(system.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
