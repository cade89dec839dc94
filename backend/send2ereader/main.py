"""ASGI entry-point for the FastAPI application.

This module
1. instantiates the :class:`fastapi.FastAPI` application;
2. wires the routers located in ``send2ereader.api``;
3. registers global exception handlers and the request-logging middleware; and
4. resets the upload directory and creates the session registry on start-up.
"""

from __future__ import annotations

import contextlib
import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import api_router, download_router
from .config import settings
from .errors import AppBaseException
from .logging_config import setup_logging
from .services.sessions import SessionRegistry
from .utils.storage import reset_upload_dir

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Running start-up checks …")

    # Anything left over belongs to sessions of a previous process.
    reset_upload_dir(settings.UPLOAD_DIR)

    app.state.registry = SessionRegistry(
        expire_delay=settings.EXPIRE_DELAY_SECONDS,
        max_expire_duration=settings.MAX_EXPIRE_DURATION_SECONDS,
    )
    logger.info("Start-up checks finished.")
    try:
        yield
    finally:
        logger.info("Shutting down, removing %d session(s).", len(app.state.registry))
        app.state.registry.clear()


def create_app() -> FastAPI:  # noqa: D401 – factory nomenclature is fine
    """Wire and return the FastAPI application instance."""

    app = FastAPI(
        title="send2ereader",
        version="0.1.0",
        docs_url="/api/docs",
        lifespan=lifespan,
    )

    # ------------------------------------------------------------------
    # Exception handlers
    # ------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.error("Request validation error: %s", exc.errors())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        logger.error("HTTP exception %s: %s", exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(AppBaseException)
    async def _app_error_handler(
        _request: Request,
        exc: AppBaseException,
    ) -> JSONResponse:
        logger.error("Application exception %s: %s", exc.status_code, exc.detail)
        headers = {"Connection": "close"} if exc.close_connection else None
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)

    @app.exception_handler(Exception)
    async def _generic_error_handler(
        _request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s %s %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    # ------------------------------------------------------------------
    # Routes – health first, the catch-all download router last.
    # ------------------------------------------------------------------

    @app.get("/health")
    async def _health() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(api_router)
    app.include_router(download_router)

    return app


# Instantiate at import time so `uvicorn send2ereader.main:app` works.
app: FastAPI = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
