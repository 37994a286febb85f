"""FastAPI application for Courier webhook management.

Run with ``uvicorn courier.api:app``. Delivery itself happens in the
worker process (``python -m courier``); this app only manages
subscriptions and reads the ledger.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from courier import __version__
from courier.config import Settings
from courier.exceptions import CourierError, NotFoundError, ValidationError
from courier.logging import configure_logging, get_logger
from courier.service import CourierService

from .router import router, set_service

logger = get_logger(__name__)

# Most specific first; anything else derived from CourierError is a 500
ERROR_STATUS: tuple[tuple[type[CourierError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
)


def status_for(exc: CourierError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def courier_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a CourierError as its ``to_dict()`` body."""
    if not isinstance(exc, CourierError):
        raise exc
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        code=exc.code,
        error=exc.message,
        status_code=status_code,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service from the app's settings and release it on shutdown."""
    settings: Settings = app.state.settings
    configure_logging(level=settings.log_level, format=settings.log_format)

    service = CourierService.create(settings)
    await service.initialize()
    set_service(service)
    logger.info("Courier API started", env=settings.env, version=__version__)

    try:
        yield
    finally:
        set_service(None)
        await service.close()
        logger.info("Courier API stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the management API.

    Args:
        settings: Settings for the service built at startup. Read from the
            environment when omitted.
    """
    settings = settings or Settings()

    app = FastAPI(
        title="Courier",
        description="Webhook subscriptions and delivery history for the mail platform.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
            max_age=settings.cors_max_age,
        )

    app.add_exception_handler(CourierError, courier_error_handler)
    app.include_router(router, prefix="/api/v1")
    return app


app = create_app()
