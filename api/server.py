"""
TFS hours API server - ingest endpoint and delta reports.

Run with:
    uvicorn api.server:create_app --factory
or:
    tfs-hours serve
"""

import logging
import sqlite3

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from api.deps import get_settings
from api.hours_router import hours_router
from api.response_models import HealthResponse
from tfs_hours import db as db_module
from tfs_hours.config import Settings, load_settings
from tfs_hours.errors import HoursError, PersistenceError, ValidationError
from tfs_hours.observability import AccessLogMiddleware, CorrelationIdMiddleware, configure_logging

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error("Persistence error on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, str(exc))

    @app.exception_handler(HoursError)
    async def hours_error_handler(request: Request, exc: HoursError):
        logger.error("Unhandled domain error on %s: %s", request.url.path, exc)
        return _error(500, str(exc))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(p) for p in first.get("loc", ()))
            message = f"invalid request at {location}: {first.get('msg')}"
        else:
            message = "invalid request"
        return _error(400, message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "internal server error")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the application.

    Converges the database schema before returning, so the first request
    never races a migration.
    """
    if settings is None:
        settings = load_settings()

    app = FastAPI(
        title="TFS Hours Ledger API",
        description="Snapshot ledger of TFS task hours with delta reports",
        version="1.0.0",
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Last added runs first: request IDs are bound before the access log line
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    _install_exception_handlers(app)
    app.include_router(hours_router)

    @app.get("/health", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
    def health(request: Request):
        """Liveness plus a trivial database round-trip."""
        current = get_settings(request)
        try:
            with db_module.get_connection(current.db_path) as conn:
                db_module.check_health(conn)
        except (PersistenceError, sqlite3.Error, OSError) as e:
            logger.warning("Health check failed: %s", e)
            return JSONResponse(status_code=503, content={"ok": False, "db": False})
        return {"ok": True, "db": True}

    logger.info("=== TFS hours API startup ===")
    logger.info("DB path: %s", settings.db_path)
    logger.info(
        "Report timezone: %s (%+d min)",
        settings.report_tz.label,
        settings.report_tz.offset_minutes,
    )
    db_module.run_startup_migrations(settings.db_path)

    if not settings.auth_enabled:
        logger.warning("SYNC_API_KEY is not set: the ingest endpoint accepts unauthenticated batches")

    return app


def main(settings: Settings | None = None) -> None:
    """Serve with uvicorn using host/port from settings."""
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
