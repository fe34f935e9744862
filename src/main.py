"""
FastAPI application entry point for the Sheets proxy.

Uses an application factory (create_app) so tests can build an app
against freshly loaded settings.

For local development:
    uvicorn src.main:app --reload

For production:
    gunicorn src.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import health, sheets
from .config.settings import get_settings
from .core.errors import ParameterValidationError, UpstreamServiceError

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log configuration problems on startup; nothing to clean up on shutdown."""
    settings = get_settings()

    logger.info(
        "Sheets proxy starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {"sheets": settings.sheets_mock_mode},
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        # Requests will fail upstream; the service still starts
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    yield

    logger.info("Sheets proxy shutting down")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Server-side proxy for the training log's Google Sheets access.

        The service account credential stays on the server; clients
        call these endpoints instead of the Sheets API.

        ## Endpoints

        - `GET /readSheet?range=Sheet1!A1:C10`
        - `POST /writeSheet` with `{range, values}`
        - `POST /appendSheet` with `{range, values}`
        - `GET /getSheetInfo`
        - `POST /batchUpdateSheet` with `{data: [{range, values}, ...]}`

        ## Authentication

        When API keys are configured, send one in the `X-API-Key` header.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_origins_list != ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        sheets.router,
        tags=["Sheets"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": settings.api_title,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(ParameterValidationError)
    async def parameter_error_handler(request: Request, exc: ParameterValidationError):
        logger.info(
            "Rejected request",
            extra={"path": request.url.path, "error": str(exc)}
        )
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(UpstreamServiceError)
    async def upstream_error_handler(request: Request, exc: UpstreamServiceError):
        logger.error(
            "Upstream call failed",
            extra={"path": request.url.path, "error": str(exc)}
        )
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        Logs the full error server-side but returns a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
