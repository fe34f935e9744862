"""
Health check endpoints.

- /health: liveness (is the process running?)
- /health/ready: readiness (is the configuration complete enough to
  reach the spreadsheet?)
"""

import logging
from typing import Any

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from ... import __version__
from ..dependencies import SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    details: dict[str, Any] = {}


class ReadinessCheck(BaseModel):
    """Individual readiness check result."""
    name: str
    status: str  # "ok" or "error"
    error: str | None = None


class ReadinessResponse(BaseModel):
    status: str  # "ready" or "not_ready"
    version: str
    checks: list[ReadinessCheck]


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the service is running. Does not check dependencies.",
)
async def health_check(settings: SettingsDep) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        details={
            "mock_mode": {
                "sheets": settings.sheets_mock_mode,
                "firestore": settings.firestore_mock_mode,
            }
        }
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Returns 200 when the Sheets proxy is configured, 503 otherwise.",
    responses={
        503: {
            "description": "Service not ready",
            "model": ReadinessResponse,
        }
    },
)
async def readiness_check(settings: SettingsDep, response: Response) -> ReadinessResponse:
    """
    Readiness check.

    Verifies that the spreadsheet id and a service-account credential
    are configured (or that mock mode is on). Does not call Google, so
    a revoked key still reports ready.
    """
    checks: list[ReadinessCheck] = []

    if settings.sheets_mock_mode:
        checks.append(ReadinessCheck(name="sheets", status="ok", error="mock mode"))
    else:
        missing = []
        if not settings.google_sheets_id:
            missing.append("GOOGLE_SHEETS_ID")
        if not settings.google_service_account_file and not settings.has_inline_google_credentials:
            missing.append("service account credentials")
        if missing:
            checks.append(ReadinessCheck(
                name="sheets",
                status="error",
                error=f"Missing: {', '.join(missing)}"
            ))
        else:
            checks.append(ReadinessCheck(name="sheets", status="ok"))

    all_ok = all(c.status == "ok" for c in checks)
    if not all_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning(
            "Readiness check failed",
            extra={
                "checks": [
                    {"name": c.name, "status": c.status, "error": c.error}
                    for c in checks
                ]
            }
        )

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        version=__version__,
        checks=checks,
    )
