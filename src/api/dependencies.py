"""
FastAPI dependency injection.

Dependencies provide the Sheets client and configuration to route
handlers, so routes never build their own clients and tests can swap
them through settings or app.dependency_overrides.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..infrastructure.sheets.client import (
    SheetsClient,
    SheetsConfig,
    create_sheets_client,
)

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Shared mock spreadsheet so writes are visible to later reads
_mock_sheets_client = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate the X-API-Key header.

    Only enforced when API_KEYS is configured; otherwise the proxy is
    open, like the serverless functions it replaces.
    Raises 403 if a key is required and missing or unknown.
    """
    allowed = settings.api_keys_list
    if not allowed:
        return ""

    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in allowed:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_sheets_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> SheetsClient:
    """
    Provide the Sheets client.

    In mock mode the same in-memory spreadsheet is reused across
    requests so data persists during the session.
    """
    global _mock_sheets_client

    if settings.sheets_mock_mode:
        if _mock_sheets_client is None:
            _mock_sheets_client = create_sheets_client(mock_mode=True)
            logger.info("Created shared mock Sheets client for session")
        return _mock_sheets_client

    config = SheetsConfig(
        spreadsheet_id=settings.google_sheets_id,
        credentials_file=settings.google_service_account_file,
        credentials_info=settings.google_service_account_info(),
    )
    logger.debug("Created Google Sheets client")
    return create_sheets_client(config=config)


def reset_mock_sheets_client() -> None:
    """Drop the shared mock spreadsheet. Used between tests."""
    global _mock_sheets_client
    _mock_sheets_client = None


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

ApiKey = Annotated[str, Depends(verify_api_key)]
SheetsClientDep = Annotated[SheetsClient, Depends(get_sheets_client)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
