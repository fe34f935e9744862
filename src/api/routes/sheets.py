"""
Google Sheets proxy endpoints.

Five stateless endpoints forward to the Sheets API with the server's
service-account credential, so browser clients never hold it.
Missing parameters are rejected with 400 before any upstream call;
upstream failures become 500 with the upstream message (see the
exception handlers in src/main.py).
"""

import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from ...core.errors import ParameterValidationError
from ..dependencies import ApiKey, SheetsClientDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------

class ValuesRequest(BaseModel):
    """Body for /writeSheet and /appendSheet. Both fields are required."""
    range: Optional[str] = Field(None, description="A1 range, e.g. Sheet1!A1:C3")
    values: Optional[list[list[Any]]] = Field(None, description="Rows of cell values")


class BatchUpdateRequest(BaseModel):
    data: Optional[Any] = Field(
        None,
        description="List of {range, values} value ranges"
    )


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class ReadSheetResponse(BaseModel):
    success: bool = True
    values: list[list[Any]] = Field(default_factory=list)


class WriteSheetResponse(BaseModel):
    success: bool = True
    updatedCells: Optional[int] = None
    updatedRange: Optional[str] = None


class AppendSheetResponse(BaseModel):
    success: bool = True
    updates: dict[str, Any] = Field(default_factory=dict)


class SheetInfoResponse(BaseModel):
    success: bool = True
    sheets: list[str]


class BatchUpdateResponse(BaseModel):
    success: bool = True
    totalUpdatedCells: Optional[int] = None
    responses: list[dict[str, Any]] = Field(default_factory=list)


def _require_values(body: Optional[ValuesRequest]) -> ValuesRequest:
    # An empty values list is accepted; only absence is an error
    if body is None or not body.range or body.values is None:
        raise ParameterValidationError("Range and values are required")
    return body


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/readSheet",
    response_model=ReadSheetResponse,
    status_code=status.HTTP_200_OK,
    summary="Read a range",
)
async def read_sheet(
    sheets: SheetsClientDep,
    api_key: ApiKey,
    range_: Annotated[Optional[str], Query(alias="range")] = None,
) -> ReadSheetResponse:
    if not range_:
        raise ParameterValidationError("Range parameter is required")

    values = await sheets.read_values(range_)
    logger.info("Read sheet range", extra={"range": range_, "rows": len(values)})
    return ReadSheetResponse(values=values)


@router.post(
    "/writeSheet",
    response_model=WriteSheetResponse,
    status_code=status.HTTP_200_OK,
    summary="Overwrite a range",
    description="Values are interpreted as if typed by a user (USER_ENTERED).",
)
async def write_sheet(
    sheets: SheetsClientDep,
    api_key: ApiKey,
    body: Optional[ValuesRequest] = None,
) -> WriteSheetResponse:
    body = _require_values(body)

    response = await sheets.write_values(body.range, body.values)
    logger.info(
        "Wrote sheet range",
        extra={"range": body.range, "updated_cells": response.get("updatedCells")}
    )
    return WriteSheetResponse(
        updatedCells=response.get("updatedCells"),
        updatedRange=response.get("updatedRange"),
    )


@router.post(
    "/appendSheet",
    response_model=AppendSheetResponse,
    status_code=status.HTTP_200_OK,
    summary="Append rows after the last row of a range",
)
async def append_sheet(
    sheets: SheetsClientDep,
    api_key: ApiKey,
    body: Optional[ValuesRequest] = None,
) -> AppendSheetResponse:
    body = _require_values(body)

    response = await sheets.append_values(body.range, body.values)
    updates = response.get("updates") or {}
    logger.info(
        "Appended sheet rows",
        extra={"range": body.range, "updated_range": updates.get("updatedRange")}
    )
    return AppendSheetResponse(updates=updates)


@router.get(
    "/getSheetInfo",
    response_model=SheetInfoResponse,
    status_code=status.HTTP_200_OK,
    summary="List sheet titles",
)
async def get_sheet_info(
    sheets: SheetsClientDep,
    api_key: ApiKey,
) -> SheetInfoResponse:
    titles = await sheets.sheet_titles()
    return SheetInfoResponse(sheets=titles)


@router.post(
    "/batchUpdateSheet",
    response_model=BatchUpdateResponse,
    status_code=status.HTTP_200_OK,
    summary="Write several ranges in one request",
)
async def batch_update_sheet(
    sheets: SheetsClientDep,
    api_key: ApiKey,
    body: Optional[BatchUpdateRequest] = None,
) -> BatchUpdateResponse:
    if body is None or not isinstance(body.data, list):
        raise ParameterValidationError("Data array is required")

    response = await sheets.batch_update(body.data)
    logger.info(
        "Batch updated sheet",
        extra={"ranges": len(body.data), "updated_cells": response.get("totalUpdatedCells")}
    )
    return BatchUpdateResponse(
        totalUpdatedCells=response.get("totalUpdatedCells"),
        responses=response.get("responses") or [],
    )
