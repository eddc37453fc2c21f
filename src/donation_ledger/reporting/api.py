"""API endpoints for ledger reports."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import verify_api_key
from ..database import get_db
from .aggregator import LedgerViewAggregator, LedgerViewKind, parse_report_date
from .csv_exporter import CSVExporter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ledger", tags=["reporting"])


@router.get("/export")
async def export_ledger(
    start: Optional[str] = Query(default=None, description="First day (ISO-8601), daily view only"),
    end: Optional[str] = Query(default=None, description="Last day (ISO-8601), daily view only"),
    type: LedgerViewKind = Query(default=LedgerViewKind.DAILY, description="daily or campaign"),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """
    Export a ledger view as CSV.

    Returns 404 when the (filtered) view is empty. The campaign view is
    lifetime-only; start and end only affect the filename there.
    """
    try:
        start_day = parse_report_date(start)
        end_day = parse_report_date(end)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid date: {e}"})

    exporter = CSVExporter()
    filename = exporter.filename(type, start, end)
    logger.info(f"Exporting {type.value} ledger data from {start or 'beginning'} to {end or 'now'}")

    try:
        rows = await LedgerViewAggregator(db).get_view(type, start=start_day, end=end_day)
    except SQLAlchemyError as e:
        logger.error(f"Query error: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    except Exception as e:
        logger.exception(f"Unexpected error reading ledger view: {e}")
        return JSONResponse(status_code=500, content={"error": f"Unexpected error: {e}"})

    csv_text = exporter.to_csv(rows)
    if csv_text is None:
        return PlainTextResponse("No data found for the specified criteria", status_code=404)

    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/views/{kind}")
async def get_ledger_view(
    kind: LedgerViewKind,
    start: Optional[str] = Query(default=None, description="First day (ISO-8601), daily view only"),
    end: Optional[str] = Query(default=None, description="Last day (ISO-8601), daily view only"),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Return a ledger view as JSON rows."""
    try:
        start_day = parse_report_date(start)
        end_day = parse_report_date(end)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid date: {e}"})

    try:
        rows = await LedgerViewAggregator(db).get_view(kind, start=start_day, end=end_day)
    except SQLAlchemyError as e:
        logger.error(f"Query error: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    except Exception as e:
        logger.exception(f"Unexpected error reading ledger view: {e}")
        return JSONResponse(status_code=500, content={"error": f"Unexpected error: {e}"})

    return {"kind": kind.value, "rows": [r.model_dump(mode="json") for r in rows]}
