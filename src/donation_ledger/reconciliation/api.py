"""API endpoint for triggering settlement reconciliation."""

import json
import logging
from typing import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth import verify_api_key, limiter, sync_rate_limit
from ..database import get_session_factory
from ..processors import ProcessorClient, ProcessorConfigurationError, get_processor_factory
from .models import SyncRequest
from .worker import ReconciliationWorker, ReconciliationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ledger", tags=["reconciliation"])


async def _read_json_object(request: Request) -> dict:
    """Lenient body parse: anything but a JSON object becomes {}."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


@router.post("/sync")
@limiter.limit(sync_rate_limit)
async def sync_ledger(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    processor_factory: Callable[[], ProcessorClient] = Depends(get_processor_factory),
    api_key: str = Depends(verify_api_key),
):
    """
    Backfill processor charge and fee data onto unsettled donations.

    Body: {"since": ISO-8601 timestamp, "limit": int <= 500}, both optional.
    Returns {"updated": int, "processed": int}.
    """
    payload = await _read_json_object(request)
    try:
        body = SyncRequest.model_validate(payload)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid sync request: {e.errors()[0]['msg']}"})

    try:
        processor = processor_factory()
        worker = ReconciliationWorker(session_factory, processor)
        result = await worker.reconcile(since=body.resolved_since(), limit=body.limit)
    except (ProcessorConfigurationError, ReconciliationError) as e:
        logger.error(f"sync-ledger error: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    except Exception as e:
        logger.exception(f"Unexpected sync-ledger error: {e}")
        return JSONResponse(status_code=500, content={"error": f"Unexpected error: {e}"})

    return result.to_response_dict()
