"""Bearer API-key check and rate limiting for the ledger endpoints."""

import os
import secrets
import logging

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

security = HTTPBearer()


def rate_limit_enabled() -> bool:
    """RATE_LIMIT_ENABLED=false turns the limiter off (local runs, tests)."""
    return os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "false"


def sync_rate_limit() -> str:
    """Per-client limit on the reconciliation trigger, e.g. "10/minute"."""
    return os.getenv("SYNC_RATE_LIMIT", "10/minute")


limiter = Limiter(key_func=get_remote_address, enabled=rate_limit_enabled())


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Check the bearer token against API_KEY.

    Raises:
        HTTPException: 500 when API_KEY is unset, 401 when the token does not match.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY is not set; refusing ledger requests")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(credentials.credentials, expected_key):
        logger.warning("Rejected ledger request with an invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
