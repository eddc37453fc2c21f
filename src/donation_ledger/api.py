import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .auth import limiter
from .database import init_db, close_db, DatabaseNotInitializedError
from .reconciliation.api import router as reconciliation_router
from .reporting.api import router as reporting_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


async def _database_unavailable_handler(request: Request, exc: DatabaseNotInitializedError) -> JSONResponse:
    logger.error(f"Ledger database unavailable for {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": str(exc)})


app = FastAPI(title="Donation Ledger API", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(DatabaseNotInitializedError, _database_unavailable_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "content-type"],
)

app.include_router(reconciliation_router)
app.include_router(reporting_router)


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "donation-ledger"}
