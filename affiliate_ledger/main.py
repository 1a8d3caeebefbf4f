"""FastAPI entry point for the affiliate ledger service."""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError

from affiliate_ledger import __version__
from affiliate_ledger.database import init_db
from affiliate_ledger.errors import LedgerError, ledger_error_handler, request_validation_handler
from affiliate_ledger.jobs.scheduler import shutdown_scheduler, start_scheduler
from affiliate_ledger.routers import affiliates, conversions, merchants, referrals, tracking

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def _scheduler_enabled() -> bool:
    return os.getenv("ENABLE_SCHEDULER", "false").lower() in {"1", "true", "yes"}


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if _scheduler_enabled():
        start_scheduler()
    try:
        yield
    finally:
        shutdown_scheduler()


app = FastAPI(title="Affiliate Ledger", version=__version__, lifespan=lifespan)

app.include_router(tracking.router)
app.include_router(conversions.router)
app.include_router(merchants.router)
app.include_router(affiliates.router)
app.include_router(referrals.router)

app.add_exception_handler(LedgerError, ledger_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)


@app.get("/health")
def health() -> Response:
    """Simple health endpoint for load balancers and platform checks."""
    return Response(content='{"status":"ok"}', media_type="application/json")
