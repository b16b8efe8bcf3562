# envelopes/main.py
"""
Main FastAPI app for the envelope budgeting ledger.

Features:
- Accounts (manual and aggregator-connected) and card payments
- Monthly envelopes, allocation, moving money, covering overspending
- Transactions: manual entry, edits, approval, aggregator / statement import
- Month rollover
- Dashboard snapshot with the "To Be Assigned" pool
- Credit card coverage automation with a persisted retry queue
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from db import Base, engine
from envelopes.errors import LedgerError
from envelopes.services.notifications import LoggingNotifier
from envelopes import (
    routes_accounts,
    routes_dashboard,
    routes_envelopes,
    routes_goals,
    routes_root,
    routes_transactions,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Database & app setup
# -------------------------------------------------------------------

# Create database tables (only if they don't exist yet)
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Envelope Ledger")

# Change notifications go to the log unless a real-time channel is installed
app.state.notifier = LoggingNotifier()


# -------------------------------------------------------------------
# Error mapping
# -------------------------------------------------------------------

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.message, exc.detail)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# -------------------------------------------------------------------
# Routers
# -------------------------------------------------------------------

app.include_router(routes_root.router)
app.include_router(routes_dashboard.router)
app.include_router(routes_accounts.router)
app.include_router(routes_envelopes.router)
app.include_router(routes_transactions.router)
app.include_router(routes_goals.router)
