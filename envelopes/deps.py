# envelopes/deps.py
# Role: Shared request-level dependencies.
#       Provides the SQLAlchemy session, the caller's user id (supplied by the
#       session layer in front of this service) and the change notifier.

"""
Shared dependencies for the envelope ledger API.
"""

from typing import Generator, Optional

from fastapi import Header, HTTPException, Request
from sqlalchemy.orm import Session

from db import SessionLocal
from envelopes.errors import ValidationError
from envelopes.services.notifications import LoggingNotifier, Notifier
from envelopes.services.periods import Period

USER_HEADER = "X-User-Id"

# -------------------------------------------------------------------
# Database dependency
# -------------------------------------------------------------------

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a database session and ensures it is closed.

    Typical usage in routes:
        db: Session = Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# -------------------------------------------------------------------
# Caller identity
# -------------------------------------------------------------------

def get_current_user(x_user_id: Optional[str] = Header(None, alias=USER_HEADER)) -> str:
    """
    Authenticated user id forwarded by the session layer. Users are
    provisioned on first mutation (see services/unit_of_work.lock_user).
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail=f"Missing {USER_HEADER} header")
    if len(user_id) > 64:
        raise HTTPException(status_code=400, detail=f"{USER_HEADER} is too long")
    return user_id


# -------------------------------------------------------------------
# Notifier
# -------------------------------------------------------------------

def get_notifier(request: Request) -> Notifier:
    """Notifier installed on app.state at startup (tests swap in a RecordingNotifier)."""
    notifier = getattr(request.app.state, "notifier", None)
    return notifier if notifier is not None else LoggingNotifier()


# -------------------------------------------------------------------
# Query helpers
# -------------------------------------------------------------------

def parse_month(month: Optional[str]) -> Period:
    """'YYYY-MM' -> Period; missing means the current month."""
    try:
        return Period.parse(month)
    except ValueError as exc:
        raise ValidationError(f"Invalid month {month!r}, expected YYYY-MM", entity="period", detail={"month": month}) from exc
