# routes_root.py
"""
Root / basic endpoints (health).
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from config import settings
from .deps import get_db

router = APIRouter()


@router.get("/health")
def health(db: Session = Depends(get_db)):
    """
    Liveness plus a trivial database round trip.
    """
    db.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.app_env}
