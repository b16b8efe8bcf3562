# db.py
# Role: Database bootstrap for the envelope ledger.
#       Defines the SQLAlchemy engine, session factory, and declarative Base.
#       The connection URL comes from config.settings (DATABASE_URL).

"""
Database setup for the envelope ledger.

- Defaults to a SQLite database at: <project_root>/database/ledger.db
- Any SQLAlchemy URL can be supplied through DATABASE_URL (PostgreSQL in production).
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from config import settings


def _connect_args() -> dict:
    # SQLite needs check_same_thread=False for FastAPI (threaded request handling)
    if settings.database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    connect_args=_connect_args(),
)

# Standard session factory used via dependency injection (see envelopes/deps.py:get_db)
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Declarative base class for ORM models
Base = declarative_base()
