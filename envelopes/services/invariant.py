# envelopes/services/invariant.py
"""
Invariant maintainer.

Keeps the singleton "To Be Assigned" envelope of a period equal to the balance
calculator's output. Runs inside the caller's unit of work (it flushes but
never commits), after every mutation that can move cash or allocations.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from config import settings
from models import Envelope, INCOME_GROUP, TO_BE_ASSIGNED
from envelopes.errors import InconsistencyError
from envelopes.services.balance import BalanceTotals, load_totals
from envelopes.services.money import ZERO, differs, fmt, to_money
from envelopes.services.periods import Period

logger = logging.getLogger(__name__)


def find_to_be_assigned(db: Session, user_id: str, period: Period) -> Envelope | None:
    return (
        db.query(Envelope)
        .filter(
            Envelope.user_id == user_id,
            Envelope.name == TO_BE_ASSIGNED,
            Envelope.month == period.month,
            Envelope.year == period.year,
        )
        .one_or_none()
    )


def _stored_allocated(db: Session, envelope_id: int):
    # Column query: reads the row, not the identity map
    return db.query(Envelope.allocated).filter(Envelope.id == envelope_id).scalar()


def ensure_to_be_assigned(db: Session, user_id: str, period: Period) -> BalanceTotals:
    """
    Find or create the period's "To Be Assigned" envelope and write the
    calculated value into it when they differ by more than a cent.

    Idempotent. Verifies the write by re-reading; a mismatch triggers a
    recompute-and-retry and, after `settings.reconcile_retries` attempts,
    an InconsistencyError carrying the full computed state.
    """
    attempts = max(1, settings.reconcile_retries)
    totals = None
    stored = None

    for attempt in range(1, attempts + 1):
        totals = load_totals(db, user_id, period)
        envelope = find_to_be_assigned(db, user_id, period)

        if envelope is None:
            logger.info(
                "Creating missing %r envelope for user=%s period=%s with %s",
                TO_BE_ASSIGNED, user_id, period, fmt(totals.to_be_assigned),
            )
            envelope = Envelope(
                user_id=user_id,
                name=TO_BE_ASSIGNED,
                category=INCOME_GROUP,
                allocated=totals.to_be_assigned,
                spent=ZERO,
                month=period.month,
                year=period.year,
            )
            db.add(envelope)
        elif differs(envelope.allocated, totals.to_be_assigned):
            logger.debug(
                "Updating %r for user=%s period=%s from %s to %s",
                TO_BE_ASSIGNED, user_id, period,
                fmt(envelope.allocated), fmt(totals.to_be_assigned),
            )
            envelope.allocated = totals.to_be_assigned

        db.flush()

        stored = _stored_allocated(db, envelope.id)
        if stored is not None and not differs(stored, totals.to_be_assigned):
            return totals

        logger.warning(
            "To Be Assigned mismatch for user=%s period=%s (attempt %d/%d): stored=%s computed=%s",
            user_id, period, attempt, attempts, stored, totals.to_be_assigned,
        )

    state = totals.to_dict() if totals is not None else {}
    state["stored_to_be_assigned"] = str(to_money(stored)) if stored is not None else None
    logger.error(
        "Could not reconcile To Be Assigned for user=%s period=%s; state=%s",
        user_id, period, state,
    )
    raise InconsistencyError(
        f"'{TO_BE_ASSIGNED}' for {period} could not be reconciled",
        entity="envelope",
        detail=state,
    )
