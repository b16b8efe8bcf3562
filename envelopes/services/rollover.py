# envelopes/services/rollover.py
"""
Month-end rollover.

For every envelope of the closing month (except "To Be Assigned"):

- available > 0: carried forward into a new envelope with allocated = available
- available < 0 with credit-card purchases in that category: reset to a clean
  slate (the debt already sits on the card balance)
- available < 0 otherwise: cash overspending, deducted from the new month's
  "To Be Assigned" (never below zero)
- available == 0: nothing carried

Runs as one unit of work: either the whole rollover is visible or none of it.
Re-running for a month that already has envelopes is a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from models import (
    Account,
    Envelope,
    PeriodRollover,
    Transaction,
    CREDIT,
    TO_BE_ASSIGNED,
)
from envelopes.errors import ValidationError
from envelopes.services.invariant import ensure_to_be_assigned
from envelopes.services.money import ZERO, fmt, to_money
from envelopes.services.notifications import EventKind, Notifier
from envelopes.services.periods import Period
from envelopes.services.unit_of_work import user_unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class RolloverResult:
    from_period: Period
    to_period: Period
    already_performed: bool = False
    processed: int = 0
    carried: List[Envelope] = field(default_factory=list)
    carried_forward: Decimal = ZERO
    cash_overspending: Decimal = ZERO
    to_be_assigned_deduction: Decimal = ZERO
    credit_overspending_reset: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_period": str(self.from_period),
            "to_period": str(self.to_period),
            "already_performed": self.already_performed,
            "processed_envelopes": self.processed,
            "carried_forward_envelopes": len(self.carried),
            "total_carried_forward": str(self.carried_forward),
            "cash_overspending": str(self.cash_overspending),
            "to_be_assigned_deduction": str(self.to_be_assigned_deduction),
            "credit_overspending_reset": str(self.credit_overspending_reset),
        }


def _already_rolled_over(db: Session, user_id: str, to_period: Period) -> bool:
    existing_envelope = (
        db.query(Envelope.id)
        .filter(
            Envelope.user_id == user_id,
            Envelope.month == to_period.month,
            Envelope.year == to_period.year,
            Envelope.name != TO_BE_ASSIGNED,
        )
        .first()
    )
    if existing_envelope is not None:
        return True
    existing_record = (
        db.query(PeriodRollover.id)
        .filter(
            PeriodRollover.user_id == user_id,
            PeriodRollover.to_month == to_period.month,
            PeriodRollover.to_year == to_period.year,
        )
        .first()
    )
    return existing_record is not None


def _has_credit_spending(db: Session, user_id: str, envelope_name: str, period: Period) -> bool:
    hit = (
        db.query(Transaction.id)
        .join(Account, Account.id == Transaction.account_id)
        .filter(
            Transaction.user_id == user_id,
            Transaction.category == envelope_name,
            Transaction.date >= period.start,
            Transaction.date < period.end_exclusive,
            Account.type == CREDIT,
        )
        .first()
    )
    return hit is not None


def rollover(
    db: Session,
    user_id: str,
    from_period: Period,
    to_period: Period | None = None,
    notifier: Notifier | None = None,
) -> RolloverResult:
    to_period = to_period or from_period.next()
    if to_period <= from_period:
        raise ValidationError(
            f"Cannot roll {from_period} over into {to_period}",
            entity="rollover",
            detail={"from": str(from_period), "to": str(to_period)},
        )

    result = RolloverResult(from_period=from_period, to_period=to_period)

    with user_unit_of_work(db, user_id, notifier) as changes:
        if _already_rolled_over(db, user_id, to_period):
            logger.info("Rollover for user=%s into %s already completed; skipping", user_id, to_period)
            result.already_performed = True
            return result

        envelopes = (
            db.query(Envelope)
            .filter(
                Envelope.user_id == user_id,
                Envelope.month == from_period.month,
                Envelope.year == from_period.year,
                Envelope.name != TO_BE_ASSIGNED,
            )
            .order_by(Envelope.id)
            .all()
        )
        result.processed = len(envelopes)

        for envelope in envelopes:
            available = to_money(envelope.allocated) - to_money(envelope.spent)

            if available > 0:
                carried = Envelope(
                    user_id=user_id,
                    name=envelope.name,
                    category=envelope.category,
                    allocated=available,
                    spent=ZERO,
                    month=to_period.month,
                    year=to_period.year,
                )
                db.add(carried)
                result.carried.append(carried)
                result.carried_forward += available
            elif available < 0:
                overspent = -available
                if _has_credit_spending(db, user_id, envelope.name, from_period):
                    result.credit_overspending_reset += overspent
                    logger.info("Credit overspending reset: %s %s", envelope.name, fmt(overspent))
                else:
                    result.cash_overspending += overspent
                    logger.info("Cash overspending: %s %s", envelope.name, fmt(overspent))

        db.flush()

        # "To Be Assigned" before the deduction, then record the floored deduction
        totals = ensure_to_be_assigned(db, user_id, to_period)
        result.to_be_assigned_deduction = min(result.cash_overspending, max(ZERO, totals.to_be_assigned))

        db.add(
            PeriodRollover(
                user_id=user_id,
                from_month=from_period.month,
                from_year=from_period.year,
                to_month=to_period.month,
                to_year=to_period.year,
                envelopes_processed=result.processed,
                envelopes_carried=len(result.carried),
                carried_forward=result.carried_forward,
                cash_overspending=result.cash_overspending,
                to_be_assigned_deduction=result.to_be_assigned_deduction,
                credit_overspending_reset=result.credit_overspending_reset,
            )
        )
        db.flush()
        ensure_to_be_assigned(db, user_id, to_period)
        changes.mark(EventKind.ENVELOPES_CHANGED)

    logger.info("Rollover %s -> %s for user=%s: %s", from_period, to_period, user_id, result.to_dict())
    return result
