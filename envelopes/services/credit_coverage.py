# envelopes/services/credit_coverage.py
"""
Credit coverage automation.

Rule: money assigned to a spending envelope first pays for that envelope's own
uncovered credit-card purchases. When an envelope's allocation grows, the
engine moves up to the new money into the "<Card> Payment" envelope of each
card with uncovered purchases, oldest purchase first. When it shrinks, the
engine walks its earlier coverage transfers, oldest first, and takes the money
back out of the payment envelopes (never below zero), releasing it to
"To Be Assigned".

Coverage is tracked per transaction in cents, not per transaction count: a
purchase may be partially covered, and the net coverage of any purchase never
exceeds its absolute amount.

Runs inside the caller's unit of work; see services/automation.py.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import (
    Account,
    Envelope,
    Transaction,
    Transfer,
    CREDIT,
    CREDIT_CARD_PAYMENTS_GROUP,
)
from envelopes.services.invariant import ensure_to_be_assigned, find_to_be_assigned
from envelopes.services.money import ZERO, fmt, to_money
from envelopes.services.periods import Period
from envelopes.services.transfers import record_transfer

logger = logging.getLogger(__name__)


@dataclass
class CoverageResult:
    envelope_id: int
    transferred: Decimal = ZERO
    released: Decimal = ZERO
    transfers: List[Transfer] = field(default_factory=list)
    skipped: bool = False
    message: str = ""


def payment_envelope_name(card_name: str) -> str:
    return f"{card_name} Payment"


# -------------------------------------------------------------------
# Coverage bookkeeping
# -------------------------------------------------------------------

def _reversed_amounts(db: Session, transfer_ids: List[int]) -> Dict[int, Decimal]:
    if not transfer_ids:
        return {}
    rows = (
        db.query(Transfer.reversal_of_id, func.sum(Transfer.amount))
        .filter(Transfer.kind == "coverage_reversal", Transfer.reversal_of_id.in_(transfer_ids))
        .group_by(Transfer.reversal_of_id)
        .all()
    )
    return {rid: to_money(total) for rid, total in rows}


def net_coverage_by_transaction(db: Session, transaction_ids: List[int]) -> Dict[int, Decimal]:
    """Coverage transfers minus their reversals, per credit transaction, across all envelopes."""
    if not transaction_ids:
        return {}
    coverage = (
        db.query(Transfer)
        .filter(Transfer.kind == "coverage", Transfer.transaction_id.in_(transaction_ids))
        .all()
    )
    reversed_ = _reversed_amounts(db, [t.id for t in coverage])
    net: Dict[int, Decimal] = {}
    for t in coverage:
        net[t.transaction_id] = net.get(t.transaction_id, ZERO) + to_money(t.amount) - reversed_.get(t.id, ZERO)
    return net


def uncovered_credit_purchases(
    db: Session,
    user_id: str,
    envelope: Envelope,
) -> List[Tuple[Transaction, Decimal]]:
    """
    Credit-card outflows in the envelope's month categorized under its name,
    with the amount still uncovered, oldest first.
    """
    period = Period(envelope.year, envelope.month)
    purchases = (
        db.query(Transaction)
        .join(Account, Account.id == Transaction.account_id)
        .filter(
            Transaction.user_id == user_id,
            Transaction.category == envelope.name,
            Transaction.amount < 0,
            Transaction.date >= period.start,
            Transaction.date < period.end_exclusive,
            Account.type == CREDIT,
        )
        .order_by(Transaction.date.asc(), Transaction.id.asc())
        .all()
    )
    covered = net_coverage_by_transaction(db, [t.id for t in purchases])

    result = []
    for txn in purchases:
        remaining = abs(to_money(txn.amount)) - covered.get(txn.id, ZERO)
        if remaining > 0:
            result.append((txn, remaining))
    return result


def _payment_envelope(db: Session, user_id: str, card: Account, period: Period) -> Envelope:
    name = payment_envelope_name(card.name)
    envelope = (
        db.query(Envelope)
        .filter(
            Envelope.user_id == user_id,
            Envelope.name == name,
            Envelope.month == period.month,
            Envelope.year == period.year,
        )
        .one_or_none()
    )
    if envelope is None:
        envelope = Envelope(
            user_id=user_id,
            name=name,
            category=CREDIT_CARD_PAYMENTS_GROUP,
            allocated=ZERO,
            spent=ZERO,
            month=period.month,
            year=period.year,
        )
        db.add(envelope)
        db.flush()
        logger.info("Created payment envelope %r for user=%s period=%s", name, user_id, period)
    return envelope


# -------------------------------------------------------------------
# Increase / decrease paths
# -------------------------------------------------------------------

def cover_assignment(
    db: Session,
    user_id: str,
    envelope: Envelope,
    allocated_before: Decimal,
    assigned: Decimal,
) -> CoverageResult:
    result = CoverageResult(envelope_id=envelope.id)
    period = Period(envelope.year, envelope.month)

    uncovered = uncovered_credit_purchases(db, user_id, envelope)
    exposure = sum((remaining for _, remaining in uncovered), ZERO)
    overspent = max(ZERO, exposure - to_money(allocated_before))
    coverage = min(assigned, overspent, max(ZERO, to_money(envelope.allocated)))

    if coverage <= 0:
        result.message = f"No uncovered credit card expenses to cover in {envelope.name}"
        return result

    left = coverage
    for txn, remaining in uncovered:
        if left <= 0:
            break
        card = db.get(Account, txn.account_id)
        if card is None:
            logger.warning("Skipping coverage of transaction %s: account %s missing", txn.id, txn.account_id)
            continue

        portion = min(left, remaining)
        payment = _payment_envelope(db, user_id, card, period)

        envelope.allocated = to_money(envelope.allocated) - portion
        payment.allocated = to_money(payment.allocated) + portion
        result.transfers.append(
            record_transfer(
                db, user_id, envelope, payment, portion,
                reason=f"Auto-transfer to cover {card.name} expense in {envelope.name}",
                automated=True, kind="coverage", transaction_id=txn.id,
            )
        )
        result.transferred += portion
        left -= portion

    db.flush()
    result.message = (
        f"Transferred {fmt(result.transferred)} from {envelope.name} to credit card payments"
        if result.transferred > 0
        else f"No transfers needed for {envelope.name}"
    )
    return result


def release_unassignment(
    db: Session,
    user_id: str,
    envelope: Envelope,
    unassigned: Decimal,
) -> CoverageResult:
    result = CoverageResult(envelope_id=envelope.id)
    period = Period(envelope.year, envelope.month)

    coverage = (
        db.query(Transfer)
        .filter(
            Transfer.user_id == user_id,
            Transfer.kind == "coverage",
            Transfer.from_envelope_id == envelope.id,
        )
        .order_by(Transfer.created_at.asc(), Transfer.id.asc())
        .all()
    )
    if not coverage:
        result.message = f"No coverage transfers to reverse for {envelope.name}"
        return result

    reversed_ = _reversed_amounts(db, [t.id for t in coverage])
    to_be_assigned = find_to_be_assigned(db, user_id, period)
    if to_be_assigned is None:
        ensure_to_be_assigned(db, user_id, period)
        to_be_assigned = find_to_be_assigned(db, user_id, period)

    left = unassigned
    for original in coverage:
        if left <= 0:
            break
        payment = db.get(Envelope, original.to_envelope_id)
        if payment is None:
            logger.warning("Payment envelope %s for transfer %s is gone", original.to_envelope_id, original.id)
            continue

        still_covered = to_money(original.amount) - reversed_.get(original.id, ZERO)
        portion = min(left, still_covered, max(ZERO, to_money(payment.allocated)))
        if portion <= 0:
            continue

        payment.allocated = to_money(payment.allocated) - portion
        result.transfers.append(
            record_transfer(
                db, user_id, payment, to_be_assigned, portion,
                reason=f"Released coverage from {payment.name} after unassigning {envelope.name}",
                automated=True, kind="coverage_reversal", reversal_of_id=original.id,
            )
        )
        result.released += portion
        left -= portion

    db.flush()
    result.message = f"Released {fmt(result.released)} of credit card coverage for {envelope.name}"
    return result


def apply_coverage(
    db: Session,
    user_id: str,
    envelope_id: int,
    allocated_before: Decimal,
    delta: Decimal,
) -> CoverageResult:
    envelope = (
        db.query(Envelope)
        .filter(Envelope.id == envelope_id, Envelope.user_id == user_id)
        .one_or_none()
    )
    if envelope is None:
        logger.warning("Coverage skipped: envelope %s not found for user=%s", envelope_id, user_id)
        return CoverageResult(envelope_id=envelope_id, skipped=True, message="envelope not found")

    delta = to_money(delta)
    if delta > 0:
        result = cover_assignment(db, user_id, envelope, to_money(allocated_before), delta)
    elif delta < 0:
        result = release_unassignment(db, user_id, envelope, -delta)
    else:
        return CoverageResult(envelope_id=envelope_id, message="no allocation change")

    if result.transfers:
        ensure_to_be_assigned(db, user_id, Period(envelope.year, envelope.month))
    logger.info("Coverage for user=%s envelope=%s: %s", user_id, envelope_id, result.message)
    return result
