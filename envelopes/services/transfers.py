# envelopes/services/transfers.py
#
# Transfer audit trail
# Transfers are append-only: created here, never updated or deleted.

from __future__ import annotations

from decimal import Decimal
from typing import List

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from models import Envelope, Transfer
from envelopes.services.periods import Period

KINDS = ("coverage", "coverage_reversal", "overspend", "manual")


def record_transfer(
    db: Session,
    user_id: str,
    source: Envelope,
    target: Envelope,
    amount: Decimal,
    reason: str,
    automated: bool,
    kind: str,
    transaction_id: int | None = None,
    reversal_of_id: int | None = None,
) -> Transfer:
    if kind not in KINDS:
        raise ValueError(f"unknown transfer kind {kind!r}")
    transfer = Transfer(
        user_id=user_id,
        from_envelope_id=source.id,
        to_envelope_id=target.id,
        amount=amount,
        reason=reason,
        automated=automated,
        kind=kind,
        transaction_id=transaction_id,
        reversal_of_id=reversal_of_id,
    )
    db.add(transfer)
    db.flush()
    return transfer


def list_transfers(db: Session, user_id: str, period: Period | None = None) -> List[Transfer]:
    query = db.query(Transfer).filter(Transfer.user_id == user_id)
    if period is not None:
        envelope_ids = select(Envelope.id).where(
            Envelope.user_id == user_id,
            Envelope.month == period.month,
            Envelope.year == period.year,
        )
        query = query.filter(
            or_(Transfer.from_envelope_id.in_(envelope_ids), Transfer.to_envelope_id.in_(envelope_ids))
        )
    return query.order_by(Transfer.id).all()
