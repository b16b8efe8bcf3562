# envelopes/services/overspend.py
"""
Cover overspending: move a fixed amount from one envelope into a set of
overspent envelopes, split in proportion to each one's deficit.

Shares are computed in integer cents. Every target but the last receives
min(deficit, floor(deficit / total_deficit * amount)); the last one (in the
order the caller gave) absorbs the remainder, so the targets gain exactly
`amount` and the source loses exactly `amount`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Sequence

from sqlalchemy.orm import Session

from models import Envelope, Transfer, TO_BE_ASSIGNED
from envelopes.errors import ValidationError
from envelopes.services import automation
from envelopes.services.invariant import ensure_to_be_assigned
from envelopes.services.ledger import get_envelope, period_of
from envelopes.services.money import fmt, from_cents, to_cents, to_money
from envelopes.services.notifications import EventKind, Notifier
from envelopes.services.transfers import record_transfer
from envelopes.services.unit_of_work import user_unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class OverspendResult:
    source: Envelope
    amount: Decimal
    shares: Dict[int, Decimal] = field(default_factory=dict)
    transfers: List[Transfer] = field(default_factory=list)


def split_proportionally(amount_cents: int, deficits_cents: Sequence[int]) -> List[int]:
    """
    Divide `amount_cents` across deficits proportionally; the last entry takes
    the remainder. Pure integer arithmetic, so sum(result) == amount_cents.
    """
    total = sum(deficits_cents)
    if total <= 0:
        raise ValueError("total deficit must be positive")

    shares: List[int] = []
    for deficit in deficits_cents[:-1]:
        shares.append(min(deficit, deficit * amount_cents // total))
    shares.append(amount_cents - sum(shares))
    return shares


def cover_overspending(
    db: Session,
    user_id: str,
    source_envelope_id: int,
    amount: Any,
    target_envelope_ids: Sequence[int],
    notifier: Notifier | None = None,
) -> OverspendResult:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Transfer amount must be positive", entity="transfer", detail={"amount": str(amount)})

    target_ids = list(dict.fromkeys(target_envelope_ids))
    if not target_ids:
        raise ValidationError("At least one overspent envelope is required", entity="transfer")
    if source_envelope_id in target_ids:
        raise ValidationError("Source envelope cannot also be a target", entity="transfer")

    with user_unit_of_work(db, user_id, notifier) as changes:
        source = get_envelope(db, user_id, source_envelope_id)
        targets = [get_envelope(db, user_id, tid) for tid in target_ids]

        source_available = to_money(source.allocated) - to_money(source.spent)
        if source_available < amount:
            raise ValidationError(
                f"Insufficient funds in {source.name!r}: {fmt(source_available)} available, {fmt(amount)} requested",
                entity="envelope",
                detail={"id": source.id, "available": str(source_available), "amount": str(amount)},
            )

        deficits = []
        for target in targets:
            if period_of(target) != period_of(source):
                raise ValidationError(
                    f"Envelope {target.name!r} belongs to a different period",
                    entity="envelope",
                    detail={"id": target.id},
                )
            deficit = to_money(target.spent) - to_money(target.allocated)
            if deficit <= 0:
                raise ValidationError(
                    f"Envelope {target.name!r} is not overspent",
                    entity="envelope",
                    detail={"id": target.id, "available": str(-deficit)},
                )
            deficits.append(to_cents(deficit))

        if sum(deficits) == 0:
            raise ValidationError("No overspending to cover", entity="transfer")

        shares = split_proportionally(to_cents(amount), deficits)
        result = OverspendResult(source=source, amount=amount)

        source_before = to_money(source.allocated)
        if source.name != TO_BE_ASSIGNED:
            source.allocated = source_before - amount
            automation.enqueue_coverage(db, user_id, source, source_before, -amount)
        for target, share_cents in zip(targets, shares):
            share = from_cents(share_cents)
            result.shares[target.id] = share
            if share <= 0:
                continue
            target_before = to_money(target.allocated)
            target.allocated = target_before + share
            automation.enqueue_coverage(db, user_id, target, target_before, share)
            result.transfers.append(
                record_transfer(
                    db, user_id, source, target, share,
                    reason=f"Covered overspending: moved {fmt(share)} from {source.name} to {target.name}",
                    automated=False, kind="overspend",
                )
            )

        db.flush()
        ensure_to_be_assigned(db, user_id, period_of(source))
        changes.mark(EventKind.ENVELOPES_CHANGED)

    automation.process_pending_tasks(db, user_id, notifier)
    logger.info(
        "Covered overspending for user=%s: %s from %r across %d envelopes",
        user_id, fmt(amount), source.name, len(targets),
    )
    return result
