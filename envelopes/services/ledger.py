# envelopes/services/ledger.py
"""
Ledger store operations for envelopes and transactions.

Public operations take `(db, user_id, ...)`, run inside one per-user unit of
work and keep every affected period's "To Be Assigned" in step before commit.
Underscore helpers do the row-level work without committing, so other
services (import, rollover, card payments) can compose them inside their own
unit of work.

Transaction effects are symmetric: creating a transaction adds its amount to
the account balance and, for outflows linked to an envelope, its absolute
value to the envelope's `spent`; deleting or editing it first reverses
exactly those effects.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from models import (
    Account,
    AutomationTask,
    Envelope,
    Goal,
    Transaction,
    TO_BE_ASSIGNED,
)
from envelopes.errors import ConflictError, NotFoundError, ValidationError
from envelopes.services import automation
from envelopes.services.defaults import all_default_envelopes, category_group_for
from envelopes.services.invariant import ensure_to_be_assigned
from envelopes.services.money import ZERO, fmt, to_money
from envelopes.services.notifications import EventKind, Notifier
from envelopes.services.periods import Period
from envelopes.services.transfers import record_transfer
from envelopes.services.unit_of_work import user_unit_of_work

logger = logging.getLogger(__name__)

FLAG_COLORS = {"red", "orange", "yellow", "green", "blue", "purple"}

TRANSACTION_FIELDS = {
    "amount",
    "description",
    "category",
    "date",
    "account_id",
    "cleared",
    "approved",
    "flag_color",
}


# -------------------------------------------------------------------
# Lookups
# -------------------------------------------------------------------

def get_account(db: Session, user_id: str, account_id: int) -> Account:
    account = (
        db.query(Account)
        .filter(Account.id == account_id, Account.user_id == user_id)
        .one_or_none()
    )
    if account is None:
        raise NotFoundError(f"Account {account_id} not found", entity="account", detail={"id": account_id})
    return account


def get_envelope(db: Session, user_id: str, envelope_id: int) -> Envelope:
    envelope = (
        db.query(Envelope)
        .filter(Envelope.id == envelope_id, Envelope.user_id == user_id)
        .one_or_none()
    )
    if envelope is None:
        raise NotFoundError(f"Envelope {envelope_id} not found", entity="envelope", detail={"id": envelope_id})
    return envelope


def get_transaction(db: Session, user_id: str, transaction_id: int) -> Transaction:
    txn = (
        db.query(Transaction)
        .filter(Transaction.id == transaction_id, Transaction.user_id == user_id)
        .one_or_none()
    )
    if txn is None:
        raise NotFoundError(
            f"Transaction {transaction_id} not found",
            entity="transaction",
            detail={"id": transaction_id},
        )
    return txn


def find_envelope(db: Session, user_id: str, name: str, period: Period) -> Envelope | None:
    return (
        db.query(Envelope)
        .filter(
            Envelope.user_id == user_id,
            Envelope.name == name,
            Envelope.month == period.month,
            Envelope.year == period.year,
        )
        .one_or_none()
    )


def period_of(envelope: Envelope) -> Period:
    return Period(envelope.year, envelope.month)


def list_envelopes(db: Session, user_id: str, period: Period) -> List[Envelope]:
    return (
        db.query(Envelope)
        .filter(
            Envelope.user_id == user_id,
            Envelope.month == period.month,
            Envelope.year == period.year,
        )
        .order_by(Envelope.category, Envelope.name)
        .all()
    )


def list_transactions(
    db: Session,
    user_id: str,
    period: Period | None = None,
    account_id: int | None = None,
    limit: int | None = None,
) -> List[Transaction]:
    query = db.query(Transaction).filter(Transaction.user_id == user_id)
    if period is not None:
        query = query.filter(Transaction.date >= period.start, Transaction.date < period.end_exclusive)
    if account_id is not None:
        get_account(db, user_id, account_id)
        query = query.filter(Transaction.account_id == account_id)
    query = query.order_by(Transaction.date.desc(), Transaction.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


# -------------------------------------------------------------------
# Row-level helpers (no commit)
# -------------------------------------------------------------------

def _maintain(db: Session, user_id: str, periods: Iterable[Period]) -> None:
    for period in sorted(set(periods) | {Period.current()}):
        ensure_to_be_assigned(db, user_id, period)


def _clean_name(value: Any, field: str) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError(f"{field} must not be empty", entity=field)
    if len(name) > 255:
        raise ValidationError(f"{field} is too long", entity=field)
    return name


def _get_or_create_envelope(
    db: Session,
    user_id: str,
    name: str,
    period: Period,
    category: str | None = None,
) -> Envelope:
    envelope = find_envelope(db, user_id, name, period)
    if envelope is None:
        envelope = Envelope(
            user_id=user_id,
            name=name,
            category=category or category_group_for(name),
            allocated=ZERO,
            spent=ZERO,
            month=period.month,
            year=period.year,
        )
        db.add(envelope)
        db.flush()
        logger.info("Auto-created envelope %r (%s) for user=%s period=%s", name, envelope.category, user_id, period)
    return envelope


def _resolve_envelope(
    db: Session,
    user_id: str,
    category: str,
    txn_date: date,
    amount: Decimal,
) -> Envelope | None:
    """
    Envelope a transaction links to: the one named like its category in the
    transaction's month. Outflows create it lazily; inflows only link to an
    existing one. Nothing ever links to "To Be Assigned".
    """
    if category == TO_BE_ASSIGNED:
        return None
    period = Period.of(txn_date)
    if amount < 0:
        return _get_or_create_envelope(db, user_id, category, period)
    return find_envelope(db, user_id, category, period)


def _apply_effects(db: Session, txn: Transaction, sign: int) -> None:
    """Add (sign=1) or reverse (sign=-1) a transaction's balance and spent effects."""
    amount = to_money(txn.amount)
    account = db.get(Account, txn.account_id)
    if account is not None:
        account.balance = to_money(account.balance) + sign * amount
        if account.available_balance is not None:
            account.available_balance = to_money(account.available_balance) + sign * amount

    if txn.envelope_id is not None and amount < 0:
        envelope = db.get(Envelope, txn.envelope_id)
        if envelope is not None:
            envelope.spent = to_money(envelope.spent) + sign * abs(amount)


def _insert_transaction(
    db: Session,
    user_id: str,
    account: Account,
    amount: Any,
    description: str,
    category: str,
    txn_date: date,
    cleared: bool,
    approved: bool,
    is_manual: bool,
    flag_color: str | None = None,
    external_id: str | None = None,
    envelope: Envelope | None = None,
) -> Transaction:
    amount = to_money(amount)
    if amount == 0:
        raise ValidationError("Transaction amount must not be zero", entity="transaction")
    if flag_color is not None and flag_color not in FLAG_COLORS:
        raise ValidationError(f"Unknown flag color {flag_color!r}", entity="transaction")
    if external_id is not None:
        existing = (
            db.query(Transaction.id)
            .filter(Transaction.user_id == user_id, Transaction.external_id == external_id)
            .first()
        )
        if existing is not None:
            raise ConflictError(
                f"Transaction with external id {external_id!r} already exists",
                entity="transaction",
                detail={"external_id": external_id},
            )

    if envelope is None:
        envelope = _resolve_envelope(db, user_id, category, txn_date, amount)

    txn = Transaction(
        user_id=user_id,
        account_id=account.id,
        envelope_id=envelope.id if envelope is not None else None,
        external_id=external_id,
        amount=amount,
        description=description or "",
        category=category,
        date=txn_date,
        cleared=cleared,
        approved=approved,
        is_manual=is_manual,
        flag_color=flag_color,
    )
    db.add(txn)
    db.flush()
    _apply_effects(db, txn, +1)
    db.flush()
    return txn


# -------------------------------------------------------------------
# Transactions
# -------------------------------------------------------------------

def create_transaction(
    db: Session,
    user_id: str,
    account_id: int,
    amount: Any,
    description: str,
    category: str,
    txn_date: date | None = None,
    cleared: bool | None = None,
    approved: bool | None = None,
    is_manual: bool = True,
    flag_color: str | None = None,
    external_id: str | None = None,
    notifier: Notifier | None = None,
) -> Transaction:
    """
    Manual entry of a transaction on one of the user's accounts.

    Manual entries on manual accounts start cleared; on connected accounts
    they stay uncleared until the aggregator delivers the matching row.
    """
    category = _clean_name(category, "category")
    txn_date = txn_date or date.today()

    with user_unit_of_work(db, user_id, notifier) as changes:
        account = get_account(db, user_id, account_id)
        if cleared is None:
            cleared = account.external_id is None
        if approved is None:
            approved = is_manual
        txn = _insert_transaction(
            db, user_id, account, amount, description, category, txn_date,
            cleared=cleared, approved=approved, is_manual=is_manual,
            flag_color=flag_color, external_id=external_id,
        )
        _maintain(db, user_id, [Period.of(txn_date)])
        changes.mark(EventKind.TRANSACTIONS_CHANGED, EventKind.ACCOUNTS_CHANGED, EventKind.ENVELOPES_CHANGED)

    logger.info("Created transaction %s for user=%s: %s %r", txn.id, user_id, fmt(txn.amount), txn.category)
    return txn


def _update_transaction_row(db: Session, user_id: str, txn: Transaction, changes: Dict[str, Any]) -> List[Period]:
    """Apply field changes with symmetric effect reversal. Returns touched periods."""
    unknown = set(changes) - TRANSACTION_FIELDS
    if unknown:
        raise ValidationError(f"Unknown transaction fields: {sorted(unknown)}", entity="transaction")

    touched = [Period.of(txn.date)]
    _apply_effects(db, txn, -1)

    if "account_id" in changes and changes["account_id"] != txn.account_id:
        txn.account_id = get_account(db, user_id, changes["account_id"]).id
    if "amount" in changes:
        amount = to_money(changes["amount"])
        if amount == 0:
            raise ValidationError("Transaction amount must not be zero", entity="transaction")
        txn.amount = amount
    if "category" in changes:
        txn.category = _clean_name(changes["category"], "category")
    if "date" in changes and changes["date"] is not None:
        txn.date = changes["date"]
    if "description" in changes:
        txn.description = changes["description"] or ""
    if "cleared" in changes:
        txn.cleared = bool(changes["cleared"])
    if "approved" in changes:
        txn.approved = bool(changes["approved"])
    if "flag_color" in changes:
        if changes["flag_color"] is not None and changes["flag_color"] not in FLAG_COLORS:
            raise ValidationError(f"Unknown flag color {changes['flag_color']!r}", entity="transaction")
        txn.flag_color = changes["flag_color"]

    relink = {"category", "date", "amount"} & set(changes)
    if relink:
        envelope = _resolve_envelope(db, user_id, txn.category, txn.date, to_money(txn.amount))
        txn.envelope_id = envelope.id if envelope is not None else None

    db.flush()
    _apply_effects(db, txn, +1)
    db.flush()
    touched.append(Period.of(txn.date))
    return touched


def update_transaction(
    db: Session,
    user_id: str,
    transaction_id: int,
    changes: Dict[str, Any],
    notifier: Notifier | None = None,
) -> Transaction:
    """
    Edit, move (account_id), recategorize or re-date a transaction.
    The old account/envelope lose exactly what the new ones gain.
    """
    with user_unit_of_work(db, user_id, notifier) as change_set:
        txn = get_transaction(db, user_id, transaction_id)
        touched = _update_transaction_row(db, user_id, txn, changes)
        _maintain(db, user_id, touched)
        change_set.mark(EventKind.TRANSACTIONS_CHANGED, EventKind.ACCOUNTS_CHANGED, EventKind.ENVELOPES_CHANGED)
    return txn


def delete_transaction(
    db: Session,
    user_id: str,
    transaction_id: int,
    notifier: Notifier | None = None,
) -> None:
    with user_unit_of_work(db, user_id, notifier) as changes:
        txn = get_transaction(db, user_id, transaction_id)
        period = Period.of(txn.date)
        _apply_effects(db, txn, -1)
        db.delete(txn)
        db.flush()
        _maintain(db, user_id, [period])
        changes.mark(EventKind.TRANSACTIONS_CHANGED, EventKind.ACCOUNTS_CHANGED, EventKind.ENVELOPES_CHANGED)
    logger.info("Deleted transaction %s for user=%s", transaction_id, user_id)


def approve_transactions(
    db: Session,
    user_id: str,
    transaction_ids: List[int],
    approved: bool = True,
    notifier: Notifier | None = None,
) -> List[Transaction]:
    ids = list(dict.fromkeys(transaction_ids))
    if not ids:
        raise ValidationError("No transaction ids given", entity="transaction")

    with user_unit_of_work(db, user_id, notifier) as changes:
        txns = (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id, Transaction.id.in_(ids))
            .all()
        )
        if len(txns) != len(ids):
            missing = sorted(set(ids) - {t.id for t in txns})
            raise NotFoundError("Some transactions not found", entity="transaction", detail={"ids": missing})
        for txn in txns:
            txn.approved = approved
        changes.mark(EventKind.TRANSACTIONS_CHANGED)
    return txns


# -------------------------------------------------------------------
# Envelopes
# -------------------------------------------------------------------

def _validate_envelope_name(name: str, category: str) -> None:
    if name == TO_BE_ASSIGNED:
        raise ValidationError(f"'{TO_BE_ASSIGNED}' is maintained by the ledger", entity="envelope")
    if "income" in name.lower() or "income" in category.lower():
        raise ValidationError(
            "Income is not an envelope; it shows up in account balances and 'To Be Assigned'",
            entity="envelope",
        )


def create_envelope(
    db: Session,
    user_id: str,
    name: str,
    category: str | None,
    period: Period,
    allocated: Any = ZERO,
    notifier: Notifier | None = None,
) -> Envelope:
    name = _clean_name(name, "name")
    category = _clean_name(category, "category") if category else category_group_for(name)
    _validate_envelope_name(name, category)
    allocated = to_money(allocated)
    if allocated < 0:
        raise ValidationError("Allocated amount must not be negative", entity="envelope")

    with user_unit_of_work(db, user_id, notifier) as changes:
        if find_envelope(db, user_id, name, period) is not None:
            raise ConflictError(
                f"Envelope {name!r} already exists for {period}",
                entity="envelope",
                detail={"name": name, "period": str(period)},
            )
        envelope = Envelope(
            user_id=user_id,
            name=name,
            category=category,
            allocated=allocated,
            spent=ZERO,
            month=period.month,
            year=period.year,
        )
        db.add(envelope)
        db.flush()
        if allocated > 0:
            automation.enqueue_coverage(db, user_id, envelope, ZERO, allocated)
        _maintain(db, user_id, [period])
        changes.mark(EventKind.ENVELOPES_CHANGED)

    automation.process_pending_tasks(db, user_id, notifier)
    db.refresh(envelope)
    return envelope


def allocate(
    db: Session,
    user_id: str,
    envelope_id: int,
    new_amount: Any,
    notifier: Notifier | None = None,
) -> Envelope:
    """
    Set an envelope's allocated amount.

    Phase 1 (atomic): write the allocation, queue a coverage task for the
    change, reconcile "To Be Assigned", commit. Phase 2 (best effort): run the
    queued credit coverage; its failure leaves the allocation in place.
    """
    new_amount = to_money(new_amount)
    if new_amount < 0:
        raise ValidationError("Allocated amount must not be negative", entity="envelope")

    with user_unit_of_work(db, user_id, notifier) as changes:
        envelope = get_envelope(db, user_id, envelope_id)
        if envelope.name == TO_BE_ASSIGNED:
            raise ValidationError(f"'{TO_BE_ASSIGNED}' cannot be allocated directly", entity="envelope")

        before = to_money(envelope.allocated)
        delta = new_amount - before
        envelope.allocated = new_amount
        db.flush()

        if delta != 0:
            automation.enqueue_coverage(db, user_id, envelope, before, delta)
        _maintain(db, user_id, [period_of(envelope)])
        changes.mark(EventKind.ENVELOPES_CHANGED)

    logger.info(
        "Allocated %s to %r (was %s) for user=%s",
        fmt(new_amount), envelope.name, fmt(before), user_id,
    )
    automation.process_pending_tasks(db, user_id, notifier)
    db.refresh(envelope)
    return envelope


def delete_envelope(
    db: Session,
    user_id: str,
    envelope_id: int,
    notifier: Notifier | None = None,
) -> None:
    """
    Delete an envelope. Linked transactions are unlinked first (their spent
    leaves with the envelope); transfer audit rows keep the envelope id.
    """
    with user_unit_of_work(db, user_id, notifier) as changes:
        envelope = get_envelope(db, user_id, envelope_id)
        if envelope.name == TO_BE_ASSIGNED:
            raise ValidationError(f"'{TO_BE_ASSIGNED}' cannot be deleted", entity="envelope")

        period = period_of(envelope)
        db.query(Transaction).filter(Transaction.envelope_id == envelope.id).update(
            {Transaction.envelope_id: None}, synchronize_session=False
        )
        db.query(Goal).filter(Goal.envelope_id == envelope.id).update(
            {Goal.envelope_id: None}, synchronize_session=False
        )
        db.query(AutomationTask).filter(
            AutomationTask.envelope_id == envelope.id,
            AutomationTask.status.in_(automation.OPEN_STATUSES),
        ).update({AutomationTask.status: automation.SKIPPED}, synchronize_session=False)
        db.delete(envelope)
        db.flush()
        _maintain(db, user_id, [period])
        changes.mark(EventKind.ENVELOPES_CHANGED, EventKind.TRANSACTIONS_CHANGED)
    logger.info("Deleted envelope %s for user=%s", envelope_id, user_id)


def populate_defaults(
    db: Session,
    user_id: str,
    period: Period,
    notifier: Notifier | None = None,
) -> List[Envelope]:
    """Create the default envelope set for a period (existing names are kept)."""
    created: List[Envelope] = []
    with user_unit_of_work(db, user_id, notifier) as changes:
        for name in all_default_envelopes():
            if find_envelope(db, user_id, name, period) is None:
                created.append(_get_or_create_envelope(db, user_id, name, period))
        _maintain(db, user_id, [period])
        if created:
            changes.mark(EventKind.ENVELOPES_CHANGED)
    logger.info("Populated %d default envelopes for user=%s period=%s", len(created), user_id, period)
    return created


def move_money(
    db: Session,
    user_id: str,
    from_envelope_id: int,
    to_envelope_id: int,
    amount: Any,
    reason: str | None = None,
    notifier: Notifier | None = None,
):
    """
    Direct user transfer of allocated money between two envelopes of the same
    period. "To Be Assigned" may be either side: its amount follows from the
    other envelope's allocation change.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Transfer amount must be positive", entity="transfer")
    if from_envelope_id == to_envelope_id:
        raise ValidationError("Source and destination must differ", entity="transfer")

    with user_unit_of_work(db, user_id, notifier) as changes:
        source = get_envelope(db, user_id, from_envelope_id)
        target = get_envelope(db, user_id, to_envelope_id)
        if period_of(source) != period_of(target):
            raise ValidationError("Envelopes belong to different periods", entity="transfer")
        if to_money(source.available) < amount:
            raise ValidationError(
                f"Insufficient funds in {source.name!r}: {fmt(source.available)} available, {fmt(amount)} requested",
                entity="envelope",
                detail={"id": source.id, "available": str(to_money(source.available)), "amount": str(amount)},
            )

        source_before = to_money(source.allocated)
        target_before = to_money(target.allocated)
        if source.name != TO_BE_ASSIGNED:
            source.allocated = source_before - amount
        if target.name != TO_BE_ASSIGNED:
            target.allocated = target_before + amount

        transfer = record_transfer(
            db, user_id, source, target, amount,
            reason=reason or f"Moved {fmt(amount)} from {source.name} to {target.name}",
            automated=False, kind="manual",
        )
        if source.name != TO_BE_ASSIGNED:
            automation.enqueue_coverage(db, user_id, source, source_before, -amount)
        if target.name != TO_BE_ASSIGNED:
            automation.enqueue_coverage(db, user_id, target, target_before, amount)
        _maintain(db, user_id, [period_of(source)])
        changes.mark(EventKind.ENVELOPES_CHANGED)

    automation.process_pending_tasks(db, user_id, notifier)
    return transfer
