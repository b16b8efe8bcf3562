# envelopes/services/accounts.py
"""
Accounts and card payments.

Account balances only move through transactions once an account exists;
the opening balance given at creation is the one exception. Any change to
the set of budgeting accounts shifts total cash, so every operation here
re-runs the "To Be Assigned" maintenance for the current period.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Session

from models import (
    Account,
    Transaction,
    ACCOUNT_TYPES,
    CASH_TYPES,
    CREDIT,
    CREDIT_CARD_PAYMENTS_GROUP,
)
from envelopes.errors import ConflictError, ValidationError
from envelopes.services.credit_coverage import payment_envelope_name
from envelopes.services.ledger import (
    _clean_name,
    _get_or_create_envelope,
    _insert_transaction,
    _maintain,
    get_account,
)
from envelopes.services.money import fmt, to_money
from envelopes.services.notifications import EventKind, Notifier
from envelopes.services.periods import Period
from envelopes.services.unit_of_work import user_unit_of_work

logger = logging.getLogger(__name__)

ACCOUNT_FIELDS = {"name", "is_just_watching", "available_balance"}


def list_accounts(db: Session, user_id: str) -> List[Account]:
    return (
        db.query(Account)
        .filter(Account.user_id == user_id)
        .order_by(Account.type, Account.name)
        .all()
    )


def create_account(
    db: Session,
    user_id: str,
    name: str,
    account_type: str,
    balance: Any = 0,
    available_balance: Any = None,
    is_just_watching: bool = False,
    external_id: str | None = None,
    notifier: Notifier | None = None,
) -> Account:
    """
    Add a manual account, or a connected one when `external_id` is the
    aggregator's account id. `balance` follows the canonical sign, so a card
    with $250 owed is created with balance -250.
    """
    name = _clean_name(name, "name")
    if account_type not in ACCOUNT_TYPES:
        raise ValidationError(
            f"Unknown account type {account_type!r}",
            entity="account",
            detail={"allowed": list(ACCOUNT_TYPES)},
        )

    with user_unit_of_work(db, user_id, notifier) as changes:
        if external_id is not None:
            taken = (
                db.query(Account.id)
                .filter(Account.user_id == user_id, Account.external_id == external_id)
                .first()
            )
            if taken is not None:
                raise ConflictError(
                    f"Account {external_id!r} is already connected",
                    entity="account",
                    detail={"external_id": external_id},
                )

        account = Account(
            user_id=user_id,
            name=name,
            type=account_type,
            balance=to_money(balance),
            available_balance=None if available_balance is None else to_money(available_balance),
            is_just_watching=bool(is_just_watching),
            external_id=external_id,
        )
        db.add(account)
        db.flush()
        _maintain(db, user_id, [])
        changes.mark(EventKind.ACCOUNTS_CHANGED, EventKind.ENVELOPES_CHANGED)

    logger.info("Created %s account %r for user=%s with balance %s", account_type, name, user_id, fmt(account.balance))
    return account


def update_account(
    db: Session,
    user_id: str,
    account_id: int,
    changes: Dict[str, Any],
    notifier: Notifier | None = None,
) -> Account:
    unknown = set(changes) - ACCOUNT_FIELDS
    if unknown:
        raise ValidationError(f"Unknown account fields: {sorted(unknown)}", entity="account")

    with user_unit_of_work(db, user_id, notifier) as change_set:
        account = get_account(db, user_id, account_id)
        if "name" in changes:
            account.name = _clean_name(changes["name"], "name")
        if "is_just_watching" in changes:
            account.is_just_watching = bool(changes["is_just_watching"])
        if "available_balance" in changes:
            value = changes["available_balance"]
            account.available_balance = None if value is None else to_money(value)
        db.flush()
        _maintain(db, user_id, [])
        change_set.mark(EventKind.ACCOUNTS_CHANGED, EventKind.ENVELOPES_CHANGED)
    return account


def record_card_payment(
    db: Session,
    user_id: str,
    from_account_id: int,
    to_account_id: int,
    amount: Any,
    payment_date: date | None = None,
    notifier: Notifier | None = None,
) -> Tuple[Transaction, Transaction]:
    """
    Pay a credit card from a cash account: an outflow on the cash account
    spent from the "<Card> Payment" envelope, and a matching inflow on the
    card that reduces its debt. Both rows commit together or not at all.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive", entity="transaction", detail={"amount": str(amount)})
    payment_date = payment_date or date.today()

    with user_unit_of_work(db, user_id, notifier) as changes:
        source = get_account(db, user_id, from_account_id)
        card = get_account(db, user_id, to_account_id)
        if source.type not in CASH_TYPES:
            raise ValidationError(f"{source.name!r} is not a cash account", entity="account", detail={"id": source.id})
        if card.type != CREDIT:
            raise ValidationError(f"{card.name!r} is not a credit card", entity="account", detail={"id": card.id})

        period = Period.of(payment_date)
        envelope_name = payment_envelope_name(card.name)
        envelope = _get_or_create_envelope(db, user_id, envelope_name, period, category=CREDIT_CARD_PAYMENTS_GROUP)

        outflow = _insert_transaction(
            db, user_id, source, -amount, f"Payment to {card.name}", envelope_name, payment_date,
            cleared=source.external_id is None, approved=True, is_manual=True,
            envelope=envelope,
        )
        inflow = _insert_transaction(
            db, user_id, card, amount, f"Payment from {source.name}", CREDIT_CARD_PAYMENTS_GROUP, payment_date,
            cleared=card.external_id is None, approved=True, is_manual=True,
        )
        # the card side never counts against an envelope
        if inflow.envelope_id is not None:
            inflow.envelope_id = None
            db.flush()

        _maintain(db, user_id, [period])
        changes.mark(EventKind.TRANSACTIONS_CHANGED, EventKind.ACCOUNTS_CHANGED, EventKind.ENVELOPES_CHANGED)

    logger.info("Recorded card payment of %s from %r to %r for user=%s", fmt(amount), source.name, card.name, user_id)
    return outflow, inflow
