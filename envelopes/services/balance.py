# envelopes/services/balance.py
"""
Balance calculator.

`calculate_totals` is a pure function over accounts and envelopes and is the
single source of truth for "To Be Assigned":

    to_be_assigned = total_cash - total_allocated - overspending_carried

`overspending_carried` is the cash overspending deducted from this period at
rollover (see services/rollover.py); it is zero for any period that was not
the target of a rollover with cash overspending.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import (
    Account,
    Envelope,
    PeriodRollover,
    CASH_TYPES,
    DEBT_TYPES,
    TO_BE_ASSIGNED,
)
from envelopes.services.money import ZERO, to_money
from envelopes.services.periods import Period


@dataclass(frozen=True)
class BalanceTotals:
    total_cash: Decimal
    total_debt: Decimal
    net_worth: Decimal
    total_allocated: Decimal
    total_spent: Decimal
    to_be_assigned: Decimal
    overspending_carried: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {k: str(v) for k, v in asdict(self).items()}


def calculate_totals(
    accounts: Iterable[Any],
    envelopes: Iterable[Any],
    overspending_carried: Any = ZERO,
) -> BalanceTotals:
    """
    Derive the period totals from account and envelope state.

    - total_cash: cash/investment accounts, not just-watching, max(0, balance) each
    - total_debt: credit/loan accounts, not just-watching, signed balance
    - total_allocated / total_spent: every envelope except "To Be Assigned"
    """
    total_cash = ZERO
    total_debt = ZERO
    for account in accounts:
        if account.is_just_watching:
            continue
        balance = to_money(account.balance)
        if account.type in CASH_TYPES:
            total_cash += max(ZERO, balance)
        elif account.type in DEBT_TYPES:
            total_debt += balance

    total_allocated = ZERO
    total_spent = ZERO
    for envelope in envelopes:
        if envelope.name == TO_BE_ASSIGNED:
            continue
        total_allocated += to_money(envelope.allocated)
        total_spent += to_money(envelope.spent)

    carried = to_money(overspending_carried)

    return BalanceTotals(
        total_cash=total_cash,
        total_debt=total_debt,
        net_worth=total_cash + total_debt,
        total_allocated=total_allocated,
        total_spent=total_spent,
        to_be_assigned=total_cash - total_allocated - carried,
        overspending_carried=carried,
    )


def overspending_carried_into(db: Session, user_id: str, period: Period) -> Decimal:
    deducted = (
        db.query(func.coalesce(func.sum(PeriodRollover.to_be_assigned_deduction), 0))
        .filter(
            PeriodRollover.user_id == user_id,
            PeriodRollover.to_month == period.month,
            PeriodRollover.to_year == period.year,
        )
        .scalar()
    )
    return to_money(deducted or 0)


def load_totals(db: Session, user_id: str, period: Period) -> BalanceTotals:
    """Read current store state for (user, period) and run calculate_totals."""
    accounts = db.query(Account).filter(Account.user_id == user_id).all()
    envelopes = (
        db.query(Envelope)
        .filter(
            Envelope.user_id == user_id,
            Envelope.month == period.month,
            Envelope.year == period.year,
        )
        .all()
    )
    return calculate_totals(accounts, envelopes, overspending_carried_into(db, user_id, period))
