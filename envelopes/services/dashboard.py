# envelopes/services/dashboard.py
"""
Dashboard snapshot for one (user, period).

Reconciles the period's "To Be Assigned" first (inside a unit of work, so a
missing envelope is created and committed), then reads:

- totals from the balance calculator
- envelopes grouped by category group ("Credit Card Payments" first, then
  alphabetical), "To Be Assigned" reported separately
- the most recent transactions of the period
- goals with progress
- the state of the coverage automation queue
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Account, AutomationTask, Envelope, Transaction, CREDIT_CARD_PAYMENTS_GROUP, TO_BE_ASSIGNED
from envelopes.services.accounts import list_accounts
from envelopes.services import automation
from envelopes.services.balance import BalanceTotals
from envelopes.services.goals import list_goals
from envelopes.services.invariant import ensure_to_be_assigned
from envelopes.services.ledger import list_envelopes, list_transactions
from envelopes.services.notifications import Notifier
from envelopes.services.periods import Period
from envelopes.services.unit_of_work import user_unit_of_work

RECENT_LIMIT = 10


@dataclass
class DashboardSnapshot:
    period: Period
    totals: BalanceTotals
    to_be_assigned: Envelope | None
    groups: List[Tuple[str, List[Envelope]]] = field(default_factory=list)
    accounts: List[Account] = field(default_factory=list)
    recent_transactions: List[Transaction] = field(default_factory=list)
    goals: List[Dict[str, Any]] = field(default_factory=list)
    automation: Dict[str, int] = field(default_factory=dict)


def _group_order(name: str):
    return (name != CREDIT_CARD_PAYMENTS_GROUP, name.lower())


def group_envelopes(envelopes: List[Envelope]) -> List[Tuple[str, List[Envelope]]]:
    grouped: Dict[str, List[Envelope]] = {}
    for envelope in envelopes:
        if envelope.name == TO_BE_ASSIGNED:
            continue
        grouped.setdefault(envelope.category or "Misc", []).append(envelope)
    return [
        (name, sorted(grouped[name], key=lambda e: e.name.lower()))
        for name in sorted(grouped, key=_group_order)
    ]


def automation_status(db: Session, user_id: str) -> Dict[str, int]:
    rows = (
        db.query(AutomationTask.status, func.count(AutomationTask.id))
        .filter(AutomationTask.user_id == user_id)
        .group_by(AutomationTask.status)
        .all()
    )
    counts = {status: count for status, count in rows}
    return {
        "pending": counts.get(automation.PENDING, 0),
        "failed": counts.get(automation.FAILED, 0),
        "done": counts.get(automation.DONE, 0),
        "skipped": counts.get(automation.SKIPPED, 0),
    }


def get_dashboard_snapshot(
    db: Session,
    user_id: str,
    period: Period | None = None,
    notifier: Notifier | None = None,
    recent_limit: int = RECENT_LIMIT,
) -> DashboardSnapshot:
    period = period or Period.current()

    with user_unit_of_work(db, user_id, notifier):
        totals = ensure_to_be_assigned(db, user_id, period)

    envelopes = list_envelopes(db, user_id, period)
    to_be_assigned = next((e for e in envelopes if e.name == TO_BE_ASSIGNED), None)

    return DashboardSnapshot(
        period=period,
        totals=totals,
        to_be_assigned=to_be_assigned,
        groups=group_envelopes(envelopes),
        accounts=list_accounts(db, user_id),
        recent_transactions=list_transactions(db, user_id, period=period, limit=recent_limit),
        goals=list_goals(db, user_id, period),
        automation=automation_status(db, user_id),
    )
