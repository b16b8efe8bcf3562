# envelopes/services/importer.py
"""
Aggregator import boundary.

`import_transactions` takes raw rows for one account (from the bank
aggregator adapter or an uploaded statement), normalizes their sign, and
for each row either:

- skips it: a transaction with the same external id already exists
- matches it: an uncleared manual entry on the same account within three
  days and 5% of the amount is cleared and takes over the aggregator's
  external id, amount, description and date
- creates it: categorized from hints, merchant rules, optional AI, or the
  default "Needs a Category" envelope

The whole batch is one unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from models import Account, Envelope, Transaction, TO_BE_ASSIGNED
from envelopes.services.categorize import derive_category
from envelopes.services.import_helpers import ImportRow, build_import_row
from envelopes.services.ledger import (
    _insert_transaction,
    _maintain,
    _update_transaction_row,
    get_account,
)
from envelopes.services.money import to_money
from envelopes.services.notifications import EventKind, Notifier
from envelopes.services.periods import Period
from envelopes.services.unit_of_work import user_unit_of_work

logger = logging.getLogger(__name__)

MATCH_WINDOW = timedelta(days=3)
MATCH_TOLERANCE = Decimal("0.05")


@dataclass
class ImportSummary:
    account_id: int
    created: List[Transaction] = field(default_factory=list)
    matched: List[Transaction] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "created": len(self.created),
            "matched": len(self.matched),
            "skipped": len(self.skipped),
            "skipped_external_ids": list(self.skipped),
        }


def _already_imported(db: Session, user_id: str, external_id: str) -> bool:
    hit = (
        db.query(Transaction.id)
        .filter(Transaction.user_id == user_id, Transaction.external_id == external_id)
        .first()
    )
    return hit is not None


def find_manual_match(db: Session, user_id: str, account: Account, row: ImportRow) -> Optional[Transaction]:
    """Oldest uncleared manual entry close enough in date and amount to `row`."""
    candidates = (
        db.query(Transaction)
        .filter(
            Transaction.user_id == user_id,
            Transaction.account_id == account.id,
            Transaction.is_manual.is_(True),
            Transaction.cleared.is_(False),
            Transaction.external_id.is_(None),
            Transaction.date >= row.date - MATCH_WINDOW,
            Transaction.date <= row.date + MATCH_WINDOW,
        )
        .order_by(Transaction.date, Transaction.id)
        .all()
    )
    limit = abs(row.amount) * MATCH_TOLERANCE
    for candidate in candidates:
        amount = to_money(candidate.amount)
        if (amount < 0) != (row.amount < 0):
            continue
        if abs(amount - row.amount) <= limit:
            return candidate
    return None


def _envelope_names(db: Session, user_id: str, period: Period) -> List[str]:
    rows = (
        db.query(Envelope.name)
        .filter(
            Envelope.user_id == user_id,
            Envelope.month == period.month,
            Envelope.year == period.year,
            Envelope.name != TO_BE_ASSIGNED,
        )
        .all()
    )
    return [name for (name,) in rows]


def import_transactions(
    db: Session,
    user_id: str,
    account_id: int,
    rows: Iterable[dict],
    notifier: Notifier | None = None,
) -> ImportSummary:
    summary = ImportSummary(account_id=account_id)

    with user_unit_of_work(db, user_id, notifier) as changes:
        account = get_account(db, user_id, account_id)
        touched: List[Period] = []
        seen: set[str] = set()

        for raw in rows:
            row = build_import_row(raw, account.type)
            if row.amount == 0 or row.external_id in seen or _already_imported(db, user_id, row.external_id):
                summary.skipped.append(row.external_id)
                continue
            seen.add(row.external_id)

            match = find_manual_match(db, user_id, account, row)
            if match is not None:
                touched.extend(
                    _update_transaction_row(
                        db, user_id, match,
                        {"amount": row.amount, "date": row.date, "description": row.description or match.description},
                    )
                )
                match.cleared = True
                match.external_id = row.external_id
                db.flush()
                summary.matched.append(match)
                logger.info("Matched imported %s to manual transaction %s", row.external_id, match.id)
                continue

            period = Period.of(row.date)
            category = row.category or derive_category(
                row.description,
                row.amount,
                account.type,
                hints=row.hints,
                account_name=account.name,
                envelope_names=_envelope_names(db, user_id, period),
            )
            txn = _insert_transaction(
                db, user_id, account, row.amount, row.description, category, row.date,
                cleared=True, approved=False, is_manual=False,
                external_id=row.external_id,
            )
            summary.created.append(txn)
            touched.append(period)

        if summary.created or summary.matched:
            _maintain(db, user_id, touched)
            changes.mark(EventKind.TRANSACTIONS_CHANGED, EventKind.ACCOUNTS_CHANGED, EventKind.ENVELOPES_CHANGED)

    logger.info("Import into account=%s for user=%s: %s", account_id, user_id, summary.to_dict())
    return summary
