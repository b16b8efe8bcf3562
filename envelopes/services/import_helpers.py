# envelopes/services/import_helpers.py
#
# Import Helper Functions
# Turns raw aggregator / statement rows into normalized ImportRow values and
# fixes the canonical sign convention at the import boundary.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from models import DEBT_TYPES
from envelopes.errors import ValidationError
from envelopes.services.money import to_money

DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%m/%d/%Y")


@dataclass
class ImportRow:
    """One aggregator transaction, already in canonical sign."""

    external_id: str
    amount: Decimal
    date: date
    description: str = ""
    hints: List[str] = field(default_factory=list)
    category: Optional[str] = None


# ---- Sign normalization ----

def normalize_amount(account_type: str, aggregator_amount: Any) -> Decimal:
    """
    Canonical sign: positive = money into a cash account / debt paid down.

    For credit and loan accounts the aggregator already reports
    positive = payment, negative = purchase. For cash accounts the aggregator
    reports outflows as positive, so the sign is inverted.
    """
    amount = to_money(aggregator_amount)
    if account_type in DEBT_TYPES:
        return amount
    return -amount


# ---- Row conversion ----

def parse_row_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text[:10], fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"Unrecognized date {value!r}", entity="transaction", detail={"date": text})


def _hints(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [part.strip() for part in raw.split("|") if part.strip()]
    return [str(part).strip() for part in raw if str(part).strip()]


def build_import_row(raw: dict, account_type: str) -> ImportRow:
    """
    Convert one aggregator dict (external_id, amount, date, description,
    category hints) into an ImportRow with the canonical sign applied.
    """
    external_id = str(raw.get("external_id") or "").strip()
    if not external_id:
        raise ValidationError("Imported transaction has no external id", entity="transaction")

    if raw.get("amount") is None:
        raise ValidationError(
            "Imported transaction has no amount",
            entity="transaction",
            detail={"external_id": external_id},
        )

    return ImportRow(
        external_id=external_id,
        amount=normalize_amount(account_type, raw["amount"]),
        date=parse_row_date(raw.get("date")),
        description=str(raw.get("description") or raw.get("merchant") or "").strip(),
        hints=_hints(raw.get("hints") or raw.get("category_hints")),
        category=(str(raw["category"]).strip() or None) if raw.get("category") else None,
    )
