# envelopes/services/statement_import.py
#
# Statement CSV parsing.
# Reads an aggregator-style CSV export into row dicts for
# importer.import_transactions. Amounts are emitted in the aggregator's sign
# convention for the target account type (cash: outflows positive; credit and
# loan: purchases negative); the importer then normalizes them.

from __future__ import annotations

import hashlib
from typing import IO, Dict, List, Union

import numpy as np
import pandas as pd

from models import CASH, DEBT_TYPES
from envelopes.errors import ValidationError

# Accepted header spellings -> normalized column
COLUMN_ALIASES = {
    "transaction id": "external_id",
    "transaction_id": "external_id",
    "external id": "external_id",
    "external_id": "external_id",
    "id": "external_id",
    "date": "date",
    "posted date": "date",
    "transaction date": "date",
    "description": "description",
    "name": "description",
    "merchant": "description",
    "amount": "amount",
    "debit": "debit",
    "credit": "credit",
    "category": "hints",
    "categories": "hints",
}


def parse_eu_number(value) -> float:
    """
    Parse amounts like '1.234,56', '−50,00' or '12.50' into a float.
    Empty cells become NaN.
    """
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return np.nan
    if isinstance(value, (int, float)):
        return float(value)

    s = str(value).strip().replace("−", "-").replace("$", "").replace(" ", "")
    if not s:
        return np.nan
    if "," in s and "." in s:
        # whichever separator comes last is the decimal one
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".")
    try:
        return float(s)
    except ValueError:
        return np.nan


def _synthetic_id(row: pd.Series, occurrence: int) -> str:
    key = f"{row['date']}|{row['description']}|{row['amount']:.2f}|{occurrence}"
    return "stmt-" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:20]


def parse_statement(source: Union[str, IO], account_type: str = CASH) -> List[Dict]:
    """
    Parse a statement CSV into dicts with external_id, date, description,
    amount and hints. Either an `Amount` column or `Debit`/`Credit` columns
    must be present; rows without an id get a stable synthetic one.

    An `Amount` column is taken as already signed by the aggregator. Debit
    and Credit columns are signed for `account_type`: a debit is money out
    of a cash account but a purchase (negative) on a card or loan.
    """
    try:
        df = pd.read_csv(source, dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Could not read statement: {exc}", entity="statement") from exc

    df = df.rename(columns={c: COLUMN_ALIASES.get(c.strip().lower(), c.strip().lower()) for c in df.columns})

    if "date" not in df.columns:
        raise ValidationError("Statement has no date column", entity="statement", detail={"columns": list(df.columns)})

    if "amount" in df.columns:
        df["amount"] = df["amount"].apply(parse_eu_number)
    elif "debit" in df.columns or "credit" in df.columns:
        debit = df["debit"].apply(parse_eu_number) if "debit" in df.columns else pd.Series(np.nan, index=df.index)
        credit = df["credit"].apply(parse_eu_number) if "credit" in df.columns else pd.Series(np.nan, index=df.index)
        if account_type in DEBT_TYPES:
            df["amount"] = np.where(debit.notna(), -debit.abs(), credit.abs())
        else:
            df["amount"] = np.where(debit.notna(), debit.abs(), -credit.abs())
    else:
        raise ValidationError("Statement has no amount column", entity="statement", detail={"columns": list(df.columns)})

    df = df[df["amount"].notna() & (df["amount"] != 0)].copy()
    df["date"] = pd.to_datetime(df["date"], errors="coerce", dayfirst=False).dt.date
    df = df[df["date"].notna()].copy()

    if "description" not in df.columns:
        df["description"] = ""
    df["description"] = df["description"].fillna("").str.strip()

    if "hints" not in df.columns:
        df["hints"] = ""

    if "external_id" not in df.columns:
        df["external_id"] = ""
    missing = df["external_id"].str.strip() == ""
    if missing.any():
        occurrence = df.groupby(["date", "description", "amount"]).cumcount()
        df.loc[missing, "external_id"] = [
            _synthetic_id(df.loc[idx], int(occurrence.loc[idx])) for idx in df.index[missing]
        ]

    df["amount"] = df["amount"].round(2)
    return df[["external_id", "date", "description", "amount", "hints"]].to_dict(orient="records")
