# envelopes/schemas.py
"""
Request and response schemas for the JSON API.

Request models reject malformed payloads before any service runs; response
models read straight from ORM rows (from_attributes). Money is Decimal and is
rendered as a string ("700.00").
"""

import datetime as dt
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

AccountType = Literal["cash", "credit", "loan", "investment", "other"]
FlagColor = Literal["red", "orange", "yellow", "green", "blue", "purple"]


# -------------------------------------------------------------------
# Accounts
# -------------------------------------------------------------------

class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: AccountType
    balance: Decimal = Field(Decimal("0"), description="Canonical sign: negative when money is owed")
    available_balance: Optional[Decimal] = None
    is_just_watching: bool = False
    external_id: Optional[str] = Field(None, description="Aggregator account id for connected accounts")


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    is_just_watching: Optional[bool] = None
    available_balance: Optional[Decimal] = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    balance: Decimal
    available_balance: Optional[Decimal] = None
    is_just_watching: bool
    external_id: Optional[str] = None


class CardPaymentCreate(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: Decimal = Field(..., gt=0)
    date: Optional[dt.date] = None


class ImportRowIn(BaseModel):
    """One aggregator row; `amount` uses the aggregator's own sign."""

    external_id: str = Field(..., min_length=1)
    amount: Decimal
    date: dt.date
    description: str = ""
    hints: List[str] = Field(default_factory=list)
    category: Optional[str] = None


class ImportRequest(BaseModel):
    transactions: List[ImportRowIn]


class ImportSummaryOut(BaseModel):
    account_id: int
    created: int
    matched: int
    skipped: int
    skipped_external_ids: List[str] = Field(default_factory=list)


# -------------------------------------------------------------------
# Envelopes
# -------------------------------------------------------------------

class EnvelopeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: Optional[str] = Field(None, max_length=255, description="Category group, e.g. Bills")
    month: Optional[str] = Field(None, description="YYYY-MM; defaults to the current month")
    allocated: Decimal = Field(Decimal("0"), ge=0)


class AllocationUpdate(BaseModel):
    allocated: Decimal = Field(..., ge=0)


class EnvelopeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    allocated: Decimal
    spent: Decimal
    available: Decimal
    month: int
    year: int


class MoveMoneyRequest(BaseModel):
    from_envelope_id: int
    to_envelope_id: int
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None


class CoverOverspendingRequest(BaseModel):
    source_envelope_id: int
    amount: Decimal = Field(..., gt=0)
    target_envelope_ids: List[int] = Field(..., min_length=1)


class CoverOverspendingOut(BaseModel):
    source: EnvelopeOut
    amount: Decimal
    shares: Dict[int, Decimal]
    transfers: List["TransferOut"]


class RolloverRequest(BaseModel):
    from_month: str = Field(..., description="YYYY-MM")
    to_month: Optional[str] = Field(None, description="YYYY-MM; defaults to the following month")


class TransferOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_envelope_id: int
    to_envelope_id: int
    amount: Decimal
    reason: str
    automated: bool
    kind: str
    transaction_id: Optional[int] = None
    reversal_of_id: Optional[int] = None


class AutomationRunOut(BaseModel):
    processed: int
    transfers: int
    degraded: bool
    errors: List[Dict] = Field(default_factory=list)


# -------------------------------------------------------------------
# Transactions
# -------------------------------------------------------------------

class TransactionCreate(BaseModel):
    account_id: int
    amount: Decimal = Field(..., description="Positive = inflow / debt paid down, negative = outflow")
    description: str = ""
    category: str = Field(..., min_length=1, max_length=255)
    date: Optional[dt.date] = None
    cleared: Optional[bool] = None
    flag_color: Optional[FlagColor] = None


class TransactionUpdate(BaseModel):
    account_id: Optional[int] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1, max_length=255)
    date: Optional[dt.date] = None
    cleared: Optional[bool] = None
    approved: Optional[bool] = None
    flag_color: Optional[FlagColor] = None


class ApproveRequest(BaseModel):
    transaction_ids: List[int] = Field(..., min_length=1)
    approved: bool = True


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    envelope_id: Optional[int] = None
    external_id: Optional[str] = None
    amount: Decimal
    description: str
    category: str
    date: dt.date
    cleared: bool
    approved: bool
    is_manual: bool
    flag_color: Optional[str] = None


# -------------------------------------------------------------------
# Goals
# -------------------------------------------------------------------

class GoalCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    target_amount: Decimal = Field(..., gt=0)
    type: Literal["savings", "debt"] = "savings"
    description: Optional[str] = None
    target_date: Optional[dt.date] = None
    priority: int = Field(1, ge=1)
    current_amount: Decimal = Decimal("0")
    envelope_id: Optional[int] = None


class GoalOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    type: str
    priority: int
    target_amount: Decimal
    current_amount: Decimal
    remaining: Decimal
    percent_complete: Decimal
    target_date: Optional[dt.date] = None
    envelope_id: Optional[int] = None


# -------------------------------------------------------------------
# Dashboard
# -------------------------------------------------------------------

class TotalsOut(BaseModel):
    total_cash: Decimal
    total_debt: Decimal
    net_worth: Decimal
    total_allocated: Decimal
    total_spent: Decimal
    to_be_assigned: Decimal
    overspending_carried: Decimal


class EnvelopeGroupOut(BaseModel):
    name: str
    allocated: Decimal
    spent: Decimal
    available: Decimal
    envelopes: List[EnvelopeOut]


class DashboardOut(BaseModel):
    month: str
    generated_at: dt.datetime
    totals: TotalsOut
    to_be_assigned: Optional[EnvelopeOut] = None
    groups: List[EnvelopeGroupOut]
    accounts: List[AccountOut]
    recent_transactions: List[TransactionOut]
    goals: List[GoalOut]
    automation: Dict[str, int]


CoverOverspendingOut.model_rebuild()
