# models.py
# Role: SQLAlchemy ORM models for the envelope ledger domain.
#       Users own Accounts, monthly Envelopes, Transactions, Transfers and Goals.
#       PeriodRollover and AutomationTask persist engine bookkeeping so that no
#       ledger state lives in process memory.

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from db import Base

# Money columns: two-digit cent precision, mapped to Decimal
Money = Numeric(12, 2)

TO_BE_ASSIGNED = "To Be Assigned"
INCOME_GROUP = "Income"
CREDIT_CARD_PAYMENTS_GROUP = "Credit Card Payments"

# Account types
CASH = "cash"
CREDIT = "credit"
LOAN = "loan"
INVESTMENT = "investment"
OTHER = "other"
ACCOUNT_TYPES = (CASH, CREDIT, LOAN, INVESTMENT, OTHER)
CASH_TYPES = (CASH, INVESTMENT)
DEBT_TYPES = (CREDIT, LOAN)


class User(Base):
    """
    Owner of a ledger. Identity comes from the session layer; the row exists
    so every mutation can take a per-user write lock on it.
    """

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)

    # Bumped by every unit of work; the UPDATE is the per-user lock
    ledger_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Account(Base):
    """
    A bank or manual account owned by exactly one user.

    Balance sign convention: positive = money held, negative = money owed.
    Credit and loan balances are therefore normally negative.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_account_user_external_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)

    # cash / credit / loan / investment / other
    type = Column(String(20), nullable=False)

    balance = Column(Money, nullable=False, default=0)
    available_balance = Column(Money, nullable=True)

    # "Just watching" accounts are shown but excluded from budgeting totals
    is_just_watching = Column(Boolean, nullable=False, default=False)

    # Aggregator account id for connected accounts (None for manual accounts)
    external_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Envelope(Base):
    """
    One named allocation bucket for one calendar month ("budget").

    available = allocated - spent. The envelope named TO_BE_ASSIGNED is a
    singleton per period whose allocated amount is maintained by the ledger.
    """

    __tablename__ = "envelopes"
    __table_args__ = (
        UniqueConstraint("user_id", "name", "month", "year", name="uq_envelope_user_name_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)

    # Category group used for dashboard grouping, e.g. "Bills"
    category = Column(String(255), nullable=False, default="Misc")

    allocated = Column(Money, nullable=False, default=0)
    spent = Column(Money, nullable=False, default=0)

    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def available(self):
        return self.allocated - self.spent


class Transaction(Base):
    """
    A signed monetary event on one account (positive = inflow, negative = outflow),
    optionally linked to one envelope.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_transaction_user_external_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    envelope_id = Column(Integer, ForeignKey("envelopes.id"), nullable=True, index=True)

    # Aggregator transaction id, used for idempotent import
    external_id = Column(String(255), nullable=True)

    amount = Column(Money, nullable=False)
    description = Column(Text, nullable=False, default="")

    # Category label; matches an envelope name within the transaction's month
    category = Column(String(255), nullable=False)

    date = Column(Date, nullable=False, index=True)

    cleared = Column(Boolean, nullable=False, default=False)
    approved = Column(Boolean, nullable=False, default=False)
    is_manual = Column(Boolean, nullable=False, default=False)
    flag_color = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    account = relationship("Account")


class Transfer(Base):
    """
    Append-only audit record of allocated money moved between two envelopes.

    Envelope and transaction references are plain ids: the audit trail outlives
    deletion of the rows it mentions.
    """

    __tablename__ = "transfers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    from_envelope_id = Column(Integer, nullable=False, index=True)
    to_envelope_id = Column(Integer, nullable=False, index=True)

    amount = Column(Money, nullable=False)
    reason = Column(Text, nullable=False, default="")

    automated = Column(Boolean, nullable=False, default=False)

    # coverage / coverage_reversal / overspend / manual
    kind = Column(String(32), nullable=False, default="manual")

    # Credit transaction a coverage transfer pays for
    transaction_id = Column(Integer, nullable=True, index=True)

    # Coverage transfer that a coverage_reversal undoes
    reversal_of_id = Column(Integer, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Goal(Base):
    """
    Savings or debt target, tied to an envelope explicitly or by name.
    Display only; never part of the balancing invariant.
    """

    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    target_amount = Column(Money, nullable=False)
    current_amount = Column(Money, nullable=False, default=0)

    # savings / debt
    type = Column(String(20), nullable=False, default="savings")

    target_date = Column(Date, nullable=True)
    priority = Column(Integer, nullable=False, default=1)

    envelope_id = Column(Integer, ForeignKey("envelopes.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PeriodRollover(Base):
    """
    One row per completed month rollover. The cash overspending deduction is
    stored here so that recomputing "To Be Assigned" keeps honoring it.
    """

    __tablename__ = "period_rollovers"
    __table_args__ = (
        UniqueConstraint("user_id", "to_month", "to_year", name="uq_rollover_user_to_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    from_month = Column(Integer, nullable=False)
    from_year = Column(Integer, nullable=False)
    to_month = Column(Integer, nullable=False)
    to_year = Column(Integer, nullable=False)

    envelopes_processed = Column(Integer, nullable=False, default=0)
    envelopes_carried = Column(Integer, nullable=False, default=0)
    carried_forward = Column(Money, nullable=False, default=0)

    # Raw cash overspending and the part actually deducted (floored at zero)
    cash_overspending = Column(Money, nullable=False, default=0)
    to_be_assigned_deduction = Column(Money, nullable=False, default=0)

    credit_overspending_reset = Column(Money, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AutomationTask(Base):
    """
    Persisted phase-2 work item for credit coverage, keyed by
    (user, envelope, period). Written in the same database transaction as the
    allocation change that caused it and executed after commit.
    """

    __tablename__ = "automation_tasks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)

    envelope_id = Column(Integer, nullable=False, index=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    # Envelope allocation before the first change folded into this task
    allocated_before = Column(Money, nullable=False, default=0)

    # Net allocation change (positive = assigned, negative = unassigned)
    delta = Column(Money, nullable=False, default=0)

    # pending / done / failed
    status = Column(String(16), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
