# envelopes/routes_accounts.py
"""
Account endpoints: list / create / update, card payments and transaction
import (aggregator JSON rows or an uploaded statement CSV).
"""

from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from .deps import get_current_user, get_db, get_notifier
from .schemas import (
    AccountCreate,
    AccountOut,
    AccountUpdate,
    CardPaymentCreate,
    ImportRequest,
    ImportSummaryOut,
    TransactionOut,
)
from .services import accounts as account_service
from .services.importer import import_transactions
from .services.ledger import get_account
from .services.notifications import Notifier
from .services.statement_import import parse_statement

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("", response_model=List[AccountOut])
def list_accounts(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return account_service.list_accounts(db, user_id)


@router.post("", response_model=AccountOut, status_code=201)
def create_account(
    payload: AccountCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return account_service.create_account(
        db,
        user_id,
        name=payload.name,
        account_type=payload.type,
        balance=payload.balance,
        available_balance=payload.available_balance,
        is_just_watching=payload.is_just_watching,
        external_id=payload.external_id,
        notifier=notifier,
    )


@router.patch("/{account_id}", response_model=AccountOut)
def update_account(
    account_id: int,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    changes = payload.model_dump(exclude_unset=True)
    return account_service.update_account(db, user_id, account_id, changes, notifier)


@router.post("/card-payment", response_model=List[TransactionOut], status_code=201)
def card_payment(
    payload: CardPaymentCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Returns [cash outflow, card inflow]."""
    outflow, inflow = account_service.record_card_payment(
        db,
        user_id,
        from_account_id=payload.from_account_id,
        to_account_id=payload.to_account_id,
        amount=payload.amount,
        payment_date=payload.date,
        notifier=notifier,
    )
    return [outflow, inflow]


@router.post("/{account_id}/import", response_model=ImportSummaryOut)
def import_rows(
    account_id: int,
    payload: ImportRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    rows = [row.model_dump() for row in payload.transactions]
    summary = import_transactions(db, user_id, account_id, rows, notifier)
    return summary.to_dict()


@router.post("/{account_id}/import/statement", response_model=ImportSummaryOut)
def import_statement(
    account_id: int,
    statement: UploadFile = File(...),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Upload a statement CSV (Date, Description, Amount or Debit/Credit,
    optional Transaction ID and Category columns) for one account.
    """
    account = get_account(db, user_id, account_id)
    rows = parse_statement(statement.file, account.type)
    summary = import_transactions(db, user_id, account_id, rows, notifier)
    return summary.to_dict()
