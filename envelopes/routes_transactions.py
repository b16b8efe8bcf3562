# routes_transactions.py
"""
Transaction endpoints: list, manual entry, edit / move / recategorize,
delete and bulk approval.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from .deps import get_current_user, get_db, get_notifier, parse_month
from .schemas import ApproveRequest, TransactionCreate, TransactionOut, TransactionUpdate
from .services import ledger
from .services.notifications import Notifier

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=List[TransactionOut])
def list_transactions(
    month: Optional[str] = Query(None, description="YYYY-MM; all months when omitted"),
    account_id: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    period = parse_month(month) if month else None
    return ledger.list_transactions(db, user_id, period=period, account_id=account_id, limit=limit)


@router.post("", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return ledger.create_transaction(
        db,
        user_id,
        account_id=payload.account_id,
        amount=payload.amount,
        description=payload.description,
        category=payload.category,
        txn_date=payload.date,
        cleared=payload.cleared,
        flag_color=payload.flag_color,
        notifier=notifier,
    )


@router.post("/approve", response_model=List[TransactionOut])
def approve_transactions(
    payload: ApproveRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return ledger.approve_transactions(db, user_id, payload.transaction_ids, payload.approved, notifier)


@router.patch("/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    changes = payload.model_dump(exclude_unset=True)
    return ledger.update_transaction(db, user_id, transaction_id, changes, notifier)


@router.delete("/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    ledger.delete_transaction(db, user_id, transaction_id, notifier)
    return Response(status_code=204)
