# envelopes/routes_envelopes.py
"""
Envelope endpoints: listing, creation, allocation, deletion, default set,
moving money, covering overspending, month rollover and the coverage
automation retry.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from .deps import get_current_user, get_db, get_notifier, parse_month
from .schemas import (
    AllocationUpdate,
    AutomationRunOut,
    CoverOverspendingOut,
    CoverOverspendingRequest,
    EnvelopeCreate,
    EnvelopeOut,
    MoveMoneyRequest,
    RolloverRequest,
    TransferOut,
)
from .services import automation, ledger
from .services.notifications import Notifier
from .services.overspend import cover_overspending
from .services.rollover import rollover
from .services.transfers import list_transfers

router = APIRouter(tags=["envelopes"])


@router.get("/envelopes", response_model=List[EnvelopeOut])
def list_envelopes(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return ledger.list_envelopes(db, user_id, parse_month(month))


@router.post("/envelopes", response_model=EnvelopeOut, status_code=201)
def create_envelope(
    payload: EnvelopeCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return ledger.create_envelope(
        db,
        user_id,
        name=payload.name,
        category=payload.category,
        period=parse_month(payload.month),
        allocated=payload.allocated,
        notifier=notifier,
    )


@router.put("/envelopes/{envelope_id}/allocation", response_model=EnvelopeOut)
def set_allocation(
    envelope_id: int,
    payload: AllocationUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return ledger.allocate(db, user_id, envelope_id, payload.allocated, notifier)


@router.delete("/envelopes/{envelope_id}", status_code=204)
def delete_envelope(
    envelope_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    ledger.delete_envelope(db, user_id, envelope_id, notifier)
    return Response(status_code=204)


@router.post("/envelopes/defaults", response_model=List[EnvelopeOut], status_code=201)
def populate_defaults(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Create the default envelope set for the month; returns only the new ones."""
    return ledger.populate_defaults(db, user_id, parse_month(month), notifier)


@router.post("/envelopes/move", response_model=TransferOut, status_code=201)
def move_money(
    payload: MoveMoneyRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return ledger.move_money(
        db,
        user_id,
        payload.from_envelope_id,
        payload.to_envelope_id,
        payload.amount,
        reason=payload.reason,
        notifier=notifier,
    )


@router.post("/envelopes/cover-overspending", response_model=CoverOverspendingOut)
def cover_overspending_route(
    payload: CoverOverspendingRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    result = cover_overspending(
        db,
        user_id,
        payload.source_envelope_id,
        payload.amount,
        payload.target_envelope_ids,
        notifier,
    )
    return CoverOverspendingOut(
        source=EnvelopeOut.model_validate(result.source),
        amount=result.amount,
        shares=result.shares,
        transfers=[TransferOut.model_validate(t) for t in result.transfers],
    )


@router.post("/envelopes/rollover")
def rollover_route(
    payload: RolloverRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    from_period = parse_month(payload.from_month)
    to_period = parse_month(payload.to_month) if payload.to_month else None
    return rollover(db, user_id, from_period, to_period, notifier).to_dict()


@router.get("/transfers", response_model=List[TransferOut])
def transfers(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return list_transfers(db, user_id, parse_month(month) if month else None)


@router.post("/automation/retry", response_model=AutomationRunOut)
def retry_automation(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    run = automation.retry_failed_tasks(db, user_id, notifier)
    return {
        "processed": len(run.results) + len(run.errors),
        "transfers": sum(len(r.transfers) for r in run.results),
        "degraded": run.degraded,
        "errors": [e.to_dict() for e in run.errors],
    }
