# envelopes/routes_dashboard.py

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .deps import get_current_user, get_db, get_notifier, parse_month
from .schemas import DashboardOut, EnvelopeGroupOut, EnvelopeOut
from .services.dashboard import get_dashboard_snapshot
from .services.money import ZERO, to_money
from .services.notifications import Notifier

router = APIRouter()


@router.get("/dashboard", response_model=DashboardOut)
def dashboard(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    snapshot = get_dashboard_snapshot(db, user_id, parse_month(month), notifier)

    # Group subtotals
    groups = []
    for name, envelopes in snapshot.groups:
        allocated = sum((to_money(e.allocated) for e in envelopes), ZERO)
        spent = sum((to_money(e.spent) for e in envelopes), ZERO)
        groups.append(
            EnvelopeGroupOut(
                name=name,
                allocated=allocated,
                spent=spent,
                available=allocated - spent,
                envelopes=[EnvelopeOut.model_validate(e) for e in envelopes],
            )
        )

    return {
        "month": str(snapshot.period),
        "generated_at": datetime.now(timezone.utc),
        "totals": snapshot.totals.to_dict(),
        "to_be_assigned": snapshot.to_be_assigned,
        "groups": groups,
        "accounts": snapshot.accounts,
        "recent_transactions": snapshot.recent_transactions,
        "goals": snapshot.goals,
        "automation": snapshot.automation,
    }
