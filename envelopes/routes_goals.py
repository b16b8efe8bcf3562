# envelopes/routes_goals.py

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .deps import get_current_user, get_db, get_notifier, parse_month
from .schemas import GoalCreate, GoalOut
from .services.goals import create_goal, goal_progress, list_goals
from .services.notifications import Notifier
from .services.periods import Period

router = APIRouter(prefix="/goals", tags=["goals"])


@router.get("", response_model=List[GoalOut])
def goals(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return list_goals(db, user_id, parse_month(month))


@router.post("", response_model=GoalOut, status_code=201)
def add_goal(
    payload: GoalCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    goal = create_goal(
        db,
        user_id,
        name=payload.name,
        target_amount=payload.target_amount,
        goal_type=payload.type,
        description=payload.description,
        target_date=payload.target_date,
        priority=payload.priority,
        current_amount=payload.current_amount,
        envelope_id=payload.envelope_id,
        notifier=notifier,
    )
    return goal_progress(db, user_id, goal, Period.current())
