# envelopes/services/goals.py
"""
Savings and debt goals. Display only: goals never feed the balance
calculator. Progress comes from the linked envelope (explicit link, else an
envelope of the same name in the requested period).
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from models import Envelope, Goal, TO_BE_ASSIGNED
from envelopes.errors import ValidationError
from envelopes.services.ledger import _clean_name, find_envelope, get_envelope
from envelopes.services.money import ZERO, to_money
from envelopes.services.notifications import EventKind, Notifier
from envelopes.services.periods import Period
from envelopes.services.unit_of_work import user_unit_of_work

logger = logging.getLogger(__name__)

GOAL_TYPES = ("savings", "debt")


def create_goal(
    db: Session,
    user_id: str,
    name: str,
    target_amount: Any,
    goal_type: str = "savings",
    description: str | None = None,
    target_date: date | None = None,
    priority: int = 1,
    current_amount: Any = ZERO,
    envelope_id: int | None = None,
    notifier: Notifier | None = None,
) -> Goal:
    name = _clean_name(name, "name")
    target_amount = to_money(target_amount)
    if target_amount <= 0:
        raise ValidationError("Goal target must be positive", entity="goal", detail={"target_amount": str(target_amount)})
    if goal_type not in GOAL_TYPES:
        raise ValidationError(f"Unknown goal type {goal_type!r}", entity="goal", detail={"allowed": list(GOAL_TYPES)})

    with user_unit_of_work(db, user_id, notifier) as changes:
        if envelope_id is not None:
            envelope = get_envelope(db, user_id, envelope_id)
            if envelope.name == TO_BE_ASSIGNED:
                raise ValidationError(f"Goals cannot track '{TO_BE_ASSIGNED}'", entity="goal")
        goal = Goal(
            user_id=user_id,
            name=name,
            description=description,
            target_amount=target_amount,
            current_amount=to_money(current_amount),
            type=goal_type,
            target_date=target_date,
            priority=priority,
            envelope_id=envelope_id,
        )
        db.add(goal)
        db.flush()
        changes.mark(EventKind.ENVELOPES_CHANGED)

    logger.info("Created %s goal %r for user=%s", goal_type, name, user_id)
    return goal


def _tracked_envelope(db: Session, user_id: str, goal: Goal, period: Period) -> Envelope | None:
    if goal.envelope_id is not None:
        envelope = db.get(Envelope, goal.envelope_id)
        if envelope is not None and envelope.user_id == user_id:
            return envelope
    return find_envelope(db, user_id, goal.name, period)


def goal_progress(db: Session, user_id: str, goal: Goal, period: Period) -> Dict[str, Any]:
    envelope = _tracked_envelope(db, user_id, goal, period)
    current = to_money(envelope.available) if envelope is not None else to_money(goal.current_amount)
    target = to_money(goal.target_amount)
    if target > 0:
        percent = min(Decimal("100"), max(ZERO, current / target * 100)).quantize(Decimal("0.1"))
    else:
        percent = ZERO
    return {
        "id": goal.id,
        "name": goal.name,
        "description": goal.description,
        "type": goal.type,
        "priority": goal.priority,
        "target_amount": str(target),
        "current_amount": str(current),
        "remaining": str(max(ZERO, target - current)),
        "percent_complete": str(percent),
        "target_date": goal.target_date.isoformat() if goal.target_date else None,
        "envelope_id": envelope.id if envelope is not None else None,
    }


def list_goals(db: Session, user_id: str, period: Period | None = None) -> List[Dict[str, Any]]:
    period = period or Period.current()
    goals = (
        db.query(Goal)
        .filter(Goal.user_id == user_id)
        .order_by(Goal.priority, Goal.id)
        .all()
    )
    return [goal_progress(db, user_id, goal, period) for goal in goals]
