# envelopes/services/automation.py
"""
Phase-2 automation queue.

Allocation changes write an AutomationTask row in the same database
transaction as the change itself (phase 1). After that commit,
`process_pending_tasks` runs each open task in its own unit of work
(phase 2). A failing task rolls back completely, so a retry never sees half
of a previous attempt; the task is marked failed, logged, and left for
`retry_failed_tasks`. The allocation that queued it stays committed.

Tasks are keyed by (user, envelope, period): a new change for a key that
still has an open task is folded into it (deltas add up, the earliest
`allocated_before` is kept).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from config import settings
from models import AutomationTask, Envelope
from envelopes.errors import AutomationDegradedError
from envelopes.services.credit_coverage import CoverageResult, apply_coverage
from envelopes.services.money import ZERO, to_money
from envelopes.services.notifications import EventKind, Notifier
from envelopes.services.unit_of_work import user_unit_of_work

logger = logging.getLogger(__name__)

PENDING = "pending"
DONE = "done"
FAILED = "failed"
SKIPPED = "skipped"
OPEN_STATUSES = (PENDING, FAILED)


@dataclass
class AutomationRun:
    results: List[CoverageResult] = field(default_factory=list)
    errors: List[AutomationDegradedError] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.errors)


def enqueue_coverage(
    db: Session,
    user_id: str,
    envelope: Envelope,
    allocated_before: Decimal,
    delta: Decimal,
) -> AutomationTask:
    """Queue (or fold into an open task) a coverage run for an allocation change. No commit."""
    task = (
        db.query(AutomationTask)
        .filter(
            AutomationTask.user_id == user_id,
            AutomationTask.envelope_id == envelope.id,
            AutomationTask.month == envelope.month,
            AutomationTask.year == envelope.year,
            AutomationTask.status.in_(OPEN_STATUSES),
        )
        .order_by(AutomationTask.id)
        .first()
    )
    if task is None:
        task = AutomationTask(
            user_id=user_id,
            envelope_id=envelope.id,
            month=envelope.month,
            year=envelope.year,
            allocated_before=to_money(allocated_before),
            delta=to_money(delta),
            status=PENDING,
            attempts=0,
        )
        db.add(task)
    else:
        task.delta = to_money(task.delta) + to_money(delta)
        task.status = PENDING
    db.flush()
    return task


def open_tasks(db: Session, user_id: str) -> List[AutomationTask]:
    return (
        db.query(AutomationTask)
        .filter(
            AutomationTask.user_id == user_id,
            AutomationTask.status.in_(OPEN_STATUSES),
            AutomationTask.attempts < settings.automation_max_attempts,
        )
        .order_by(AutomationTask.id)
        .all()
    )


def _run_task(db: Session, user_id: str, task_id: int, notifier: Notifier | None) -> CoverageResult:
    with user_unit_of_work(db, user_id, notifier) as changes:
        task = db.get(AutomationTask, task_id)
        if task is None or task.status not in OPEN_STATUSES:
            return CoverageResult(envelope_id=task.envelope_id if task else 0, skipped=True, message="already handled")

        task.attempts = (task.attempts or 0) + 1
        if to_money(task.delta) == ZERO:
            result = CoverageResult(envelope_id=task.envelope_id, message="changes cancelled out")
        else:
            result = apply_coverage(db, user_id, task.envelope_id, task.allocated_before, task.delta)

        task.status = SKIPPED if result.skipped else DONE
        task.last_error = result.message if result.skipped else None
        if result.transfers:
            changes.mark(EventKind.ENVELOPES_CHANGED)
    return result


def _mark_failed(db: Session, task_id: int, error: Exception) -> None:
    db.rollback()
    task = db.get(AutomationTask, task_id)
    if task is None:
        return
    task.status = FAILED
    task.attempts = (task.attempts or 0) + 1
    task.last_error = f"{type(error).__name__}: {error}"
    db.commit()


def process_pending_tasks(db: Session, user_id: str, notifier: Notifier | None = None) -> AutomationRun:
    """
    Run every open coverage task of the user. Never raises: failures are
    recorded on the task and returned as AutomationDegradedError values.
    """
    run = AutomationRun()
    for task in open_tasks(db, user_id):
        task_id, envelope_id = task.id, task.envelope_id
        try:
            run.results.append(_run_task(db, user_id, task_id, notifier))
        except Exception as exc:
            degraded = AutomationDegradedError(
                f"Credit coverage for envelope {envelope_id} did not complete",
                entity="envelope",
                detail={"task_id": task_id, "envelope_id": envelope_id, "reason": str(exc)},
            )
            logger.warning(
                "Automation degraded for user=%s task=%s envelope=%s: %s",
                user_id, task_id, envelope_id, exc, exc_info=True,
            )
            try:
                _mark_failed(db, task_id, exc)
            except Exception:
                db.rollback()
                logger.exception("Could not record failure of automation task %s", task_id)
            run.errors.append(degraded)
    return run


def retry_failed_tasks(db: Session, user_id: str, notifier: Notifier | None = None) -> AutomationRun:
    """Give failed tasks a fresh attempt budget and run them again."""
    db.query(AutomationTask).filter(
        AutomationTask.user_id == user_id,
        AutomationTask.status == FAILED,
    ).update({AutomationTask.attempts: 0, AutomationTask.status: PENDING}, synchronize_session=False)
    db.commit()
    return process_pending_tasks(db, user_id, notifier)
