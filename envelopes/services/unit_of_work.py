# envelopes/services/unit_of_work.py
"""
Per-user unit of work.

Every ledger mutation runs inside `user_unit_of_work`:

- the first statement of the database transaction bumps `users.ledger_version`;
  that UPDATE holds the user's row lock (PostgreSQL) or the database write lock
  (SQLite) until commit, so two mutations for the same user never interleave
  while different users proceed independently
- the body records which kinds of data changed
- on success everything is committed at once, otherwise rolled back
- only after commit are the change events published to the notifier
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Set

from sqlalchemy.orm import Session

from models import User
from envelopes.services.notifications import EventKind, Notifier, publish_all

logger = logging.getLogger(__name__)


class ChangeSet:
    """Event kinds collected while a unit of work runs."""

    def __init__(self):
        self.kinds: Set[EventKind] = set()

    def mark(self, *kinds: EventKind) -> None:
        self.kinds.update(kinds)


def lock_user(db: Session, user_id: str) -> None:
    updated = (
        db.query(User)
        .filter(User.id == user_id)
        .update({User.ledger_version: User.ledger_version + 1}, synchronize_session=False)
    )
    if not updated:
        # First mutation for this user: create the row inside the same transaction
        db.add(User(id=user_id, ledger_version=1))
        db.flush()


@contextmanager
def user_unit_of_work(
    db: Session,
    user_id: str,
    notifier: Notifier | None = None,
) -> Iterator[ChangeSet]:
    if db.in_transaction():
        # Drop whatever the caller left open; only work done under the lock is committed
        db.rollback()

    changes = ChangeSet()
    lock_user(db, user_id)
    try:
        yield changes
        db.commit()
    except Exception:
        db.rollback()
        raise

    publish_all(notifier, user_id, changes.kinds)
