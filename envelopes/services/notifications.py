# envelopes/services/notifications.py
#
# Change notifications
# After a unit of work commits, the ledger tells the real-time channel which
# parts of the user's data changed so clients can refresh. Delivery is
# fire-and-forget: publish failures are logged, never raised to the caller.

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, List, Protocol, Tuple

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ACCOUNTS_CHANGED = "accounts-changed"
    ENVELOPES_CHANGED = "envelopes-changed"
    TRANSACTIONS_CHANGED = "transactions-changed"


class Notifier(Protocol):
    def publish(self, user_id: str, kind: EventKind) -> None: ...


class LoggingNotifier:
    """Default notifier: writes events to the log (no real-time channel attached)."""

    def publish(self, user_id: str, kind: EventKind) -> None:
        logger.info("notify user=%s event=%s", user_id, kind.value)


class RecordingNotifier:
    """Keeps published events in memory; used by tests and local tooling."""

    def __init__(self):
        self.events: List[Tuple[str, EventKind]] = []

    def publish(self, user_id: str, kind: EventKind) -> None:
        self.events.append((user_id, kind))

    def kinds_for(self, user_id: str) -> List[EventKind]:
        return [kind for uid, kind in self.events if uid == user_id]


def publish_all(notifier: Notifier | None, user_id: str, kinds: Iterable[EventKind]) -> None:
    if notifier is None:
        return
    for kind in sorted(set(kinds), key=lambda k: k.value):
        try:
            notifier.publish(user_id, kind)
        except Exception:
            logger.warning("Notification %s for user=%s failed", kind.value, user_id, exc_info=True)
