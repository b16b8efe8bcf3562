# envelopes/errors.py
# Role: Typed ledger errors.
#       Every user-facing failure names the entity and the constraint that failed;
#       routes translate the kind into an HTTP status (see envelopes/main.py).

from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger errors."""

    kind = "ledger_error"
    status_code = 400

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "entity": self.entity,
            "detail": self.detail,
        }


class NotFoundError(LedgerError):
    """Referenced account/envelope/transaction does not exist or is not the user's."""

    kind = "not_found"
    status_code = 404


class ValidationError(LedgerError):
    kind = "validation"
    status_code = 422


class ConflictError(LedgerError):
    kind = "conflict"
    status_code = 409


class AutomationDegradedError(LedgerError):
    """
    Credit coverage could not complete. Logged and retried later; never
    surfaced as a failure of the allocation change that triggered it.
    """

    kind = "automation_degraded"
    status_code = 503


class InconsistencyError(LedgerError):
    """'To Be Assigned' could not be reconciled after recompute-and-retry."""

    kind = "inconsistency"
    status_code = 500
