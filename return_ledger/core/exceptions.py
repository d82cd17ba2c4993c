"""
Error taxonomy for the return and ledger engine.

Every error carries a stable ``code`` and the HTTP status the API layer
renders it with:

    NotFoundError         NOT_FOUND          404
    ValidationError       VALIDATION_ERROR   400
    StateConflictError    STATE_CONFLICT     409
    OverReturnError       OVER_RETURN        422
    LedgerImbalanceError  LEDGER_IMBALANCE   500

All of them abort the surrounding unit of work.
"""
from typing import Any, Dict, Optional


class ReturnLedgerError(Exception):
    """Base exception for return lifecycle and ledger errors."""

    code = "RETURN_LEDGER_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(ReturnLedgerError):
    """Entity is absent or belongs to another tenant."""
    code = "NOT_FOUND"
    status_code = 404


class ValidationError(ReturnLedgerError):
    """Malformed or missing input."""
    code = "VALIDATION_ERROR"
    status_code = 400


class StateConflictError(ReturnLedgerError):
    """Requested transition is not legal from the current status."""
    code = "STATE_CONFLICT"
    status_code = 409


class OverReturnError(ReturnLedgerError):
    """Candidate return would exceed what is left of the order value."""
    code = "OVER_RETURN"
    status_code = 422


class LedgerImbalanceError(ReturnLedgerError):
    """Transaction lines do not balance. Internal invariant breach."""
    code = "LEDGER_IMBALANCE"
    status_code = 500
