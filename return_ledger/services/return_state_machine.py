"""
Return State Machine

All Return status changes go through this module.

    PENDING ──approve──▶ APPROVED ──refund──▶ REFUNDED
       │                    │
       └──────reject────────┴──▶ REJECTED

REFUNDED and REJECTED are terminal. Editing is not a transition: it keeps
the status and is allowed from PENDING and APPROVED only.
"""

from typing import Dict, List

from return_ledger.core.exceptions import StateConflictError
from return_ledger.models.return_order import ReturnStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

RETURN_TRANSITIONS: Dict[str, List[str]] = {
    ReturnStatus.PENDING.value: [
        ReturnStatus.APPROVED.value,
        ReturnStatus.REJECTED.value,
    ],
    ReturnStatus.APPROVED.value: [
        ReturnStatus.REFUNDED.value,
        ReturnStatus.REJECTED.value,
    ],
    ReturnStatus.REFUNDED.value: [],    # Terminal
    ReturnStatus.REJECTED.value: [],    # Terminal
}

EDITABLE_STATUSES = (ReturnStatus.PENDING.value, ReturnStatus.APPROVED.value)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in RETURN_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return RETURN_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Raise StateConflictError unless ``current_status -> new_status`` is legal.

    A same-status "transition" is not legal: rejecting a rejected return fails.
    """
    if can_transition(current_status, new_status):
        return

    allowed = get_allowed_transitions(current_status)
    if not allowed:
        message = f"Return in '{current_status}' status cannot be changed. This is a terminal state."
    else:
        message = (
            f"Cannot change return from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}"
        )
    raise StateConflictError(
        message,
        {"current_status": current_status, "requested_status": new_status, "allowed": allowed},
    )


def validate_editable(current_status: str) -> None:
    """Raise StateConflictError unless the return can still be edited."""
    if current_status not in EDITABLE_STATUSES:
        raise StateConflictError(
            f"Cannot edit a return in '{current_status}' status",
            {"current_status": current_status, "editable": list(EDITABLE_STATUSES)},
        )
