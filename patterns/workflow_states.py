"""Enum-based loan state machine.

A borrow record moves through BorrowStatus values with explicit transition
validation:

    borrowed -> extended | returned
    extended -> extended | returned
    returned    (terminal)

The state definitions are independent of persistence; the lending service
applies a transition and then writes the new status to the row.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from verticals.library.errors import CatalogCode, CatalogViolation
from verticals.library.models.schemas import BorrowStatus


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

# Allowed transitions: {current_state: [allowed_next_states]}
_LOAN_TRANSITIONS: dict[BorrowStatus, list[BorrowStatus]] = {
    BorrowStatus.BORROWED: [BorrowStatus.EXTENDED, BorrowStatus.RETURNED],
    BorrowStatus.EXTENDED: [BorrowStatus.EXTENDED, BorrowStatus.RETURNED],
    BorrowStatus.RETURNED: [],  # terminal
}


def allowed_transitions(state: BorrowStatus) -> list[BorrowStatus]:
    return list(_LOAN_TRANSITIONS.get(state, []))


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

@dataclass
class LoanTransition:
    """Record of a single state transition."""

    from_state: str
    to_state: str
    timestamp: datetime
    actor: str = "system"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class LoanState:
    """Lifecycle of one borrow record.

    Usage::

        state = LoanState(loan_id=record.id, current_state=record.status)
        state.transition(BorrowStatus.EXTENDED, actor="librarian:7")
        record.status = state.current_state
    """

    loan_id: int
    current_state: BorrowStatus
    history: list[LoanTransition] = field(default_factory=list)

    def can_transition(self, to_state: BorrowStatus) -> bool:
        """Check if a transition is allowed from the current state."""
        return to_state in _LOAN_TRANSITIONS.get(self.current_state, [])

    def transition(
        self,
        to_state: BorrowStatus,
        actor: str = "system",
        metadata: dict[str, Any] | None = None,
    ) -> LoanTransition:
        """Execute a state transition.

        Raises CatalogViolation(INVALID_TRANSITION) if it is not allowed.
        """
        if not self.can_transition(to_state):
            allowed_names = [s.value for s in allowed_transitions(self.current_state)]
            raise CatalogViolation(
                CatalogCode.INVALID_TRANSITION,
                f"Loan {self.loan_id} cannot move from {self.current_state.value} "
                f"to {to_state.value}. Allowed: {allowed_names}",
                details={
                    "loan_id": self.loan_id,
                    "from": self.current_state.value,
                    "to": to_state.value,
                },
            )

        record = LoanTransition(
            from_state=self.current_state.value,
            to_state=to_state.value,
            timestamp=datetime.now(timezone.utc),
            actor=actor,
            metadata=metadata or {},
        )
        self.history.append(record)
        self.current_state = to_state
        return record

    @property
    def is_terminal(self) -> bool:
        return len(_LOAN_TRANSITIONS.get(self.current_state, [])) == 0
