"""
pos_cash.workflows
==================

Responsibility:
    Declarative state machine for the cash session lifecycle.  The ledger
    checks ``record`` before every append and the service checks ``close``
    before every close; this module only declares the graph and its guards.

Architecture:
    Module layer (pos_cash).  Pure data declarations; no I/O, no imports
    from services or repositories.

Invariants enforced:
    - Transitions are immutable (frozen dataclasses).
    - ``closed`` is terminal: no transition leaves it.
    - The ``close`` transition carries every guard the close flow checks.
"""

from dataclasses import dataclass

from pos_kernel.logging_config import get_logger
from pos_cash.models import SessionStatus

logger = get_logger("cash.workflows")


@dataclass(frozen=True)
class Guard:
    """
    A condition that must be true for a transition to be allowed.

    Contract:
        Immutable predicate declaration.  The service evaluates the named
        guard at transition time; this dataclass only stores metadata.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """An edge in the workflow graph."""
    from_state: str
    to_state: str
    action: str
    guards: tuple[Guard, ...] = ()


@dataclass(frozen=True)
class Workflow:
    """
    A state machine definition.

    Contract:
        ``initial_state`` is an element of ``states``; every ``from_state``
        and ``to_state`` in ``transitions`` is an element of ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def find_transition(self, from_state: str, action: str) -> Transition | None:
        for transition in self.transitions:
            if transition.from_state == from_state and transition.action == action:
                return transition
        return None

    def allows(self, from_state: str, action: str) -> bool:
        return self.find_transition(from_state, action) is not None

    def terminal_states(self) -> tuple[str, ...]:
        sources = {t.from_state for t in self.transitions}
        return tuple(s for s in self.states if s not in sources)


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

NO_PENDING_ORDERS = Guard(
    name="no_pending_orders",
    description="No open comandas, pending counter orders or undelivered items",
)

DISCREPANCY_HANDLED = Guard(
    name="discrepancy_handled",
    description="Counting discrepancy handled as its tier requires",
)

CASH_TRANSFERRED = Guard(
    name="cash_transferred",
    description="All counted cash handed to treasury in one exact transfer",
)


# -----------------------------------------------------------------------------
# Cash session workflow
# -----------------------------------------------------------------------------

OPEN = SessionStatus.OPEN.value
CLOSED = SessionStatus.CLOSED.value

CASH_SESSION_WORKFLOW = Workflow(
    name="cash_session",
    description="Cash drawer session from opening float to treasury hand-off",
    initial_state=OPEN,
    states=(OPEN, CLOSED),
    transitions=(
        Transition(
            from_state=OPEN,
            to_state=OPEN,
            action="record",
        ),
        Transition(
            from_state=OPEN,
            to_state=CLOSED,
            action="close",
            guards=(NO_PENDING_ORDERS, DISCREPANCY_HANDLED, CASH_TRANSFERRED),
        ),
    ),
)

logger.debug(
    "cash_workflow_defined",
    extra={
        "workflow": CASH_SESSION_WORKFLOW.name,
        "transitions": [t.action for t in CASH_SESSION_WORKFLOW.transitions],
    },
)
