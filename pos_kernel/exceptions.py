"""
Typed Exception Hierarchy for the POS Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Cash-drawer accounting must report failures precisely. A rejected close has
to tell the operator *every* reason at once (short justification, missing
treasury transfer, open comandas) and the calling UI has to decide what to
render without parsing message strings.

Every exception in this module therefore:
  1. Has its own class (catch by type, not message)
  2. Has a ``code`` class attribute (machine-readable, API-safe)
  3. Carries structured data as attributes (not just a message string)

Example:
    try:
        receipt = service.close_session(session_id, closing_input)
    except ClosureBlockedError as e:
        show_blockers(e.report.blockers)
    except ClosingRejectedError as e:
        show_violations(e.report.violations)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PosKernelError (base)
    |
    +-- ValidationError
    |
    +-- CashSessionError
    |   +-- SessionNotFoundError
    |   +-- AlreadyOpenError
    |   +-- SessionClosedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ClosingRejectedError
    |   +-- ClosingValidationError
    |   +-- BusinessRuleViolationError
    |   +-- ClosureBlockedError
    |
    +-- PersistenceError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Input           | VALIDATION_ERROR            | Malformed amount, enum, or text field
----------------|-----------------------------|-----------------------------------------
Session         | SESSION_NOT_FOUND           | Session id doesn't exist
                | SESSION_ALREADY_OPEN        | Employee already has an open session
                | SESSION_CLOSED              | Appending to / closing a closed session
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENCY_CONFLICT        | Close lost a compare-and-swap race
----------------|-----------------------------|-----------------------------------------
Closing         | CLOSING_VALIDATION_FAILED   | Only input-level violations
                | BUSINESS_RULE_VIOLATION     | Treasury / approval rule broken
                | CLOSURE_BLOCKED             | Unfinished orders for the employee
----------------|-----------------------------|-----------------------------------------
Persistence     | PERSISTENCE_ERROR           | The store failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a closed/append-only record

===============================================================================
DESIGN DECISIONS
===============================================================================

1. ClosingRejectedError subclasses all carry the FULL report. The subclass
   only tells the caller the most severe category present (blockers first,
   then business rules, then plain validation).

2. ConcurrencyError is separate from CashSessionError so middleware can
   auto-retry it without retrying lifecycle misuse.

===============================================================================
"""

from typing import Any


class PosKernelError(Exception):
    """
    Base exception for all POS kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "POS_KERNEL_ERROR"


# Input validation


class ValidationError(PosKernelError):
    """Malformed input at the service boundary."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str, value: Any = None):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid {field}: {reason}")


# Session lifecycle


class CashSessionError(PosKernelError):
    """Base exception for cash session lifecycle errors."""

    code: str = "CASH_SESSION_ERROR"


class SessionNotFoundError(CashSessionError):
    """Cash session id does not exist."""

    code: str = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Cash session not found: {session_id}")


class AlreadyOpenError(CashSessionError):
    """Employee already has an open cash session."""

    code: str = "SESSION_ALREADY_OPEN"

    def __init__(self, employee_id: str, open_session_id: str | None = None):
        self.employee_id = employee_id
        self.open_session_id = open_session_id
        super().__init__(
            f"Employee {employee_id} already has an open cash session"
            + (f" ({open_session_id})" if open_session_id else "")
        )


class SessionClosedError(CashSessionError):
    """Operation requires an open session but the session is closed."""

    code: str = "SESSION_CLOSED"

    def __init__(self, session_id: str, operation: str = "modify"):
        self.session_id = session_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} cash session {session_id}: session is closed"
        )


# Concurrency


class ConcurrencyError(PosKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    A conditional update lost a race.

    ``reason`` is ``already_closed`` when another close won, or
    ``stale_version`` when a transaction landed after the caller's snapshot.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: {reason}"
        )


# Closing


class ClosingRejectedError(PosKernelError):
    """
    A close request failed one or more checks.

    The session is left open and unchanged. ``report`` lists every
    violation and blocker found, not only the first.
    """

    code: str = "CLOSING_REJECTED"

    def __init__(self, session_id: str, report: Any):
        self.session_id = session_id
        self.report = report
        super().__init__(
            f"Cannot close cash session {session_id}: {report.summary()}"
        )


class ClosingValidationError(ClosingRejectedError):
    """Close rejected for input-level problems only."""

    code: str = "CLOSING_VALIDATION_FAILED"


class BusinessRuleViolationError(ClosingRejectedError):
    """Close rejected because a cash-handling rule is not satisfied."""

    code: str = "BUSINESS_RULE_VIOLATION"


class ClosureBlockedError(ClosingRejectedError):
    """Close rejected because the employee still has unfinished orders."""

    code: str = "CLOSURE_BLOCKED"


# Persistence


class PersistenceError(PosKernelError):
    """The backing store failed; the original error is chained."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


# Immutability


class ImmutabilityError(PosKernelError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger transactions and closing artifacts are immutable from creation;
    cash sessions are immutable once closed.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
