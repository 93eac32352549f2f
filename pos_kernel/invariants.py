"""
Kernel Invariants Contract.

These invariants are structural law for cash-drawer accounting. No
CashConfig value may switch them off; configuration only tunes the
thresholds they are checked against.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across CashSessionService, TransactionLedger,
the SQL repository's conditional updates, and the ORM immutability
listeners.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Each value names one structural guarantee that holds for every closed
    cash session.
    """

    COUNT_SUMS_TO_CLOSING = "count_sums_to_closing"
    """The counted amounts per payment method sum to the session's
    closing_amount. Enforced by BreakdownCalculator.merge_counts."""

    DISCREPANCY_DEFINITION = "discrepancy_definition"
    """cash_discrepancy == closing_amount - expected_amount. Enforced by
    CashSessionService.close_session."""

    ZERO_CASH_FLOAT = "zero_cash_float"
    """Physical cash counted at close leaves the drawer through exactly one
    treasury transfer of the same amount. Enforced by
    TreasuryTransferValidator."""

    TIERED_DISCREPANCY = "tiered_discrepancy"
    """Discrepancies are justified or approved according to their tier.
    Enforced by DiscrepancyClassifier.validate_handling."""

    SINGLE_CLOSE = "single_close"
    """A session transitions open -> closed exactly once. Enforced by the
    compare-and-swap update in the repository."""

    APPEND_ONLY_LEDGER = "append_only_ledger"
    """Cash transactions are never updated or deleted. Enforced by
    pos_kernel.db.immutability."""

    SINGLE_OPEN_SESSION = "single_open_session"
    """An employee has at most one open session. Enforced by the service
    check and a partial unique index."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "pos_cash",
)
