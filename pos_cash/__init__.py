"""
pos_cash
========

Responsibility:
    Cash drawer accounting for the venue back office -- cash sessions, the
    append-only movement ledger, per-method breakdowns, tiered discrepancy
    policy, the treasury hand-off at close, closure blockers from the order
    subsystem, closing receipts and daily summaries.

Architecture:
    Module layer (pos_cash).  May import from pos_kernel.  MUST NOT be
    imported by pos_kernel.

Invariants enforced:
    - One open session per employee.
    - Only sales feed a session's running expectation.
    - A session with counted cash cannot close without an exact treasury
      transfer of that cash.
    - Any unfinished order blocks the close.
    - Closed sessions and their closing artifacts are immutable.

Failure modes:
    - Close rejected -> ``ClosingRejectedError`` subclass carrying the full
      ``ClosingValidationReport``; the session stays open.
    - Lost close race -> ``ConcurrencyConflictError``.
"""

from pos_cash.config import CashConfig
from pos_cash.models import (
    CashSession,
    CashTransaction,
    ClosingInput,
    ClosingReceipt,
    ClosingValidationReport,
    DailySummary,
    DiscrepancyHandling,
    DiscrepancyTier,
    PaymentMethod,
    PaymentMethodBreakdown,
    SessionStatus,
    TransactionMetadata,
    TransactionType,
    TreasuryTransfer,
)
from pos_cash.notifications import InMemoryChangeBus, NullPublisher
from pos_cash.service import CashSessionService
from pos_cash.workflows import CASH_SESSION_WORKFLOW

__all__ = [
    "CashSession",
    "CashTransaction",
    "ClosingInput",
    "ClosingReceipt",
    "ClosingValidationReport",
    "DailySummary",
    "DiscrepancyHandling",
    "DiscrepancyTier",
    "PaymentMethod",
    "PaymentMethodBreakdown",
    "SessionStatus",
    "TransactionMetadata",
    "TransactionType",
    "TreasuryTransfer",
    "InMemoryChangeBus",
    "NullPublisher",
    "CASH_SESSION_WORKFLOW",
    "CashConfig",
    "CashSessionService",
]
