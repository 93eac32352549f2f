"""
pos_cash.models
===============

Responsibility:
    Enumerations and frozen dataclass value objects forming the vocabulary of
    cash-drawer accounting -- sessions, ledger transactions, per-method
    breakdowns, discrepancy handling, treasury transfers, closing reports,
    receipts, and daily summaries.  No business logic; structure only.

Architecture:
    Module layer (pos_cash).  These are in-memory DTOs, NOT SQLAlchemy ORM
    models (see ``orm.py``).  They are what the service returns to callers.

Invariants enforced:
    - All monetary fields use ``Decimal`` -- never ``float``.
    - All DTOs are frozen (immutable after construction).
    - Enumerations are closed; ``parse`` rejects unknown values with a
      ``ValidationError`` at the boundary.

Failure modes:
    - ``ValidationError`` from ``<Enum>.parse`` on unknown values.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Self
from uuid import UUID

from pos_kernel.exceptions import ValidationError
from pos_kernel.logging_config import get_logger

logger = get_logger("cash.models")


class _ParsableEnum(str, Enum):
    """String enum with boundary parsing and optional legacy aliases."""

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {}

    @classmethod
    def parse(cls, value: str | Self) -> Self:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            key = cls._aliases().get(key, key)
            try:
                return cls(key)
            except ValueError:
                pass
        raise ValidationError(
            cls.__name__,
            f"unknown value {value!r}; expected one of {[m.value for m in cls]}",
            value,
        )


class SessionStatus(_ParsableEnum):
    """Cash session lifecycle states.  See ``workflows.CASH_SESSION_WORKFLOW``."""
    OPEN = "open"
    CLOSED = "closed"


class TransactionType(_ParsableEnum):
    """Kinds of cash-affecting events recorded against a session."""
    SALE = "sale"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    CASH_WITHDRAWAL = "cash_withdrawal"
    TREASURY_TRANSFER = "treasury_transfer"


class PaymentMethod(_ParsableEnum):
    """Payment methods accepted at the drawer."""
    CASH = "cash"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    PIX = "pix"
    BANK_TRANSFER = "bank_transfer"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        # Names used by the front-of-house terminals
        return {
            "dinheiro": "cash",
            "cartao_debito": "debit_card",
            "cartao_credito": "credit_card",
            "transferencia": "bank_transfer",
        }


# Fixed display / iteration order for breakdowns
PAYMENT_METHOD_ORDER: tuple[PaymentMethod, ...] = (
    PaymentMethod.CASH,
    PaymentMethod.DEBIT_CARD,
    PaymentMethod.CREDIT_CARD,
    PaymentMethod.PIX,
    PaymentMethod.BANK_TRANSFER,
)


class DiscrepancyTier(_ParsableEnum):
    """Approval tier for a counting discrepancy."""
    AUTO_ACCEPT = "auto_accept"
    NEEDS_JUSTIFICATION = "needs_justification"
    NEEDS_APPROVAL = "needs_approval"


class DiscrepancyAction(_ParsableEnum):
    """What the closing employee or manager decided about a discrepancy."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    INVESTIGATION = "investigation"
    ADJUSTMENT = "adjustment"


class WithdrawalPurpose(_ParsableEnum):
    """Why cash left the drawer mid-shift."""
    CHANGE = "change"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    OTHER = "other"


class ViolationKind(_ParsableEnum):
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"


class BlockerCategory(_ParsableEnum):
    """Kinds of unfinished work that prevent a close."""
    OPEN_COMANDA = "open_comanda"
    PENDING_COUNTER_ORDER = "pending_counter_order"
    UNDELIVERED_ITEM = "undelivered_item"


# ---------------------------------------------------------------------------
# Sessions and ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CashSession:
    """
    One employee's cash drawer, from open to close.

    ``expected_amount`` is the running expectation: opening amount plus all
    sales.  ``version`` increases with every recorded transaction and is what
    the close compare-and-swap checks.
    """
    id: UUID
    employee_id: UUID
    status: SessionStatus
    opened_at: datetime
    opening_amount: Decimal
    expected_amount: Decimal
    version: int = 0
    closed_at: datetime | None = None
    closing_amount: Decimal | None = None
    cash_discrepancy: Decimal | None = None
    opening_notes: str | None = None
    closing_notes: str | None = None
    closed_by: UUID | None = None

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN


@dataclass(frozen=True)
class TransactionMetadata:
    """Optional context attached to a recorded transaction."""
    processed_by: UUID
    related_order_id: str | None = None
    related_transaction_id: UUID | None = None
    reference_number: str | None = None
    notes: str | None = None
    authorized_by: str | None = None
    recipient_name: str | None = None
    withdrawal_purpose: WithdrawalPurpose | None = None


@dataclass(frozen=True)
class CashTransaction:
    """
    An append-only ledger entry.

    ``amount`` is signed: sales and positive adjustments add to cash on hand,
    refunds, withdrawals and treasury transfers are stored negative.
    """
    id: UUID
    session_id: UUID
    transaction_type: TransactionType
    payment_method: PaymentMethod
    amount: Decimal
    processed_by: UUID
    processed_at: datetime
    related_order_id: str | None = None
    related_transaction_id: UUID | None = None
    reference_number: str | None = None
    notes: str | None = None
    authorized_by: str | None = None
    recipient_name: str | None = None
    withdrawal_purpose: WithdrawalPurpose | None = None


# ---------------------------------------------------------------------------
# Breakdown
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MethodExpectation:
    """What the ledger says should be in one payment method."""
    payment_method: PaymentMethod
    expected_amount: Decimal
    transaction_count: int = 0


@dataclass(frozen=True)
class PaymentMethodBreakdown:
    """Expected vs counted for one payment method at close."""
    payment_method: PaymentMethod
    expected_amount: Decimal
    actual_amount: Decimal
    transaction_count: int

    @property
    def discrepancy(self) -> Decimal:
        return self.actual_amount - self.expected_amount


# ---------------------------------------------------------------------------
# Closing inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DiscrepancyHandling:
    """Justification (and approval, when required) for a counting gap."""
    discrepancy_amount: Decimal
    reason: str
    action_taken: DiscrepancyAction = DiscrepancyAction.PENDING
    approved_by: str | None = None
    resolution_notes: str | None = None


@dataclass(frozen=True)
class TreasuryTransfer:
    """Physical cash handed from the drawer to the treasury at close."""
    amount: Decimal
    destination: str
    authorized_by: str
    recipient_name: str | None = None
    receipt_number: str | None = None
    notes: str | None = None
    transferred_at: datetime | None = None


@dataclass(frozen=True)
class ClosingInput:
    """
    Everything the employee submits to close a session.

    ``actual_amounts`` maps payment methods (or their names) to counted
    amounts; methods left out are counted as zero.
    """
    actual_amounts: Mapping[PaymentMethod | str, Decimal]
    closed_by: UUID
    discrepancy_handling: DiscrepancyHandling | None = None
    treasury_transfer: TreasuryTransfer | None = None
    notes: str | None = None


# ---------------------------------------------------------------------------
# Validation report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClosingViolation:
    """One reason a close cannot proceed."""
    kind: ViolationKind
    code: str
    message: str
    field: str | None = None

    @classmethod
    def from_validation_error(cls, exc: ValidationError, code: str) -> ClosingViolation:
        return cls(kind=ViolationKind.VALIDATION, code=code, message=str(exc), field=exc.field)


@dataclass(frozen=True)
class Blocker:
    """Unfinished orders of one category, with a sample of their ids."""
    category: BlockerCategory
    count: int
    sample_ids: tuple[str, ...]
    message: str


@dataclass(frozen=True)
class ClosingValidationReport:
    """
    Result of running every close check.

    Never fail-fast: ``violations`` and ``blockers`` hold everything found.
    """
    session_id: UUID
    breakdown: tuple[PaymentMethodBreakdown, ...]
    closing_amount: Decimal
    expected_amount: Decimal
    cash_discrepancy: Decimal
    tier: DiscrepancyTier
    violations: tuple[ClosingViolation, ...] = ()
    blockers: tuple[Blocker, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.violations and not self.blockers

    @property
    def has_business_rule_violations(self) -> bool:
        return any(v.kind == ViolationKind.BUSINESS_RULE for v in self.violations)

    @property
    def cash_actual_amount(self) -> Decimal:
        for line in self.breakdown:
            if line.payment_method == PaymentMethod.CASH:
                return line.actual_amount
        return Decimal("0")

    def violation_codes(self) -> tuple[str, ...]:
        return tuple(v.code for v in self.violations)

    def summary(self) -> str:
        parts = [b.message for b in self.blockers]
        parts.extend(v.message for v in self.violations)
        return "; ".join(parts) if parts else "no problems found"


# ---------------------------------------------------------------------------
# Receipt
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClosingReceipt:
    """Write-once record of a completed close."""
    receipt_number: str
    session: CashSession
    breakdown: tuple[PaymentMethodBreakdown, ...]
    tier: DiscrepancyTier
    closing_amount: Decimal
    expected_amount: Decimal
    cash_discrepancy: Decimal
    generated_at: datetime
    discrepancy_handling: DiscrepancyHandling | None = None
    treasury_transfer: TreasuryTransfer | None = None
    employee_name: str | None = None


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmployeeInfo:
    employee_id: UUID
    name: str
    role: str | None = None


# ---------------------------------------------------------------------------
# Search filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionFilter:
    """Criteria for ``search_transactions``; ``None`` means unrestricted."""
    session_id: UUID | None = None
    processed_by: UUID | None = None
    transaction_type: TransactionType | None = None
    payment_method: PaymentMethod | None = None
    processed_from: datetime | None = None
    processed_to: datetime | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    related_order_id: str | None = None
    limit: int | None = None


@dataclass(frozen=True)
class SessionFilter:
    """Criteria for ``search_sessions``; ``None`` means unrestricted."""
    employee_id: UUID | None = None
    status: SessionStatus | None = None
    opened_from: datetime | None = None
    opened_to: datetime | None = None
    has_discrepancy: bool | None = None
    limit: int | None = None


# ---------------------------------------------------------------------------
# Daily summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentMethodTotal:
    payment_method: PaymentMethod
    amount: Decimal
    count: int
    percentage: Decimal


@dataclass(frozen=True)
class EmployeeTotal:
    employee_id: UUID
    session_count: int
    sales_amount: Decimal
    sale_count: int
    average_ticket: Decimal


@dataclass(frozen=True)
class SessionDiscrepancy:
    session_id: UUID
    employee_id: UUID
    cash_discrepancy: Decimal


@dataclass(frozen=True)
class HourlyTotal:
    hour: int
    sale_count: int
    amount: Decimal


@dataclass(frozen=True)
class DailySummary:
    """
    Sales and cash movement for one business day.

    ``cash_balance`` is the net of every recorded movement: sales, refunds
    and adjustments, less withdrawals and treasury transfers.
    """
    day: date
    session_count: int
    open_session_count: int
    total_sales: Decimal
    sale_count: int
    total_refunds: Decimal
    total_adjustments: Decimal
    total_withdrawals: Decimal
    total_treasury_transfers: Decimal
    cash_balance: Decimal
    average_ticket: Decimal
    by_payment_method: tuple[PaymentMethodTotal, ...] = ()
    by_employee: tuple[EmployeeTotal, ...] = ()
    discrepancies: tuple[SessionDiscrepancy, ...] = ()
    peak_hours: tuple[HourlyTotal, ...] = field(default_factory=tuple)
