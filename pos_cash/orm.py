"""
Cash Session ORM Models (``pos_cash.orm``).

Responsibility
--------------
SQLAlchemy persistence models for cash-drawer accounting -- sessions, ledger
transactions, per-method reconciliations, discrepancy handling, treasury
transfers, closing receipts, and the per-day receipt counter.  Maps the
frozen DTOs from ``models.py`` to database tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``pos_kernel.db`` and sibling
``models.py``.  MUST NOT be imported by ``pos_kernel``.

Immutability
------------
Sessions freeze once closed; every other table except the receipt counter is
append-only.  Both rules are registered here with the kernel decorators and
enforced once ``register_immutability_listeners()`` has run.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from pos_kernel.db.base import TrackedBase
from pos_kernel.db.immutability import append_only, frozen_after
from pos_kernel.db.types import round_money


def _money(value: Decimal | None, places: int) -> Decimal | None:
    if value is None:
        return None
    return round_money(value, places)


# ---------------------------------------------------------------------------
# CashSessionModel
# ---------------------------------------------------------------------------

@frozen_after("status", "closed", "CashSession")
class CashSessionModel(TrackedBase):
    """
    ORM model for ``CashSession``.

    Table: ``cash_sessions``
    """

    __tablename__ = "cash_sessions"

    employee_id: Mapped[UUID]
    status: Mapped[str] = mapped_column(String(20), default="open")
    currency: Mapped[str] = mapped_column(String(3), default="BRL")
    opened_at: Mapped[datetime]
    closed_at: Mapped[datetime | None]
    opening_amount: Mapped[Decimal]
    expected_amount: Mapped[Decimal]
    closing_amount: Mapped[Decimal | None]
    cash_discrepancy: Mapped[Decimal | None]
    opening_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    closing_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    closed_by: Mapped[UUID | None]
    version: Mapped[int] = mapped_column(default=0)

    __table_args__ = (
        Index("idx_cash_sessions_employee_id", "employee_id"),
        Index("idx_cash_sessions_opened_at", "opened_at"),
        Index("idx_cash_sessions_status", "status"),
        # One open session per employee
        Index(
            "uq_cash_sessions_one_open_per_employee",
            "employee_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )

    def to_dto(self, decimal_places: int = 2):
        from pos_cash.models import CashSession, SessionStatus
        return CashSession(
            id=self.id,
            employee_id=self.employee_id,
            status=SessionStatus(self.status),
            opened_at=self.opened_at,
            opening_amount=_money(self.opening_amount, decimal_places),
            expected_amount=_money(self.expected_amount, decimal_places),
            version=self.version,
            closed_at=self.closed_at,
            closing_amount=_money(self.closing_amount, decimal_places),
            cash_discrepancy=_money(self.cash_discrepancy, decimal_places),
            opening_notes=self.opening_notes,
            closing_notes=self.closing_notes,
            closed_by=self.closed_by,
        )

    def __repr__(self) -> str:
        return (
            f"<CashSessionModel(id={self.id!r}, employee_id={self.employee_id!r}, "
            f"status={self.status!r}, version={self.version!r})>"
        )


# ---------------------------------------------------------------------------
# CashTransactionModel
# ---------------------------------------------------------------------------

@append_only("CashTransaction")
class CashTransactionModel(TrackedBase):
    """
    ORM model for ``CashTransaction`` -- one ledger entry.

    Table: ``cash_transactions``
    """

    __tablename__ = "cash_transactions"

    session_id: Mapped[UUID] = mapped_column(ForeignKey("cash_sessions.id"))
    transaction_type: Mapped[str] = mapped_column(String(30))
    payment_method: Mapped[str] = mapped_column(String(30))
    amount: Mapped[Decimal]
    processed_by: Mapped[UUID]
    processed_at: Mapped[datetime]
    related_order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    related_transaction_id: Mapped[UUID | None]
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    authorized_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    withdrawal_purpose: Mapped[str | None] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        Index("idx_cash_transactions_session_id", "session_id"),
        Index("idx_cash_transactions_processed_at", "processed_at"),
        Index("idx_cash_transactions_processed_by", "processed_by"),
        Index("idx_cash_transactions_related_order_id", "related_order_id"),
    )

    def to_dto(self, decimal_places: int = 2):
        from pos_cash.models import (
            CashTransaction,
            PaymentMethod,
            TransactionType,
            WithdrawalPurpose,
        )
        return CashTransaction(
            id=self.id,
            session_id=self.session_id,
            transaction_type=TransactionType(self.transaction_type),
            payment_method=PaymentMethod(self.payment_method),
            amount=_money(self.amount, decimal_places),
            processed_by=self.processed_by,
            processed_at=self.processed_at,
            related_order_id=self.related_order_id,
            related_transaction_id=self.related_transaction_id,
            reference_number=self.reference_number,
            notes=self.notes,
            authorized_by=self.authorized_by,
            recipient_name=self.recipient_name,
            withdrawal_purpose=(
                WithdrawalPurpose(self.withdrawal_purpose)
                if self.withdrawal_purpose else None
            ),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "CashTransactionModel":
        return cls(
            id=dto.id,
            session_id=dto.session_id,
            transaction_type=dto.transaction_type.value,
            payment_method=dto.payment_method.value,
            amount=dto.amount,
            processed_by=dto.processed_by,
            processed_at=dto.processed_at,
            related_order_id=dto.related_order_id,
            related_transaction_id=dto.related_transaction_id,
            reference_number=dto.reference_number,
            notes=dto.notes,
            authorized_by=dto.authorized_by,
            recipient_name=dto.recipient_name,
            withdrawal_purpose=(
                dto.withdrawal_purpose.value if dto.withdrawal_purpose else None
            ),
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<CashTransactionModel(id={self.id!r}, "
            f"type={self.transaction_type!r}, method={self.payment_method!r}, "
            f"amount={self.amount!r})>"
        )


# ---------------------------------------------------------------------------
# PaymentReconciliationModel
# ---------------------------------------------------------------------------

@append_only("PaymentReconciliation")
class PaymentReconciliationModel(TrackedBase):
    """
    ORM model for ``PaymentMethodBreakdown`` as frozen at close.

    Table: ``cash_payment_reconciliations``
    """

    __tablename__ = "cash_payment_reconciliations"

    session_id: Mapped[UUID] = mapped_column(ForeignKey("cash_sessions.id"))
    payment_method: Mapped[str] = mapped_column(String(30))
    expected_amount: Mapped[Decimal]
    actual_amount: Mapped[Decimal]
    discrepancy: Mapped[Decimal]
    transaction_count: Mapped[int]

    __table_args__ = (
        UniqueConstraint(
            "session_id", "payment_method",
            name="uq_cash_payment_reconciliations_session_method",
        ),
    )

    def to_dto(self, decimal_places: int = 2):
        from pos_cash.models import PaymentMethod, PaymentMethodBreakdown
        return PaymentMethodBreakdown(
            payment_method=PaymentMethod(self.payment_method),
            expected_amount=_money(self.expected_amount, decimal_places),
            actual_amount=_money(self.actual_amount, decimal_places),
            transaction_count=self.transaction_count,
        )

    @classmethod
    def from_dto(cls, dto, session_id: UUID, created_by_id: UUID) -> "PaymentReconciliationModel":
        return cls(
            session_id=session_id,
            payment_method=dto.payment_method.value,
            expected_amount=dto.expected_amount,
            actual_amount=dto.actual_amount,
            discrepancy=dto.discrepancy,
            transaction_count=dto.transaction_count,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentReconciliationModel(session_id={self.session_id!r}, "
            f"method={self.payment_method!r})>"
        )


# ---------------------------------------------------------------------------
# DiscrepancyHandlingModel
# ---------------------------------------------------------------------------

@append_only("DiscrepancyHandling")
class DiscrepancyHandlingModel(TrackedBase):
    """
    ORM model for ``DiscrepancyHandling``.

    Table: ``cash_discrepancy_handlings``
    """

    __tablename__ = "cash_discrepancy_handlings"

    session_id: Mapped[UUID] = mapped_column(ForeignKey("cash_sessions.id"))
    discrepancy_amount: Mapped[Decimal]
    reason: Mapped[str] = mapped_column(String(2000))
    action_taken: Mapped[str] = mapped_column(String(20))
    approved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", name="uq_cash_discrepancy_handlings_session"),
    )

    def to_dto(self, decimal_places: int = 2):
        from pos_cash.models import DiscrepancyAction, DiscrepancyHandling
        return DiscrepancyHandling(
            discrepancy_amount=_money(self.discrepancy_amount, decimal_places),
            reason=self.reason,
            action_taken=DiscrepancyAction(self.action_taken),
            approved_by=self.approved_by,
            resolution_notes=self.resolution_notes,
        )

    @classmethod
    def from_dto(cls, dto, session_id: UUID, created_by_id: UUID) -> "DiscrepancyHandlingModel":
        return cls(
            session_id=session_id,
            discrepancy_amount=dto.discrepancy_amount,
            reason=dto.reason,
            action_taken=dto.action_taken.value,
            approved_by=dto.approved_by,
            resolution_notes=dto.resolution_notes,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<DiscrepancyHandlingModel(session_id={self.session_id!r}, "
            f"amount={self.discrepancy_amount!r}, action={self.action_taken!r})>"
        )


# ---------------------------------------------------------------------------
# TreasuryTransferModel
# ---------------------------------------------------------------------------

@append_only("TreasuryTransfer")
class TreasuryTransferModel(TrackedBase):
    """
    ORM model for ``TreasuryTransfer``.

    Table: ``cash_treasury_transfers``
    """

    __tablename__ = "cash_treasury_transfers"

    session_id: Mapped[UUID] = mapped_column(ForeignKey("cash_sessions.id"))
    amount: Mapped[Decimal]
    destination: Mapped[str] = mapped_column(String(100))
    authorized_by: Mapped[str] = mapped_column(String(200))
    recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    receipt_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    transferred_at: Mapped[datetime]

    __table_args__ = (
        UniqueConstraint("session_id", name="uq_cash_treasury_transfers_session"),
    )

    def to_dto(self, decimal_places: int = 2):
        from pos_cash.models import TreasuryTransfer
        return TreasuryTransfer(
            amount=_money(self.amount, decimal_places),
            destination=self.destination,
            authorized_by=self.authorized_by,
            recipient_name=self.recipient_name,
            receipt_number=self.receipt_number,
            notes=self.notes,
            transferred_at=self.transferred_at,
        )

    @classmethod
    def from_dto(cls, dto, session_id: UUID, created_by_id: UUID) -> "TreasuryTransferModel":
        return cls(
            session_id=session_id,
            amount=dto.amount,
            destination=dto.destination,
            authorized_by=dto.authorized_by,
            recipient_name=dto.recipient_name,
            receipt_number=dto.receipt_number,
            notes=dto.notes,
            transferred_at=dto.transferred_at,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<TreasuryTransferModel(session_id={self.session_id!r}, "
            f"amount={self.amount!r}, destination={self.destination!r})>"
        )


# ---------------------------------------------------------------------------
# ClosingReceiptModel
# ---------------------------------------------------------------------------

@append_only("ClosingReceipt")
class ClosingReceiptModel(TrackedBase):
    """
    ORM model for the header of a ``ClosingReceipt``.

    The breakdown lives in ``cash_payment_reconciliations``; handling and
    transfer in their own tables.

    Table: ``cash_closing_receipts``
    """

    __tablename__ = "cash_closing_receipts"

    session_id: Mapped[UUID] = mapped_column(ForeignKey("cash_sessions.id"))
    receipt_number: Mapped[str] = mapped_column(String(50))
    tier: Mapped[str] = mapped_column(String(30))
    closing_amount: Mapped[Decimal]
    expected_amount: Mapped[Decimal]
    cash_discrepancy: Mapped[Decimal]
    generated_at: Mapped[datetime]
    employee_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        UniqueConstraint("receipt_number", name="uq_cash_closing_receipts_number"),
        UniqueConstraint("session_id", name="uq_cash_closing_receipts_session"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClosingReceiptModel(receipt_number={self.receipt_number!r}, "
            f"session_id={self.session_id!r})>"
        )


# ---------------------------------------------------------------------------
# ReceiptSequenceModel
# ---------------------------------------------------------------------------

class ReceiptSequenceModel(TrackedBase):
    """
    Per-day monotonic counter behind receipt numbers.

    Table: ``cash_receipt_sequences``
    """

    __tablename__ = "cash_receipt_sequences"

    business_date: Mapped[str] = mapped_column(String(8))
    last_value: Mapped[int] = mapped_column(default=0)

    __table_args__ = (
        UniqueConstraint("business_date", name="uq_cash_receipt_sequences_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReceiptSequenceModel(business_date={self.business_date!r}, "
            f"last_value={self.last_value!r})>"
        )
