"""
pos_cash.repository
===================

Responsibility:
    Persistence boundary for cash sessions.  ``CashSessionRepository`` is the
    contract the service depends on; ``SqlCashSessionRepository`` implements
    it on SQLAlchemy.

Architecture:
    Module layer (pos_cash).  Extends ``pos_kernel.services.base.BaseService``:
    every write flushes, none commits.  The orchestrating
    ``CashSessionService`` owns commit/rollback.

Invariants enforced:
    - Appending a transaction and bumping the session's running expectation
      and version is one conditional UPDATE guarded by ``status = 'open'``
      plus one INSERT, in the caller's transaction.
    - Closing is a compare-and-swap on ``status = 'open' AND version = :seen``.
    - One open session per employee (partial unique index; IntegrityError is
      translated to ``AlreadyOpenError``).

Failure modes:
    - ``SessionNotFoundError`` / ``SessionClosedError`` from ``append_transaction``.
    - ``AlreadyOpenError`` from ``add_session`` on a concurrent open.
    - ``ConcurrencyConflictError`` when two closes race for the first receipt
      number of a day.
    - ``PersistenceError`` wrapping any other ``SQLAlchemyError`` (chained).
"""

from __future__ import annotations

import functools
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pos_kernel.exceptions import (
    AlreadyOpenError,
    ConcurrencyConflictError,
    PersistenceError,
    PosKernelError,
    SessionClosedError,
    SessionNotFoundError,
)
from pos_kernel.db.types import round_money
from pos_kernel.logging_config import get_logger
from pos_kernel.services.base import BaseService
from pos_cash.models import (
    PAYMENT_METHOD_ORDER,
    CashSession,
    CashTransaction,
    ClosingReceipt,
    DiscrepancyHandling,
    DiscrepancyTier,
    PaymentMethodBreakdown,
    SessionStatus,
    TreasuryTransfer,
)
from pos_cash.orm import (
    CashSessionModel,
    CashTransactionModel,
    ClosingReceiptModel,
    DiscrepancyHandlingModel,
    PaymentReconciliationModel,
    ReceiptSequenceModel,
    TreasuryTransferModel,
)

logger = get_logger("cash.repository")


class CashSessionRepository(Protocol):
    """Storage operations the cash session service needs."""

    def add_session(self, session: CashSession, actor_id: UUID) -> CashSession: ...

    def get_session(self, session_id: UUID) -> CashSession | None: ...

    def find_open_session(self, employee_id: UUID) -> CashSession | None: ...

    def append_transaction(
        self, transaction: CashTransaction, expectation_delta: Decimal, actor_id: UUID,
    ) -> CashSession: ...

    def list_transactions(self, session_id: UUID) -> tuple[CashTransaction, ...]: ...

    def close_if_current(
        self,
        session_id: UUID,
        expected_version: int,
        *,
        closed_at: datetime,
        closed_by: UUID,
        closing_amount: Decimal,
        cash_discrepancy: Decimal,
        closing_notes: str | None,
    ) -> bool: ...

    def append_settlement(self, transaction: CashTransaction, actor_id: UUID) -> None: ...

    def save_closing_artifacts(
        self,
        receipt: ClosingReceipt,
        actor_id: UUID,
    ) -> None: ...

    def next_receipt_sequence(self, business_date: str, actor_id: UUID) -> int: ...

    def get_closing_receipt(self, session_id: UUID) -> ClosingReceipt | None: ...


def _translate_errors(operation: str):
    """Wrap unexpected SQLAlchemy errors in ``PersistenceError``."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except PosKernelError:
                raise
            except SQLAlchemyError as exc:
                logger.error(
                    "cash_persistence_failed",
                    extra={"operation": operation, "error": type(exc).__name__},
                )
                raise PersistenceError(operation, str(exc.__class__.__name__)) from exc

        return wrapper

    return decorator


class SqlCashSessionRepository(BaseService[CashSessionModel]):
    """
    SQLAlchemy implementation of ``CashSessionRepository``.

    Contract:
        Flush-only.  Returns frozen DTOs, never ORM instances.
    """

    def __init__(self, session, decimal_places: int = 2):
        super().__init__(session)
        self._places = decimal_places

    # =========================================================================
    # Sessions
    # =========================================================================

    def _load(self, session_id: UUID) -> CashSessionModel | None:
        # Conditional UPDATEs bypass the identity map; always refresh.
        return self.session.get(CashSessionModel, session_id, populate_existing=True)

    @_translate_errors("add_session")
    def add_session(self, session: CashSession, actor_id: UUID) -> CashSession:
        model = CashSessionModel(
            id=session.id,
            employee_id=session.employee_id,
            status=session.status.value,
            opened_at=session.opened_at,
            opening_amount=session.opening_amount,
            expected_amount=session.expected_amount,
            opening_notes=session.opening_notes,
            version=session.version,
            created_by_id=actor_id,
        )
        self.session.add(model)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise AlreadyOpenError(str(session.employee_id)) from exc
        return model.to_dto(self._places)

    @_translate_errors("get_session")
    def get_session(self, session_id: UUID) -> CashSession | None:
        model = self._load(session_id)
        return model.to_dto(self._places) if model is not None else None

    @_translate_errors("find_open_session")
    def find_open_session(self, employee_id: UUID) -> CashSession | None:
        model = self.session.scalars(
            select(CashSessionModel)
            .where(
                CashSessionModel.employee_id == employee_id,
                CashSessionModel.status == SessionStatus.OPEN.value,
            )
            .execution_options(populate_existing=True)
        ).first()
        return model.to_dto(self._places) if model is not None else None

    # =========================================================================
    # Ledger
    # =========================================================================

    @_translate_errors("append_transaction")
    def append_transaction(
        self,
        transaction: CashTransaction,
        expectation_delta: Decimal,
        actor_id: UUID,
    ) -> CashSession:
        """
        Append one ledger entry and advance the session in the same transaction.

        The session row is updated first so that, on PostgreSQL, the row lock
        serializes this append against a concurrent close.
        """
        result = self.session.execute(
            update(CashSessionModel)
            .where(
                CashSessionModel.id == transaction.session_id,
                CashSessionModel.status == SessionStatus.OPEN.value,
            )
            .values(
                expected_amount=CashSessionModel.expected_amount + expectation_delta,
                version=CashSessionModel.version + 1,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if self._load(transaction.session_id) is None:
                raise SessionNotFoundError(str(transaction.session_id))
            raise SessionClosedError(str(transaction.session_id), "record a transaction on")

        self.session.add(CashTransactionModel.from_dto(transaction, created_by_id=actor_id))
        self.session.flush()
        return self._load(transaction.session_id).to_dto(self._places)

    @_translate_errors("list_transactions")
    def list_transactions(self, session_id: UUID) -> tuple[CashTransaction, ...]:
        models = self.session.scalars(
            select(CashTransactionModel)
            .where(CashTransactionModel.session_id == session_id)
            .order_by(CashTransactionModel.processed_at, CashTransactionModel.created_at)
        ).all()
        return tuple(m.to_dto(self._places) for m in models)

    # =========================================================================
    # Close
    # =========================================================================

    @_translate_errors("close_session")
    def close_if_current(
        self,
        session_id: UUID,
        expected_version: int,
        *,
        closed_at: datetime,
        closed_by: UUID,
        closing_amount: Decimal,
        cash_discrepancy: Decimal,
        closing_notes: str | None,
    ) -> bool:
        """Flip open -> closed only if nobody closed or appended since the snapshot."""
        result = self.session.execute(
            update(CashSessionModel)
            .where(
                CashSessionModel.id == session_id,
                CashSessionModel.status == SessionStatus.OPEN.value,
                CashSessionModel.version == expected_version,
            )
            .values(
                status=SessionStatus.CLOSED.value,
                closed_at=closed_at,
                closed_by=closed_by,
                closing_amount=closing_amount,
                cash_discrepancy=cash_discrepancy,
                closing_notes=closing_notes,
                updated_by_id=closed_by,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @_translate_errors("append_settlement")
    def append_settlement(self, transaction: CashTransaction, actor_id: UUID) -> None:
        """
        Insert the closing treasury entry of a session this transaction just closed.

        Bypasses the open-status guard of ``append_transaction``; callers must
        have won ``close_if_current`` in the same transaction.
        """
        self.session.add(CashTransactionModel.from_dto(transaction, created_by_id=actor_id))
        self.session.flush()

    @_translate_errors("save_closing_artifacts")
    def save_closing_artifacts(self, receipt: ClosingReceipt, actor_id: UUID) -> None:
        session_id = receipt.session.id
        for line in receipt.breakdown:
            self.session.add(
                PaymentReconciliationModel.from_dto(line, session_id, created_by_id=actor_id)
            )
        if receipt.discrepancy_handling is not None:
            self.session.add(
                DiscrepancyHandlingModel.from_dto(
                    receipt.discrepancy_handling, session_id, created_by_id=actor_id,
                )
            )
        if receipt.treasury_transfer is not None:
            self.session.add(
                TreasuryTransferModel.from_dto(
                    receipt.treasury_transfer, session_id, created_by_id=actor_id,
                )
            )
        self.session.add(
            ClosingReceiptModel(
                session_id=session_id,
                receipt_number=receipt.receipt_number,
                tier=receipt.tier.value,
                closing_amount=receipt.closing_amount,
                expected_amount=receipt.expected_amount,
                cash_discrepancy=receipt.cash_discrepancy,
                generated_at=receipt.generated_at,
                employee_name=receipt.employee_name,
                created_by_id=actor_id,
            )
        )
        self.session.flush()

    @_translate_errors("next_receipt_sequence")
    def next_receipt_sequence(self, business_date: str, actor_id: UUID) -> int:
        result = self.session.execute(
            update(ReceiptSequenceModel)
            .where(ReceiptSequenceModel.business_date == business_date)
            .values(last_value=ReceiptSequenceModel.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.add(
                ReceiptSequenceModel(
                    business_date=business_date, last_value=1, created_by_id=actor_id,
                )
            )
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ConcurrencyConflictError(
                    "ReceiptSequence", business_date, "sequence_contention",
                ) from exc
            return 1
        return self.session.scalar(
            select(ReceiptSequenceModel.last_value)
            .where(ReceiptSequenceModel.business_date == business_date)
        )

    # =========================================================================
    # Receipt read-back
    # =========================================================================

    @_translate_errors("get_closing_receipt")
    def get_closing_receipt(self, session_id: UUID) -> ClosingReceipt | None:
        header = self.session.scalars(
            select(ClosingReceiptModel).where(ClosingReceiptModel.session_id == session_id)
        ).first()
        if header is None:
            return None

        lines: Sequence[PaymentReconciliationModel] = self.session.scalars(
            select(PaymentReconciliationModel)
            .where(PaymentReconciliationModel.session_id == session_id)
        ).all()
        handling = self.session.scalars(
            select(DiscrepancyHandlingModel)
            .where(DiscrepancyHandlingModel.session_id == session_id)
        ).first()
        transfer = self.session.scalars(
            select(TreasuryTransferModel)
            .where(TreasuryTransferModel.session_id == session_id)
        ).first()

        order = {m: i for i, m in enumerate(PAYMENT_METHOD_ORDER)}
        breakdown: tuple[PaymentMethodBreakdown, ...] = tuple(
            sorted(
                (line.to_dto(self._places) for line in lines),
                key=lambda b: order[b.payment_method],
            )
        )
        handling_dto: DiscrepancyHandling | None = (
            handling.to_dto(self._places) if handling is not None else None
        )
        transfer_dto: TreasuryTransfer | None = (
            transfer.to_dto(self._places) if transfer is not None else None
        )
        return ClosingReceipt(
            receipt_number=header.receipt_number,
            session=self._load(session_id).to_dto(self._places),
            breakdown=breakdown,
            tier=DiscrepancyTier(header.tier),
            closing_amount=self._round(header.closing_amount),
            expected_amount=self._round(header.expected_amount),
            cash_discrepancy=self._round(header.cash_discrepancy),
            generated_at=header.generated_at,
            discrepancy_handling=handling_dto,
            treasury_transfer=transfer_dto,
            employee_name=header.employee_name,
        )

    def _round(self, value: Decimal) -> Decimal:
        return round_money(value, self._places)
