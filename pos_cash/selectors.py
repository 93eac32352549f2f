"""
pos_cash.selectors
==================

Responsibility:
    Read-only queries over cash sessions and their ledger: filtered search,
    date-range loads for reporting, and the last closed session of an
    employee.

Architecture:
    Module layer (pos_cash).  Extends ``pos_kernel.services.base.BaseSelector``:
    never adds, flushes, or commits.  Returns frozen DTOs.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from pos_kernel.services.base import BaseSelector
from pos_cash.models import (
    CashSession,
    CashTransaction,
    SessionFilter,
    SessionStatus,
    TransactionFilter,
)
from pos_cash.orm import CashSessionModel, CashTransactionModel


class CashSessionSelector(BaseSelector[CashSessionModel]):
    """Query side for cash sessions and transactions."""

    def __init__(self, session, decimal_places: int = 2):
        super().__init__(session)
        self._places = decimal_places

    def search_transactions(self, criteria: TransactionFilter) -> tuple[CashTransaction, ...]:
        stmt = select(CashTransactionModel)
        if criteria.session_id is not None:
            stmt = stmt.where(CashTransactionModel.session_id == criteria.session_id)
        if criteria.processed_by is not None:
            stmt = stmt.where(CashTransactionModel.processed_by == criteria.processed_by)
        if criteria.transaction_type is not None:
            stmt = stmt.where(
                CashTransactionModel.transaction_type == criteria.transaction_type.value
            )
        if criteria.payment_method is not None:
            stmt = stmt.where(
                CashTransactionModel.payment_method == criteria.payment_method.value
            )
        if criteria.processed_from is not None:
            stmt = stmt.where(CashTransactionModel.processed_at >= criteria.processed_from)
        if criteria.processed_to is not None:
            stmt = stmt.where(CashTransactionModel.processed_at < criteria.processed_to)
        if criteria.min_amount is not None:
            stmt = stmt.where(CashTransactionModel.amount >= criteria.min_amount)
        if criteria.max_amount is not None:
            stmt = stmt.where(CashTransactionModel.amount <= criteria.max_amount)
        if criteria.related_order_id is not None:
            stmt = stmt.where(CashTransactionModel.related_order_id == criteria.related_order_id)

        stmt = stmt.order_by(CashTransactionModel.processed_at.desc())
        if criteria.limit is not None:
            stmt = stmt.limit(criteria.limit)
        return tuple(m.to_dto(self._places) for m in self.session.scalars(stmt))

    def search_sessions(self, criteria: SessionFilter) -> tuple[CashSession, ...]:
        stmt = select(CashSessionModel)
        if criteria.employee_id is not None:
            stmt = stmt.where(CashSessionModel.employee_id == criteria.employee_id)
        if criteria.status is not None:
            stmt = stmt.where(CashSessionModel.status == criteria.status.value)
        if criteria.opened_from is not None:
            stmt = stmt.where(CashSessionModel.opened_at >= criteria.opened_from)
        if criteria.opened_to is not None:
            stmt = stmt.where(CashSessionModel.opened_at < criteria.opened_to)
        if criteria.has_discrepancy is True:
            stmt = stmt.where(
                CashSessionModel.cash_discrepancy.is_not(None),
                CashSessionModel.cash_discrepancy != 0,
            )
        elif criteria.has_discrepancy is False:
            stmt = stmt.where(
                (CashSessionModel.cash_discrepancy.is_(None))
                | (CashSessionModel.cash_discrepancy == 0)
            )

        stmt = stmt.order_by(CashSessionModel.opened_at.desc())
        if criteria.limit is not None:
            stmt = stmt.limit(criteria.limit)
        stmt = stmt.execution_options(populate_existing=True)
        return tuple(m.to_dto(self._places) for m in self.session.scalars(stmt))

    def sessions_opened_between(self, start: datetime, end: datetime) -> tuple[CashSession, ...]:
        return self.search_sessions(SessionFilter(opened_from=start, opened_to=end))

    def transactions_between(self, start: datetime, end: datetime) -> tuple[CashTransaction, ...]:
        return self.search_transactions(
            TransactionFilter(processed_from=start, processed_to=end)
        )

    def last_closed_session(self, employee_id: UUID) -> CashSession | None:
        model = self.session.scalars(
            select(CashSessionModel)
            .where(
                CashSessionModel.employee_id == employee_id,
                CashSessionModel.status == SessionStatus.CLOSED.value,
            )
            .order_by(CashSessionModel.closed_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).first()
        return model.to_dto(self._places) if model is not None else None
