"""
Interleaved writers on one cash session.

A second database session commits its change while the first is between
reading the session and writing to it.  The order gateway's
``before_next_check`` hook and a repository wrapper provide the interleaving
point, so these tests are deterministic on SQLite and PostgreSQL alike.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from pos_kernel.exceptions import (
    AlreadyOpenError,
    ConcurrencyConflictError,
    SessionClosedError,
)
from pos_cash.models import ClosingInput, SessionStatus, TransactionType
from pos_cash.repository import SqlCashSessionRepository
from pos_cash.service import CashSessionService

pytestmark = pytest.mark.slow_locks


@pytest.fixture
def other_session(session_factory):
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def count_of(employee_id, make_transfer):
    def _count(amount: str) -> ClosingInput:
        return ClosingInput(
            actual_amounts={"cash": Decimal(amount)},
            closed_by=employee_id,
            treasury_transfer=make_transfer(amount),
        )

    return _count


class TestCloseRaces:

    def test_competing_close_wins(
        self, cash_service, make_service, other_session, order_gateway, employee_id, count_of,
    ):
        cash = cash_service.open_session(employee_id, Decimal("100.00"))
        competitor = make_service(other_session)
        won = {}

        def close_elsewhere():
            won["receipt"] = competitor.close_session(cash.id, count_of("100.00"))

        order_gateway.before_next_check = close_elsewhere

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            cash_service.close_session(cash.id, count_of("100.00"))

        assert exc_info.value.reason == "already_closed"
        assert won["receipt"].receipt_number == "FECH-20240614-0001"

        # exactly one settlement, one receipt
        entries = cash_service.list_transactions(cash.id)
        transfers = [e for e in entries if e.transaction_type == TransactionType.TREASURY_TRANSFER]
        assert len(transfers) == 1
        assert cash_service.get_closing_receipt(cash.id).receipt_number == "FECH-20240614-0001"

    def test_sale_during_close_is_a_conflict(
        self, cash_service, make_service, other_session, order_gateway, employee_id, count_of,
        captured_logs,
    ):
        cash = cash_service.open_session(employee_id, Decimal("100.00"))
        terminal = make_service(other_session)
        order_gateway.before_next_check = lambda: terminal.record_sale(
            cash.id, "cash", Decimal("10.00"), processed_by=employee_id,
        )

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            cash_service.close_session(cash.id, count_of("100.00"))
        assert exc_info.value.reason == "stale_version"

        current = cash_service.get_session(cash.id)
        assert current.status == SessionStatus.OPEN
        assert current.expected_amount == Decimal("110.00")
        assert current.version == 1
        assert cash_service.get_closing_receipt(cash.id) is None

        conflicts = [r for r in captured_logs() if r["message"] == "cash_close_conflict"]
        assert conflicts[0]["seen_version"] == 0
        assert conflicts[0]["current_version"] == 1

        # recount and retry
        receipt = cash_service.close_session(cash.id, count_of("110.00"))
        assert receipt.cash_discrepancy == Decimal("0")
        assert receipt.session.version == 1

    def test_sale_after_close_is_refused(
        self, cash_service, make_service, other_session, employee_id, count_of,
    ):
        cash = cash_service.open_session(employee_id, Decimal("40.00"))
        terminal = make_service(other_session)

        cash_service.close_session(cash.id, count_of("40.00"))

        with pytest.raises(SessionClosedError):
            terminal.record_sale(cash.id, "cash", Decimal("5.00"), processed_by=employee_id)

        closed = cash_service.get_session(cash.id)
        assert closed.expected_amount == Decimal("40.00")
        assert closed.closing_amount == Decimal("40.00")
        assert [e.transaction_type for e in cash_service.list_transactions(cash.id)] == [
            TransactionType.TREASURY_TRANSFER,
        ]


class _LookupThenYield(SqlCashSessionRepository):
    """Runs ``hook`` right after the open-session lookup has answered."""

    def __init__(self, session, hook):
        super().__init__(session)
        self._hook = hook

    def find_open_session(self, employee_id):
        found = super().find_open_session(employee_id)
        hook, self._hook = self._hook, None
        if hook is not None:
            hook()
        return found


class TestOpenRace:

    def test_concurrent_open_hits_unique_index(
        self, session, make_service, other_session, order_gateway, deterministic_clock,
        employee_id,
    ):
        competitor = make_service(other_session)
        service = CashSessionService(
            session,
            order_gateway,
            clock=deterministic_clock,
            repository=_LookupThenYield(
                session, lambda: competitor.open_session(employee_id, Decimal("0")),
            ),
        )

        with pytest.raises(AlreadyOpenError):
            service.open_session(employee_id, Decimal("50.00"))

        winner = competitor.get_open_session(employee_id)
        assert winner.opening_amount == Decimal("0.00")

    def test_different_employees_do_not_collide(
        self, session, make_service, other_session, order_gateway, deterministic_clock,
    ):
        first, second = uuid4(), uuid4()
        competitor = make_service(other_session)
        service = CashSessionService(
            session,
            order_gateway,
            clock=deterministic_clock,
            repository=_LookupThenYield(
                session, lambda: competitor.open_session(second, Decimal("0")),
            ),
        )

        opened = service.open_session(first, Decimal("50.00"))
        assert opened.employee_id == first
        assert competitor.get_open_session(second) is not None


class _ReadThenYield(SqlCashSessionRepository):
    """Runs ``hook`` right after the first session read has answered."""

    def __init__(self, session, hook):
        super().__init__(session)
        self._hook = hook

    def get_session(self, session_id):
        found = super().get_session(session_id)
        hook, self._hook = self._hook, None
        if hook is not None:
            hook()
        return found


class TestRecordRace:

    def test_close_between_status_check_and_append(
        self, session, make_service, other_session, order_gateway, deterministic_clock,
        employee_id, count_of,
    ):
        opener = make_service(other_session)
        cash = opener.open_session(employee_id, Decimal("40.00"))
        terminal = CashSessionService(
            session,
            order_gateway,
            clock=deterministic_clock,
            repository=_ReadThenYield(
                session, lambda: opener.close_session(cash.id, count_of("40.00")),
            ),
        )

        # the read still saw the session open; the guarded update refuses it
        with pytest.raises(SessionClosedError):
            terminal.record_sale(cash.id, "cash", Decimal("5.00"), processed_by=employee_id)

        closed = opener.get_session(cash.id)
        assert closed.status == SessionStatus.CLOSED
        assert closed.expected_amount == Decimal("40.00")
