"""
Tests for CashSessionService: open, record, preview and close.

Runs against a real database session.  Each scenario commits through the
service exactly as a terminal would.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from pos_kernel.exceptions import (
    AlreadyOpenError,
    BusinessRuleViolationError,
    ClosingValidationError,
    ClosureBlockedError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)
from pos_cash.breakdown import INVALID_COUNT
from pos_cash.discrepancy import APPROVAL_REQUIRED, REASON_TOO_SHORT
from pos_cash.models import (
    BlockerCategory,
    ClosingInput,
    DiscrepancyTier,
    PaymentMethod,
    SessionStatus,
    TransactionType,
    WithdrawalPurpose,
)
from pos_cash.notifications import (
    CASH_SESSION_CLOSED,
    CASH_SESSION_OPENED,
    CASH_TRANSACTION_RECORDED,
)
from pos_cash.service import INVALID_AMOUNT
from pos_cash.treasury import TRANSFER_REQUIRED


class TestOpenSession:

    def test_open_sets_expectation_to_float(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("100.00"), notes="turno noite")

        assert session.status == SessionStatus.OPEN
        assert session.opening_amount == Decimal("100.00")
        assert session.expected_amount == Decimal("100.00")
        assert session.version == 0
        assert session.opening_notes == "turno noite"
        assert cash_service.get_open_session(employee_id) == session

    def test_second_open_rejected(self, cash_service, employee_id):
        first = cash_service.open_session(employee_id, Decimal("50.00"))

        with pytest.raises(AlreadyOpenError) as exc_info:
            cash_service.open_session(employee_id, Decimal("10.00"))
        assert exc_info.value.open_session_id == str(first.id)

    def test_other_employee_can_open(self, cash_service, employee_id):
        cash_service.open_session(employee_id, Decimal("50.00"))
        other = cash_service.open_session(uuid4(), Decimal("0"))
        assert other.expected_amount == Decimal("0.00")

    def test_negative_opening_rejected(self, cash_service, employee_id):
        with pytest.raises(ValidationError):
            cash_service.open_session(employee_id, Decimal("-1.00"))
        assert cash_service.get_open_session(employee_id) is None

    def test_float_opening_rejected(self, cash_service, employee_id):
        with pytest.raises(ValidationError):
            cash_service.open_session(employee_id, 100.0)

    def test_open_logged_and_published(self, cash_service, employee_id, change_bus, captured_logs):
        session = cash_service.open_session(employee_id, Decimal("20.00"))

        opened = [r for r in captured_logs() if r["message"] == "cash_session_opened"]
        assert len(opened) == 1
        assert opened[0]["session_id"] == str(session.id)
        assert opened[0]["opening_amount"] == "20.00"
        assert [e.event_type for e in change_bus.history] == [CASH_SESSION_OPENED]


class TestRecordTransaction:

    def test_sale_moves_expectation(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        cash_service.record_sale(session.id, "cash", Decimal("50.00"), processed_by=employee_id)
        cash_service.record_sale(session.id, "pix", "25.50", processed_by=employee_id)

        current = cash_service.get_session(session.id)
        assert current.expected_amount == Decimal("175.50")
        assert current.version == 2

    def test_non_sales_do_not_move_expectation(
        self, cash_service, employee_id, deterministic_clock,
    ):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        sale = cash_service.record_sale(session.id, "cash", Decimal("40.00"), processed_by=employee_id)
        deterministic_clock.tick()
        cash_service.record_refund(
            session.id, "cash", Decimal("10.00"), processed_by=employee_id,
            original_transaction_id=sale.id,
        )
        deterministic_clock.tick()
        cash_service.record_adjustment(
            session.id, Decimal("3.00"), processed_by=employee_id, operation="subtract",
        )
        deterministic_clock.tick()
        cash_service.record_cash_withdrawal(
            session.id, Decimal("20.00"), purpose="expense",
            authorized_by="Gerente Paulo", processed_by=employee_id, recipient_name="Gelo SA",
        )

        current = cash_service.get_session(session.id)
        assert current.expected_amount == Decimal("140.00")
        assert current.version == 4
        assert cash_service.cash_on_hand(session.id) == Decimal("107.00")

        entries = cash_service.list_transactions(session.id)
        assert [e.transaction_type for e in entries] == [
            TransactionType.SALE,
            TransactionType.REFUND,
            TransactionType.ADJUSTMENT,
            TransactionType.CASH_WITHDRAWAL,
        ]
        assert [e.amount for e in entries] == [
            Decimal("40.00"), Decimal("-10.00"), Decimal("-3.00"), Decimal("-20.00"),
        ]
        assert entries[1].related_transaction_id == sale.id
        assert entries[3].withdrawal_purpose == WithdrawalPurpose.EXPENSE
        assert entries[3].authorized_by == "Gerente Paulo"

    def test_generic_record_with_aliases(self, cash_service, employee_id):
        from pos_cash.models import TransactionMetadata

        session = cash_service.open_session(employee_id, Decimal("0"))
        entry = cash_service.record_transaction(
            session.id, "sale", "cartao_credito", Decimal("12.00"),
            TransactionMetadata(processed_by=employee_id, related_order_id="C-7"),
        )
        assert entry.payment_method == PaymentMethod.CREDIT_CARD
        assert entry.related_order_id == "C-7"

    def test_withdrawal_requires_authorizer(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        with pytest.raises(ValidationError) as exc_info:
            cash_service.record_cash_withdrawal(
                session.id, Decimal("10.00"), purpose="change",
                authorized_by=" ", processed_by=employee_id,
            )
        assert exc_info.value.field == "authorized_by"
        assert cash_service.list_transactions(session.id) == ()

    def test_refund_must_reference_sale_of_session(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        with pytest.raises(ValidationError):
            cash_service.record_refund(
                session.id, "cash", Decimal("5.00"), processed_by=employee_id,
                original_transaction_id=uuid4(),
            )

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    def test_bad_sale_amounts(self, cash_service, employee_id, amount):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        with pytest.raises(ValidationError):
            cash_service.record_sale(session.id, "cash", amount, processed_by=employee_id)
        assert cash_service.get_session(session.id).version == 0

    def test_adjustment_operation_validated(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        with pytest.raises(ValidationError):
            cash_service.record_adjustment(
                session.id, Decimal("1.00"), processed_by=employee_id, operation="multiply",
            )
        with pytest.raises(ValidationError):
            cash_service.record_adjustment(
                session.id, Decimal("-1.00"), processed_by=employee_id, operation="add",
            )
        entry = cash_service.record_adjustment(session.id, Decimal("-2.50"), processed_by=employee_id)
        assert entry.amount == Decimal("-2.50")

    def test_unknown_session(self, cash_service, employee_id):
        with pytest.raises(SessionNotFoundError):
            cash_service.record_sale(uuid4(), "cash", Decimal("1.00"), processed_by=employee_id)

    def test_transaction_published(self, cash_service, employee_id, change_bus):
        session = cash_service.open_session(employee_id, Decimal("10.00"))
        cash_service.record_sale(session.id, "pix", Decimal("5.00"), processed_by=employee_id)

        event = change_bus.history[-1]
        assert event.event_type == CASH_TRANSACTION_RECORDED
        assert event.payload["expected_amount"] == "15.00"
        assert event.payload["payment_method"] == "pix"


class TestBreakdown:

    def test_compute_breakdown_idempotent(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        cash_service.record_sale(session.id, "cash", Decimal("50.00"), processed_by=employee_id)
        cash_service.record_sale(session.id, "debit_card", Decimal("20.00"), processed_by=employee_id)

        first = cash_service.compute_breakdown(session.id)
        assert first[PaymentMethod.CASH].expected_amount == Decimal("150.00")
        assert first[PaymentMethod.DEBIT_CARD].transaction_count == 1
        assert cash_service.compute_breakdown(session.id) == first

    def test_validate_cash_count(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        breakdown = cash_service.validate_cash_count(session.id, {"cash": Decimal("98.00")})
        assert breakdown[0].payment_method == PaymentMethod.CASH
        assert breakdown[0].discrepancy == Decimal("-2.00")

    def test_unknown_session(self, cash_service):
        with pytest.raises(SessionNotFoundError):
            cash_service.compute_breakdown(uuid4())


class TestCloseScenarios:
    """End-to-end close flows."""

    def test_scenario_a_exact_count(self, cash_service, employee_id, make_transfer, change_bus):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        cash_service.record_sale(session.id, "cash", Decimal("50.00"), processed_by=employee_id)
        assert cash_service.compute_breakdown(session.id)[PaymentMethod.CASH].expected_amount == (
            Decimal("150.00")
        )

        receipt = cash_service.close_session(session.id, ClosingInput(
            actual_amounts={"cash": Decimal("150.00")},
            closed_by=employee_id,
            treasury_transfer=make_transfer("150.00"),
        ))

        assert receipt.tier == DiscrepancyTier.AUTO_ACCEPT
        assert receipt.closing_amount == Decimal("150.00")
        assert receipt.expected_amount == Decimal("150.00")
        assert receipt.cash_discrepancy == Decimal("0.00")
        assert receipt.receipt_number == "FECH-20240614-0001"
        assert receipt.employee_name == "Ana Souza"
        assert sum(b.actual_amount for b in receipt.breakdown) == receipt.closing_amount
        assert receipt.session.status == SessionStatus.CLOSED
        assert receipt.session.closed_by == employee_id
        assert receipt.session.closing_amount == Decimal("150.00")
        assert receipt.treasury_transfer.transferred_at is not None

        # the hand-off is on the ledger and empties the drawer
        (settlement,) = [
            e for e in cash_service.list_transactions(session.id)
            if e.transaction_type == TransactionType.TREASURY_TRANSFER
        ]
        assert settlement.amount == Decimal("-150.00")
        assert settlement.recipient_name == "Carlos Tesouraria"
        assert cash_service.cash_on_hand(session.id) == Decimal("0.00")
        assert cash_service.get_open_session(employee_id) is None
        assert change_bus.history[-1].event_type == CASH_SESSION_CLOSED

    def test_scenario_b_justification_length(
        self, cash_service, employee_id, make_transfer, make_handling,
    ):
        session = cash_service.open_session(employee_id, Decimal("100.00"))

        short = ClosingInput(
            actual_amounts={"cash": Decimal("110.00")},
            closed_by=employee_id,
            discrepancy_handling=make_handling("10.00", "abc"),
            treasury_transfer=make_transfer("110.00"),
        )
        with pytest.raises(ClosingValidationError) as exc_info:
            cash_service.close_session(session.id, short)
        assert exc_info.value.report.violation_codes() == (REASON_TOO_SHORT,)
        assert exc_info.value.report.tier == DiscrepancyTier.NEEDS_JUSTIFICATION
        assert cash_service.get_session(session.id).status == SessionStatus.OPEN

        ok = ClosingInput(
            actual_amounts={"cash": Decimal("110.00")},
            closed_by=employee_id,
            discrepancy_handling=make_handling("10.00", "gorjet"),
            treasury_transfer=make_transfer("110.00"),
        )
        receipt = cash_service.close_session(session.id, ok)
        assert receipt.cash_discrepancy == Decimal("10.00")
        assert receipt.discrepancy_handling.reason == "gorjet"

    def test_scenario_c_approval_required(
        self, cash_service, employee_id, make_transfer, make_handling,
    ):
        session = cash_service.open_session(employee_id, Decimal("100.00"))

        missing = ClosingInput(
            actual_amounts={"cash": Decimal("40.00")},
            closed_by=employee_id,
            discrepancy_handling=make_handling("-60.00", "note missing from drawer"),
            treasury_transfer=make_transfer("40.00"),
        )
        with pytest.raises(BusinessRuleViolationError) as exc_info:
            cash_service.close_session(session.id, missing)
        assert exc_info.value.report.violation_codes() == (APPROVAL_REQUIRED,)

        approved = ClosingInput(
            actual_amounts={"cash": Decimal("40.00")},
            closed_by=employee_id,
            discrepancy_handling=make_handling(
                "-60.00", "troco errado", approved_by="Gerente Paulo",
            ),
            treasury_transfer=make_transfer("40.00"),
        )
        receipt = cash_service.close_session(session.id, approved)
        assert receipt.tier == DiscrepancyTier.NEEDS_APPROVAL
        assert receipt.discrepancy_handling.approved_by == "Gerente Paulo"

    def test_scenario_d_transfer_required(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("200.00"))

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            cash_service.close_session(session.id, ClosingInput(
                actual_amounts={"cash": Decimal("200.00")},
                closed_by=employee_id,
            ))
        report = exc_info.value.report
        assert report.violation_codes() == (TRANSFER_REQUIRED,)
        assert "200.00" in report.violations[0].message
        assert "200.00" in str(exc_info.value)
        assert cash_service.get_session(session.id).status == SessionStatus.OPEN

    def test_scenario_e_open_comanda_blocks(
        self, cash_service, employee_id, make_transfer, order_gateway,
    ):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        order_gateway.open_comandas[employee_id].append("C-42")

        with pytest.raises(ClosureBlockedError) as exc_info:
            cash_service.close_session(session.id, ClosingInput(
                actual_amounts={"cash": Decimal("100.00")},
                closed_by=employee_id,
                treasury_transfer=make_transfer("100.00"),
            ))
        blockers = exc_info.value.report.blockers
        assert [b.category for b in blockers] == [BlockerCategory.OPEN_COMANDA]
        assert blockers[0].sample_ids == ("C-42",)
        assert "C-42" in str(exc_info.value)

    def test_blockers_win_over_other_problems(self, cash_service, employee_id, order_gateway):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        order_gateway.undelivered_items[employee_id].append("I-1")

        with pytest.raises(ClosureBlockedError) as exc_info:
            cash_service.close_session(session.id, ClosingInput(
                actual_amounts={"cash": Decimal("20.00")},
                closed_by=employee_id,
            ))
        report = exc_info.value.report
        # every problem is reported, not just the first
        assert set(report.violation_codes()) >= {TRANSFER_REQUIRED, "JUSTIFICATION_REQUIRED"}

    def test_zero_cash_needs_no_transfer(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("0"))
        cash_service.record_sale(session.id, "pix", Decimal("80.00"), processed_by=employee_id)

        receipt = cash_service.close_session(session.id, ClosingInput(
            actual_amounts={"pix": Decimal("80.00")},
            closed_by=employee_id,
        ))
        assert receipt.treasury_transfer is None
        assert receipt.closing_amount == Decimal("80.00")
        assert all(
            e.transaction_type != TransactionType.TREASURY_TRANSFER
            for e in cash_service.list_transactions(session.id)
        )

    def test_transfer_at_zero_cash_not_settled(self, cash_service, employee_id, make_transfer):
        session = cash_service.open_session(employee_id, Decimal("0"))
        cash_service.record_sale(session.id, "pix", Decimal("80.00"), processed_by=employee_id)

        receipt = cash_service.close_session(session.id, ClosingInput(
            actual_amounts={"pix": Decimal("80.00")},
            closed_by=employee_id,
            treasury_transfer=make_transfer("50.00"),
        ))

        assert receipt.treasury_transfer is None
        assert all(
            e.transaction_type != TransactionType.TREASURY_TRANSFER
            for e in cash_service.list_transactions(session.id)
        )
        assert cash_service.cash_on_hand(session.id) == Decimal("0.00")

    def test_float_transfer_amount_rejected(self, cash_service, employee_id, make_transfer):
        session = cash_service.open_session(employee_id, Decimal("10.00"))
        with pytest.raises(ClosingValidationError) as exc_info:
            cash_service.close_session(session.id, ClosingInput(
                actual_amounts={"cash": Decimal("10.00")},
                closed_by=employee_id,
                treasury_transfer=make_transfer(10.0),
            ))
        (violation,) = exc_info.value.report.violations
        assert violation.code == INVALID_AMOUNT
        assert violation.field == "treasury_transfer.amount"

    def test_bad_count_reported_with_other_problems(
        self, cash_service, employee_id, make_handling,
    ):
        session = cash_service.open_session(employee_id, Decimal("10.00"))

        with pytest.raises(ClosingValidationError) as exc_info:
            cash_service.close_session(session.id, ClosingInput(
                actual_amounts={"cash": Decimal("-1.00"), "pix": Decimal("20.00")},
                closed_by=employee_id,
                discrepancy_handling=make_handling("10.00", "ab"),
            ))
        report = exc_info.value.report
        assert report.violation_codes() == (INVALID_COUNT, REASON_TOO_SHORT)
        assert report.violations[0].field == "actual_amounts[cash]"
        assert report.closing_amount == Decimal("20.00")
        assert cash_service.get_session(session.id).status == SessionStatus.OPEN

    def test_bad_handling_amount_reported_with_other_problems(
        self, cash_service, employee_id, make_handling,
    ):
        session = cash_service.open_session(employee_id, Decimal("100.00"))

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            cash_service.close_session(session.id, ClosingInput(
                actual_amounts={"cash": Decimal("110.00")},
                closed_by=employee_id,
                discrepancy_handling=make_handling(Decimal("10.005"), "abc"),
            ))
        assert exc_info.value.report.violation_codes() == (
            INVALID_AMOUNT, REASON_TOO_SHORT, TRANSFER_REQUIRED,
        )

    def test_rejection_logged_as_warning(self, cash_service, employee_id, captured_logs):
        session = cash_service.open_session(employee_id, Decimal("50.00"))
        with pytest.raises(BusinessRuleViolationError):
            cash_service.close_session(session.id, ClosingInput(
                actual_amounts={"cash": Decimal("50.00")},
                closed_by=employee_id,
            ))
        rejected = [r for r in captured_logs() if r["message"] == "cash_close_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["level"] == "WARNING"
        assert rejected[0]["violations"] == [TRANSFER_REQUIRED]


class TestAfterClose:

    @pytest.fixture
    def closed(self, cash_service, employee_id, make_transfer):
        session = cash_service.open_session(employee_id, Decimal("30.00"))
        cash_service.close_session(session.id, ClosingInput(
            actual_amounts={"cash": Decimal("30.00")},
            closed_by=employee_id,
            treasury_transfer=make_transfer("30.00"),
        ))
        return session

    def test_record_on_closed_session(self, cash_service, employee_id, closed):
        with pytest.raises(SessionClosedError):
            cash_service.record_sale(closed.id, "cash", Decimal("1.00"), processed_by=employee_id)
        assert cash_service.get_session(closed.id).closing_amount == Decimal("30.00")

    def test_close_twice(self, cash_service, employee_id, closed, make_transfer):
        with pytest.raises(SessionClosedError):
            cash_service.close_session(closed.id, ClosingInput(
                actual_amounts={"cash": Decimal("30.00")},
                closed_by=employee_id,
                treasury_transfer=make_transfer("30.00"),
            ))

    def test_preview_on_closed_session(self, cash_service, employee_id, closed):
        with pytest.raises(SessionClosedError):
            cash_service.validate_closure(closed.id, ClosingInput(
                actual_amounts={}, closed_by=employee_id,
            ))

    def test_reopen_after_close(self, cash_service, employee_id, closed):
        again = cash_service.open_session(employee_id, Decimal("0"))
        assert again.id != closed.id

    def test_receipt_read_back(self, cash_service, closed):
        receipt = cash_service.get_closing_receipt(closed.id)
        assert receipt.receipt_number == "FECH-20240614-0001"
        assert receipt.closing_amount == Decimal("30.00")
        assert receipt.treasury_transfer.amount == Decimal("30.00")
        assert receipt.treasury_transfer.destination == "cofre"
        assert [b.payment_method for b in receipt.breakdown][0] == PaymentMethod.CASH
        assert receipt.session.status == SessionStatus.CLOSED

    def test_receipt_numbers_increment_per_day(
        self, cash_service, closed, make_transfer, deterministic_clock,
    ):
        other = uuid4()
        session = cash_service.open_session(other, Decimal("5.00"))
        receipt = cash_service.close_session(session.id, ClosingInput(
            actual_amounts={"cash": Decimal("5.00")},
            closed_by=other,
            treasury_transfer=make_transfer("5.00"),
        ))
        assert receipt.receipt_number == "FECH-20240614-0002"
        assert receipt.employee_name is None

        deterministic_clock.advance(24 * 3600)
        session = cash_service.open_session(other, Decimal("5.00"))
        receipt = cash_service.close_session(session.id, ClosingInput(
            actual_amounts={"cash": Decimal("5.00")},
            closed_by=other,
            treasury_transfer=make_transfer("5.00"),
        ))
        assert receipt.receipt_number == "FECH-20240615-0001"

    def test_last_closed_balance(self, cash_service, employee_id, closed):
        assert cash_service.get_last_closed_balance(employee_id) == Decimal("30.00")
        assert cash_service.get_last_closed_balance(uuid4()) == Decimal("0.00")

    def test_no_receipt_for_open_session(self, cash_service, employee_id):
        session = cash_service.open_session(uuid4(), Decimal("1.00"))
        assert cash_service.get_closing_receipt(session.id) is None


class TestValidateClosure:

    def test_preview_changes_nothing(
        self, cash_service, employee_id, make_transfer, order_gateway,
    ):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        order_gateway.pending_counter_orders[employee_id].extend(["P-1", "P-2"])

        report = cash_service.validate_closure(session.id, ClosingInput(
            actual_amounts={"cash": Decimal("95.00")},
            closed_by=employee_id,
            treasury_transfer=make_transfer("95.00"),
        ))

        assert not report.is_valid
        assert report.cash_discrepancy == Decimal("-5.00")
        assert report.tier == DiscrepancyTier.NEEDS_JUSTIFICATION
        assert report.blockers[0].count == 2
        assert cash_service.get_session(session.id) == session

    def test_clean_preview(self, cash_service, employee_id, make_transfer):
        session = cash_service.open_session(employee_id, Decimal("100.00"))
        report = cash_service.validate_closure(session.id, ClosingInput(
            actual_amounts={"cash": Decimal("100.00")},
            closed_by=employee_id,
            treasury_transfer=make_transfer("100.00"),
        ))
        assert report.is_valid
        assert report.cash_actual_amount == Decimal("100.00")

    def test_unknown_session(self, cash_service, employee_id):
        with pytest.raises(SessionNotFoundError):
            cash_service.validate_closure(uuid4(), ClosingInput(
                actual_amounts={}, closed_by=employee_id,
            ))

    def test_malformed_count_in_report(self, cash_service, employee_id):
        session = cash_service.open_session(employee_id, Decimal("0"))
        report = cash_service.validate_closure(session.id, ClosingInput(
            actual_amounts={"cash": 5.0},
            closed_by=employee_id,
        ))
        assert report.violation_codes() == (INVALID_COUNT,)
        assert report.closing_amount == Decimal("0")
