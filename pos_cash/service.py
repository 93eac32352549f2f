"""
pos_cash.service
================

Responsibility:
    Orchestrates the cash session lifecycle: opening a drawer, recording
    movements against it, previewing and performing the close, and the
    read/report paths.  Sole mutation authority over session status.

Architecture:
    Module layer (pos_cash).  Composes the ledger, breakdown calculator,
    discrepancy classifier, treasury validator, closure validator and
    receipt builder over a ``CashSessionRepository``.  Owns the
    transaction boundary: commit on success, rollback on failure.  Change
    notifications are published only after commit.

Invariants enforced:
    - One open session per employee (service check backed by a partial
      unique index).
    - Ledger append, running expectation and version bump are one write.
    - A close is all-or-nothing: status flip, treasury ledger entry,
      reconciliation lines, discrepancy handling, transfer and receipt are
      committed together, or the session is left open and unchanged.
    - Close is a compare-and-swap on the version seen when the checks ran.
    - Every rejected close carries the full report of what is wrong.

Failure modes:
    - ``ValidationError``: malformed input.
    - ``SessionNotFoundError`` / ``SessionClosedError`` / ``AlreadyOpenError``.
    - ``ClosureBlockedError`` / ``BusinessRuleViolationError`` /
      ``ClosingValidationError``: close rejected; report attached.
    - ``ConcurrencyConflictError``: the session changed or closed while the
      close was being checked.  Retry is up to the caller.
    - ``PersistenceError``: store failure.

Usage::

    service = CashSessionService(session, order_gateway, clock=clock)
    cash = service.open_session(employee_id, Decimal("100.00"))
    service.record_sale(cash.id, "cash", Decimal("50.00"), processed_by=employee_id)
    receipt = service.close_session(cash.id, ClosingInput(
        actual_amounts={"cash": Decimal("150.00")},
        closed_by=employee_id,
        treasury_transfer=TreasuryTransfer(
            amount=Decimal("150.00"), destination="safe",
            authorized_by="manager", recipient_name="Ana",
        ),
    ))
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from pos_kernel.db.types import ZERO, to_money
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.exceptions import (
    AlreadyOpenError,
    BusinessRuleViolationError,
    ClosingValidationError,
    ClosureBlockedError,
    ConcurrencyConflictError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)
from pos_kernel.logging_config import LogContext, get_logger
from pos_cash.breakdown import (
    BreakdownCalculator,
    breakdown_from_counts,
    expected_from_entries,
)
from pos_cash.closure import ClosureValidator, OrderGateway
from pos_cash.config import CashConfig
from pos_cash.discrepancy import DiscrepancyClassifier
from pos_cash.ledger import TransactionLedger
from pos_cash.models import (
    CashSession,
    CashTransaction,
    ClosingInput,
    ClosingReceipt,
    ClosingValidationReport,
    ClosingViolation,
    DailySummary,
    DiscrepancyHandling,
    EmployeeInfo,
    MethodExpectation,
    PaymentMethod,
    PaymentMethodBreakdown,
    SessionFilter,
    SessionStatus,
    TransactionFilter,
    TransactionMetadata,
    TransactionType,
    TreasuryTransfer,
    WithdrawalPurpose,
)
from pos_cash.notifications import (
    ChangePublisher,
    NullPublisher,
    session_closed_event,
    session_opened_event,
    transaction_recorded_event,
)
from pos_cash.receipt import ClosingReceiptBuilder
from pos_cash.repository import CashSessionRepository, SqlCashSessionRepository
from pos_cash.selectors import CashSessionSelector
from pos_cash.summary import DailySummaryBuilder
from pos_cash.treasury import TreasuryTransferValidator
from pos_cash.workflows import CASH_SESSION_WORKFLOW

logger = get_logger("cash.service")

INVALID_AMOUNT = "INVALID_AMOUNT"

_ADJUSTMENT_OPERATIONS = ("add", "subtract")


class IdentityDirectory(Protocol):
    """Looks up display information for an employee."""

    def describe(self, employee_id: UUID) -> EmployeeInfo | None: ...


class CashSessionService:
    """
    Cash session lifecycle and reconciliation.

    Contract:
        Each public write method either commits and returns, or rolls back
        and raises.  Read methods never write.

    Guarantees:
        - All monetary amounts are ``Decimal``; floats are rejected.
        - Clock is injected; ``datetime.now()`` is never called directly.
        - Notifications go out only for committed changes.

    Non-goals:
        - Does NOT authenticate callers.
        - Does NOT render or print receipts.
        - Does NOT retry on conflict.
    """

    def __init__(
        self,
        session: Session,
        order_gateway: OrderGateway,
        config: CashConfig | None = None,
        clock: Clock | None = None,
        identity: IdentityDirectory | None = None,
        publisher: ChangePublisher | None = None,
        repository: CashSessionRepository | None = None,
    ):
        self._session = session
        self._config = config or CashConfig()
        self._clock = clock or SystemClock()
        self._identity = identity
        self._publisher = publisher or NullPublisher()
        places = self._config.decimal_places
        self._places = places

        self._repository = repository or SqlCashSessionRepository(session, places)
        self._selector = CashSessionSelector(session, places)

        self._ledger = TransactionLedger(self._repository, self._clock, places)
        self._breakdown = BreakdownCalculator(self._repository, places)

        # Stateless policy
        self._classifier = DiscrepancyClassifier(self._config)
        self._treasury = TreasuryTransferValidator(self._config)
        self._closure = ClosureValidator(order_gateway, self._config)
        self._receipts = ClosingReceiptBuilder(self._config)
        self._summaries = DailySummaryBuilder(self._config)

    # =========================================================================
    # Open
    # =========================================================================

    def open_session(
        self,
        employee_id: UUID,
        opening_amount: Decimal | int | str,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> CashSession:
        """
        Open a cash drawer for ``employee_id`` with an opening float.

        Raises:
            ValidationError: Negative or malformed opening amount.
            AlreadyOpenError: The employee already has an open session.
        """
        amount = to_money(opening_amount, "opening_amount", self._places)
        if amount < ZERO:
            raise ValidationError("opening_amount", "cannot be negative", opening_amount)
        actor = actor_id or employee_id

        with LogContext.bind(employee_id=employee_id, actor_id=actor):
            try:
                existing = self._repository.find_open_session(employee_id)
                if existing is not None:
                    raise AlreadyOpenError(str(employee_id), str(existing.id))

                opened = self._repository.add_session(
                    CashSession(
                        id=uuid4(),
                        employee_id=employee_id,
                        status=SessionStatus(CASH_SESSION_WORKFLOW.initial_state),
                        opened_at=self._clock.now_utc(),
                        opening_amount=amount,
                        expected_amount=amount,
                        opening_notes=notes,
                    ),
                    actor_id=actor,
                )
                self._session.commit()
            except AlreadyOpenError:
                self._session.rollback()
                logger.warning(
                    "cash_session_open_rejected",
                    extra={"employee_id": str(employee_id), "reason": "already_open"},
                )
                raise
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "cash_session_opened",
                extra={
                    "session_id": str(opened.id),
                    "employee_id": str(employee_id),
                    "opening_amount": str(amount),
                },
            )
        self._publisher.publish(session_opened_event(opened))
        return opened

    # =========================================================================
    # Ledger
    # =========================================================================

    def record_transaction(
        self,
        session_id: UUID,
        transaction_type: TransactionType | str,
        payment_method: PaymentMethod | str,
        amount: Decimal | int | str,
        metadata: TransactionMetadata,
    ) -> CashTransaction:
        """
        Append one movement to an open session.

        Only sales move the running expectation.  Refunds, withdrawals and
        treasury transfers take a positive magnitude and are stored negative;
        adjustments take a signed amount.

        Raises:
            ValidationError: Zero, wrongly signed, float or unknown inputs.
            SessionNotFoundError: Unknown session.
            SessionClosedError: Session is not open.
        """
        with LogContext.bind(session_id=session_id, actor_id=metadata.processed_by):
            try:
                entry, session = self._ledger.append(
                    session_id, transaction_type, payment_method, amount, metadata,
                )
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "cash_transaction_recorded",
                extra={
                    "session_id": str(session_id),
                    "transaction_id": str(entry.id),
                    "transaction_type": entry.transaction_type.value,
                    "payment_method": entry.payment_method.value,
                    "amount": str(entry.amount),
                    "expected_amount": str(session.expected_amount),
                },
            )
        self._publisher.publish(transaction_recorded_event(session, entry))
        return entry

    def record_sale(
        self,
        session_id: UUID,
        payment_method: PaymentMethod | str,
        amount: Decimal | int | str,
        processed_by: UUID,
        related_order_id: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> CashTransaction:
        return self.record_transaction(
            session_id,
            TransactionType.SALE,
            payment_method,
            amount,
            TransactionMetadata(
                processed_by=processed_by,
                related_order_id=related_order_id,
                reference_number=reference_number,
                notes=notes,
            ),
        )

    def record_refund(
        self,
        session_id: UUID,
        payment_method: PaymentMethod | str,
        amount: Decimal | int | str,
        processed_by: UUID,
        original_transaction_id: UUID | None = None,
        related_order_id: str | None = None,
        notes: str | None = None,
    ) -> CashTransaction:
        """
        Give money back to a customer.

        When ``original_transaction_id`` is given it must be a sale of the
        same session.
        """
        self.get_session(session_id)
        if original_transaction_id is not None:
            originals = {
                e.id: e for e in self._repository.list_transactions(session_id)
            }
            original = originals.get(original_transaction_id)
            if original is None or original.transaction_type != TransactionType.SALE:
                raise ValidationError(
                    "original_transaction_id",
                    "must reference a sale of the same session",
                    original_transaction_id,
                )
        return self.record_transaction(
            session_id,
            TransactionType.REFUND,
            payment_method,
            amount,
            TransactionMetadata(
                processed_by=processed_by,
                related_order_id=related_order_id,
                related_transaction_id=original_transaction_id,
                notes=notes,
            ),
        )

    def record_adjustment(
        self,
        session_id: UUID,
        amount: Decimal | int | str,
        processed_by: UUID,
        operation: str | None = None,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        authorized_by: str | None = None,
        notes: str | None = None,
    ) -> CashTransaction:
        """
        Correct the drawer by a signed amount.

        With ``operation`` of ``"add"`` or ``"subtract"`` the amount is a
        positive magnitude and the sign comes from the operation.
        """
        value = to_money(amount, "amount", self._places)
        if operation is not None:
            if operation not in _ADJUSTMENT_OPERATIONS:
                raise ValidationError(
                    "operation", f"must be one of {list(_ADJUSTMENT_OPERATIONS)}", operation,
                )
            if value <= ZERO:
                raise ValidationError(
                    "amount", "must be a positive magnitude when an operation is given", amount,
                )
            if operation == "subtract":
                value = -value
        return self.record_transaction(
            session_id,
            TransactionType.ADJUSTMENT,
            payment_method,
            value,
            TransactionMetadata(
                processed_by=processed_by,
                authorized_by=authorized_by,
                notes=notes,
            ),
        )

    def record_cash_withdrawal(
        self,
        session_id: UUID,
        amount: Decimal | int | str,
        purpose: WithdrawalPurpose | str,
        authorized_by: str,
        processed_by: UUID,
        recipient_name: str | None = None,
        notes: str | None = None,
    ) -> CashTransaction:
        """Take physical cash out of the drawer during the shift."""
        return self.record_transaction(
            session_id,
            TransactionType.CASH_WITHDRAWAL,
            PaymentMethod.CASH,
            amount,
            TransactionMetadata(
                processed_by=processed_by,
                authorized_by=authorized_by,
                recipient_name=recipient_name,
                withdrawal_purpose=WithdrawalPurpose.parse(purpose),
                notes=notes,
            ),
        )

    # =========================================================================
    # Breakdown
    # =========================================================================

    def compute_breakdown(self, session_id: UUID) -> dict[PaymentMethod, MethodExpectation]:
        """Expected amount and sale count per payment method."""
        return self._breakdown.compute_expected_by_method(session_id)

    def validate_cash_count(
        self,
        session_id: UUID,
        actual_amounts: Mapping[PaymentMethod | str, Decimal],
    ) -> tuple[PaymentMethodBreakdown, ...]:
        """Merge a count into the expectation without any close checks."""
        expected = self._breakdown.compute_expected_by_method(session_id)
        return self._breakdown.merge_counts(expected, actual_amounts)

    def cash_on_hand(self, session_id: UUID) -> Decimal:
        """Opening float plus every signed cash movement so far."""
        return self._breakdown.compute_cash_on_hand(session_id)

    # =========================================================================
    # Close
    # =========================================================================

    def validate_closure(
        self, session_id: UUID, closing_input: ClosingInput,
    ) -> ClosingValidationReport:
        """
        Run every close check and report, changing nothing.

        Malformed counts and amounts come back as ``VALIDATION`` violations
        alongside everything else.

        Raises:
            SessionNotFoundError: Unknown session.
            SessionClosedError: Session already closed.
        """
        session = self._require_closable(session_id)
        report, _, _ = self._evaluate(session, closing_input)
        logger.debug(
            "cash_closure_previewed",
            extra={
                "session_id": str(session_id),
                "valid": report.is_valid,
                "tier": report.tier.value,
                "violations": list(report.violation_codes()),
                "blockers": [b.category.value for b in report.blockers],
            },
        )
        return report

    def close_session(
        self, session_id: UUID, closing_input: ClosingInput,
    ) -> ClosingReceipt:
        """
        Close an open session and produce its receipt.

        The checks run against a snapshot of the session.  If anything was
        recorded on it, or it was closed, between the snapshot and the write,
        the close fails with ``ConcurrencyConflictError``.

        Raises:
            ClosureBlockedError: The employee has unfinished orders.
            BusinessRuleViolationError: Treasury or approval rule broken.
            ClosingValidationError: Input-level problems only.
            ConcurrencyConflictError: Lost the compare-and-swap.
        """
        closed_by = closing_input.closed_by
        with LogContext.bind(session_id=session_id, actor_id=closed_by):
            try:
                session = self._require_closable(session_id)
                report, handling, transfer = self._evaluate(session, closing_input)

                if not report.is_valid:
                    self._reject(session, report)

                employee_name = self._employee_name(session.employee_id)
                closed_at = self._clock.now_utc()
                if transfer is not None and transfer.transferred_at is None:
                    transfer = replace(transfer, transferred_at=closed_at)

                won = self._repository.close_if_current(
                    session.id,
                    session.version,
                    closed_at=closed_at,
                    closed_by=closed_by,
                    closing_amount=report.closing_amount,
                    cash_discrepancy=report.cash_discrepancy,
                    closing_notes=closing_input.notes,
                )
                if not won:
                    self._raise_conflict(session)

                if transfer is not None:
                    self._ledger.settle(session.id, transfer, processed_by=closed_by)

                sequence = self._repository.next_receipt_sequence(
                    self._receipts.sequence_key(closed_at), actor_id=closed_by,
                )
                receipt = self._receipts.build(
                    session=self._repository.get_session(session.id),
                    breakdown=report.breakdown,
                    tier=report.tier,
                    receipt_number=self._receipts.format_number(closed_at, sequence),
                    generated_at=closed_at,
                    handling=handling,
                    transfer=transfer,
                    employee_name=employee_name,
                )
                self._repository.save_closing_artifacts(receipt, actor_id=closed_by)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "cash_session_closed",
                extra={
                    "session_id": str(session_id),
                    "employee_id": str(session.employee_id),
                    "receipt_number": receipt.receipt_number,
                    "closing_amount": str(receipt.closing_amount),
                    "expected_amount": str(receipt.expected_amount),
                    "cash_discrepancy": str(receipt.cash_discrepancy),
                    "tier": receipt.tier.value,
                },
            )
        self._publisher.publish(session_closed_event(receipt))
        return receipt

    def _require_closable(self, session_id: UUID) -> CashSession:
        session = self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        if not CASH_SESSION_WORKFLOW.allows(session.status.value, "close"):
            raise SessionClosedError(str(session_id), "close")
        return session

    def _evaluate(
        self, session: CashSession, closing_input: ClosingInput,
    ) -> tuple[ClosingValidationReport, DiscrepancyHandling | None, TreasuryTransfer | None]:
        """Every close check against one snapshot; reads only."""
        input_violations: list[ClosingViolation] = []

        handling = closing_input.discrepancy_handling
        handling_amount_ok = True
        if handling is not None:
            try:
                handling = replace(handling, discrepancy_amount=to_money(
                    handling.discrepancy_amount,
                    "discrepancy_handling.discrepancy_amount",
                    self._places,
                ))
            except ValidationError as exc:
                input_violations.append(
                    ClosingViolation.from_validation_error(exc, INVALID_AMOUNT),
                )
                handling_amount_ok = False

        transfer = closing_input.treasury_transfer
        transfer_amount_ok = True
        if transfer is not None:
            try:
                transfer = replace(transfer, amount=to_money(
                    transfer.amount, "treasury_transfer.amount", self._places,
                ))
            except ValidationError as exc:
                input_violations.append(
                    ClosingViolation.from_validation_error(exc, INVALID_AMOUNT),
                )
                transfer_amount_ok = False

        counted, count_violations = self._breakdown.collect_counts(closing_input.actual_amounts)
        entries = self._repository.list_transactions(session.id)
        breakdown = breakdown_from_counts(
            expected_from_entries(session.opening_amount, entries), counted,
        )
        closing_amount = sum((line.actual_amount for line in breakdown), ZERO)
        discrepancy = closing_amount - session.expected_amount
        tier = self._classifier.classify(discrepancy)

        if not handling_amount_ok:
            # Already reported; check the rest of the handling against the count
            handling = replace(handling, discrepancy_amount=discrepancy)

        partial = ClosingValidationReport(
            session_id=session.id,
            breakdown=breakdown,
            closing_amount=closing_amount,
            expected_amount=session.expected_amount,
            cash_discrepancy=discrepancy,
            tier=tier,
        )
        violations = [
            *count_violations,
            *input_violations,
            *self._classifier.validate_handling(tier, handling, discrepancy),
        ]
        if transfer_amount_ok:
            violations.extend(self._treasury.validate(partial.cash_actual_amount, transfer))
        if partial.cash_actual_amount <= ZERO:
            # Nothing left the drawer, so there is no hand-off to record
            transfer = None

        blockers = self._closure.gather_blockers(session.employee_id)
        report = replace(partial, violations=tuple(violations), blockers=blockers)
        return report, handling, transfer

    def _reject(self, session: CashSession, report: ClosingValidationReport) -> None:
        logger.warning(
            "cash_close_rejected",
            extra={
                "session_id": str(session.id),
                "employee_id": str(session.employee_id),
                "tier": report.tier.value,
                "cash_discrepancy": str(report.cash_discrepancy),
                "violations": list(report.violation_codes()),
                "blockers": [b.category.value for b in report.blockers],
            },
        )
        if report.blockers:
            raise ClosureBlockedError(str(session.id), report)
        if report.has_business_rule_violations:
            raise BusinessRuleViolationError(str(session.id), report)
        raise ClosingValidationError(str(session.id), report)

    def _raise_conflict(self, seen: CashSession) -> None:
        current = self._repository.get_session(seen.id)
        if current is None:
            raise SessionNotFoundError(str(seen.id))
        reason = "already_closed" if current.status == SessionStatus.CLOSED else "stale_version"
        logger.warning(
            "cash_close_conflict",
            extra={
                "session_id": str(seen.id),
                "reason": reason,
                "seen_version": seen.version,
                "current_version": current.version,
            },
        )
        raise ConcurrencyConflictError("CashSession", str(seen.id), reason)

    def _employee_name(self, employee_id: UUID) -> str | None:
        if self._identity is None:
            return None
        info = self._identity.describe(employee_id)
        return info.name if info is not None else None

    # =========================================================================
    # Reads
    # =========================================================================

    def get_session(self, session_id: UUID) -> CashSession:
        session = self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        return session

    def get_open_session(self, employee_id: UUID) -> CashSession | None:
        return self._repository.find_open_session(employee_id)

    def list_transactions(self, session_id: UUID) -> tuple[CashTransaction, ...]:
        self.get_session(session_id)
        return self._ledger.entries(session_id)

    def search_transactions(self, criteria: TransactionFilter) -> tuple[CashTransaction, ...]:
        return self._selector.search_transactions(criteria)

    def search_sessions(self, criteria: SessionFilter) -> tuple[CashSession, ...]:
        return self._selector.search_sessions(criteria)

    def get_last_closed_balance(self, employee_id: UUID) -> Decimal:
        """Total counted at the employee's most recent close, zero if none."""
        last = self._selector.last_closed_session(employee_id)
        if last is None or last.closing_amount is None:
            return to_money(ZERO, "closing_amount", self._places)
        return last.closing_amount

    def get_closing_receipt(self, session_id: UUID) -> ClosingReceipt | None:
        self.get_session(session_id)
        return self._repository.get_closing_receipt(session_id)

    def get_daily_summary(self, day: date) -> DailySummary:
        """Totals for one business day in the configured time zone."""
        start, end = self._summaries.day_bounds(day)
        summary = self._summaries.build(
            day,
            self._selector.sessions_opened_between(start, end),
            self._selector.transactions_between(start, end),
        )
        logger.debug(
            "cash_daily_summary_built",
            extra={
                "day": day.isoformat(),
                "session_count": summary.session_count,
                "total_sales": str(summary.total_sales),
            },
        )
        return summary
