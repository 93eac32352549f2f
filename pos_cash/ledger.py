"""
pos_cash.ledger
===============

Responsibility:
    Append-only store of cash-affecting events for a session.  Normalizes the
    sign of each amount by transaction type and appends it together with the
    session's running expectation in one atomic write.

Architecture:
    Module layer (pos_cash).  Wraps a ``CashSessionRepository``; flush-only.

Invariants enforced:
    - Entries are never updated or deleted (append-only ORM guard).
    - Only ``sale`` entries feed the session's running expectation.
    - Sign rules: sale is positive; refund, cash_withdrawal and
      treasury_transfer are stored negative; adjustment keeps the caller's
      non-zero sign.

Failure modes:
    - ``ValidationError`` on zero, negative-magnitude, or float amounts, and
      on a withdrawal without ``authorized_by``.
    - ``SessionClosedError`` / ``SessionNotFoundError`` before the append
      when the workflow forbids ``record``, and from the repository when
      the session closed in between.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from pos_kernel.db.types import ZERO, to_money
from pos_kernel.domain.clock import Clock
from pos_kernel.exceptions import (
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)
from pos_kernel.logging_config import get_logger
from pos_cash.models import (
    CashSession,
    CashTransaction,
    PaymentMethod,
    TransactionMetadata,
    TransactionType,
    TreasuryTransfer,
)
from pos_cash.repository import CashSessionRepository
from pos_cash.workflows import CASH_SESSION_WORKFLOW

logger = get_logger("cash.ledger")

# Types whose caller-supplied magnitude is stored as a decrease of cash on hand
OUTFLOW_TYPES = frozenset({
    TransactionType.REFUND,
    TransactionType.CASH_WITHDRAWAL,
    TransactionType.TREASURY_TRANSFER,
})


def signed_amount(
    transaction_type: TransactionType,
    amount: Decimal,
) -> Decimal:
    """
    Apply the sign convention for ``transaction_type`` to a boundary amount.

    Raises:
        ValidationError: zero amounts, or a non-positive magnitude for any
            type other than adjustment.
    """
    if amount == ZERO:
        raise ValidationError("amount", "must not be zero", amount)
    if transaction_type == TransactionType.ADJUSTMENT:
        return amount
    if amount < ZERO:
        raise ValidationError(
            "amount",
            f"must be a positive magnitude for {transaction_type.value}",
            amount,
        )
    if transaction_type in OUTFLOW_TYPES:
        return -amount
    return amount


def expectation_delta(transaction_type: TransactionType, stored_amount: Decimal) -> Decimal:
    """How much a stored entry moves the session's running expectation."""
    if transaction_type == TransactionType.SALE:
        return stored_amount
    return ZERO


class TransactionLedger:
    """
    Append-only cash ledger for sessions.

    Contract:
        ``append`` either stores the entry AND advances the session, or does
        neither.  The caller owns the transaction boundary.
    """

    def __init__(
        self,
        repository: CashSessionRepository,
        clock: Clock,
        decimal_places: int = 2,
    ):
        self._repository = repository
        self._clock = clock
        self._places = decimal_places

    def append(
        self,
        session_id: UUID,
        transaction_type: TransactionType | str,
        payment_method: PaymentMethod | str,
        amount: Decimal | int | str,
        metadata: TransactionMetadata,
    ) -> tuple[CashTransaction, CashSession]:
        current = self._repository.get_session(session_id)
        if current is None:
            raise SessionNotFoundError(str(session_id))
        if not CASH_SESSION_WORKFLOW.allows(current.status.value, "record"):
            raise SessionClosedError(str(session_id), "record a transaction on")

        ttype = TransactionType.parse(transaction_type)
        method = PaymentMethod.parse(payment_method)
        stored = signed_amount(ttype, to_money(amount, "amount", self._places))

        if ttype == TransactionType.CASH_WITHDRAWAL and not (metadata.authorized_by or "").strip():
            raise ValidationError("authorized_by", "is required for cash withdrawals")

        entry = CashTransaction(
            id=uuid4(),
            session_id=session_id,
            transaction_type=ttype,
            payment_method=method,
            amount=stored,
            processed_by=metadata.processed_by,
            processed_at=self._clock.now_utc(),
            related_order_id=metadata.related_order_id,
            related_transaction_id=metadata.related_transaction_id,
            reference_number=metadata.reference_number,
            notes=metadata.notes,
            authorized_by=metadata.authorized_by,
            recipient_name=metadata.recipient_name,
            withdrawal_purpose=metadata.withdrawal_purpose,
        )
        session = self._repository.append_transaction(
            entry,
            expectation_delta(ttype, stored),
            actor_id=metadata.processed_by,
        )

        logger.debug(
            "cash_ledger_entry_appended",
            extra={
                "session_id": str(session_id),
                "transaction_id": str(entry.id),
                "transaction_type": ttype.value,
                "payment_method": method.value,
                "amount": str(stored),
                "session_version": session.version,
            },
        )
        return entry, session

    def settle(
        self,
        session_id: UUID,
        transfer: TreasuryTransfer,
        processed_by: UUID,
    ) -> CashTransaction:
        """Record the closing treasury hand-off as a cash outflow."""
        entry = CashTransaction(
            id=uuid4(),
            session_id=session_id,
            transaction_type=TransactionType.TREASURY_TRANSFER,
            payment_method=PaymentMethod.CASH,
            amount=signed_amount(TransactionType.TREASURY_TRANSFER, transfer.amount),
            processed_by=processed_by,
            processed_at=transfer.transferred_at or self._clock.now_utc(),
            reference_number=transfer.receipt_number,
            notes=transfer.notes,
            authorized_by=transfer.authorized_by,
            recipient_name=transfer.recipient_name,
        )
        self._repository.append_settlement(entry, actor_id=processed_by)
        logger.debug(
            "cash_ledger_settlement_appended",
            extra={
                "session_id": str(session_id),
                "transaction_id": str(entry.id),
                "amount": str(entry.amount),
            },
        )
        return entry

    def entries(self, session_id: UUID) -> tuple[CashTransaction, ...]:
        return self._repository.list_transactions(session_id)
