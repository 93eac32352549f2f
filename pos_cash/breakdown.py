"""
pos_cash.breakdown
==================

Responsibility:
    Derives, per payment method, what the drawer should hold from the
    session's ledger, and merges the operator's counted amounts into a
    ``PaymentMethodBreakdown`` per method.

Architecture:
    Module layer (pos_cash).  ``expected_from_entries`` and ``merge_counts``
    are pure; ``BreakdownCalculator`` reads through the repository.

Invariants enforced:
    - ``cash`` is seeded with the opening amount; other methods start at zero.
    - Only ``sale`` entries contribute to expectations and counts.
    - ``sum(actual_amount)`` over the merged breakdown equals the total
      counted, and every method appears exactly once in a fixed order.
    - Deterministic and idempotent: same ledger, same result.

Failure modes:
    - ``SessionNotFoundError`` for unknown sessions.
    - ``ValidationError`` from ``normalize_counts`` for negative, float,
      sub-cent, unknown or duplicated counts.  ``collect_counts`` returns
      the same problems as violations instead.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from uuid import UUID

from pos_kernel.db.types import ZERO, to_money
from pos_kernel.exceptions import SessionNotFoundError, ValidationError
from pos_cash.models import (
    PAYMENT_METHOD_ORDER,
    CashTransaction,
    ClosingViolation,
    MethodExpectation,
    PaymentMethod,
    PaymentMethodBreakdown,
    TransactionType,
)
from pos_cash.repository import CashSessionRepository

INVALID_COUNT = "INVALID_COUNT"


def expected_from_entries(
    opening_amount: Decimal,
    entries: Iterable[CashTransaction],
) -> dict[PaymentMethod, MethodExpectation]:
    """Expected amount and sale count per method, in ``PAYMENT_METHOD_ORDER``."""
    amounts = {m: ZERO for m in PAYMENT_METHOD_ORDER}
    counts = {m: 0 for m in PAYMENT_METHOD_ORDER}
    amounts[PaymentMethod.CASH] = opening_amount

    for entry in entries:
        if entry.transaction_type != TransactionType.SALE:
            continue
        amounts[entry.payment_method] += entry.amount
        counts[entry.payment_method] += 1

    return {
        m: MethodExpectation(
            payment_method=m,
            expected_amount=amounts[m],
            transaction_count=counts[m],
        )
        for m in PAYMENT_METHOD_ORDER
    }


def cash_on_hand(opening_amount: Decimal, entries: Iterable[CashTransaction]) -> Decimal:
    """Opening amount plus every signed cash movement, regardless of type."""
    total = opening_amount
    for entry in entries:
        if entry.payment_method == PaymentMethod.CASH:
            total += entry.amount
    return total


def _parse_count_line(
    key: PaymentMethod | str,
    raw: Decimal,
    seen: set[PaymentMethod],
    decimal_places: int,
) -> tuple[PaymentMethod, Decimal]:
    method = PaymentMethod.parse(key)
    if method in seen:
        raise ValidationError(
            "actual_amounts", f"{method.value} was counted more than once", key,
        )
    amount = to_money(raw, f"actual_amounts[{method.value}]", decimal_places)
    if amount < ZERO:
        raise ValidationError(
            f"actual_amounts[{method.value}]", "cannot be negative", raw,
        )
    seen.add(method)
    return method, amount


def normalize_counts(
    actual_amounts: Mapping[PaymentMethod | str, Decimal],
    decimal_places: int = 2,
) -> dict[PaymentMethod, Decimal]:
    """Parse method keys and amounts; missing methods count as zero."""
    counted = {m: ZERO for m in PAYMENT_METHOD_ORDER}
    seen: set[PaymentMethod] = set()
    for key, raw in actual_amounts.items():
        method, amount = _parse_count_line(key, raw, seen, decimal_places)
        counted[method] = amount
    return counted


def collect_counts(
    actual_amounts: Mapping[PaymentMethod | str, Decimal],
    decimal_places: int = 2,
) -> tuple[dict[PaymentMethod, Decimal], tuple[ClosingViolation, ...]]:
    """
    Like ``normalize_counts`` but never stops at the first bad line.

    Each rejected line counts as zero and is returned as an
    ``INVALID_COUNT`` violation.
    """
    counted = {m: ZERO for m in PAYMENT_METHOD_ORDER}
    seen: set[PaymentMethod] = set()
    violations: list[ClosingViolation] = []
    for key, raw in actual_amounts.items():
        try:
            method, amount = _parse_count_line(key, raw, seen, decimal_places)
        except ValidationError as exc:
            violations.append(ClosingViolation.from_validation_error(exc, INVALID_COUNT))
            continue
        counted[method] = amount
    return counted, tuple(violations)


def breakdown_from_counts(
    expected: Mapping[PaymentMethod, MethodExpectation],
    counted: Mapping[PaymentMethod, Decimal],
) -> tuple[PaymentMethodBreakdown, ...]:
    return tuple(
        PaymentMethodBreakdown(
            payment_method=m,
            expected_amount=expected[m].expected_amount,
            actual_amount=counted[m],
            transaction_count=expected[m].transaction_count,
        )
        for m in PAYMENT_METHOD_ORDER
    )


def merge_counts(
    expected: Mapping[PaymentMethod, MethodExpectation],
    actual_amounts: Mapping[PaymentMethod | str, Decimal],
    decimal_places: int = 2,
) -> tuple[PaymentMethodBreakdown, ...]:
    return breakdown_from_counts(expected, normalize_counts(actual_amounts, decimal_places))


class BreakdownCalculator:
    """Repository-backed breakdown for a live session."""

    def __init__(self, repository: CashSessionRepository, decimal_places: int = 2):
        self._repository = repository
        self._places = decimal_places

    def compute_expected_by_method(
        self, session_id: UUID,
    ) -> dict[PaymentMethod, MethodExpectation]:
        session = self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        return expected_from_entries(
            session.opening_amount,
            self._repository.list_transactions(session_id),
        )

    def compute_cash_on_hand(self, session_id: UUID) -> Decimal:
        session = self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        return cash_on_hand(
            session.opening_amount,
            self._repository.list_transactions(session_id),
        )

    def merge_counts(
        self,
        expected: Mapping[PaymentMethod, MethodExpectation],
        actual_amounts: Mapping[PaymentMethod | str, Decimal],
    ) -> tuple[PaymentMethodBreakdown, ...]:
        return merge_counts(expected, actual_amounts, self._places)

    def collect_counts(
        self, actual_amounts: Mapping[PaymentMethod | str, Decimal],
    ) -> tuple[dict[PaymentMethod, Decimal], tuple[ClosingViolation, ...]]:
        return collect_counts(actual_amounts, self._places)
