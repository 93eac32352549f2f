"""
pos_cash.summary
================

Responsibility:
    Aggregates one business day of sessions and ledger entries into a
    ``DailySummary``: totals per movement type, per payment method (with
    share of sales), per employee, sessions that closed with a gap, and
    sales per local hour.

Architecture:
    Module layer (pos_cash).  Pure aggregation over DTOs; the service loads
    the day's rows through ``CashSessionSelector``.

Invariants enforced:
    - The business day runs from local midnight to local midnight in
      ``CashConfig.business_timezone``.
    - ``cash_balance`` equals the sum of every signed ledger amount of the day.
    - Percentages are of total sales and rounded to two places; all zero
      when there were no sales.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from pos_kernel.db.types import ZERO, round_money
from pos_cash.config import CashConfig
from pos_cash.models import (
    PAYMENT_METHOD_ORDER,
    CashSession,
    CashTransaction,
    DailySummary,
    EmployeeTotal,
    HourlyTotal,
    PaymentMethodTotal,
    SessionDiscrepancy,
    SessionStatus,
    TransactionType,
)

HUNDRED = Decimal("100")


class DailySummaryBuilder:
    """Builds the reporting read path for one business day."""

    def __init__(self, config: CashConfig | None = None):
        self._config = config or CashConfig()

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """UTC instants of local midnight starting ``day`` and the next day."""
        tz = self._config.tz
        start = datetime.combine(day, time.min, tzinfo=tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def build(
        self,
        day: date,
        sessions: Iterable[CashSession],
        transactions: Iterable[CashTransaction],
    ) -> DailySummary:
        places = self._config.decimal_places
        sessions = tuple(sessions)
        transactions = tuple(transactions)

        totals: dict[TransactionType, Decimal] = defaultdict(lambda: ZERO)
        method_amounts: dict = defaultdict(lambda: ZERO)
        method_counts: dict = defaultdict(int)
        employee_sales: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        employee_counts: dict[UUID, int] = defaultdict(int)
        hour_amounts: dict[int, Decimal] = defaultdict(lambda: ZERO)
        hour_counts: dict[int, int] = defaultdict(int)
        sale_count = 0

        for entry in transactions:
            totals[entry.transaction_type] += entry.amount
            if entry.transaction_type != TransactionType.SALE:
                continue
            sale_count += 1
            method_amounts[entry.payment_method] += entry.amount
            method_counts[entry.payment_method] += 1
            employee_sales[entry.processed_by] += entry.amount
            employee_counts[entry.processed_by] += 1
            hour = entry.processed_at.astimezone(self._config.tz).hour
            hour_amounts[hour] += entry.amount
            hour_counts[hour] += 1

        total_sales = totals[TransactionType.SALE]

        by_method = tuple(
            PaymentMethodTotal(
                payment_method=m,
                amount=method_amounts[m],
                count=method_counts[m],
                percentage=(
                    round_money(method_amounts[m] * HUNDRED / total_sales, 2)
                    if total_sales > ZERO else round_money(ZERO, 2)
                ),
            )
            for m in PAYMENT_METHOD_ORDER
        )

        sessions_per_employee: dict[UUID, int] = defaultdict(int)
        for s in sessions:
            sessions_per_employee[s.employee_id] += 1
        employees = sorted(
            set(employee_sales) | set(sessions_per_employee),
            key=lambda e: (-employee_sales[e], str(e)),
        )
        by_employee = tuple(
            EmployeeTotal(
                employee_id=e,
                session_count=sessions_per_employee[e],
                sales_amount=employee_sales[e],
                sale_count=employee_counts[e],
                average_ticket=_average(employee_sales[e], employee_counts[e], places),
            )
            for e in employees
        )

        discrepancies = tuple(
            SessionDiscrepancy(
                session_id=s.id,
                employee_id=s.employee_id,
                cash_discrepancy=s.cash_discrepancy,
            )
            for s in sessions
            if s.cash_discrepancy is not None and s.cash_discrepancy != ZERO
        )

        peak_hours = tuple(
            HourlyTotal(hour=h, sale_count=hour_counts[h], amount=hour_amounts[h])
            for h in sorted(hour_counts, key=lambda h: (-hour_counts[h], -hour_amounts[h], h))
        )

        return DailySummary(
            day=day,
            session_count=len(sessions),
            open_session_count=sum(1 for s in sessions if s.status == SessionStatus.OPEN),
            total_sales=total_sales,
            sale_count=sale_count,
            total_refunds=-totals[TransactionType.REFUND],
            total_adjustments=totals[TransactionType.ADJUSTMENT],
            total_withdrawals=-totals[TransactionType.CASH_WITHDRAWAL],
            total_treasury_transfers=-totals[TransactionType.TREASURY_TRANSFER],
            cash_balance=sum((e.amount for e in transactions), ZERO),
            average_ticket=_average(total_sales, sale_count, places),
            by_payment_method=by_method,
            by_employee=by_employee,
            discrepancies=discrepancies,
            peak_hours=peak_hours,
        )


def _average(amount: Decimal, count: int, places: int) -> Decimal:
    if count == 0:
        return round_money(ZERO, places)
    return round_money(amount / count, places)
