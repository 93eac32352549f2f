"""
pos_cash.receipt
================

Responsibility:
    Assembles the write-once ``ClosingReceipt`` from a closed session and
    formats receipt numbers.

Architecture:
    Module layer (pos_cash).  Pure apart from the injected clock; the
    per-day counter lives in the repository.

Invariants enforced:
    - ``closing_amount`` is the sum of the breakdown's counted amounts.
    - ``cash_discrepancy == closing_amount - expected_amount``.
    - Receipt numbers are ``{prefix}-{YYYYMMDD}-{NNNN}`` where the date is
      the business day in ``CashConfig.business_timezone``.
"""

from collections.abc import Sequence
from datetime import date, datetime

from pos_kernel.db.types import ZERO
from pos_cash.config import CashConfig
from pos_cash.models import (
    CashSession,
    ClosingReceipt,
    DiscrepancyHandling,
    DiscrepancyTier,
    PaymentMethodBreakdown,
    TreasuryTransfer,
)


class ClosingReceiptBuilder:
    """Builds closing receipts and their numbers."""

    def __init__(self, config: CashConfig | None = None):
        self._config = config or CashConfig()

    def business_day(self, moment: datetime) -> date:
        return moment.astimezone(self._config.tz).date()

    def sequence_key(self, moment: datetime) -> str:
        return self.business_day(moment).strftime("%Y%m%d")

    def format_number(self, moment: datetime, sequence: int) -> str:
        return f"{self._config.receipt_prefix}-{self.sequence_key(moment)}-{sequence:04d}"

    def build(
        self,
        session: CashSession,
        breakdown: Sequence[PaymentMethodBreakdown],
        tier: DiscrepancyTier,
        receipt_number: str,
        generated_at: datetime,
        handling: DiscrepancyHandling | None = None,
        transfer: TreasuryTransfer | None = None,
        employee_name: str | None = None,
    ) -> ClosingReceipt:
        closing_amount = sum((line.actual_amount for line in breakdown), ZERO)
        return ClosingReceipt(
            receipt_number=receipt_number,
            session=session,
            breakdown=tuple(breakdown),
            tier=tier,
            closing_amount=closing_amount,
            expected_amount=session.expected_amount,
            cash_discrepancy=closing_amount - session.expected_amount,
            generated_at=generated_at,
            discrepancy_handling=handling,
            treasury_transfer=transfer,
            employee_name=employee_name,
        )
