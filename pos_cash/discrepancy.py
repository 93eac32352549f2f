"""
pos_cash.discrepancy
====================

Responsibility:
    Pure policy mapping a counting discrepancy to an approval tier and
    checking that the submitted handling satisfies that tier.

Architecture:
    Module layer (pos_cash).  No I/O; thresholds come from ``CashConfig``.

Invariants enforced:
    Tiers on the absolute value of the discrepancy, symmetric for shortages
    and overages (defaults shown):

        |d| <  5.00          -> auto_accept
        5.00 <= |d| < 50.00  -> needs_justification (reason >= 5 chars)
        |d| >= 50.00         -> needs_approval      (reason >= 10 chars
                                                     and an approver)

    Reason length is measured after stripping surrounding whitespace.

Failure modes:
    None raised.  ``validate_handling`` returns every violation found.
"""

from decimal import Decimal

from pos_kernel.db.types import format_money
from pos_cash.config import CashConfig
from pos_cash.models import (
    ClosingViolation,
    DiscrepancyHandling,
    DiscrepancyTier,
    ViolationKind,
)

REASON_TOO_SHORT = "REASON_TOO_SHORT"
JUSTIFICATION_REQUIRED = "JUSTIFICATION_REQUIRED"
APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
DISCREPANCY_AMOUNT_MISMATCH = "DISCREPANCY_AMOUNT_MISMATCH"


class DiscrepancyClassifier:
    """Tiered discrepancy policy."""

    def __init__(self, config: CashConfig | None = None):
        self._config = config or CashConfig()

    def classify(self, discrepancy: Decimal) -> DiscrepancyTier:
        magnitude = abs(discrepancy)
        if magnitude < self._config.auto_accept_limit:
            return DiscrepancyTier.AUTO_ACCEPT
        if magnitude < self._config.approval_limit:
            return DiscrepancyTier.NEEDS_JUSTIFICATION
        return DiscrepancyTier.NEEDS_APPROVAL

    def required_reason_length(self, tier: DiscrepancyTier) -> int:
        if tier == DiscrepancyTier.NEEDS_APPROVAL:
            return self._config.approval_min_length
        if tier == DiscrepancyTier.NEEDS_JUSTIFICATION:
            return self._config.justification_min_length
        return 0

    def validate_handling(
        self,
        tier: DiscrepancyTier,
        handling: DiscrepancyHandling | None,
        discrepancy: Decimal,
    ) -> tuple[ClosingViolation, ...]:
        places = self._config.decimal_places
        shown = format_money(discrepancy, places)
        violations: list[ClosingViolation] = []

        if handling is not None and handling.discrepancy_amount != discrepancy:
            violations.append(ClosingViolation(
                kind=ViolationKind.VALIDATION,
                code=DISCREPANCY_AMOUNT_MISMATCH,
                message=(
                    f"Discrepancy handling states "
                    f"{format_money(handling.discrepancy_amount, places)} "
                    f"but the counted discrepancy is {shown}"
                ),
                field="discrepancy_handling.discrepancy_amount",
            ))

        if tier == DiscrepancyTier.AUTO_ACCEPT:
            return tuple(violations)

        min_length = self.required_reason_length(tier)
        if handling is None:
            violations.append(ClosingViolation(
                kind=ViolationKind.VALIDATION,
                code=JUSTIFICATION_REQUIRED,
                message=(
                    f"Discrepancy of {shown} requires a justification "
                    f"of at least {min_length} characters"
                ),
                field="discrepancy_handling",
            ))
        elif len((handling.reason or "").strip()) < min_length:
            violations.append(ClosingViolation(
                kind=ViolationKind.VALIDATION,
                code=REASON_TOO_SHORT,
                message=(
                    f"Justification for a discrepancy of {shown} must have "
                    f"at least {min_length} characters"
                ),
                field="discrepancy_handling.reason",
            ))

        if tier == DiscrepancyTier.NEEDS_APPROVAL:
            approver = (handling.approved_by or "").strip() if handling else ""
            if not approver:
                violations.append(ClosingViolation(
                    kind=ViolationKind.BUSINESS_RULE,
                    code=APPROVAL_REQUIRED,
                    message=(
                        f"Discrepancy of {shown} is at or above "
                        f"{format_money(self._config.approval_limit, places)} "
                        f"and requires manager approval"
                    ),
                    field="discrepancy_handling.approved_by",
                ))

        return tuple(violations)
