"""
pos_cash.treasury
=================

Responsibility:
    Enforces the zero-cash-float rule: all physical cash counted at close
    leaves the drawer through one treasury transfer of exactly that amount.

Architecture:
    Module layer (pos_cash).  Pure; no I/O.

Invariants enforced:
    - counted cash > 0: a transfer is required, its amount equals the counted
      cash exactly (no tolerance), and destination and recipient are filled.
    - counted cash == 0: a transfer is optional and accepted as given.
    - When ``CashConfig.allowed_transfer_destinations`` is non-empty the
      destination must be one of them.

Failure modes:
    None raised.  ``validate`` returns every violation found.  The amount
    violation names the exact required amount, e.g. ``200.00``.
"""

from decimal import Decimal

from pos_kernel.db.types import ZERO, format_money
from pos_cash.config import CashConfig
from pos_cash.models import ClosingViolation, TreasuryTransfer, ViolationKind

TRANSFER_REQUIRED = "TREASURY_TRANSFER_REQUIRED"
TRANSFER_AMOUNT_MISMATCH = "TREASURY_TRANSFER_AMOUNT_MISMATCH"
DESTINATION_REQUIRED = "TREASURY_DESTINATION_REQUIRED"
DESTINATION_NOT_ALLOWED = "TREASURY_DESTINATION_NOT_ALLOWED"
RECIPIENT_REQUIRED = "TREASURY_RECIPIENT_REQUIRED"
AUTHORIZER_REQUIRED = "TREASURY_AUTHORIZER_REQUIRED"
NEGATIVE_TRANSFER = "TREASURY_TRANSFER_NEGATIVE"


class TreasuryTransferValidator:
    """Zero-cash-float rule at close."""

    def __init__(self, config: CashConfig | None = None):
        self._config = config or CashConfig()

    def validate(
        self,
        cash_actual_amount: Decimal,
        transfer: TreasuryTransfer | None,
    ) -> tuple[ClosingViolation, ...]:
        places = self._config.decimal_places
        required = format_money(cash_actual_amount, places)

        if cash_actual_amount <= ZERO:
            if transfer is not None and transfer.amount < ZERO:
                return (ClosingViolation(
                    kind=ViolationKind.VALIDATION,
                    code=NEGATIVE_TRANSFER,
                    message="Treasury transfer amount cannot be negative",
                    field="treasury_transfer.amount",
                ),)
            return ()

        if transfer is None:
            return (ClosingViolation(
                kind=ViolationKind.BUSINESS_RULE,
                code=TRANSFER_REQUIRED,
                message=(
                    f"All physical cash must be transferred to the treasury "
                    f"before closing: transfer of {required} required"
                ),
                field="treasury_transfer",
            ),)

        violations: list[ClosingViolation] = []
        if transfer.amount != cash_actual_amount:
            violations.append(ClosingViolation(
                kind=ViolationKind.BUSINESS_RULE,
                code=TRANSFER_AMOUNT_MISMATCH,
                message=(
                    f"Treasury transfer of {format_money(transfer.amount, places)} "
                    f"does not match counted cash; transfer exactly {required}"
                ),
                field="treasury_transfer.amount",
            ))

        destination = (transfer.destination or "").strip()
        if not destination:
            violations.append(ClosingViolation(
                kind=ViolationKind.VALIDATION,
                code=DESTINATION_REQUIRED,
                message="Treasury transfer destination is required",
                field="treasury_transfer.destination",
            ))
        elif (
            self._config.allowed_transfer_destinations
            and destination not in self._config.allowed_transfer_destinations
        ):
            violations.append(ClosingViolation(
                kind=ViolationKind.BUSINESS_RULE,
                code=DESTINATION_NOT_ALLOWED,
                message=f"Treasury destination {destination!r} is not allowed",
                field="treasury_transfer.destination",
            ))

        if not (transfer.recipient_name or "").strip():
            violations.append(ClosingViolation(
                kind=ViolationKind.VALIDATION,
                code=RECIPIENT_REQUIRED,
                message="Name of the person receiving the cash is required",
                field="treasury_transfer.recipient_name",
            ))

        if not (transfer.authorized_by or "").strip():
            violations.append(ClosingViolation(
                kind=ViolationKind.VALIDATION,
                code=AUTHORIZER_REQUIRED,
                message="Treasury transfer must name who authorized it",
                field="treasury_transfer.authorized_by",
            ))

        return tuple(violations)
