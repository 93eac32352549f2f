"""
pos_cash.config
===============

Responsibility:
    Configuration schema for cash session reconciliation.  Defines the
    discrepancy tier thresholds, justification lengths, blocker sampling,
    receipt numbering, and the business time zone used for daily reports.

Architecture:
    Module layer (pos_cash).  Consumed by CashSessionService and the policy
    components it composes.  MUST NOT be imported by pos_kernel.

Invariants enforced:
    - ``0 < auto_accept_limit <= approval_limit`` (validated in ``__post_init__``).
    - ``approval_min_length >= justification_min_length >= 1``.
    - All monetary thresholds are ``Decimal`` -- never ``float``.
    - ``business_timezone`` names a real IANA zone.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``.
    - Missing YAML file -> ``FileNotFoundError``; malformed YAML ->
      ``yaml.YAMLError`` from ``from_yaml``.

Audit relevance:
    The thresholds decide which discrepancies need a manager.  Changes to
    them should be reviewed like any other cash-control change.
"""

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from pos_kernel.db.types import minor_units, validate_currency
from pos_kernel.logging_config import get_logger

logger = get_logger("cash.config")

_DECIMAL_FIELDS = ("auto_accept_limit", "approval_limit")


@dataclass
class CashConfig:
    """
    Configuration schema for the cash session engine.

    Contract:
        All fields have venue-standard defaults.  ``__post_init__`` validates
        every constraint and raises ``ValueError`` on violation.

    Example::

        config = CashConfig(
            auto_accept_limit=Decimal("2.00"),
            approval_limit=Decimal("30.00"),
        )
    """

    currency: str = "BRL"

    # Discrepancy tiers (absolute value): below auto_accept_limit is accepted,
    # below approval_limit needs a justification, anything else needs approval.
    auto_accept_limit: Decimal = Decimal("5.00")
    approval_limit: Decimal = Decimal("50.00")
    justification_min_length: int = 5
    approval_min_length: int = 10

    # Closure blockers: how many order ids to include per category
    blocker_sample_size: int = 5

    # Receipt numbers look like FECH-20240101-0001
    receipt_prefix: str = "FECH"

    # Daily summaries are cut at local midnight in this zone
    business_timezone: str = "America/Sao_Paulo"

    # Empty means any non-empty destination is accepted
    allowed_transfer_destinations: tuple[str, ...] = ()

    def __post_init__(self):
        self.currency = validate_currency(self.currency)

        for name in _DECIMAL_FIELDS:
            if isinstance(getattr(self, name), float):
                raise ValueError(f"{name} must be Decimal, not float")

        if self.auto_accept_limit <= 0:
            raise ValueError("auto_accept_limit must be positive")
        if self.approval_limit < self.auto_accept_limit:
            raise ValueError("approval_limit cannot be below auto_accept_limit")

        if self.justification_min_length < 1:
            raise ValueError("justification_min_length must be at least 1")
        if self.approval_min_length < self.justification_min_length:
            raise ValueError(
                "approval_min_length cannot be shorter than justification_min_length"
            )

        if self.blocker_sample_size < 1:
            raise ValueError("blocker_sample_size must be at least 1")

        if not self.receipt_prefix or not self.receipt_prefix.strip():
            raise ValueError("receipt_prefix cannot be empty")

        try:
            ZoneInfo(self.business_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown business_timezone {self.business_timezone!r}") from None

        self.allowed_transfer_destinations = tuple(self.allowed_transfer_destinations)

        logger.info(
            "cash_config_initialized",
            extra={
                "currency": self.currency,
                "auto_accept_limit": str(self.auto_accept_limit),
                "approval_limit": str(self.approval_limit),
                "business_timezone": self.business_timezone,
                "restricted_destinations": bool(self.allowed_transfer_destinations),
            },
        )

    @property
    def decimal_places(self) -> int:
        return minor_units(self.currency)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with venue-standard defaults."""
        logger.info("cash_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g., loaded from a file)."""
        logger.info(
            "cash_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        values = dict(data)
        for name in _DECIMAL_FIELDS:
            if name in values and not isinstance(values[name], Decimal):
                # YAML parses 5.00 as float; go through str to keep the cents
                values[name] = Decimal(str(values[name]))
        if "allowed_transfer_destinations" in values:
            values["allowed_transfer_destinations"] = tuple(
                values["allowed_transfer_destinations"] or ()
            )
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """
        Load config from a YAML file.

        The file may hold the settings at top level or under a ``cash:`` key.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "cash" in data and isinstance(data["cash"], dict):
            data = data["cash"]
        logger.info("cash_config_loading_from_yaml", extra={"path": str(path)})
        return cls.from_dict(data)
