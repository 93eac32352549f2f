"""
pos_cash.closure
================

Responsibility:
    Asks the order subsystem whether the closing employee still has
    unfinished work, and turns each non-empty category into a ``Blocker``.

Architecture:
    Module layer (pos_cash).  The order subsystem is reached only through
    the ``OrderGateway`` protocol.

Invariants enforced:
    - Any blocker prevents the close.  There is no override.
    - Each blocker carries the full count and at most
      ``CashConfig.blocker_sample_size`` example ids.

Failure modes:
    - Exceptions from the gateway propagate; a close is never allowed
      because the order subsystem could not be asked.
"""

from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from pos_kernel.logging_config import get_logger
from pos_cash.config import CashConfig
from pos_cash.models import Blocker, BlockerCategory

logger = get_logger("cash.closure")

# Statuses the gateway should treat as unfinished
PENDING_COUNTER_ORDER_STATUSES: frozenset[str] = frozenset(
    {"pending_payment", "preparing", "ready"}
)
UNDELIVERED_ITEM_STATUSES: frozenset[str] = frozenset({"pending", "preparing", "ready"})


class OrderGateway(Protocol):
    """Read access to the order subsystem, scoped to one employee."""

    def list_open_comandas(self, employee_id: UUID) -> Sequence[str]:
        """Ids of comandas (table tabs) still open."""
        ...

    def list_pending_counter_orders(self, employee_id: UUID) -> Sequence[str]:
        """Ids of counter orders in PENDING_COUNTER_ORDER_STATUSES."""
        ...

    def list_undelivered_items(self, employee_id: UUID) -> Sequence[str]:
        """Ids of comanda items in UNDELIVERED_ITEM_STATUSES."""
        ...


_MESSAGES = {
    BlockerCategory.OPEN_COMANDA: "{count} open comanda(s) must be closed",
    BlockerCategory.PENDING_COUNTER_ORDER: "{count} counter order(s) still pending, preparing or ready",
    BlockerCategory.UNDELIVERED_ITEM: "{count} comanda item(s) not yet delivered",
}


class ClosureValidator:
    """Collects closure blockers from the order subsystem."""

    def __init__(self, gateway: OrderGateway, config: CashConfig | None = None):
        self._gateway = gateway
        self._config = config or CashConfig()

    def gather_blockers(self, employee_id: UUID) -> tuple[Blocker, ...]:
        sources = (
            (BlockerCategory.OPEN_COMANDA, self._gateway.list_open_comandas),
            (BlockerCategory.PENDING_COUNTER_ORDER, self._gateway.list_pending_counter_orders),
            (BlockerCategory.UNDELIVERED_ITEM, self._gateway.list_undelivered_items),
        )
        blockers: list[Blocker] = []
        for category, fetch in sources:
            ids = [str(i) for i in fetch(employee_id)]
            if not ids:
                continue
            sample = tuple(ids[: self._config.blocker_sample_size])
            message = _MESSAGES[category].format(count=len(ids))
            blockers.append(Blocker(
                category=category,
                count=len(ids),
                sample_ids=sample,
                message=f"{message}: {', '.join(sample)}",
            ))

        if blockers:
            logger.info(
                "cash_closure_blockers_found",
                extra={
                    "employee_id": str(employee_id),
                    "categories": [b.category.value for b in blockers],
                    "total": sum(b.count for b in blockers),
                },
            )
        return tuple(blockers)
