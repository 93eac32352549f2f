"""
pos_cash.notifications
======================

Responsibility:
    Outbound change notifications for cash sessions, independent of any
    transport.  Dashboards and the front-of-house terminals subscribe to
    these to refresh their views.

Architecture:
    Module layer (pos_cash).  ``CashSessionService`` publishes through the
    ``ChangePublisher`` protocol only after its transaction commits, so a
    subscriber never sees a change that was rolled back.

Failure modes:
    - A failing subscriber is logged and skipped by ``InMemoryChangeBus``;
      it cannot undo an already committed change.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from pos_kernel.logging_config import get_logger
from pos_cash.models import CashSession, CashTransaction, ClosingReceipt

logger = get_logger("cash.notifications")

# ---------------------------------------------------------------------------
# Event type constants
# ---------------------------------------------------------------------------

CASH_SESSION_OPENED = "cash.session.opened"
CASH_TRANSACTION_RECORDED = "cash.transaction.recorded"
CASH_SESSION_CLOSED = "cash.session.closed"

CASH_EVENT_TYPES = (
    CASH_SESSION_OPENED,
    CASH_TRANSACTION_RECORDED,
    CASH_SESSION_CLOSED,
)


@dataclass(frozen=True)
class CashEvent:
    event_type: str
    session_id: UUID
    employee_id: UUID
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


class ChangePublisher(Protocol):
    def publish(self, event: CashEvent) -> None: ...


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def session_opened_event(session: CashSession) -> CashEvent:
    return CashEvent(
        event_type=CASH_SESSION_OPENED,
        session_id=session.id,
        employee_id=session.employee_id,
        occurred_at=session.opened_at,
        payload={
            "opening_amount": str(session.opening_amount),
        },
    )


def transaction_recorded_event(
    session: CashSession, transaction: CashTransaction,
) -> CashEvent:
    return CashEvent(
        event_type=CASH_TRANSACTION_RECORDED,
        session_id=session.id,
        employee_id=session.employee_id,
        occurred_at=transaction.processed_at,
        payload={
            "transaction_id": str(transaction.id),
            "transaction_type": transaction.transaction_type.value,
            "payment_method": transaction.payment_method.value,
            "amount": str(transaction.amount),
            "expected_amount": str(session.expected_amount),
        },
    )


def session_closed_event(receipt: ClosingReceipt) -> CashEvent:
    session = receipt.session
    return CashEvent(
        event_type=CASH_SESSION_CLOSED,
        session_id=session.id,
        employee_id=session.employee_id,
        occurred_at=receipt.generated_at,
        payload={
            "receipt_number": receipt.receipt_number,
            "closing_amount": str(receipt.closing_amount),
            "expected_amount": str(receipt.expected_amount),
            "cash_discrepancy": str(receipt.cash_discrepancy),
            "tier": receipt.tier.value,
        },
    )


# ---------------------------------------------------------------------------
# Publishers
# ---------------------------------------------------------------------------


class NullPublisher:
    """Discards every event."""

    def publish(self, event: CashEvent) -> None:
        return None


class InMemoryChangeBus:
    """
    In-process publish/subscribe.

    Subscribers register for one event type or for all (``"*"``).  The last
    ``history_size`` published events are kept in ``history``.
    """

    def __init__(self, history_size: int = 1000) -> None:
        self._subscribers: dict[str, list[Callable[[CashEvent], None]]] = defaultdict(list)
        self.history: deque[CashEvent] = deque(maxlen=history_size)

    def subscribe(self, event_type: str, handler: Callable[[CashEvent], None]) -> None:
        if event_type != "*" and event_type not in CASH_EVENT_TYPES:
            raise ValueError(f"unknown cash event type {event_type!r}")
        self._subscribers[event_type].append(handler)

    def publish(self, event: CashEvent) -> None:
        self.history.append(event)
        for handler in (*self._subscribers[event.event_type], *self._subscribers["*"]):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "cash_event_subscriber_failed",
                    extra={
                        "event_type": event.event_type,
                        "session_id": str(event.session_id),
                    },
                )
