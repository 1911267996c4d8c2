"""
Order status state machine.

One flat status enum with a single transition entry point
(orders.ledger.set_status) fed by three producers, each tagged for the audit
trail:

  - checkout       order created with a payment outcome already known
  - payment_event  gateway webhook reconciliation (never shipped/delivered)
  - admin          back-office tooling, the only path to shipped/delivered
"""

from enum import Enum

from db.models import ORDER_STATUSES


class StatusSource(str, Enum):
    PAYMENT_EVENT = "payment_event"
    ADMIN = "admin"
    CHECKOUT = "checkout"


PENDING = "pending"
CONFIRMED = "confirmed"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"

ADMIN_ONLY_STATUSES = frozenset({SHIPPED, DELIVERED})


def is_valid_status(status: str | None) -> bool:
    return status in ORDER_STATUSES


def initial_status_for_payment(payment_status: str | None) -> str:
    """Status for an order created after the payment outcome is already known."""
    if payment_status == "approved":
        return CONFIRMED
    if payment_status in ("rejected", "cancelled"):
        return CANCELLED
    return PENDING


def source_may_set(status: str, source: StatusSource | str) -> bool:
    """Shipped and delivered are only ever written by the admin source."""
    return status not in ADMIN_ONLY_STATUSES or StatusSource(source) is StatusSource.ADMIN
