"""
order_state.py - Order and payment status lifecycles.

The delivery status and the payment status move independently. The
tables below list every allowed step; anything else is rejected.
"""

from enum import Enum
from typing import Dict, Optional, Set

from ..errors import InvalidTransition


class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


ORDER_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    # A failed payment may be retried
    PaymentStatus.FAILED: {PaymentStatus.PROCESSING},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

# Gateway callback status -> payment status. "pending" carries no change.
CALLBACK_STATUS_MAP: Dict[str, Optional[PaymentStatus]] = {
    "pending": None,
    "processing": PaymentStatus.PROCESSING,
    "success": PaymentStatus.COMPLETED,
    "completed": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}

# Orders paid on delivery can be confirmed before any payment completes.
DEFERRED_PAYMENT_METHODS = {"cash_on_delivery"}


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def check_order_transition(current: OrderStatus, target: OrderStatus):
    if not can_transition_order(current, target):
        raise InvalidTransition(f"Order cannot move from {current.value} to {target.value}")


def check_payment_transition(current: PaymentStatus, target: PaymentStatus):
    if not can_transition_payment(current, target):
        raise InvalidTransition(f"Payment cannot move from {current.value} to {target.value}")


def map_callback_status(status) -> Optional[PaymentStatus]:
    """Translate a gateway status string; raises KeyError for unknown values."""
    return CALLBACK_STATUS_MAP[str(status).lower()]
