"""
order_service.py - Order lifecycle driven by buyers, sellers and payment events.

Every change is read-compute-write against the order's version, so two
callbacks racing on the same order cannot both apply. Payment callbacks
must be verified (CallbackVerifier) before they reach this service.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from ..errors import (
    ConcurrentUpdateError,
    InvalidTransition,
    OrderNotFound,
    ValidationError,
)
from .gateway import PAYMENT_METHODS, PaymentGatewayClient
from .order_state import (
    DEFERRED_PAYMENT_METHODS,
    OrderStatus,
    PaymentStatus,
    can_transition_payment,
    check_order_transition,
    check_payment_transition,
    map_callback_status,
)
from .order_store import OrderStore, utc_now

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OrderService")

MAX_CAS_ATTEMPTS = 5


def parse_amount(amount) -> int:
    """Whole amount in the smallest currency unit; fractions are refused."""
    if isinstance(amount, bool):
        raise ValidationError(f"Malformed amount: {amount!r}")
    if isinstance(amount, int):
        return amount
    try:
        value = float(amount)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Malformed amount: {amount!r}") from e
    if not value.is_integer():
        raise ValidationError(f"Amount must be a whole number: {amount!r}")
    return int(value)


# (changes, event_type, note, credit) or None for "nothing to do"
Mutation = Optional[Tuple[Dict[str, Any], str, Optional[str], Optional[Tuple[str, int]]]]


class OrderService:

    def __init__(self, store: OrderStore, gateway: Optional[PaymentGatewayClient] = None):
        self.store = store
        self.gateway = gateway

    def _require_gateway(self) -> PaymentGatewayClient:
        if self.gateway is None:
            raise ValidationError("No payment gateway configured")
        return self.gateway

    def get_order(self, order_id: str) -> Dict[str, Any]:
        order = self.store.get(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def _transition(self, order_id: str, compute: Callable[[Dict[str, Any]], Mutation]) -> Tuple[Dict[str, Any], bool]:
        """
        Apply compute() to the latest order until the versioned write lands.

        Returns:
            (order after the attempt, whether a change was written)
        """
        for attempt in range(MAX_CAS_ATTEMPTS):
            order = self.get_order(order_id)
            mutation = compute(order)
            if mutation is None:
                return order, False

            changes, event_type, note, credit = mutation
            if self.store.compare_and_set(order_id, order['version'], changes, event_type, note, credit=credit):
                return self.get_order(order_id), True

            logger.info(f"Order {order_id} changed concurrently, retrying ({attempt + 1}/{MAX_CAS_ATTEMPTS})")

        raise ConcurrentUpdateError(f"Order {order_id} kept changing; gave up after {MAX_CAS_ATTEMPTS} attempts")

    # ==================== Creation ====================

    def create_order(
        self,
        buyer: str,
        seller: str,
        product: str,
        quantity: int,
        unit_price: int,
        payment_method: str = 'tigopesa',
    ) -> Dict[str, Any]:
        if not (buyer and seller and product):
            raise ValidationError("buyer, seller and product are required")
        if not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Quantity must be at least 1: {quantity}")
        if not isinstance(unit_price, int) or unit_price <= 0:
            raise ValidationError(f"Unit price must be a positive integer: {unit_price}")
        if payment_method not in PAYMENT_METHODS and payment_method not in DEFERRED_PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment_method}")

        order = self.store.create({
            'buyer': buyer,
            'seller': seller,
            'product': product,
            'quantity': quantity,
            'unit_price': unit_price,
            'total_amount': quantity * unit_price,
            'payment_method': payment_method,
        })
        logger.info(f"Order {order['id']} created: {quantity} x {product} for {order['total_amount']}")
        return order

    # ==================== Payment ====================

    def start_payment(self, order_id: str, phone_number: str, callback_url: Optional[str] = None) -> Dict[str, Any]:
        """Ask the gateway to charge the buyer and mark the payment processing."""
        gateway = self._require_gateway()
        order = self.get_order(order_id)

        if OrderStatus(order['status']) != OrderStatus.PENDING:
            raise InvalidTransition(f"Order {order_id} is {order['status']}, payment cannot start")
        check_payment_transition(PaymentStatus(order['payment_status']), PaymentStatus.PROCESSING)

        result = gateway.initiate_payment(
            amount=order['total_amount'],
            phone_number=phone_number,
            payment_method=order['payment_method'],
            order_id=order_id,
            callback_url=callback_url,
        )
        transaction_id = result.get('transaction_id')

        def compute(current):
            changes = {}
            if transaction_id and not current['transaction_id']:
                changes['transaction_id'] = transaction_id
            # A fast callback may already have settled the payment.
            if can_transition_payment(PaymentStatus(current['payment_status']), PaymentStatus.PROCESSING):
                changes['payment_status'] = PaymentStatus.PROCESSING.value
            if not changes:
                return None
            return changes, 'payment_processing', f"Transaction {transaction_id}", None

        updated, _ = self._transition(order_id, compute)
        return updated

    def _apply_payment_status(
        self,
        order_id: str,
        target: Optional[PaymentStatus],
        transaction_id: Optional[str],
        amount,
        source: str,
    ) -> Dict[str, Any]:
        def compute(order):
            if target is None:
                return None
            if transaction_id and order['transaction_id'] and transaction_id != order['transaction_id']:
                raise ValidationError(
                    f"Transaction {transaction_id} does not belong to order {order_id}"
                )
            if target == PaymentStatus.COMPLETED and amount is not None:
                if parse_amount(amount) != order['total_amount']:
                    raise ValidationError(
                        f"Paid amount {amount} does not match order total {order['total_amount']}"
                    )

            current = PaymentStatus(order['payment_status'])
            if current == target:
                logger.info(f"Order {order_id} already {target.value}, duplicate {source} ignored")
                return None
            if not can_transition_payment(current, target):
                logger.warning(
                    f"Order {order_id}: {source} {current.value} -> {target.value} not allowed, ignored"
                )
                return None

            changes = {'payment_status': target.value}
            if transaction_id and not order['transaction_id']:
                changes['transaction_id'] = transaction_id
            credit = None
            if target == PaymentStatus.COMPLETED:
                credit = (order['seller'], order['total_amount'])
            elif target == PaymentStatus.REFUNDED:
                credit = (order['seller'], -(order['refund_amount'] or order['total_amount']))
            return changes, f"payment_{target.value}", f"via {source}", credit

        order, applied = self._transition(order_id, compute)
        if applied:
            logger.info(f"Order {order_id} payment is now {order['payment_status']} ({source})")
        return {"order": order, "applied": applied}

    def apply_payment_callback(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a verified gateway callback.

        Returns:
            {"order": ..., "applied": bool}; applied is False for duplicates
            and out-of-order notifications.
        """
        transaction_id = payload.get('transaction_id')
        order_id = payload.get('order_id')
        if not order_id and transaction_id:
            found = self.store.find_by_transaction_id(transaction_id)
            order_id = found['id'] if found else None
        if not order_id:
            raise OrderNotFound("Callback does not identify an order")

        try:
            target = map_callback_status(payload.get('status'))
        except KeyError as e:
            raise ValidationError(f"Unknown callback status: {payload.get('status')}") from e

        return self._apply_payment_status(order_id, target, transaction_id, payload.get('amount'), "callback")

    def refresh_payment_status(self, order_id: str) -> Dict[str, Any]:
        """Poll the gateway for an order whose callback never arrived."""
        gateway = self._require_gateway()
        order = self.get_order(order_id)
        if not order['transaction_id']:
            raise ValidationError(f"Order {order_id} has no gateway transaction")

        result = gateway.check_payment_status(order['transaction_id'])
        try:
            target = map_callback_status(result.get('status'))
        except KeyError as e:
            raise ValidationError(f"Unknown gateway status: {result.get('status')}") from e

        return self._apply_payment_status(
            order_id, target, result.get('transaction_id'), result.get('amount'), "status check"
        )

    # ==================== Delivery ====================

    def _move_status(self, order_id: str, target: OrderStatus, extra: Optional[Callable] = None,
                     note: Optional[str] = None) -> Dict[str, Any]:
        def compute(order):
            check_order_transition(OrderStatus(order['status']), target)
            changes = {'status': target.value}
            if extra:
                changes.update(extra(order))
            return changes, target.value, note, None

        order, _ = self._transition(order_id, compute)
        logger.info(f"Order {order_id} is now {target.value}")
        return order

    def confirm_order(self, order_id: str) -> Dict[str, Any]:
        """Seller accepts the order; needs a completed payment unless paid on delivery."""
        def require_payment(order):
            if order['payment_method'] not in DEFERRED_PAYMENT_METHODS and \
                    PaymentStatus(order['payment_status']) != PaymentStatus.COMPLETED:
                raise InvalidTransition(
                    f"Order {order_id} cannot be confirmed while payment is {order['payment_status']}"
                )
            return {}

        return self._move_status(order_id, OrderStatus.CONFIRMED, extra=require_payment)

    def ship_order(self, order_id: str) -> Dict[str, Any]:
        return self._move_status(order_id, OrderStatus.SHIPPED)

    def deliver_order(self, order_id: str) -> Dict[str, Any]:
        return self._move_status(order_id, OrderStatus.DELIVERED)

    def cancel_order(self, order_id: str, reason: str) -> Dict[str, Any]:
        if not reason:
            raise ValidationError("A cancellation reason is required")
        return self._move_status(
            order_id,
            OrderStatus.CANCELLED,
            extra=lambda order: {'cancellation_reason': reason, 'cancelled_at': utc_now()},
            note=reason,
        )

    def refund_order(self, order_id: str, reason: str, amount: Optional[int] = None) -> Dict[str, Any]:
        """
        Refund a delivered, paid order through the gateway.

        The order is claimed with a versioned write before the gateway is
        called, so only one refund per order reaches the provider. A gateway
        error releases the claim and is re-raised.
        """
        gateway = self._require_gateway()
        if not reason:
            raise ValidationError("A refund reason is required")

        def claim(order):
            check_order_transition(OrderStatus(order['status']), OrderStatus.REFUNDED)
            check_payment_transition(PaymentStatus(order['payment_status']), PaymentStatus.REFUNDED)
            if order['refund_requested_at']:
                raise InvalidTransition(f"Order {order_id} already has a refund in progress")
            if not order['transaction_id']:
                raise ValidationError(f"Order {order_id} has no gateway transaction to refund")

            refund_amount = order['total_amount'] if amount is None else parse_amount(amount)
            if refund_amount <= 0 or refund_amount > order['total_amount']:
                raise ValidationError(f"Refund amount must be between 1 and {order['total_amount']}")
            return {
                'refund_requested_at': utc_now(),
                'refund_amount': refund_amount,
                'refund_reason': reason,
            }, 'refund_requested', reason, None

        claimed, _ = self._transition(order_id, claim)
        refund_amount = claimed['refund_amount']

        try:
            gateway.process_refund(claimed['transaction_id'], refund_amount, reason)
        except Exception:
            self._transition(order_id, lambda current: (
                {'refund_requested_at': None, 'refund_amount': None, 'refund_reason': None},
                'refund_failed', reason, None,
            ))
            raise

        def complete(current):
            check_order_transition(OrderStatus(current['status']), OrderStatus.REFUNDED)
            changes = {'status': OrderStatus.REFUNDED.value, 'refunded_at': utc_now()}
            debit = None
            # A refund callback may have landed while the gateway call was out.
            if PaymentStatus(current['payment_status']) != PaymentStatus.REFUNDED:
                check_payment_transition(PaymentStatus(current['payment_status']), PaymentStatus.REFUNDED)
                changes['payment_status'] = PaymentStatus.REFUNDED.value
                debit = (current['seller'], -refund_amount)
            return changes, 'refunded', reason, debit

        updated, _ = self._transition(order_id, complete)
        logger.info(f"Order {order_id} refunded {refund_amount}")
        return updated
