"""Tests for the order and payment state machine."""
import pytest

from mkulimalink.errors import (
    ConcurrentUpdateError,
    GatewayRejected,
    GatewayUnreachable,
    InvalidTransition,
    OrderNotFound,
    ValidationError,
)
from mkulimalink.payments.order_state import (
    OrderStatus,
    PaymentStatus,
    can_transition_order,
    can_transition_payment,
)


def _new_order(order_service, **overrides):
    kwargs = dict(buyer="buyer-1", seller="seller-1", product="maize", quantity=3, unit_price=5000)
    kwargs.update(overrides)
    return order_service.create_order(**kwargs)


def _success(order, **overrides):
    payload = {"order_id": order["id"], "transaction_id": "TXN-1", "status": "success",
               "amount": order["total_amount"]}
    payload.update(overrides)
    return payload


def _paid_order(order_service):
    order = _new_order(order_service)
    order_service.start_payment(order["id"], "0712345678")
    order_service.apply_payment_callback(_success(order))
    return order


class TestTransitionTables:

    def test_no_state_is_reentered(self):
        assert not can_transition_order(OrderStatus.CONFIRMED, OrderStatus.PENDING)
        assert not can_transition_order(OrderStatus.CANCELLED, OrderStatus.PENDING)
        assert not can_transition_order(OrderStatus.REFUNDED, OrderStatus.DELIVERED)

    def test_cancel_only_before_shipping(self):
        assert can_transition_order(OrderStatus.PENDING, OrderStatus.CANCELLED)
        assert can_transition_order(OrderStatus.CONFIRMED, OrderStatus.CANCELLED)
        assert not can_transition_order(OrderStatus.SHIPPED, OrderStatus.CANCELLED)

    def test_payment_paths(self):
        assert can_transition_payment(PaymentStatus.PENDING, PaymentStatus.PROCESSING)
        assert can_transition_payment(PaymentStatus.PROCESSING, PaymentStatus.COMPLETED)
        assert can_transition_payment(PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)
        assert not can_transition_payment(PaymentStatus.COMPLETED, PaymentStatus.FAILED)
        assert not can_transition_payment(PaymentStatus.REFUNDED, PaymentStatus.COMPLETED)


class TestCreation:

    def test_new_order_is_pending(self, order_service):
        order = _new_order(order_service)

        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["total_amount"] == 15000
        assert order["version"] == 0

    @pytest.mark.parametrize("overrides", [
        {"quantity": 0},
        {"unit_price": -1},
        {"payment_method": "barter"},
        {"buyer": ""},
    ])
    def test_invalid_orders_rejected(self, order_service, overrides):
        with pytest.raises(ValidationError):
            _new_order(order_service, **overrides)


class TestPaymentCallbacks:

    def test_start_payment_marks_processing(self, order_service, gateway):
        order = _new_order(order_service)

        updated = order_service.start_payment(order["id"], "0712345678")

        assert updated["payment_status"] == "processing"
        assert updated["transaction_id"] == "TXN-1"
        assert gateway.initiate_payment.call_args.kwargs["amount"] == 15000

    def test_gateway_failure_leaves_order_untouched(self, order_service, gateway):
        order = _new_order(order_service)
        gateway.initiate_payment.side_effect = GatewayUnreachable("timeout")

        with pytest.raises(GatewayUnreachable):
            order_service.start_payment(order["id"], "0712345678")
        assert order_service.get_order(order["id"])["payment_status"] == "pending"

    def test_success_completes_payment_and_allows_confirm(self, order_service):
        order = _new_order(order_service)

        result = order_service.apply_payment_callback(_success(order))

        assert result["applied"] is True
        assert result["order"]["payment_status"] == "completed"
        assert result["order"]["status"] == "pending"
        assert order_service.confirm_order(order["id"])["status"] == "confirmed"

    def test_confirm_requires_completed_payment(self, order_service):
        order = _new_order(order_service)

        with pytest.raises(InvalidTransition):
            order_service.confirm_order(order["id"])

    def test_cash_on_delivery_confirms_without_payment(self, order_service):
        order = _new_order(order_service, payment_method="cash_on_delivery")
        assert order_service.confirm_order(order["id"])["status"] == "confirmed"

    def test_duplicate_success_is_noop(self, order_service, order_store):
        order = _paid_order(order_service)
        before = order_service.get_order(order["id"])

        result = order_service.apply_payment_callback(_success(order))

        assert result["applied"] is False
        assert result["order"]["version"] == before["version"]
        events = [e["event_type"] for e in order_store.get_events(order["id"])]
        assert events.count("payment_completed") == 1

    def test_failed_callback_keeps_order_pending(self, order_service):
        order = _new_order(order_service)
        order_service.start_payment(order["id"], "0712345678")

        result = order_service.apply_payment_callback(_success(order, status="failed"))

        assert result["order"]["payment_status"] == "failed"
        assert result["order"]["status"] == "pending"

    def test_failed_payment_can_be_retried(self, order_service):
        order = _new_order(order_service)
        order_service.apply_payment_callback(_success(order, status="failed"))

        retried = order_service.start_payment(order["id"], "0712345678")
        assert retried["payment_status"] == "processing"

    def test_late_processing_callback_ignored(self, order_service):
        order = _paid_order(order_service)

        result = order_service.apply_payment_callback(_success(order, status="processing"))

        assert result["applied"] is False
        assert result["order"]["payment_status"] == "completed"

    def test_failed_after_completed_ignored(self, order_service):
        order = _paid_order(order_service)

        result = order_service.apply_payment_callback(_success(order, status="failed"))

        assert result["applied"] is False
        assert result["order"]["payment_status"] == "completed"

    def test_amount_mismatch_rejected(self, order_service):
        order = _new_order(order_service)

        with pytest.raises(ValidationError):
            order_service.apply_payment_callback(_success(order, amount=1))
        assert order_service.get_order(order["id"])["payment_status"] == "pending"

    def test_foreign_transaction_rejected(self, order_service):
        order = _new_order(order_service)
        order_service.start_payment(order["id"], "0712345678")

        with pytest.raises(ValidationError):
            order_service.apply_payment_callback(_success(order, transaction_id="TXN-OTHER"))

    def test_unknown_status_rejected(self, order_service):
        order = _new_order(order_service)
        with pytest.raises(ValidationError):
            order_service.apply_payment_callback(_success(order, status="teleported"))

    def test_lookup_by_transaction_id(self, order_service):
        order = _new_order(order_service)
        order_service.start_payment(order["id"], "0712345678")

        result = order_service.apply_payment_callback(
            {"transaction_id": "TXN-1", "status": "success", "amount": 15000}
        )
        assert result["order"]["id"] == order["id"]

    def test_unknown_order(self, order_service):
        with pytest.raises(OrderNotFound):
            order_service.apply_payment_callback({"order_id": "missing", "status": "success"})

    def test_refresh_payment_status_polls_gateway(self, order_service, gateway):
        order = _new_order(order_service)
        order_service.start_payment(order["id"], "0712345678")
        gateway.check_payment_status.return_value = {
            "transaction_id": "TXN-1", "status": "success", "amount": 15000,
        }

        result = order_service.refresh_payment_status(order["id"])

        gateway.check_payment_status.assert_called_once_with("TXN-1")
        assert result["order"]["payment_status"] == "completed"


class TestDeliveryLifecycle:

    def test_happy_path_and_refund(self, order_service, gateway, order_store):
        order = _paid_order(order_service)
        order_service.confirm_order(order["id"])
        order_service.ship_order(order["id"])
        order_service.deliver_order(order["id"])

        refunded = order_service.refund_order(order["id"], "Spoiled on arrival")

        gateway.process_refund.assert_called_once_with("TXN-1", 15000, "Spoiled on arrival")
        assert refunded["status"] == "refunded"
        assert refunded["payment_status"] == "refunded"
        assert refunded["refund_amount"] == 15000
        assert refunded["refund_reason"] == "Spoiled on arrival"
        assert refunded["refunded_at"]
        events = [e["event_type"] for e in order_store.get_events(order["id"])]
        assert events == [
            "created", "payment_processing", "payment_completed",
            "confirmed", "shipped", "delivered", "refund_requested", "refunded",
        ]

    def test_refund_requires_delivery(self, order_service, gateway):
        order = _paid_order(order_service)

        with pytest.raises(InvalidTransition):
            order_service.refund_order(order["id"], "Changed mind")
        gateway.process_refund.assert_not_called()

    def test_refund_amount_capped_at_total(self, order_service):
        order = _paid_order(order_service)
        for step in (order_service.confirm_order, order_service.ship_order, order_service.deliver_order):
            step(order["id"])

        with pytest.raises(ValidationError):
            order_service.refund_order(order["id"], "Overcharge", amount=20000)

    def test_cannot_skip_shipping(self, order_service):
        order = _paid_order(order_service)
        order_service.confirm_order(order["id"])

        with pytest.raises(InvalidTransition):
            order_service.deliver_order(order["id"])

    def test_cancel_records_reason(self, order_service):
        order = _new_order(order_service)

        cancelled = order_service.cancel_order(order["id"], "Out of stock")

        assert cancelled["status"] == "cancelled"
        assert cancelled["cancellation_reason"] == "Out of stock"
        assert cancelled["cancelled_at"]
        with pytest.raises(InvalidTransition):
            order_service.cancel_order(order["id"], "again")

    def test_cancel_after_shipping_rejected(self, order_service):
        order = _paid_order(order_service)
        order_service.confirm_order(order["id"])
        order_service.ship_order(order["id"])

        with pytest.raises(InvalidTransition):
            order_service.cancel_order(order["id"], "Too late")


class TestConcurrency:

    def test_stale_version_write_is_refused(self, order_service, order_store):
        order = _new_order(order_service)

        assert order_store.compare_and_set(order["id"], 0, {"payment_status": "processing"})
        assert not order_store.compare_and_set(order["id"], 0, {"payment_status": "failed"})
        assert order_store.get(order["id"])["payment_status"] == "processing"

    def test_lost_race_is_retried_against_fresh_state(self, order_service, order_store, monkeypatch):
        order = _new_order(order_service)
        real_cas = order_store.compare_and_set
        raced = []

        def racing_cas(order_id, expected_version, changes, event_type=None, note=None, credit=None):
            if not raced:
                raced.append(True)
                # A concurrent success callback lands first.
                real_cas(order_id, expected_version, {"payment_status": "completed"}, "payment_completed")
            return real_cas(order_id, expected_version, changes, event_type, note, credit=credit)

        monkeypatch.setattr(order_store, "compare_and_set", racing_cas)
        result = order_service.apply_payment_callback(_success(order))

        assert result["applied"] is False
        events = [e["event_type"] for e in order_store.get_events(order["id"])]
        assert events.count("payment_completed") == 1

    def test_gives_up_after_repeated_conflicts(self, order_service, order_store, monkeypatch):
        order = _new_order(order_service)
        monkeypatch.setattr(order_store, "compare_and_set", lambda *args, **kwargs: False)

        with pytest.raises(ConcurrentUpdateError):
            order_service.apply_payment_callback(_success(order))

    def test_unknown_columns_refused(self, order_service, order_store):
        order = _new_order(order_service)
        with pytest.raises(ValueError):
            order_store.compare_and_set(order["id"], 0, {"total_amount": 1})


class TestAmounts:

    @pytest.mark.parametrize("amount", [15000.99, "15000.5", 14999.9, "abc", True, float("nan")])
    def test_fractional_or_malformed_amount_rejected(self, order_service, amount):
        order = _new_order(order_service)

        with pytest.raises(ValidationError):
            order_service.apply_payment_callback(_success(order, amount=amount))
        assert order_service.get_order(order["id"])["payment_status"] == "pending"

    @pytest.mark.parametrize("amount", [15000, 15000.0, "15000"])
    def test_whole_amount_in_any_json_form_accepted(self, order_service, amount):
        order = _new_order(order_service)

        result = order_service.apply_payment_callback(_success(order, amount=amount))
        assert result["order"]["payment_status"] == "completed"


class TestSellerBalance:

    def test_success_credits_seller(self, order_service, order_store):
        order = _new_order(order_service)

        order_service.apply_payment_callback(_success(order))

        assert order_store.get_seller_balance("seller-1") == 15000

    def test_duplicate_success_credits_once(self, order_service, order_store):
        order = _new_order(order_service)
        other = _new_order(order_service, quantity=1)

        order_service.apply_payment_callback(_success(order))
        order_service.apply_payment_callback(_success(order))
        order_service.apply_payment_callback(_success(other, transaction_id="TXN-2"))

        assert order_store.get_seller_balance("seller-1") == 15000 + 5000

    def test_failed_payment_credits_nothing(self, order_service, order_store):
        order = _new_order(order_service)
        order_service.apply_payment_callback(_success(order, status="failed"))
        assert order_store.get_seller_balance("seller-1") == 0

    def test_lost_race_does_not_double_credit(self, order_service, order_store, monkeypatch):
        order = _new_order(order_service)
        real_cas = order_store.compare_and_set
        raced = []

        def racing_cas(order_id, expected_version, changes, event_type=None, note=None, credit=None):
            if not raced:
                raced.append(True)
                real_cas(order_id, expected_version, changes, event_type, note, credit=credit)
            return real_cas(order_id, expected_version, changes, event_type, note, credit=credit)

        monkeypatch.setattr(order_store, "compare_and_set", racing_cas)
        order_service.apply_payment_callback(_success(order))

        assert order_store.get_seller_balance("seller-1") == 15000

    def test_refund_debits_seller(self, order_service, order_store):
        order = _delivered_order(order_service)

        order_service.refund_order(order["id"], "Partly spoiled", amount=4000)

        assert order_store.get_seller_balance("seller-1") == 11000


def _delivered_order(order_service):
    order = _paid_order(order_service)
    for step in (order_service.confirm_order, order_service.ship_order, order_service.deliver_order):
        step(order["id"])
    return order


class TestRefundClaim:

    def test_concurrent_refund_reaches_gateway_once(self, order_service, gateway):
        order = _delivered_order(order_service)
        nested = []

        def refund_while_first_in_flight(transaction_id, amount, reason):
            with pytest.raises(InvalidTransition):
                order_service.refund_order(order["id"], "Second request")
            nested.append(True)
            return {"success": True, "refund_id": "RF-1", "status": "success"}

        gateway.process_refund.side_effect = refund_while_first_in_flight

        refunded = order_service.refund_order(order["id"], "First request")

        assert nested == [True]
        assert gateway.process_refund.call_count == 1
        assert refunded["status"] == "refunded"
        assert refunded["refund_reason"] == "First request"

    def test_gateway_failure_releases_claim(self, order_service, gateway, order_store):
        order = _delivered_order(order_service)
        gateway.process_refund.side_effect = GatewayRejected("Refund window closed", status=400)

        with pytest.raises(GatewayRejected):
            order_service.refund_order(order["id"], "Damaged")

        stored = order_service.get_order(order["id"])
        assert stored["status"] == "delivered"
        assert stored["refund_requested_at"] is None
        assert order_store.get_seller_balance("seller-1") == 15000

        gateway.process_refund.side_effect = None
        assert order_service.refund_order(order["id"], "Damaged")["status"] == "refunded"
        events = [e["event_type"] for e in order_store.get_events(order["id"])]
        assert events[-4:] == ["refund_requested", "refund_failed", "refund_requested", "refunded"]
