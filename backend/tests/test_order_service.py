# Overview: Pytest coverage for the order fulfillment and payment state machines.

"""
Order Lifecycle Tests

Illegal transitions must fail without changing anything, cancellation must
return stock exactly once, and the fulfillment/payment coupling rules must
hold in both directions.
"""

from datetime import datetime, timezone

import pytest

from shopcore.errors import InvalidTransition, NotFoundError, ValidationError
from shopcore.services import order_service, stock_service
from shopcore.services.audit_service import list_audit_events


def _stock(product):
    return stock_service.get_stock_level(product.id)["stock_quantity"]


class TestFulfillmentTransitions:

    def test_full_happy_path_to_refund(self, db_session, make_product, seed_order):
        """pending -> ... -> refunded; payment follows to refunded."""
        product = make_product(stock=5)
        order = seed_order(product, 2)

        order_service.transition_payment(order.id, "paid", gateway_reference="pay_1")
        order_service.transition_order(order.id, "confirmed")
        order_service.transition_order(
            order.id, "shipped", tracking_number="AWB123", tracking_url="https://track.example/AWB123",
        )
        order_service.transition_order(order.id, "delivered")
        order_service.transition_order(order.id, "returned")
        order = order_service.transition_order(order.id, "refunded")

        assert order.status == "refunded"
        assert order.payment_status == "refunded"
        assert order.tracking_number == "AWB123"
        for stamp in ("confirmed_at", "shipped_at", "delivered_at", "returned_at", "refunded_at", "paid_at"):
            assert getattr(order, stamp) is not None
        # Returns/refunds are bookkeeping; stock stays reserved
        assert _stock(product) == 3

    def test_explicit_timestamp_is_recorded(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)
        shipped = datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc)

        order_service.transition_order(order.id, "confirmed")
        order = order_service.transition_order(order.id, "shipped", timestamp=shipped)

        assert order.shipped_at == datetime(2026, 3, 1, 10, 30)

    @pytest.mark.parametrize("target", ["shipped", "delivered", "returned", "refunded"])
    def test_illegal_from_pending(self, db_session, make_product, seed_order, target):
        product = make_product(stock=5)
        order = seed_order(product, 1)

        with pytest.raises(InvalidTransition) as exc_info:
            order_service.transition_order(order.id, target)

        assert exc_info.value.current == "pending"
        assert exc_info.value.target == target
        assert order_service.get_order(order.id).status == "pending"

    def test_delivered_cannot_be_cancelled(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1, status="delivered", payment_status="paid")

        with pytest.raises(InvalidTransition):
            order_service.transition_order(order.id, "cancelled")
        assert _stock(product) == 4

    def test_refunded_is_terminal(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1, status="refunded", payment_status="refunded")

        for target in ("pending", "confirmed", "cancelled"):
            with pytest.raises(InvalidTransition):
                order_service.transition_order(order.id, target)

    def test_unknown_status(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)
        with pytest.raises(ValidationError):
            order_service.transition_order(order.id, "lost")

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.transition_order(99999, "confirmed")


class TestCancellation:

    def test_cancel_restores_stock_once(self, db_session, make_product, seed_order):
        """A repeated cancel is a no-op and never double-restores."""
        product = make_product(stock=5)
        order = seed_order(product, 2)
        assert _stock(product) == 3

        order = order_service.transition_order(order.id, "cancelled", cancel_reason="Customer request")
        assert order.status == "cancelled"
        assert order.cancel_reason == "Customer request"
        assert order.stock_restored is True
        assert _stock(product) == 5

        order_service.transition_order(order.id, "cancelled")
        assert _stock(product) == 5

        movements = stock_service.list_movements(reference=order.order_number)
        assert [(m.movement_type, m.quantity) for m in reversed(movements)] == [("order", -2), ("return", 2)]

    def test_cancel_shipped_order_restores_every_line(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 3, status="shipped")

        order_service.transition_order(order.id, "cancelled")
        assert _stock(product) == 5

    def test_cancelling_paid_order_refunds_payment(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1, status="confirmed", payment_status="paid")

        order = order_service.transition_order(order.id, "cancelled")

        assert order.payment_status == "refunded"
        assert order.refunded_at is not None

    def test_cancel_for_payment_failure(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 2)

        order = order_service.cancel_for_payment_failure(order.id, gateway_status="failure", message="declined")

        assert order.status == "cancelled"
        assert order.payment_status == "failed"
        assert order.cancel_reason == "payment failure"
        assert _stock(product) == 5

    def test_cancel_for_payment_failure_leaves_paid_order(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1, status="confirmed", payment_status="paid")

        order = order_service.cancel_for_payment_failure(order.id, gateway_status="timeout")

        assert order.status == "confirmed"
        assert order.payment_status == "paid"
        assert _stock(product) == 4


class TestPaymentCoupling:

    def test_cannot_confirm_after_payment_failed(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1, payment_status="failed")

        with pytest.raises(InvalidTransition):
            order_service.transition_order(order.id, "confirmed")

    def test_cannot_mark_cancelled_order_paid(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)
        order_service.transition_order(order.id, "cancelled")

        with pytest.raises(InvalidTransition):
            order_service.transition_payment(order.id, "paid", gateway_reference="pay_x")
        assert order_service.get_order(order.id).payment_status == "pending"

    def test_cannot_fail_payment_of_shipped_order(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1, status="shipped")

        with pytest.raises(InvalidTransition):
            order_service.transition_payment(order.id, "failed")

    @pytest.mark.parametrize("start,target", [
        ("paid", "pending"),
        ("paid", "failed"),
        ("failed", "paid"),
        ("refunded", "paid"),
        ("pending", "refunded"),
    ])
    def test_illegal_payment_transitions(self, db_session, make_product, seed_order, start, target):
        product = make_product(stock=5)
        order = seed_order(product, 1, payment_status=start)

        with pytest.raises(InvalidTransition):
            order_service.transition_payment(order.id, target)
        assert order_service.get_order(order.id).payment_status == start

    def test_refund_payment_directly(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1, status="delivered", payment_status="paid")

        order = order_service.transition_payment(order.id, "refunded")
        assert order.payment_status == "refunded"
        assert order.status == "delivered"


class TestPaymentConfirmation:

    def test_confirmation_marks_paid_and_confirms(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)

        confirmation = order_service.record_late_payment_confirmation(order.id, "pay_42")

        assert confirmation.reconciliation_required is False
        assert confirmation.order.status == "confirmed"
        assert confirmation.order.payment_status == "paid"
        assert confirmation.order.gateway_reference == "pay_42"

    def test_duplicate_confirmation_is_noop(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)
        order_service.record_late_payment_confirmation(order.id, "pay_42")

        confirmation = order_service.record_late_payment_confirmation(order.id, "pay_42")

        assert confirmation.reconciliation_required is False
        assert order_service.list_reconciliation_alerts() == []

    def test_confirmation_for_cancelled_order_is_alert(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)
        order_service.transition_order(order.id, "cancelled")

        confirmation = order_service.record_late_payment_confirmation(order.id, "pay_99")

        assert confirmation.reconciliation_required is True
        assert confirmation.order.status == "cancelled"
        assert confirmation.order.payment_status == "pending"
        alert = order_service.list_reconciliation_alerts()[0]
        assert alert.event_type == "reconciliation.late_payment"
        assert alert.payload["order_number"] == order.order_number
        assert alert.payload["amount_cents"] == order.total_amount_cents

    def test_confirmation_requires_reference(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)
        with pytest.raises(ValidationError):
            order_service.record_late_payment_confirmation(order.id, "  ")


class TestAuditAndReads:

    def test_transitions_are_audited(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)

        order_service.transition_order(order.id, "confirmed", actor_user_id=3)
        order_service.transition_order(order.id, "cancelled", actor_user_id=3, cancel_reason="Out of area")

        events = list_audit_events(entity_type="order", entity_id=order.id)
        assert [e.event_type for e in events] == ["order.cancelled", "order.confirmed"]
        assert events[0].note == "Out of area"
        assert events[0].actor_user_id == 3
        assert events[0].payload == {"order_number": order.order_number, "from": "confirmed", "to": "cancelled"}

    def test_rejected_transition_leaves_no_event(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)

        with pytest.raises(InvalidTransition):
            order_service.transition_order(order.id, "delivered")

        assert list_audit_events(entity_type="order", entity_id=order.id) == []

    def test_list_orders_filters_and_pages(self, db_session, make_product, seed_order):
        product = make_product(stock=10)
        first = seed_order(product, 1)
        second = seed_order(product, 1)
        third = seed_order(product, 1)
        order_service.transition_order(second.id, "cancelled")

        orders, total = order_service.list_orders(limit=2)
        assert total == 3
        assert [o.id for o in orders] == [third.id, second.id]

        orders, total = order_service.list_orders(limit=2, offset=2)
        assert [o.id for o in orders] == [first.id]

        orders, total = order_service.list_orders(status="cancelled")
        assert total == 1
        assert orders[0].id == second.id

    def test_list_orders_rejects_unknown_filter(self, db_session):
        with pytest.raises(ValidationError):
            order_service.list_orders(status="lost")

    def test_order_detail_includes_items(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 2)

        detail = order_service.get_order_detail(order.id)

        assert detail["order_number"] == order.order_number
        assert detail["items"][0]["quantity"] == 2
        assert detail["items"][0]["sku"] == product.sku

    def test_get_order_by_number(self, db_session, make_product, seed_order):
        product = make_product(stock=5)
        order = seed_order(product, 1)
        assert order_service.get_order_by_number(order.order_number).id == order.id
        with pytest.raises(NotFoundError):
            order_service.get_order_by_number("ORD-NOPE")
