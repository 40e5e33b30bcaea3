# Overview: Pytest coverage for checkout pricing, order creation and payment settlement.

"""
Checkout Tests

Covers the cart -> order path end to end:
1. Pricing (GST split, shipping, coupons, monetary identity)
2. Stock reservation and rollback on failure
3. Payment outcomes (success, failure, timeout, late confirmation)
4. Idempotent resubmission
"""

import pytest

from shopcore.extensions import db, gateways
from shopcore.errors import InsufficientStock, PaymentFailed, ValidationError
from shopcore.gateways.fake_adapters import CouponDiscountEvaluator, FlatRateShippingQuoter
from shopcore.gateways.ports import PAYMENT_TIMEOUT, PaymentGateway, PaymentGatewayTimeout, PaymentResult
from shopcore.models import AuditEvent, Order
from shopcore.services import checkout_service, order_service, stock_service


def _stock(product):
    return stock_service.get_stock_level(product.id)["stock_quantity"]


def _movement_quantities(order_number):
    return [m.quantity for m in reversed(stock_service.list_movements(reference=order_number))]


class RaisingTimeoutGateway(PaymentGateway):
    def initiate_payment(self, amount_cents, currency, order_reference, *, timeout=None):
        raise PaymentGatewayTimeout("no answer within %s seconds" % timeout)


class ExplodingGateway(PaymentGateway):
    def initiate_payment(self, amount_cents, currency, order_reference, *, timeout=None):
        raise RuntimeError("connection reset")


class CallbackThenTimeoutGateway(PaymentGateway):
    """Gateway whose verification callback lands before the client call times out."""

    def initiate_payment(self, amount_cents, currency, order_reference, *, timeout=None):
        order = order_service.get_order_by_number(order_reference)
        order_service.record_late_payment_confirmation(order.id, "pay_callback_1")
        return PaymentResult(status=PAYMENT_TIMEOUT, message="client timed out")


class TestQuote:

    def test_intra_state_quote(self, db_session, make_product, address):
        """CGST/SGST split for a delivery inside the store's state."""
        product = make_product(price_cents=10000, stock=5)

        quote = checkout_service.quote_cart([{"product_id": product.id, "quantity": 2}], address)

        assert quote.subtotal_cents == 20000
        assert quote.tax_amount_cents == 3600
        assert quote.cgst_amount_cents == 1800
        assert quote.sgst_amount_cents == 1800
        assert quote.igst_amount_cents == 0
        assert quote.shipping_amount_cents == 4900
        assert quote.total_amount_cents == 28500

    def test_inter_state_quote_uses_igst(self, db_session, make_product, address):
        product = make_product(price_cents=10000, stock=5)
        address["state"] = "Karnataka"

        quote = checkout_service.quote_cart([{"product_id": product.id, "quantity": 2}], address)

        assert quote.igst_amount_cents == 3600
        assert quote.cgst_amount_cents == 0
        assert quote.sgst_amount_cents == 0

    def test_free_shipping_threshold(self, db_session, make_product):
        product = make_product(price_cents=25000, stock=5)
        quote = checkout_service.quote_cart([{"product_id": product.id, "quantity": 2}])
        assert quote.shipping_amount_cents == 0

    def test_duplicate_lines_are_merged(self, db_session, make_product):
        product = make_product(price_cents=1000, stock=5)
        quote = checkout_service.quote_cart([
            {"product_id": product.id, "quantity": 1},
            {"product_id": product.id, "quantity": 2},
        ])
        assert len(quote.lines) == 1
        assert quote.lines[0].quantity == 3

    def test_tax_rounds_half_up_per_line(self, db_session, make_product):
        """5% of 1010 is 50.5 -> 51."""
        product = make_product(price_cents=1010, gst_rate_bps=500, stock=5)
        quote = checkout_service.quote_cart([{"product_id": product.id, "quantity": 1}])
        assert quote.tax_amount_cents == 51
        assert quote.cgst_amount_cents == 25
        assert quote.sgst_amount_cents == 26

    def test_quote_does_not_touch_stock(self, db_session, make_product):
        product = make_product(stock=5)
        checkout_service.quote_cart([{"product_id": product.id, "quantity": 2}])
        assert _stock(product) == 5
        assert db.session.query(Order).count() == 0


class TestCashOnDelivery:

    def test_cod_order_is_confirmed_and_reserves_stock(self, db_session, make_product, address):
        """COD orders are confirmed at once with payment still pending."""
        product = make_product(price_cents=10000, stock=5)

        result = checkout_service.place_order(
            [{"product_id": product.id, "quantity": 2}], address, "cod", 42,
        )

        order = result.order
        assert result.created is True
        assert order.order_number == "ORD-000001"
        assert order.status == "confirmed"
        assert order.payment_status == "pending"
        assert order.confirmed_at is not None
        assert order.subtotal_cents == 20000
        assert order.tax_amount_cents == 3600
        assert order.cgst_amount_cents == 1800
        assert order.sgst_amount_cents == 1800
        assert order.shipping_amount_cents == 4900
        assert order.total_amount_cents == 28500
        assert _stock(product) == 3
        assert _movement_quantities(order.order_number) == [-2]

        item = order.items[0]
        assert item.product_name == product.name
        assert item.unit_price_cents == 10000
        assert item.total_price_cents == 20000
        assert order.shipping_address["country"] == "India"

    def test_order_snapshot_survives_catalog_change(self, db_session, make_product, address):
        product = make_product(name="Silk Saree", price_cents=10000, stock=5)
        order = checkout_service.place_order(
            [{"product_id": product.id, "quantity": 1}], address, "cod", 42,
        ).order

        product.name = "Silk Saree (new)"
        product.price_cents = 15000
        db.session.commit()

        item = order_service.get_order(order.id).items[0]
        assert item.product_name == "Silk Saree"
        assert item.unit_price_cents == 10000

    def test_order_numbers_are_sequential(self, db_session, make_product, address):
        product = make_product(stock=5)
        numbers = [
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 1}], address, "cod", 42,
            ).order.order_number
            for _ in range(3)
        ]
        assert numbers == ["ORD-000001", "ORD-000002", "ORD-000003"]

    def test_coupon_discount(self, db_session, make_product, address):
        """Monetary identity holds with a discount applied."""
        gateways.override(discounts=CouponDiscountEvaluator({"SAVE10": 1000}))
        product = make_product(price_cents=10000, stock=5)

        order = checkout_service.place_order(
            [{"product_id": product.id, "quantity": 2}], address, "cod", 42, coupon_code="save10",
        ).order

        assert order.discount_amount_cents == 2000
        assert order.total_amount_cents == 26500
        assert order.total_amount_cents == (
            order.subtotal_cents + order.shipping_amount_cents
            + order.tax_amount_cents - order.discount_amount_cents
        )

    def test_placement_is_audited(self, db_session, make_product, address):
        product = make_product(stock=5)
        order = checkout_service.place_order(
            [{"product_id": product.id, "quantity": 1}], address, "cod", 42,
        ).order

        events = (
            db.session.query(AuditEvent)
            .filter_by(entity_type="order", entity_id=order.id)
            .order_by(AuditEvent.id)
            .all()
        )
        assert [e.event_type for e in events] == ["order.placed", "order.confirmed"]


class TestRejectedCheckout:

    def test_insufficient_stock_creates_nothing(self, db_session, make_product, address):
        product = make_product(stock=1)

        with pytest.raises(InsufficientStock):
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 2}], address, "cod", 42,
            )

        assert db.session.query(Order).count() == 0
        assert _stock(product) == 1

    def test_one_short_line_rejects_whole_cart(self, db_session, make_product, address):
        a = make_product(stock=5)
        b = make_product(stock=1)

        with pytest.raises(InsufficientStock):
            checkout_service.place_order(
                [{"product_id": a.id, "quantity": 2}, {"product_id": b.id, "quantity": 3}],
                address, "cod", 42,
            )

        assert _stock(a) == 5
        assert _stock(b) == 1

    @pytest.mark.parametrize("cart", [
        [],
        None,
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": "2.5"}],
        [{"quantity": 1}],
    ])
    def test_bad_cart(self, db_session, address, cart):
        with pytest.raises(ValidationError):
            checkout_service.place_order(cart, address, "cod", 42)
        assert db.session.query(Order).count() == 0

    def test_missing_address_fields(self, db_session, make_product, address):
        product = make_product(stock=5)
        del address["pincode"]

        with pytest.raises(ValidationError) as exc_info:
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 1}], address, "cod", 42,
            )

        assert exc_info.value.details["missing"] == ["pincode"]
        assert _stock(product) == 5

    def test_unknown_payment_method(self, db_session, make_product, address):
        product = make_product(stock=5)
        with pytest.raises(ValidationError):
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 1}], address, "bitcoin", 42,
            )

    def test_inactive_product(self, db_session, make_product, address):
        product = make_product(stock=5, is_active=False)
        with pytest.raises(ValidationError):
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 1}], address, "cod", 42,
            )

    def test_online_order_needs_positive_total(self, db_session, make_product, address):
        gateways.override(shipping=FlatRateShippingQuoter(rate_cents=0))
        product = make_product(price_cents=0, stock=5)

        with pytest.raises(ValidationError):
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 1}], address, "razorpay", 42,
            )
        assert _stock(product) == 5

    def test_shipping_override_does_not_leak(self, db_session, make_product, address):
        """Each test starts from the configured flat rate, whatever the previous one installed."""
        product = make_product(price_cents=10000, stock=5)
        quote = checkout_service.quote_cart([{"product_id": product.id, "quantity": 1}], address)
        assert quote.shipping_amount_cents == 4900


class TestOnlinePayment:

    def test_success_confirms_and_marks_paid(self, db_session, make_product, address, payment_gateway):
        product = make_product(price_cents=10000, stock=5)

        result = checkout_service.place_order(
            [{"product_id": product.id, "quantity": 2}], address, "razorpay", 42,
        )

        order = result.order
        assert order.status == "confirmed"
        assert order.payment_status == "paid"
        assert order.gateway_reference.startswith("pay_")
        assert order.paid_at is not None
        assert result.warnings == []
        assert _stock(product) == 3
        assert payment_gateway.calls[0]["amount_cents"] == 28500
        assert payment_gateway.calls[0]["order_reference"] == order.order_number

    @pytest.mark.parametrize("outcome", ["failure", "cancelled", "timeout"])
    def test_failed_payment_cancels_and_restores(self, db_session, make_product, address, payment_gateway, outcome):
        """Gateway failure leaves a cancelled/failed order and the stock where it started."""
        payment_gateway.configure(outcome)
        product = make_product(price_cents=10000, stock=5)

        with pytest.raises(PaymentFailed) as exc_info:
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 2}], address, "razorpay", 42,
            )

        order = exc_info.value.order
        assert exc_info.value.gateway_status == outcome
        assert order.status == "cancelled"
        assert order.payment_status == "failed"
        assert order.stock_restored is True
        assert order.cancel_reason == f"payment {outcome}"
        assert _stock(product) == 5
        assert _movement_quantities(order.order_number) == [-2, 2]
        assert stock_service.verify_ledger() == []

    def test_raised_timeout_is_a_failure(self, db_session, make_product, address):
        gateways.override(payment=RaisingTimeoutGateway())
        product = make_product(stock=5)

        with pytest.raises(PaymentFailed) as exc_info:
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 2}], address, "razorpay", 42,
            )

        assert exc_info.value.gateway_status == "timeout"
        assert exc_info.value.order.status == "cancelled"
        assert _stock(product) == 5

    def test_gateway_error_is_a_failure(self, db_session, make_product, address):
        gateways.override(payment=ExplodingGateway())
        product = make_product(stock=5)

        with pytest.raises(PaymentFailed) as exc_info:
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 1}], address, "paytm", 42,
            )

        assert exc_info.value.gateway_status == "failure"
        assert _stock(product) == 5

    def test_confirmation_racing_timeout_keeps_payment(self, db_session, make_product, address):
        """A callback that marked the order paid wins over the client-side timeout."""
        gateways.override(payment=CallbackThenTimeoutGateway())
        product = make_product(stock=5)

        result = checkout_service.place_order(
            [{"product_id": product.id, "quantity": 2}], address, "razorpay", 42,
        )

        order = result.order
        assert order.status == "confirmed"
        assert order.payment_status == "paid"
        assert order.gateway_reference == "pay_callback_1"
        assert _stock(product) == 3

    def test_late_confirmation_after_cancel_raises_alert(self, db_session, make_product, address, payment_gateway):
        """A payment captured after the order was cancelled is never applied, only flagged."""
        payment_gateway.configure("timeout")
        product = make_product(stock=5)

        with pytest.raises(PaymentFailed) as exc_info:
            checkout_service.place_order(
                [{"product_id": product.id, "quantity": 1}], address, "razorpay", 42,
            )
        order_id = exc_info.value.order.id

        confirmation = order_service.record_late_payment_confirmation(order_id, "pay_late_9")

        assert confirmation.reconciliation_required is True
        assert confirmation.order.status == "cancelled"
        assert confirmation.order.payment_status == "failed"
        assert _stock(product) == 5

        alerts = order_service.list_reconciliation_alerts()
        assert len(alerts) == 1
        assert alerts[0].entity_id == order_id
        assert alerts[0].payload["gateway_reference"] == "pay_late_9"


class TestIdempotency:

    def test_same_key_returns_same_order(self, db_session, make_product, address):
        product = make_product(stock=5)
        cart = [{"product_id": product.id, "quantity": 2}]

        first = checkout_service.place_order(cart, address, "cod", 42, idempotency_key="chk-1")
        second = checkout_service.place_order(cart, address, "cod", 42, idempotency_key="chk-1")

        assert first.created is True
        assert second.created is False
        assert second.order.id == first.order.id
        assert db.session.query(Order).count() == 1
        assert _stock(product) == 3

    def test_different_keys_create_different_orders(self, db_session, make_product, address):
        product = make_product(stock=5)
        cart = [{"product_id": product.id, "quantity": 1}]

        first = checkout_service.place_order(cart, address, "cod", 42, idempotency_key="chk-1")
        second = checkout_service.place_order(cart, address, "cod", 42, idempotency_key="chk-2")

        assert first.order.id != second.order.id
        assert _stock(product) == 3
