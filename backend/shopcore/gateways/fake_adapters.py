"""Default adapters: deterministic gateway, flat-rate shipping, coupon discounts.

Used in development and tests, and as the production default for shipping
and discounts until a real rate card or promotion engine is plugged in.
"""

from __future__ import annotations

from collections import deque
from uuid import uuid4

from .ports import (
    CartLine,
    DiscountEvaluator,
    PAYMENT_RESULT_STATUSES,
    PAYMENT_SUCCESS,
    PaymentGateway,
    PaymentResult,
    ShippingQuoter,
)


class FakePaymentGateway(PaymentGateway):
    """Fake gateway that answers with a configurable outcome.

    ``queue_outcomes`` lets a test script a sequence of outcomes; once the
    queue is drained the default outcome applies again.
    """

    def __init__(self, outcome: str = PAYMENT_SUCCESS):
        self.configure(outcome)
        self.calls: list[dict] = []
        self._queued: deque[str] = deque()

    def configure(self, outcome: str = PAYMENT_SUCCESS) -> None:
        if outcome not in PAYMENT_RESULT_STATUSES:
            raise ValueError(f"Unknown payment outcome: {outcome}")
        self.outcome = outcome

    def queue_outcomes(self, *outcomes: str) -> None:
        for outcome in outcomes:
            if outcome not in PAYMENT_RESULT_STATUSES:
                raise ValueError(f"Unknown payment outcome: {outcome}")
            self._queued.append(outcome)

    def initiate_payment(self, amount_cents, currency, order_reference, *, timeout=None):
        self.calls.append({
            "amount_cents": amount_cents,
            "currency": currency,
            "order_reference": order_reference,
            "timeout": timeout,
        })
        outcome = self._queued.popleft() if self._queued else self.outcome
        if outcome != PAYMENT_SUCCESS:
            return PaymentResult(status=outcome, message=f"Fake gateway returned {outcome}")
        return PaymentResult(status=outcome, gateway_reference=f"pay_{uuid4().hex[:14]}")


class FlatRateShippingQuoter(ShippingQuoter):
    """Flat rate below the free-shipping threshold, free at or above it."""

    def __init__(self, rate_cents: int, free_threshold_cents: int | None = None):
        self.rate_cents = rate_cents
        self.free_threshold_cents = free_threshold_cents

    def quote_shipping(self, address, weight_grams, order_value_cents):
        if self.free_threshold_cents is not None and order_value_cents >= self.free_threshold_cents:
            return 0
        return self.rate_cents


class NoDiscountEvaluator(DiscountEvaluator):
    def evaluate_discounts(self, lines, coupon_code=None):
        return 0


class CouponDiscountEvaluator(DiscountEvaluator):
    """Percentage coupons keyed by code; rates in basis points of the cart subtotal."""

    def __init__(self, coupons: dict[str, int]):
        self.coupons = {code.strip().upper(): bps for code, bps in coupons.items()}

    def evaluate_discounts(self, lines: list[CartLine], coupon_code=None):
        if not coupon_code:
            return 0
        bps = self.coupons.get(coupon_code.strip().upper())
        if not bps:
            return 0
        subtotal = sum(line.line_total_cents for line in lines)
        # half-up to the minor unit
        return (subtotal * bps + 5000) // 10000
