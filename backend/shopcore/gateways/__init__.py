"""External capability adapters, pluggable per application."""

from __future__ import annotations

from flask import current_app

from .fake_adapters import FakePaymentGateway, FlatRateShippingQuoter, NoDiscountEvaluator
from .ports import DiscountEvaluator, PaymentGateway, ShippingQuoter

EXTENSION_KEY = "shopcore.gateways"


class GatewayRegistry:
    """Holds the payment, shipping and discount adapters of each app.

    Uses FakePaymentGateway by default; configure via PAYMENT_GATEWAY.
    Tests swap adapters with ``override``.
    """

    def init_app(self, app) -> None:
        adapter = app.config.get("PAYMENT_GATEWAY", "fake")
        if adapter == "fake":
            payment = FakePaymentGateway(app.config.get("FAKE_PAYMENT_OUTCOME", "success"))
        else:
            raise ValueError(f"Unknown payment gateway adapter: {adapter}")

        app.extensions[EXTENSION_KEY] = {
            "payment": payment,
            "shipping": FlatRateShippingQuoter(
                rate_cents=app.config["SHIPPING_FLAT_RATE_CENTS"],
                free_threshold_cents=app.config["FREE_SHIPPING_THRESHOLD_CENTS"],
            ),
            "discounts": NoDiscountEvaluator(),
        }

    def _adapters(self) -> dict:
        return current_app.extensions[EXTENSION_KEY]

    @property
    def payment(self) -> PaymentGateway:
        return self._adapters()["payment"]

    @property
    def shipping(self) -> ShippingQuoter:
        return self._adapters()["shipping"]

    @property
    def discounts(self) -> DiscountEvaluator:
        return self._adapters()["discounts"]

    def override(
        self,
        *,
        payment: PaymentGateway | None = None,
        shipping: ShippingQuoter | None = None,
        discounts: DiscountEvaluator | None = None,
    ) -> None:
        adapters = self._adapters()
        if payment is not None:
            adapters["payment"] = payment
        if shipping is not None:
            adapters["shipping"] = shipping
        if discounts is not None:
            adapters["discounts"] = discounts
