"""Ports for the external capabilities the order core consumes.

The core programs against these interfaces; adapters are selected through
app configuration (see ``GatewayRegistry``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

PAYMENT_SUCCESS = "success"
PAYMENT_FAILURE = "failure"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_TIMEOUT = "timeout"

PAYMENT_RESULT_STATUSES = {PAYMENT_SUCCESS, PAYMENT_FAILURE, PAYMENT_CANCELLED, PAYMENT_TIMEOUT}


class PaymentGatewayTimeout(TimeoutError):
    """Raised by adapters whose call exceeded the configured bound."""


@dataclass(frozen=True)
class PaymentResult:
    status: str
    gateway_reference: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == PAYMENT_SUCCESS


@dataclass(frozen=True)
class CartLine:
    """Priced cart line handed to the discount evaluator."""
    product_id: int
    sku: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class PaymentGateway(ABC):
    """Online payment capability; a pure result signal to the core."""

    @abstractmethod
    def initiate_payment(
        self,
        amount_cents: int,
        currency: str,
        order_reference: str,
        *,
        timeout: float | None = None,
    ) -> PaymentResult:
        """Charge the payer.

        Must return within ``timeout`` seconds, either with a result whose
        status is ``timeout`` or by raising ``PaymentGatewayTimeout``.
        """
        ...


class ShippingQuoter(ABC):
    @abstractmethod
    def quote_shipping(self, address: dict, weight_grams: int, order_value_cents: int) -> int:
        """Shipping charge in minor units."""
        ...


class DiscountEvaluator(ABC):
    @abstractmethod
    def evaluate_discounts(self, lines: list[CartLine], coupon_code: str | None = None) -> int:
        """Total discount in minor units for the given cart."""
        ...
