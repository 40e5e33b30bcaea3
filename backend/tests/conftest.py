"""
Pytest fixtures for shopcore backend tests.

Provides the application with an in-memory database, per-test table
cleanup, a scriptable payment gateway, and product/supplier/order factories.
"""

import pytest

from shopcore import create_app
from shopcore.extensions import db, gateways
from shopcore.gateways.fake_adapters import FakePaymentGateway, FlatRateShippingQuoter, NoDiscountEvaluator
from shopcore.models import Order, OrderItem, Product, Supplier
from shopcore.models.inventory import MOVEMENT_ORDER, MOVEMENT_RESTOCK
from shopcore.services import stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STORE_STATE': 'Maharashtra',
        'SHIPPING_FLAT_RATE_CENTS': 4900,
        'FREE_SHIPPING_THRESHOLD_CENTS': 49900,
        'DB_RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        gateways.override(
            payment=FakePaymentGateway(),
            shipping=FlatRateShippingQuoter(
                app.config["SHIPPING_FLAT_RATE_CENTS"],
                app.config["FREE_SHIPPING_THRESHOLD_CENTS"],
            ),
            discounts=NoDiscountEvaluator(),
        )

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def payment_gateway(db_session):
    """The fake gateway installed for this test; configure() / queue_outcomes() to script it."""
    gateway = FakePaymentGateway()
    gateways.override(payment=gateway)
    return gateway


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create a product and seed its stock through the ledger."""
    counter = {"n": 0}

    def _make(
        *,
        sku=None,
        name="Cotton Kurta",
        price_cents=10000,
        stock=0,
        gst_rate_bps=1800,
        low_stock_threshold=10,
        weight_grams=500,
        is_active=True,
    ) -> Product:
        counter["n"] += 1
        product = Product(
            sku=sku or f"SKU-{counter['n']:03d}",
            name=name,
            price_cents=price_cents,
            gst_rate_bps=gst_rate_bps,
            low_stock_threshold=low_stock_threshold,
            weight_grams=weight_grams,
            is_active=is_active,
            stock_quantity=0,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            stock_service.adjust_stock(product.id, stock, MOVEMENT_RESTOCK, reason="Seed inventory")
        return product

    return _make


@pytest.fixture(scope='function')
def supplier(db_session):
    """Create an active supplier."""
    supplier = Supplier(name="Jaipur Textiles", code="JAIPUR", is_active=True)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def address():
    return {
        "full_name": "Asha Rao",
        "phone": "9800000000",
        "address_line1": "12 MG Road",
        "address_line2": "Flat 4",
        "city": "Pune",
        "state": "Maharashtra",
        "pincode": "411001",
    }


@pytest.fixture(scope='function')
def seed_order(db_session):
    """
    Factory: an order in an arbitrary state with its stock already taken.

    Used by state-machine tests that need a starting point checkout would
    never leave behind (e.g. pending/pending for an online order).
    """
    counter = {"n": 0}

    def _seed(product, quantity=1, *, status="pending", payment_status="pending", payment_method="razorpay"):
        counter["n"] += 1
        number = f"ORD-T{counter['n']:05d}"
        line_total = product.price_cents * quantity
        order = Order(
            order_number=number,
            customer_id=1,
            status=status,
            payment_status=payment_status,
            payment_method=payment_method,
            subtotal_cents=line_total,
            total_amount_cents=line_total,
            shipping_address={"full_name": "Asha Rao"},
        )
        db_session.add(order)
        db_session.flush()
        db_session.add(
            OrderItem(
                order_id=order.id,
                product_id=product.id,
                product_name=product.name,
                sku=product.sku,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                total_price_cents=line_total,
            )
        )
        db_session.commit()
        stock_service.adjust_stock(product.id, -quantity, MOVEMENT_ORDER, reference=number)
        return order

    return _seed
