# Overview: Threaded concurrency tests for stock, checkout, cancellation and receiving.

"""
Scripted concurrency tests for shopcore.

Each test runs real threads against a file-backed SQLite database, so
writers genuinely contend for the database lock.

Run with:
    python -m pytest tests/test_concurrency.py
"""
import os
import tempfile
import threading
import unittest

from shopcore import create_app
from shopcore.extensions import db
from shopcore.errors import InsufficientStock
from shopcore.models import Order, OrderItem, Product, Supplier
from shopcore.models.inventory import MOVEMENT_ORDER
from shopcore.services import checkout_service, order_service, purchase_order_service, stock_service


ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9800000000",
    "address_line1": "12 MG Road",
    "city": "Pune",
    "state": "Maharashtra",
    "pincode": "411001",
}


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "DB_RETRY_ATTEMPTS": 10,
            "DB_RETRY_BACKOFF_SECONDS": 0.005,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            product = Product(sku="CONCUR-1", name="Concurrent Product", price_cents=1000, is_active=True)
            supplier = Supplier(name="Concurrent Supplier", code="CONCUR", is_active=True)
            db.session.add_all([product, supplier])
            db.session.commit()
            self.product_id = product.id
            self.supplier_id = supplier.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _seed_stock(self, quantity):
        with self.app.app_context():
            stock_service.adjust_stock(self.product_id, quantity, "restock", reason="Seed inventory")

    def _stock(self):
        with self.app.app_context():
            return stock_service.get_stock_level(self.product_id)["stock_quantity"]

    def _run_threads(self, target, count):
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(count)

        def worker():
            with self.app.app_context():
                try:
                    barrier.wait()
                    value = target()
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_last_unit_decrement(self):
        """Two decrements racing for the last unit: one wins, one is refused."""
        self._seed_stock(1)

        results = self._run_threads(
            lambda: stock_service.adjust_stock(self.product_id, -1, "order"),
            2,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStock)
        self.assertEqual(self._stock(), 0)
        with self.app.app_context():
            self.assertEqual(stock_service.verify_ledger(), [])

    def test_concurrent_checkouts_never_oversell(self):
        self._seed_stock(1)

        results = self._run_threads(
            lambda: checkout_service.place_order(
                [{"product_id": self.product_id, "quantity": 1}], ADDRESS, "cod", 42,
            ).order.order_number,
            5,
        )

        placed = [r for r in results if isinstance(r, str)]
        refused = [r for r in results if isinstance(r, InsufficientStock)]
        self.assertEqual(len(placed), 1, results)
        self.assertEqual(len(refused), 4, results)
        self.assertEqual(self._stock(), 0)
        with self.app.app_context():
            self.assertEqual(db.session.query(Order).count(), 1)
            self.assertEqual(stock_service.verify_ledger(), [])

    def test_concurrent_cancels_restore_once(self):
        self._seed_stock(5)
        with self.app.app_context():
            order = Order(
                order_number="ORD-C00001",
                customer_id=1,
                payment_method="cod",
                subtotal_cents=2000,
                total_amount_cents=2000,
                shipping_address=ADDRESS,
            )
            db.session.add(order)
            db.session.flush()
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=self.product_id,
                product_name="Concurrent Product",
                quantity=2,
                unit_price_cents=1000,
                total_price_cents=2000,
            ))
            db.session.commit()
            order_id = order.id
            stock_service.adjust_stock(self.product_id, -2, MOVEMENT_ORDER, reference="ORD-C00001")

        results = self._run_threads(lambda: order_service.transition_order(order_id, "cancelled").id, 4)

        self.assertFalse([r for r in results if isinstance(r, Exception)], results)
        self.assertEqual(self._stock(), 5)
        with self.app.app_context():
            returns = stock_service.list_movements(reference="ORD-C00001", movement_type="return")
            self.assertEqual(len(returns), 1)

    def test_concurrent_identical_receipts_restock_once(self):
        with self.app.app_context():
            po = purchase_order_service.create_purchase_order(
                supplier_id=self.supplier_id,
                items=[{"product_id": self.product_id, "quantity": 10, "unit_price_cents": 400}],
            )
            po = purchase_order_service.mark_ordered(po.id)
            po_id = po.id
            po_number = po.po_number
            item_id = po.items[0].id

        results = self._run_threads(
            lambda: purchase_order_service.receive_items(
                po_id, [{"item_id": item_id, "received_quantity": 4}],
            ).id,
            3,
        )

        self.assertFalse([r for r in results if isinstance(r, Exception)], results)
        self.assertEqual(self._stock(), 4)
        with self.app.app_context():
            self.assertEqual(len(stock_service.list_movements(reference=po_number)), 1)
            self.assertEqual(purchase_order_service.get_purchase_order(po_id).status, "partial")

    def test_document_numbers_are_unique(self):
        results = self._run_threads(
            lambda: purchase_order_service.create_purchase_order(supplier_id=self.supplier_id).po_number,
            8,
        )

        self.assertFalse([r for r in results if isinstance(r, Exception)], results)
        self.assertEqual(len(results), len(set(results)))


if __name__ == "__main__":
    unittest.main()
