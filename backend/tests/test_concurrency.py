# Overview: Threaded tests for stock safety under concurrent writers.

"""
Concurrency tests against a file-backed SQLite database.

Each worker thread pushes its own app context, so it gets its own session
and connection. Run alone with:
    pytest backend/tests/test_concurrency.py
"""
import os
import tempfile
import threading
import unittest
from decimal import Decimal

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Category, Product, Sale, StockMovement, Supplier
from stockledger.services import adjustment_service, auth_service, catalog_service, purchase_service, sales_service
from stockledger.services import stock_ledger_service as ledger
from stockledger.services.stock_ledger_service import InsufficientStockError


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "BCRYPT_ROUNDS": 4,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            user = auth_service.create_user(
                name="Concurrent User", email="concurrent@example.com", password="Password123"
            )
            self.user_id = user.id

            category = Category(name="Concurrency")
            supplier = Supplier(name="Concurrent Supplier")
            db.session.add_all([category, supplier])
            db.session.commit()
            self.supplier_id = supplier.id

            product = catalog_service.create_product(
                patch={
                    "name": "Concurrent Product",
                    "category_id": category.id,
                    "cost_price": Decimal("4.00"),
                    "selling_price": Decimal("10.00"),
                    "stock": 10,
                },
                actor_id=self.user_id,
            )
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, targets):
        results = []
        lock = threading.Lock()

        def wrap(target):
            def worker():
                with self.app.app_context():
                    try:
                        target()
                        with lock:
                            results.append("ok")
                    except Exception as exc:
                        with lock:
                            results.append(exc)
                    finally:
                        db.session.remove()
            return worker

        threads = [threading.Thread(target=wrap(t)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _stock(self):
        with self.app.app_context():
            return db.session.get(Product, self.product_id).stock

    def _assert_ledger_consistent(self):
        with self.app.app_context():
            self.assertEqual(ledger.verify_ledger(), [])

    def test_concurrent_sales_do_not_oversell(self):
        def sell_six():
            sales_service.create_sale(
                customer_name="Racer",
                items=[{"product_id": self.product_id, "quantity": 6, "selling_price": Decimal("10.00")}],
                actor_id=self.user_id,
            )

        results = self._run_workers([sell_six, sell_six])

        self.assertEqual(results.count("ok"), 1)
        failures = [r for r in results if r != "ok"]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStockError)
        self.assertEqual(failures[0].available, 4)

        self.assertEqual(self._stock(), 4)
        with self.app.app_context():
            self.assertEqual(db.session.query(Sale).count(), 1)
        self._assert_ledger_consistent()

    def test_concurrent_adjustments_stop_at_zero(self):
        def take_one():
            adjustment_service.create_adjustment(
                product_id=self.product_id, type="out", quantity=1, notes="Shrinkage", actor_id=self.user_id
            )

        results = self._run_workers([take_one] * 15)

        self.assertEqual(results.count("ok"), 10)
        self.assertTrue(all(isinstance(r, InsufficientStockError) for r in results if r != "ok"))
        self.assertEqual(self._stock(), 0)
        self._assert_ledger_consistent()

    def test_concurrent_purchases_all_apply(self):
        def receive_two():
            purchase_service.create_purchase(
                supplier_id=self.supplier_id,
                items=[{"product_id": self.product_id, "quantity": 2, "cost_price": Decimal("4.00")}],
                actor_id=self.user_id,
            )

        results = self._run_workers([receive_two] * 5)

        self.assertEqual(results, ["ok"] * 5)
        self.assertEqual(self._stock(), 20)
        with self.app.app_context():
            received = db.session.query(StockMovement).filter_by(reason="purchase").count()
        self.assertEqual(received, 5)
        self._assert_ledger_consistent()


if __name__ == "__main__":
    unittest.main()
