import threading
import unittest
import uuid
from unittest import mock

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from tests.base import VendingTestCase
from vending.extensions import db
from vending.models import User
from vending.services import balance, settlement
from vending.services.locks import fetch_for_update, key_locks, product_key


class TestBuy(VendingTestCase):
    def setUp(self):
        super().setUp()
        self.seller_id, self.seller_token = self.register("seller123", role="seller")
        self.buyer_id, self.buyer_token = self.register("tester123")
        self.product_id = self.create_product(self.seller_token, name="Soda", cost=50, amount_available=10)

    def buy(self, product_id=None, amount=2, token=None):
        return self.client.post("/api/products/buy", headers=self.headers(token or self.buyer_token), json={
            "product_id": product_id or self.product_id,
            "amount": amount,
        })

    def test_buy_returns_change(self):
        # 150 - 2 x 50 leaves one 50 coin
        self.set_deposit(self.buyer_id, 150)
        resp = self.buy(amount=2)
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["total_spent"], 100)
        self.assertEqual(data["change"], [0, 0, 0, 1, 0])
        self.assertEqual(data["change_breakdown"]["50"], 1)
        self.assertEqual(data["balance"], 50)
        self.assertEqual(data["product"]["amount_available"], 8)
        self.assertEqual(self.get_deposit(self.buyer_id), 50)
        self.assertEqual(self.get_stock(self.product_id), 8)

    def test_leftover_is_whole_remaining_balance(self):
        self.set_deposit(self.buyer_id, 200)
        resp = self.buy(amount=2)
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["total_spent"], 100)
        self.assertEqual(data["change"], [0, 0, 0, 0, 1])
        self.assertEqual(data["balance"], 100)
        self.assertEqual(self.get_deposit(self.buyer_id), 100)

    def test_exact_balance_gives_no_change(self):
        self.set_deposit(self.buyer_id, 100)
        resp = self.buy(amount=2)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["change"], [0, 0, 0, 0, 0])
        self.assertEqual(self.get_deposit(self.buyer_id), 0)

    def test_deposit_then_buy(self):
        for coin in (100, 20, 10):
            self.client.post("/api/users/deposit", headers=self.headers(self.buyer_token), json={"coin": coin})
        resp = self.buy(amount=1)
        self.assertEqual(resp.status_code, 200)
        # 130 - 50 = 80 -> 50 + 20 + 10
        self.assertEqual(resp.get_json()["change"], [0, 1, 1, 1, 0])

    def test_empty_balance(self):
        resp = self.buy(amount=1)
        self.assertEqual(resp.status_code, 402)
        self.assertEqual(resp.get_json()["error_code"], "INSUFFICIENT_BALANCE")
        self.assertEqual(self.get_stock(self.product_id), 10)
        self.assertEqual(self.get_deposit(self.buyer_id), 0)

    def test_insufficient_stock(self):
        self.set_deposit(self.buyer_id, 1000)
        resp = self.buy(amount=11)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error_code"], "INSUFFICIENT_STOCK")
        self.assertEqual(self.get_stock(self.product_id), 10)
        self.assertEqual(self.get_deposit(self.buyer_id), 1000)

    def test_invalid_amounts(self):
        self.set_deposit(self.buyer_id, 1000)
        for amount in (0, -1, 1.5, "2", True, None):
            resp = self.buy(amount=amount)
            self.assertEqual(resp.status_code, 400, amount)
            self.assertEqual(resp.get_json()["error_code"], "INVALID_REQUEST")
        self.assertEqual(self.get_stock(self.product_id), 10)

    def test_unknown_product(self):
        self.set_deposit(self.buyer_id, 100)
        resp = self.buy(product_id=str(uuid.uuid4()), amount=0)
        self.assertEqual(resp.status_code, 404)

        resp = self.buy(product_id="nope", amount=1)
        self.assertEqual(resp.status_code, 400)

    def test_seller_cannot_buy(self):
        resp = self.buy(amount=100, token=self.seller_token)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error_code"], "ROLE_MISMATCH")


class TestSettlementAtomicity(VendingTestCase):
    def setUp(self):
        super().setUp()
        self.seller_id, self.seller_token = self.register("seller123", role="seller")
        self.buyer_id, _ = self.register("tester123")
        self.product_id = self.create_product(self.seller_token, cost=50, amount_available=10)
        self.set_deposit(self.buyer_id, 200)

    def test_failed_commit_changes_nothing(self):
        with self.app.app_context():
            with mock.patch.object(db.session, "commit", side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error"))):
                receipt, error = settlement.buy(self.identity(self.buyer_id), self.product_id, 2)
        self.assertIsNone(receipt)
        self.assertEqual(error.code, "INTERNAL_ERROR")
        self.assertEqual(self.get_stock(self.product_id), 10)
        self.assertEqual(self.get_deposit(self.buyer_id), 200)

    def test_stale_row_is_a_conflict(self):
        with self.app.app_context():
            with mock.patch.object(db.session, "commit", side_effect=StaleDataError("version mismatch")):
                receipt, error = settlement.buy(self.identity(self.buyer_id), self.product_id, 2)
        self.assertIsNone(receipt)
        self.assertEqual(error.code, "CONFLICT")
        self.assertEqual(self.get_stock(self.product_id), 10)
        self.assertEqual(self.get_deposit(self.buyer_id), 200)

    def test_lock_timeout_is_a_conflict(self):
        self.app.config["LOCK_TIMEOUT_SECONDS"] = 0.05
        with key_locks.hold(product_key(uuid.UUID(self.product_id)), timeout=1):
            with self.app.app_context():
                receipt, error = settlement.buy(self.identity(self.buyer_id), self.product_id, 1)
        self.assertIsNone(receipt)
        self.assertEqual(error.code, "CONFLICT")
        self.assertEqual(self.get_stock(self.product_id), 10)

    def test_row_lock_timeout_is_a_conflict(self):
        class LockNotAvailable(Exception):
            pgcode = "55P03"

        timeout = OperationalError("SELECT ... FOR UPDATE", {}, LockNotAvailable("canceling statement due to lock timeout"))
        with self.app.app_context():
            with mock.patch.object(db.session, "commit", side_effect=timeout):
                receipt, error = settlement.buy(self.identity(self.buyer_id), self.product_id, 2)
        self.assertIsNone(receipt)
        self.assertEqual(error.code, "CONFLICT")
        self.assertEqual(self.get_stock(self.product_id), 10)
        self.assertEqual(self.get_deposit(self.buyer_id), 200)

    def test_postgres_row_lock_wait_is_bounded(self):
        user_id = uuid.UUID(self.buyer_id)
        with self.app.app_context():
            with mock.patch.object(db.engine.dialect, "name", "postgresql"), \
                    mock.patch.object(db.session, "execute") as execute, \
                    mock.patch.object(db.session, "get") as get:
                fetch_for_update(User, user_id)

        statement = str(execute.call_args[0][0])
        self.assertEqual(statement, "SET LOCAL lock_timeout = 10000")
        get.assert_called_once_with(User, user_id, with_for_update=True, populate_existing=True)

    def test_no_lock_timeout_statement_on_sqlite(self):
        with self.app.app_context():
            with mock.patch.object(db.session, "execute") as execute:
                user = fetch_for_update(User, uuid.UUID(self.buyer_id))
                self.assertEqual(user.deposit, 200)
        execute.assert_not_called()

    def test_receipt_needs_no_query_after_commit(self):
        statements = []
        committed = []

        def record(conn, cursor, statement, *args):
            if committed:
                statements.append(statement)

        with self.app.app_context():
            real_commit = db.session.commit

            def commit_and_mark():
                real_commit()
                committed.append(True)

            event.listen(db.engine, "before_cursor_execute", record)
            try:
                with mock.patch.object(db.session, "commit", side_effect=commit_and_mark):
                    receipt, error = settlement.buy(self.identity(self.buyer_id), self.product_id, 2)
            finally:
                event.remove(db.engine, "before_cursor_execute", record)

        self.assertIsNone(error)
        self.assertEqual(statements, [])
        self.assertEqual(receipt.product["amount_available"], 8)
        self.assertEqual(self.get_stock(self.product_id), 8)

    def test_key_locks_are_dropped_after_use(self):
        self.app.config["LOCK_TIMEOUT_SECONDS"] = 0.05
        held = product_key(uuid.UUID(self.product_id))
        with key_locks.hold(held, timeout=1):
            with self.app.app_context():
                settlement.buy(self.identity(self.buyer_id), self.product_id, 1)
            # The buyer's account lock was released and forgotten
            self.assertEqual(len(key_locks), 1)
        self.assertEqual(len(key_locks), 0)

        with self.app.app_context():
            receipt, error = settlement.buy(self.identity(self.buyer_id), self.product_id, 1)
        self.assertIsNone(error)
        self.assertEqual(len(key_locks), 0)


class TestConcurrentPurchases(VendingTestCase):
    def setUp(self):
        super().setUp()
        self.seller_id, self.seller_token = self.register("seller123", role="seller")

    def _buy(self, buyer_id, product_id, amount):
        return lambda: settlement.buy(self.identity(buyer_id), product_id, amount)

    def _run_concurrently(self, calls):
        """calls: list of (buyer_id, product_id, amount) or zero-argument callables.
        Returns their (value, error) results in order."""
        calls = [c if callable(c) else self._buy(*c) for c in calls]
        barrier = threading.Barrier(len(calls))
        results = [None] * len(calls)

        def worker(index, call):
            with self.app.app_context():
                barrier.wait()
                results[index] = call()
                db.session.remove()

        threads = [
            threading.Thread(target=worker, args=(i, call))
            for i, call in enumerate(calls)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        return results

    def test_two_buyers_race_for_limited_stock(self):
        product_id = self.create_product(self.seller_token, cost=10, amount_available=5)
        buyers = []
        for name in ("buyer001", "buyer002"):
            buyer_id, _ = self.register(name)
            self.set_deposit(buyer_id, 100)
            buyers.append(buyer_id)

        results = self._run_concurrently([(b, product_id, 3) for b in buyers])

        successes = [r for r, e in results if e is None]
        failures = [e for r, e in results if e is not None]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 1)
        self.assertIn(failures[0].code, ("INSUFFICIENT_STOCK", "CONFLICT"))
        self.assertEqual(self.get_stock(product_id), 2)
        self.assertEqual(sorted(self.get_deposit(b) for b in buyers), [70, 100])

    def test_no_oversell_under_load(self):
        product_id = self.create_product(self.seller_token, cost=5, amount_available=10)
        buyer_id, _ = self.register("buyer001")
        self.set_deposit(buyer_id, 1000)

        results = self._run_concurrently([(buyer_id, product_id, 3)] * 8)

        sold = sum(3 for r, e in results if e is None)
        self.assertLessEqual(sold, 10)
        self.assertEqual(sold, 9)
        self.assertEqual(self.get_stock(product_id), 10 - sold)
        self.assertEqual(self.get_deposit(buyer_id), 1000 - sold * 5)
        for r, e in results:
            if e is not None:
                self.assertIn(e.code, ("INSUFFICIENT_STOCK", "CONFLICT"))

    def test_same_buyer_cannot_overdraw(self):
        buyer_id, _ = self.register("buyer001")
        self.set_deposit(buyer_id, 100)
        first = self.create_product(self.seller_token, name="Soda", cost=60, amount_available=5)
        second = self.create_product(self.seller_token, name="Chips", cost=60, amount_available=5)

        results = self._run_concurrently([(buyer_id, first, 1), (buyer_id, second, 1)])

        self.assertEqual(sum(1 for r, e in results if e is None), 1)
        self.assertEqual(self.get_deposit(buyer_id), 40)
        self.assertEqual(self.get_stock(first) + self.get_stock(second), 9)

    def test_deposits_and_buys_on_one_account(self):
        buyer_id, _ = self.register("buyer001")
        self.set_deposit(buyer_id, 1000)
        product_id = self.create_product(self.seller_token, cost=5, amount_available=500)
        identity = self.identity(buyer_id)

        deposit = lambda: balance.deposit(identity, 10)
        calls = [deposit, (buyer_id, product_id, 1)] * 10
        results = self._run_concurrently(calls)

        ok_deposits = sum(1 for c, (r, e) in zip(calls, results) if c is deposit and e is None)
        ok_buys = sum(1 for c, (r, e) in zip(calls, results) if c is not deposit and e is None)
        self.assertEqual(ok_deposits, 10)
        self.assertEqual(ok_buys, 10)
        self.assertEqual(self.get_deposit(buyer_id), 1000 + 10 * ok_deposits - 5 * ok_buys)
        self.assertEqual(self.get_stock(product_id), 500 - ok_buys)


if __name__ == "__main__":
    unittest.main()
