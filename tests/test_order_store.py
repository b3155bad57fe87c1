import unittest
from datetime import datetime, timezone

from cafeteria_pay.errors import ConcurrentUpdateError, InvariantViolationError, OrderNotFoundError
from cafeteria_pay.services.order_store import Order, merge_metadata
from cafeteria_pay.services.status_normalizer import OrderStatus

from support import make_store, seed_order


class TestMergeMetadata(unittest.TestCase):
    def test_new_keys_added_existing_kept(self):
        merged = merge_metadata({"authorization": "A1", "source": "web"}, {"authorization": "B2", "bank": "X"})
        self.assertEqual(merged, {"authorization": "A1", "source": "web", "bank": "X"})

    def test_lists_are_appended(self):
        merged = merge_metadata({"webhookHistory": [{"n": 1}]}, {"webhookHistory": [{"n": 2}]})
        self.assertEqual(merged["webhookHistory"], [{"n": 1}, {"n": 2}])

    def test_refresh_keys_replaced(self):
        merged = merge_metadata({"webhookData": "old", "receipt": "r1"},
                                {"webhookData": "new", "receipt": "r2"}, refresh=["webhookData"])
        self.assertEqual(merged, {"webhookData": "new", "receipt": "r1"})

    def test_inputs_not_mutated(self):
        existing = {"a": [1]}
        merge_metadata(existing, {"a": [2], "b": 1})
        self.assertEqual(existing, {"a": [1]})


class TestOrderStore(unittest.TestCase):
    def setUp(self):
        self.store, _ = make_store()

    def test_create_and_get(self):
        seed_order(self.store, status=OrderStatus.DRAFT)
        order = self.store.get_by_id("ord-1")

        self.assertIsInstance(order, Order)
        self.assertEqual(order.status, OrderStatus.DRAFT)
        self.assertEqual(order.total, 27500)
        self.assertEqual(order.version, 0)
        self.assertEqual(order.metadata["source"], "web")

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.store.get_by_id("nope"))

    def test_create_requires_draft(self):
        with self.assertRaises(InvariantViolationError):
            self.store.create(Order(id="x", user_id="u", week_start="2026-10-19", status=OrderStatus.PAGADO))

    def test_update_moves_forward_and_bumps_version(self):
        seed_order(self.store, status=OrderStatus.DRAFT)
        order = self.store.update("ord-1", {"status": OrderStatus.PENDING})
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.version, 1)

    def test_backwards_transition_rejected(self):
        seed_order(self.store, status=OrderStatus.PAGADO)
        with self.assertRaises(InvariantViolationError):
            self.store.update("ord-1", {"status": OrderStatus.PENDING})
        self.assertEqual(self.store.get_by_id("ord-1").status, OrderStatus.PAGADO)

    def test_stale_version_rejected(self):
        order = seed_order(self.store)
        self.store.update("ord-1", {"metadata": {"note": "first"}}, expected_version=order.version)
        with self.assertRaises(ConcurrentUpdateError):
            self.store.update("ord-1", {"metadata": {"other": "second"}}, expected_version=order.version)
        self.assertNotIn("other", self.store.get_by_id("ord-1").metadata)

    def test_payment_fields_write_once(self):
        seed_order(self.store)
        paid_at = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        self.store.update("ord-1", {"status": OrderStatus.PAGADO, "payment_id": "req-1", "paid_at": paid_at})

        # same id again is a no-op
        self.store.update("ord-1", {"payment_id": "req-1"})
        with self.assertRaises(InvariantViolationError):
            self.store.update("ord-1", {"payment_id": "req-2"})
        with self.assertRaises(InvariantViolationError):
            self.store.update("ord-1", {"paid_at": datetime.now(timezone.utc)})

        order = self.store.get_by_id("ord-1")
        self.assertEqual(order.payment_id, "req-1")
        self.assertEqual(order.paid_at, paid_at)

    def test_total_fixed_outside_draft(self):
        seed_order(self.store, status=OrderStatus.DRAFT)
        self.assertEqual(self.store.update("ord-1", {"total": 11000}).total, 11000)

        self.store.update("ord-1", {"status": OrderStatus.PENDING})
        with self.assertRaises(InvariantViolationError):
            self.store.update("ord-1", {"total": 5500})
        # unchanged total is accepted
        self.assertEqual(self.store.update("ord-1", {"total": 11000}).total, 11000)

    def test_metadata_merge_is_non_destructive(self):
        seed_order(self.store, metadata={"version": "1.0", "authorization": "A1"})
        order = self.store.update("ord-1", {"metadata": {"authorization": "B2", "receipt": "R"}})
        self.assertEqual(order.metadata["authorization"], "A1")
        self.assertEqual(order.metadata["receipt"], "R")
        self.assertEqual(order.metadata["version"], "1.0")

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFoundError):
            self.store.update("missing", {"status": OrderStatus.PAGADO})

    def test_unknown_field_rejected(self):
        seed_order(self.store)
        with self.assertRaises(InvariantViolationError):
            self.store.update("ord-1", {"user_id": "someone-else"})

    def test_to_dict(self):
        data = seed_order(self.store).to_dict()
        self.assertEqual(data["id"], "ord-1")
        self.assertEqual(data["status"], "pending")
        self.assertIsNone(data["paidAt"])


if __name__ == "__main__":
    unittest.main()
