import os
import tempfile
import unittest
from datetime import datetime, timezone

import aiosqlite

from db import crud
from db import database as db_database
from db.models import CartRow, Product
from services.cart_store import CartStore
from services.local_cache import CART_KEY, LocalCache

CEMENT = Product("row-2", "Cement M400 50kg", 320.0, "Building materials")
BRICK = Product("row-3", "Red brick", 15.0, "Building materials")
DRILL = Product("row-4", "Hammer drill", 4500.0, "Tools")


class FakeRemote:
    """In-memory stand-in for the cart_items table."""

    def __init__(self, rows=None, fail_reads=False, fail_writes=False):
        self.rows = {}
        for row in rows or []:
            self.rows.setdefault(row.user_id, []).append(row)
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.writes = 0

    async def list_cart_rows(self, user_id):
        if self.fail_reads:
            raise aiosqlite.OperationalError("backend unavailable")
        return list(self.rows.get(user_id, []))

    async def replace_cart_rows(self, user_id, rows):
        self.writes += 1
        if self.fail_writes:
            raise aiosqlite.OperationalError("backend unavailable")
        self.rows[user_id] = list(rows)


def remote_row(user_id, product, qty):
    return CartRow(
        user_id=user_id,
        product_id=product.id,
        product_name=product.name,
        product_price=product.price,
        product_image="",
        product_category=product.category,
        quantity=qty,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class CartStoreTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.cache = LocalCache(os.path.join(self.temp_dir.name, "cache.json"))

    def tearDown(self):
        self.temp_dir.cleanup()

    # ---------- Guest cart ----------

    async def test_add_line_merges_same_product(self):
        store = CartStore(self.cache, FakeRemote())
        await store.add_line(CEMENT)
        await store.add_line(CEMENT, 2)
        await store.add_line(BRICK, 10)

        self.assertEqual(len(store.lines), 2)
        self.assertEqual(store.get_quantity(CEMENT.id), 3)
        self.assertEqual(store.get_quantity("missing"), 0)
        self.assertEqual(store.total_items, 13)
        self.assertEqual(store.total_price, 3 * 320.0 + 10 * 15.0)

    async def test_add_line_rejects_non_positive_quantity(self):
        store = CartStore(self.cache, FakeRemote())
        with self.assertRaises(ValueError):
            await store.add_line(CEMENT, 0)
        self.assertTrue(store.is_empty)

    async def test_set_quantity_and_remove(self):
        store = CartStore(self.cache, FakeRemote())
        await store.add_line(CEMENT)
        await store.add_line(BRICK)

        await store.set_quantity(CEMENT.id, 7)
        self.assertEqual(store.get_quantity(CEMENT.id), 7)

        await store.set_quantity(CEMENT.id, 0)
        self.assertEqual(store.get_quantity(CEMENT.id), 0)

        await store.remove_line(BRICK.id)
        self.assertTrue(store.is_empty)

    async def test_guest_cart_survives_restart_via_local_cache(self):
        remote = FakeRemote()
        store = CartStore(self.cache, remote)
        await store.add_line(DRILL, 2)
        self.assertEqual(remote.writes, 0)  # no session, no remote mirror

        restarted = CartStore(LocalCache(self.cache.path), remote)
        await restarted.load()
        self.assertEqual(restarted.get_quantity(DRILL.id), 2)
        self.assertEqual(restarted.lines[0].product, DRILL)

    async def test_malformed_cached_lines_are_dropped(self):
        self.cache.set(CART_KEY, [{"id": "x", "quantity": 2}, "junk"])
        store = CartStore(self.cache, FakeRemote())
        await store.load()
        self.assertTrue(store.is_empty)

    async def test_subscribe_and_unsubscribe(self):
        store = CartStore(self.cache, FakeRemote())
        calls = []
        unsubscribe = store.subscribe(lambda: calls.append(store.total_items))
        await store.add_line(CEMENT)
        unsubscribe()
        await store.add_line(CEMENT)
        self.assertEqual(calls, [1])

    async def test_snapshot_is_immutable_copy(self):
        store = CartStore(self.cache, FakeRemote())
        await store.add_line(CEMENT)
        snap = store.snapshot()
        await store.clear()
        self.assertIsInstance(snap, tuple)
        self.assertEqual(len(snap), 1)
        self.assertTrue(store.is_empty)

    # ---------- Signed-in cart ----------

    async def test_remote_cart_wins_when_both_non_empty(self):
        remote = FakeRemote([remote_row("u1", BRICK, 4)])
        store = CartStore(self.cache, remote)
        await store.add_line(CEMENT)  # guest line

        await store.on_identity_changed("u1")
        self.assertEqual([(l.product.id, l.quantity) for l in store.lines], [(BRICK.id, 4)])
        # local cache now mirrors the remote cart
        cached = self.cache.get(CART_KEY)
        self.assertEqual([c["product"]["id"] for c in cached], [BRICK.id])

    async def test_guest_cart_adopted_when_remote_empty(self):
        remote = FakeRemote()
        store = CartStore(self.cache, remote)
        await store.add_line(CEMENT, 3)

        await store.on_identity_changed("u1")
        self.assertEqual(store.get_quantity(CEMENT.id), 3)
        self.assertEqual([(r.product_id, r.quantity) for r in remote.rows["u1"]], [(CEMENT.id, 3)])

    async def test_mutations_mirror_remote_with_full_replace(self):
        remote = FakeRemote()
        store = CartStore(self.cache, remote)
        await store.on_identity_changed("u1")

        await store.add_line(CEMENT)
        await store.add_line(BRICK, 5)
        await store.remove_line(CEMENT.id)
        self.assertEqual([(r.product_id, r.quantity) for r in remote.rows["u1"]], [(BRICK.id, 5)])

        await store.clear()
        self.assertEqual(remote.rows["u1"], [])

    async def test_remote_read_failure_falls_back_to_local(self):
        store = CartStore(self.cache, FakeRemote())
        await store.add_line(DRILL)

        failing = CartStore(self.cache, FakeRemote(fail_reads=True))
        await failing.on_identity_changed("u1")
        self.assertEqual(failing.get_quantity(DRILL.id), 1)

    async def test_remote_write_failure_keeps_local_state(self):
        remote = FakeRemote(fail_writes=True)
        store = CartStore(self.cache, remote)
        await store.on_identity_changed("u1")

        await store.add_line(CEMENT, 2)
        self.assertEqual(store.get_quantity(CEMENT.id), 2)
        self.assertEqual(remote.writes, 1)
        self.assertFalse(await store.persist())
        self.assertEqual(self.cache.get(CART_KEY)[0]["quantity"], 2)

    async def test_signing_out_switches_back_to_local_cart(self):
        remote = FakeRemote([remote_row("u1", BRICK, 4)])
        store = CartStore(self.cache, remote)
        await store.on_identity_changed("u1")

        self.cache.remove(CART_KEY)  # what sign-out does to the local cache
        await store.on_identity_changed(None)
        self.assertTrue(store.is_empty)
        self.assertEqual(len(remote.rows["u1"]), 1)


class CartStoreWithBackendTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        db_database.DB_PATH = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database._initialized = False
        self.cache = LocalCache(os.path.join(self.temp_dir.name, "cache.json"))

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_cart_persists_across_sessions_in_backend(self):
        account = await crud.create_account("buyer@example.com", "hash")

        store = CartStore(self.cache)
        await store.on_identity_changed(account.id)
        await store.add_line(CEMENT, 2)
        await store.add_line(DRILL)

        # another device: empty local cache, same user
        other = CartStore(LocalCache(os.path.join(self.temp_dir.name, "other.json")))
        await other.on_identity_changed(account.id)
        self.assertEqual(
            sorted((l.product.id, l.quantity) for l in other.lines),
            [(CEMENT.id, 2), (DRILL.id, 1)],
        )
        self.assertEqual(other.total_price, 2 * 320.0 + 4500.0)


if __name__ == "__main__":
    unittest.main()
