import os
import tempfile
import unittest
from datetime import timedelta

from db import crud
from db import database as db_database
from db.models import OrderItem
from services.admin_gate import AdminGate, admin_check
from services.identity import IdentityProvider, create_access_token
from services.local_cache import LocalCache
from services.schemas import AdminCheckResponse
from utils.config import Settings


async def no_sleep(_seconds):
    return None


class AdminGateTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        db_database.DB_PATH = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database._initialized = False
        self.settings = Settings(jwt_secret="test-secret")
        self.identity = IdentityProvider(
            LocalCache(os.path.join(self.temp_dir.name, "cache.json")),
            self.settings,
            sleep=no_sleep,
        )

    def tearDown(self):
        self.temp_dir.cleanup()

    def _gate(self, checker=None):
        async def check(token):
            return await admin_check(token, self.settings)

        return AdminGate(self.identity, checker=checker or check)

    async def _sign_up(self, email, admin=False):
        result = await self.identity.register(email, "secret1", "Someone")
        if admin:
            await crud.set_admin(result.user.id, True)
        return result.user

    async def test_admin_check_answers(self):
        self.assertFalse((await admin_check(None, self.settings)).ok)
        self.assertFalse((await admin_check("garbage", self.settings)).ok)

        user = await self._sign_up("buyer@example.com")
        self.assertFalse((await admin_check(user.token, self.settings)).ok)

        await crud.set_admin(user.id, True)
        self.assertTrue((await admin_check(user.token, self.settings)).ok)

        forged = create_access_token(user.id, "another-secret", timedelta(minutes=5))
        self.assertFalse((await admin_check(forged, self.settings)).ok)

    async def test_guest_is_denied(self):
        gate = self._gate()
        self.assertFalse(gate.client_flag)
        self.assertFalse(await gate.verify())
        with self.assertRaises(PermissionError):
            await gate.list_orders()

    async def test_client_flag_alone_grants_nothing(self):
        await self._sign_up("admin@example.com", admin=True)
        await self.identity.refresh_profile()

        async def server_says_no(token):
            return AdminCheckResponse(ok=False)

        gate = self._gate(server_says_no)
        self.assertTrue(gate.client_flag)
        self.assertFalse(await gate.verify())
        with self.assertRaises(PermissionError):
            await gate.stats()

    async def test_checker_failure_denies(self):
        await self._sign_up("admin@example.com", admin=True)

        async def exploding(token):
            raise RuntimeError("network down")

        self.assertFalse(await self._gate(exploding).verify())

    async def test_admin_operations(self):
        await self._sign_up("admin@example.com", admin=True)
        gate = self._gate()
        self.assertTrue(await gate.verify())

        order = await crud.insert_order(
            customer_name="Ivan",
            customer_phone="79001234567",
            customer_address="Moscow",
            items=[OrderItem("Sand 1t", 1200.0, 2)],
            total_amount=2400.0,
        )
        message = await crud.insert_contact_message("Anna", "79007654321", "Call me")

        self.assertEqual([o.id for o in await gate.list_orders()], [order.id])
        self.assertTrue(await gate.set_order_status(order.id, "confirmed"))
        self.assertEqual([o.id for o in await gate.list_orders(status="confirmed")], [order.id])

        self.assertEqual([m.id for m in await gate.list_messages(status="new")], [message.id])
        stats = await gate.stats()
        self.assertEqual(stats.total_users, 1)
        self.assertEqual(stats.total_orders, 1)
        self.assertEqual(stats.total_revenue, 2400.0)
        self.assertEqual(stats.pending_messages, 1)

        self.assertTrue(await gate.set_message_status(message.id, "processed"))
        self.assertEqual((await gate.stats()).pending_messages, 0)

    async def test_demoted_admin_loses_access(self):
        user = await self._sign_up("admin@example.com", admin=True)
        gate = self._gate()
        self.assertTrue(await gate.verify())

        await crud.set_admin(user.id, False)
        self.assertFalse(await gate.verify())


if __name__ == "__main__":
    unittest.main()
