import os
import tempfile
import unittest
from datetime import timedelta

import aiosqlite

from db import crud
from db import database as db_database
from db.models import Account, Profile
from services.identity import (
    GENERIC_ERROR,
    IdentityProvider,
    create_access_token,
    decode_access_token,
    get_password_hash,
    map_auth_error,
    verify_password,
)
from services.local_cache import CART_KEY, TOKEN_KEY, LocalCache
from utils.config import Settings


async def no_sleep(_seconds):
    return None


class LaggingProfileRepo:
    """Profile row shows up only after a few reads."""

    def __init__(self, appears_on_attempt):
        self.appears_on_attempt = appears_on_attempt
        self.reads = 0
        self.account = Account("u1", "late@example.com", get_password_hash("secret1"), None)

    async def get_account_by_email(self, email):
        return self.account if email == self.account.email else None

    async def get_profile(self, user_id):
        self.reads += 1
        if self.reads >= self.appears_on_attempt:
            return Profile(id=user_id, email=self.account.email, full_name="Late", is_admin=True)
        return None


class BrokenRepo:
    async def get_account_by_email(self, email):
        raise aiosqlite.OperationalError("backend unavailable")

    async def create_account(self, email, password_hash):
        raise aiosqlite.OperationalError("backend unavailable")


class ProfileWriteFailsRepo:
    """Real store, except the profile row cannot be written."""

    def __getattr__(self, name):
        return getattr(crud, name)

    async def upsert_profile(self, *args, **kwargs):
        raise aiosqlite.OperationalError("database is locked")


class TokenTestCase(unittest.TestCase):
    def test_token_round_trip_and_expiry(self):
        token = create_access_token("u1", "secret", timedelta(minutes=5))
        self.assertEqual(decode_access_token(token, "secret"), "u1")
        self.assertIsNone(decode_access_token(token, "other-secret"))
        self.assertIsNone(decode_access_token("not-a-token", "secret"))

        expired = create_access_token("u1", "secret", timedelta(minutes=-1))
        self.assertIsNone(decode_access_token(expired, "secret"))

    def test_password_hashing(self):
        hashed = get_password_hash("secret1")
        self.assertNotEqual(hashed, "secret1")
        self.assertTrue(verify_password("secret1", hashed))
        self.assertFalse(verify_password("wrong", hashed))
        self.assertFalse(verify_password("secret1", "not-a-hash"))

    def test_map_auth_error(self):
        self.assertIn("already registered", map_auth_error("Email already registered"))
        self.assertEqual(map_auth_error("Invalid credentials"), "Wrong e-mail or password.")
        self.assertEqual(map_auth_error("boom"), GENERIC_ERROR)
        self.assertEqual(map_auth_error(None), GENERIC_ERROR)


class IdentityProviderTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        db_database.DB_PATH = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database._initialized = False
        self.cache = LocalCache(os.path.join(self.temp_dir.name, "cache.json"))
        self.settings = Settings(jwt_secret="test-secret", token_ttl_minutes=5)

    def tearDown(self):
        self.temp_dir.cleanup()

    def _provider(self, repo=crud):
        return IdentityProvider(self.cache, self.settings, repo=repo, sleep=no_sleep)

    async def test_register_then_authenticate(self):
        identity = self._provider()
        seen = []

        async def listener(user):
            seen.append(user.email if user else None)

        identity.subscribe(listener)

        registered = await identity.register("Buyer@Example.com ", "secret1", "Ivan Petrov", "79001234567")
        self.assertTrue(registered.success)
        self.assertEqual(registered.user.email, "buyer@example.com")
        self.assertEqual(identity.profile.full_name, "Ivan Petrov")
        self.assertFalse(identity.is_admin)
        self.assertEqual(self.cache.get(TOKEN_KEY), registered.user.token)

        await identity.deauthenticate()
        self.assertIsNone(identity.current_user)

        wrong = await identity.authenticate("buyer@example.com", "nope")
        self.assertFalse(wrong.success)
        self.assertEqual(wrong.error, "Wrong e-mail or password.")

        signed_in = await identity.authenticate("buyer@example.com", "secret1")
        self.assertTrue(signed_in.success)
        self.assertEqual(signed_in.user.id, registered.user.id)
        self.assertEqual(seen, ["buyer@example.com", None, "buyer@example.com"])

    async def test_is_admin_reflects_profile_flag(self):
        identity = self._provider()
        result = await identity.register("admin@example.com", "secret1", "Admin")
        await crud.set_admin(result.user.id, True)

        self.assertFalse(identity.is_admin)  # cached profile is stale
        await identity.refresh_profile()
        self.assertTrue(identity.is_admin)

    async def test_register_rejections(self):
        identity = self._provider()
        self.assertFalse((await identity.register("not-an-email", "secret1", "X")).success)
        short = await identity.register("a@b.ru", "12345", "X")
        self.assertFalse(short.success)
        self.assertIn("6 characters", short.error)

        self.assertTrue((await identity.register("a@b.ru", "secret1", "X")).success)
        dup = await identity.register("a@b.ru", "secret1", "X")
        self.assertFalse(dup.success)
        self.assertIn("already registered", dup.error)

    async def test_register_keeps_session_when_profile_write_fails(self):
        identity = self._provider(ProfileWriteFailsRepo())
        result = await identity.register("buyer@example.com", "secret1", "Ivan")
        self.assertTrue(result.success)
        self.assertIsNotNone(identity.current_user)
        self.assertIsNone(identity.profile)

        # the account is usable right away, no "already registered" dead end
        await identity.deauthenticate()
        self.assertTrue((await identity.authenticate("buyer@example.com", "secret1")).success)

    async def test_profile_found_on_third_attempt(self):
        repo = LaggingProfileRepo(appears_on_attempt=3)
        identity = self._provider(repo)
        result = await identity.authenticate("late@example.com", "secret1")
        self.assertTrue(result.success)
        self.assertEqual(repo.reads, 3)
        self.assertTrue(identity.is_admin)

    async def test_missing_profile_keeps_user_signed_in(self):
        repo = LaggingProfileRepo(appears_on_attempt=99)
        identity = self._provider(repo)
        result = await identity.authenticate("late@example.com", "secret1")
        self.assertTrue(result.success)
        self.assertEqual(repo.reads, 4)
        self.assertIsNotNone(identity.current_user)
        self.assertIsNone(identity.profile)
        self.assertFalse(identity.is_admin)

    async def test_backend_failure_is_reported_not_raised(self):
        identity = self._provider(BrokenRepo())
        result = await identity.authenticate("a@b.ru", "secret1")
        self.assertFalse(result.success)
        self.assertEqual(result.error, GENERIC_ERROR)
        self.assertFalse((await identity.register("a@b.ru", "secret1", "X")).success)

    async def test_deauthenticate_clears_token_and_cart(self):
        identity = self._provider()
        await identity.register("buyer@example.com", "secret1", "Ivan")
        self.cache.set(CART_KEY, [{"id": "x"}])

        result = await identity.deauthenticate()
        self.assertTrue(result.success)
        self.assertIsNone(self.cache.get(TOKEN_KEY))
        self.assertIsNone(self.cache.get(CART_KEY))
        self.assertIsNone(identity.profile)

    async def test_restore_from_cached_token(self):
        first = self._provider()
        registered = await first.register("buyer@example.com", "secret1", "Ivan")

        restarted = self._provider()
        result = await restarted.restore()
        self.assertTrue(result.success)
        self.assertEqual(restarted.current_user.id, registered.user.id)
        self.assertEqual(restarted.profile.full_name, "Ivan")

    async def test_restore_discards_invalid_token(self):
        self.cache.set(TOKEN_KEY, "garbage")
        identity = self._provider()
        self.assertFalse((await identity.restore()).success)
        self.assertIsNone(self.cache.get(TOKEN_KEY))
        self.assertFalse((await self._provider().restore()).success)

    async def test_update_profile(self):
        identity = self._provider()
        self.assertFalse((await identity.update_profile(full_name="X")).success)

        await identity.register("buyer@example.com", "secret1", "Ivan")
        result = await identity.update_profile(phone="79001234567", address="Moscow, Arbat 5")
        self.assertTrue(result.success)
        self.assertEqual(identity.profile.address, "Moscow, Arbat 5")
        self.assertEqual(identity.profile.full_name, "Ivan")


if __name__ == "__main__":
    unittest.main()
