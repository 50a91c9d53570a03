# sign-up / sign-in / sign-out and the profile of the signed-in user
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

import db.crud as crud
from db.database import BACKEND_ERRORS
from db.models import Profile
from services.checkout import is_valid_email
from services.local_cache import CART_KEY, TOKEN_KEY, LocalCache
from utils.config import Settings
from utils.logger import get_logger

_logger = get_logger(__name__)

ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 6
PROFILE_ATTEMPTS = 4
PROFILE_BACKOFF = 0.5  # seconds, multiplied by the attempt number

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

GENERIC_ERROR = "Something went wrong. Please try again."
_ERROR_MAP = (
    ("already registered", "A user with this e-mail is already registered."),
    ("invalid credentials", "Wrong e-mail or password."),
    ("password", "Password must be at least 6 characters."),
    ("invalid email", "Enter a valid e-mail address."),
    ("not signed in", "You are not signed in."),
)


def map_auth_error(message: Optional[str]) -> str:
    """Translate a backend auth failure into the text shown to the user."""
    text = (message or "").lower()
    for needle, friendly in _ERROR_MAP:
        if needle in text:
            return friendly
    return GENERIC_ERROR


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def create_access_token(
    subject: str, secret: str, expires_delta: Optional[timedelta] = None
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    return jwt.encode({"sub": subject, "exp": expire}, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> Optional[str]:
    """Account id carried by a valid, unexpired token, else None."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    sub = payload.get("sub")
    return sub if isinstance(sub, str) and sub else None


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str
    token: str


@dataclass(frozen=True)
class AuthResult:
    success: bool
    error: Optional[str] = None
    user: Optional[SessionUser] = None


IdentityListener = Callable[[Optional[SessionUser]], Awaitable[None]]


class IdentityProvider:
    """
    Owns the session of the running storefront.

    Operations resolve to an AuthResult and never raise. The token is kept in
    the local cache so the next start can restore the session.
    """

    def __init__(
        self,
        cache: LocalCache,
        settings: Settings,
        repo=crud,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cache = cache
        self._settings = settings
        self._repo = repo
        self._sleep = sleep
        self._user: Optional[SessionUser] = None
        self._profile: Optional[Profile] = None
        self._listeners: List[IdentityListener] = []

    @property
    def current_user(self) -> Optional[SessionUser]:
        return self._user

    @property
    def profile(self) -> Optional[Profile]:
        return self._profile

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def is_admin(self) -> bool:
        """Client-side flag from the cached profile; only decides what is shown."""
        return bool(self._profile and self._profile.is_admin)

    def subscribe(self, callback: IdentityListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _emit(self) -> None:
        for callback in list(self._listeners):
            await callback(self._user)

    def _issue_token(self, account_id: str) -> str:
        return create_access_token(
            account_id,
            self._settings.jwt_secret,
            timedelta(minutes=self._settings.token_ttl_minutes),
        )

    async def _load_profile(self, user_id: str) -> Optional[Profile]:
        """
        Read the profile row, retrying because it can lag behind the account.
        Gives up with None after PROFILE_ATTEMPTS tries.
        """
        for attempt in range(1, PROFILE_ATTEMPTS + 1):
            try:
                profile = await self._repo.get_profile(user_id)
            except BACKEND_ERRORS as exc:
                _logger.warning(f"Profile read failed (attempt {attempt}): {exc}")
                profile = None
            if profile is not None:
                return profile
            if attempt < PROFILE_ATTEMPTS:
                await self._sleep(PROFILE_BACKOFF * attempt)
        _logger.warning(f"No profile for user {user_id} after {PROFILE_ATTEMPTS} attempts")
        return None

    async def _start_session(self, account_id: str, email: str) -> SessionUser:
        token = self._issue_token(account_id)
        try:
            self._cache.set(TOKEN_KEY, token)
        except OSError as exc:
            _logger.warning(f"Could not cache session token: {exc}")
        self._user = SessionUser(id=account_id, email=email, token=token)
        self._profile = await self._load_profile(account_id)
        await self._emit()
        return self._user

    async def register(
        self, email: str, password: str, full_name: str, phone: Optional[str] = None
    ) -> AuthResult:
        email = (email or "").strip().lower()
        full_name = (full_name or "").strip()
        if not email or not is_valid_email(email):
            return AuthResult(False, map_auth_error("invalid email"))
        if len(password or "") < MIN_PASSWORD_LENGTH:
            return AuthResult(False, map_auth_error("weak password"))

        try:
            account = await self._repo.create_account(email, get_password_hash(password))
        except ValueError as exc:
            _logger.info(f"Registration refused for {email}: {exc}")
            return AuthResult(False, map_auth_error(str(exc)))
        except BACKEND_ERRORS as exc:
            _logger.error(f"Registration failed for {email}: {exc!r}")
            return AuthResult(False, GENERIC_ERROR)

        # the account exists now; a missing profile is tolerated by the session
        try:
            await self._repo.upsert_profile(
                account.id, email, full_name or email.split("@")[0], phone or None
            )
        except BACKEND_ERRORS as exc:
            _logger.error(f"Profile not created for {email}: {exc!r}")

        _logger.info(f"Registered {email}")
        user = await self._start_session(account.id, email)
        return AuthResult(True, user=user)

    async def authenticate(self, email: str, password: str) -> AuthResult:
        email = (email or "").strip().lower()
        try:
            account = await self._repo.get_account_by_email(email)
        except BACKEND_ERRORS as exc:
            _logger.error(f"Sign-in failed for {email}: {exc!r}")
            return AuthResult(False, GENERIC_ERROR)

        if account is None or not verify_password(password or "", account.password_hash):
            _logger.info(f"Invalid credentials for {email}")
            return AuthResult(False, map_auth_error("invalid credentials"))

        _logger.info(f"Signed in {email}")
        user = await self._start_session(account.id, account.email)
        return AuthResult(True, user=user)

    async def deauthenticate(self) -> AuthResult:
        """Drop the session and the locally cached token and cart."""
        for key in (TOKEN_KEY, CART_KEY):
            try:
                self._cache.remove(key)
            except OSError as exc:
                _logger.warning(f"Could not clear cached '{key}': {exc}")
        was = self._user
        self._user = None
        self._profile = None
        if was is not None:
            _logger.info(f"Signed out {was.email}")
        await self._emit()
        return AuthResult(True)

    async def restore(self) -> AuthResult:
        """Re-establish the session from a cached token, if it is still valid."""
        token = self._cache.get(TOKEN_KEY)
        if not token or not isinstance(token, str):
            return AuthResult(False, map_auth_error("not signed in"))
        account_id = decode_access_token(token, self._settings.jwt_secret)
        if account_id is None:
            _logger.info("Cached session token expired or invalid, discarding")
            self._cache.remove(TOKEN_KEY)
            return AuthResult(False, map_auth_error("not signed in"))

        try:
            account = await self._repo.get_account(account_id)
        except BACKEND_ERRORS as exc:
            _logger.warning(f"Could not restore session: {exc}")
            return AuthResult(False, GENERIC_ERROR)
        if account is None:
            self._cache.remove(TOKEN_KEY)
            return AuthResult(False, map_auth_error("not signed in"))

        self._user = SessionUser(id=account.id, email=account.email, token=token)
        self._profile = await self._load_profile(account.id)
        await self._emit()
        return AuthResult(True, user=self._user)

    async def refresh_profile(self) -> AuthResult:
        if self._user is None:
            return AuthResult(False, map_auth_error("not signed in"))
        try:
            self._profile = await self._repo.get_profile(self._user.id)
        except BACKEND_ERRORS as exc:
            _logger.warning(f"Profile refresh failed: {exc}")
            return AuthResult(False, GENERIC_ERROR)
        return AuthResult(True, user=self._user)

    async def update_profile(
        self,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> AuthResult:
        """Update the given non-empty fields of the signed-in user's profile."""
        if self._user is None:
            return AuthResult(False, map_auth_error("not signed in"))
        try:
            updated = await self._repo.update_profile(
                self._user.id, full_name=full_name, phone=phone, address=address
            )
        except BACKEND_ERRORS as exc:
            _logger.error(f"Profile update failed: {exc!r}")
            return AuthResult(False, GENERIC_ERROR)
        if updated is None:
            return AuthResult(False, GENERIC_ERROR)
        self._profile = updated
        _logger.info(f"Profile updated for {self._user.email}")
        return AuthResult(True, user=self._user)
