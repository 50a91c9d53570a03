# admin authorization: the server-side check is the only authority
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import db.crud as crud
from db.database import BACKEND_ERRORS
from db.models import ContactMessage, Order
from services.identity import decode_access_token
from services.schemas import AdminCheckResponse
from utils.config import Settings, get_settings
from utils.logger import get_logger

_logger = get_logger(__name__)


async def admin_check(token: Optional[str], settings: Optional[Settings] = None) -> AdminCheckResponse:
    """
    Server-side admin check: decode the bearer token and re-read the
    profile's admin flag from the store. Any failure answers ok=False.
    """
    settings = settings or get_settings()
    if not token:
        return AdminCheckResponse(ok=False)
    user_id = decode_access_token(token, settings.jwt_secret)
    if user_id is None:
        return AdminCheckResponse(ok=False)
    try:
        profile = await crud.get_profile(user_id)
    except BACKEND_ERRORS as exc:
        _logger.error(f"admin-check could not read profile {user_id}: {exc!r}")
        return AdminCheckResponse(ok=False)
    return AdminCheckResponse(ok=bool(profile and profile.is_admin))


@dataclass(frozen=True)
class AdminStats:
    total_users: int
    total_orders: int
    total_revenue: float
    pending_messages: int


class AdminGate:
    """
    Decides whether admin screens and operations are available.

    `client_flag` only controls whether the admin entry is shown. Every
    privileged operation asks the server check first and raises
    PermissionError when it says no.
    """

    def __init__(
        self,
        identity,
        checker: Callable[[Optional[str]], Awaitable[AdminCheckResponse]] = admin_check,
        repo=crud,
    ) -> None:
        self.identity = identity
        self._checker = checker
        self._repo = repo

    @property
    def client_flag(self) -> bool:
        return bool(self.identity.is_admin)

    async def verify(self) -> bool:
        user = self.identity.current_user
        if user is None:
            return False
        try:
            response = await self._checker(user.token)
        except Exception as exc:  # any checker failure denies access
            _logger.warning(f"Admin check failed for {user.email}: {exc!r}")
            return False
        if not response.ok:
            _logger.info(f"Admin access denied for {user.email}")
        return bool(response.ok)

    async def _require(self) -> None:
        if not await self.verify():
            raise PermissionError("Admin access required.")

    async def list_orders(
        self, status: Optional[str] = None, search: str = "", limit: int = 100
    ) -> List[Order]:
        await self._require()
        return await self._repo.list_orders(status=status, search=search, limit=limit)

    async def set_order_status(self, order_id: str, status: str) -> bool:
        await self._require()
        changed = await self._repo.update_order_status(order_id, status)
        if changed:
            _logger.info(f"Order {order_id} moved to {status}")
        return changed

    async def list_messages(
        self, status: Optional[str] = None, search: str = "", limit: int = 100
    ) -> List[ContactMessage]:
        await self._require()
        return await self._repo.list_contact_messages(status=status, search=search, limit=limit)

    async def set_message_status(self, message_id: int, status: str) -> bool:
        await self._require()
        return await self._repo.update_contact_message_status(message_id, status)

    async def stats(self) -> AdminStats:
        await self._require()
        total_orders, revenue = await self._repo.order_totals()
        return AdminStats(
            total_users=await self._repo.count_profiles(),
            total_orders=total_orders,
            total_revenue=revenue,
            pending_messages=await self._repo.count_contact_messages("new"),
        )
