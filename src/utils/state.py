from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from db.database import connect
from services.admin_gate import AdminGate, admin_check
from services.cart_store import CartStore
from services.checkout import CheckoutService
from services.geo import AddressSuggester, DeliveryCalculator
from services.identity import IdentityProvider, SessionUser
from services.local_cache import LocalCache
from services.notifications import Notifier
from services.product_feed import ProductFeed
from utils.config import Settings, get_settings
from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass
class GlobalState:
    """
    Centralized application state shared by screens.

    Fields:
      - settings: environment the app was started with
      - cache: local durable cache (token, guest cart)
      - identity: session of the signed-in user, if any
      - cart: the one cart of the running session
      - feed: product catalog from the spreadsheet
      - suggester / delivery: address autocomplete and delivery pricing
      - checkout: order and contact-message submission
      - admin: server-checked admin operations
    """

    settings: Settings
    cache: LocalCache
    identity: IdentityProvider
    cart: CartStore
    feed: ProductFeed
    suggester: AddressSuggester
    delivery: DeliveryCalculator
    notifier: Notifier
    checkout: CheckoutService
    admin: AdminGate

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GlobalState":
        settings = settings or get_settings()
        cache = LocalCache(settings.cache_path)
        identity = IdentityProvider(cache, settings)
        cart = CartStore(cache)
        delivery = DeliveryCalculator.from_settings(settings)
        notifier = Notifier.from_settings(settings)

        async def check(token: Optional[str]):
            return await admin_check(token, settings)

        state = cls(
            settings=settings,
            cache=cache,
            identity=identity,
            cart=cart,
            feed=ProductFeed.from_settings(settings),
            suggester=AddressSuggester.from_settings(settings),
            delivery=delivery,
            notifier=notifier,
            checkout=CheckoutService(
                cart,
                identity,
                delivery,
                notifier,
                order_timeout=settings.order_timeout,
                notify_timeout=settings.notification_timeout * 2,
            ),
            admin=AdminGate(identity, check),
        )
        identity.subscribe(state._on_identity_changed)
        return state

    @property
    def user(self) -> Optional[SessionUser]:
        return self.identity.current_user

    async def _on_identity_changed(self, user: Optional[SessionUser]) -> None:
        await self.cart.on_identity_changed(user.id if user else None)

    async def startup(self) -> None:
        """
        Make sure the store exists, then restore a cached session (which
        reloads the cart) or load the guest cart.
        """
        async with connect():
            pass
        restored = await self.identity.restore()
        if restored.success:
            _logger.info(f"Session restored for {restored.user.email}")
        else:
            await self.cart.load()

    async def sign_out(self) -> None:
        await self.identity.deauthenticate()
