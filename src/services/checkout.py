# turns a cart snapshot plus customer info into a stored order and staff notifications
from __future__ import annotations

import asyncio
import enum
import random
import string
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import db.crud as crud
from db.database import BACKEND_ERRORS
from db.models import CartLine, Order, OrderItem
from services.schemas import (
    ContactNotification,
    DeliveryQuote,
    OrderNotification,
    OrderNotificationItem,
    notification_timestamp,
)
from utils.logger import get_logger
from utils.pure import delivery_cost_for_distance  # noqa: F401  part of the checkout API

_logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

PREFERRED_CONTACTS = ("phone", "whatsapp", "telegram")


class CheckoutValidationError(ValueError):
    """Customer input rejected before anything is stored."""


def normalize_phone(raw: str) -> str:
    """
    Reduce a phone number to its 11 digits, '7' first.

    Accepts any formatting around the digits; a leading '8' is rewritten to '7'.
    """
    digits = "".join(ch for ch in (raw or "") if ch.isdigit())
    if len(digits) != 11 or digits[0] not in "78":
        raise CheckoutValidationError("Enter a valid phone number: +7 (XXX) XXX-XX-XX.")
    return "7" + digits[1:]


def is_valid_email(email: Optional[str]) -> bool:
    """An empty e-mail is allowed; otherwise a local part, an @ and a domain containing a dot."""
    email = (email or "").strip()
    if not email:
        return True
    local, sep, domain = email.partition("@")
    return bool(sep and local and domain and "." in domain)


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    phone: str
    address: str
    email: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None


def validate_customer_info(info: CustomerInfo) -> CustomerInfo:
    """Return a normalized copy of `info` or raise CheckoutValidationError."""
    name = (info.name or "").strip()
    address = (info.address or "").strip()
    email = (info.email or "").strip()
    if not name:
        raise CheckoutValidationError("Enter your name.")
    phone = normalize_phone(info.phone)
    if not is_valid_email(email):
        raise CheckoutValidationError("Enter a valid e-mail address.")
    if not address:
        raise CheckoutValidationError("Enter a delivery address.")
    return CustomerInfo(
        name=name, phone=phone, address=address, email=email, lat=info.lat, lon=info.lon
    )


def provisional_order_id(now_ms: Optional[int] = None) -> str:
    """Client-side reference shown before the store assigns the real id."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"ORDER-{now_ms}-{suffix}"


@dataclass(frozen=True)
class CheckoutResult:
    success: bool
    order: Optional[Order] = None
    provisional_id: Optional[str] = None
    error: Optional[str] = None
    email_sent: bool = False
    telegram_sent: bool = False


@dataclass(frozen=True)
class ContactResult:
    success: bool
    stored: bool = False
    error: Optional[str] = None
    email_sent: bool = False
    telegram_sent: bool = False


class SubmitPhase(enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_ALLOWED = {
    SubmitPhase.IDLE: {SubmitPhase.SUBMITTING},
    SubmitPhase.SUBMITTING: {SubmitPhase.SUCCEEDED, SubmitPhase.FAILED},
    SubmitPhase.SUCCEEDED: {SubmitPhase.IDLE},
    SubmitPhase.FAILED: {SubmitPhase.IDLE},
}


class SubmitStateMachine:
    """Phase of the checkout form: idle, submitting, then succeeded or failed, then idle again."""

    def __init__(self) -> None:
        self.phase = SubmitPhase.IDLE

    def _move(self, target: SubmitPhase) -> None:
        if target not in _ALLOWED[self.phase]:
            raise RuntimeError(f"Cannot go from {self.phase.value} to {target.value}")
        self.phase = target

    def start(self) -> None:
        self._move(SubmitPhase.SUBMITTING)

    def finish(self, success: bool) -> None:
        self._move(SubmitPhase.SUCCEEDED if success else SubmitPhase.FAILED)

    def reset(self) -> None:
        self._move(SubmitPhase.IDLE)

    @property
    def busy(self) -> bool:
        return self.phase is SubmitPhase.SUBMITTING


class CheckoutService:
    """
    Submits orders and contact messages.

    An order is stored first; staff are notified only once the store has
    accepted it, and the cart is cleared last. A failed store leaves the
    cart as it was.
    """

    def __init__(
        self,
        cart,
        identity,
        delivery_calculator,
        notifier,
        orders=crud,
        order_timeout: float = 15.0,
        notify_timeout: float = 10.0,
    ) -> None:
        self.cart = cart
        self.identity = identity
        self.delivery_calculator = delivery_calculator
        self.notifier = notifier
        self.orders = orders
        self.order_timeout = order_timeout
        self.notify_timeout = notify_timeout
        self._in_flight = False

    @property
    def submitting(self) -> bool:
        return self._in_flight

    def quote_delivery(self, lat: Optional[float], lon: Optional[float]) -> Optional[DeliveryQuote]:
        """Delivery quote for the coordinates, or None when it cannot be priced."""
        if lat is None or lon is None or self.delivery_calculator is None:
            return None
        try:
            return self.delivery_calculator.quote(lat, lon)
        except ValueError as exc:
            _logger.info(f"No delivery quote for ({lat}, {lon}): {exc}")
            return None

    async def _notify(self, kind: str, data: dict) -> Tuple[bool, bool]:
        """Dispatch to staff; a raising or hanging notifier counts as nothing sent."""
        try:
            return await asyncio.wait_for(
                self.notifier.dispatch(kind, data), timeout=self.notify_timeout
            )
        except asyncio.TimeoutError:
            _logger.error(f"{kind} notifications timed out after {self.notify_timeout}s")
        except Exception as exc:
            _logger.error(f"{kind} notifications failed: {exc!r}")
        return False, False

    def _user_id(self) -> Optional[str]:
        user = getattr(self.identity, "current_user", None) if self.identity else None
        return user.id if user else None

    async def submit_order(
        self,
        lines: Sequence[CartLine],
        info: CustomerInfo,
        delivery: Optional[DeliveryQuote] = None,
    ) -> CheckoutResult:
        if not lines:
            return CheckoutResult(False, error="Your cart is empty.")
        try:
            info = validate_customer_info(info)
        except CheckoutValidationError as exc:
            return CheckoutResult(False, error=str(exc))
        if self._in_flight:
            return CheckoutResult(False, error="Order is already being submitted.")

        self._in_flight = True
        try:
            return await self._submit(tuple(lines), info, delivery)
        finally:
            self._in_flight = False

    async def _submit(
        self,
        lines: Sequence[CartLine],
        info: CustomerInfo,
        delivery: Optional[DeliveryQuote],
    ) -> CheckoutResult:
        provisional_id = provisional_order_id()
        if delivery is None:
            delivery = self.quote_delivery(info.lat, info.lon)
        items = tuple(
            OrderItem(name=line.product.name, price=line.product.price, quantity=line.quantity)
            for line in lines
        )
        subtotal = sum(i.price * i.quantity for i in items)
        total = subtotal + (delivery.cost_rub if delivery else 0)
        _logger.info(f"Submitting order {provisional_id}: {len(items)} lines, total {total}")

        try:
            order = await asyncio.wait_for(
                self.orders.insert_order(
                    customer_name=info.name,
                    customer_phone=info.phone,
                    customer_email=info.email or None,
                    customer_address=info.address,
                    items=items,
                    total_amount=total,
                    user_id=self._user_id(),
                    customer_lat=info.lat,
                    customer_lon=info.lon,
                    delivery_km=delivery.distance_km if delivery else None,
                    delivery_cost=delivery.cost_rub if delivery else None,
                ),
                timeout=self.order_timeout,
            )
        except BACKEND_ERRORS as exc:
            _logger.error(f"Order {provisional_id} was not stored: {exc!r}")
            return CheckoutResult(
                False,
                provisional_id=provisional_id,
                error="Could not place the order. Please try again.",
            )

        notification = OrderNotification(
            orderId=order.id,
            customerName=order.customer_name,
            customerPhone=order.customer_phone,
            customerEmail=order.customer_email,
            customerAddress=order.customer_address,
            items=[
                OrderNotificationItem(name=i.name, price=i.price, quantity=i.quantity)
                for i in order.items
            ],
            totalAmount=order.total_amount,
            delivery=delivery,
            timestamp=notification_timestamp(),
        )
        email_sent, telegram_sent = await self._notify("order", notification.model_dump())

        await self.cart.clear()
        _logger.info(
            f"Order {order.id} placed (email={email_sent}, telegram={telegram_sent})"
        )
        return CheckoutResult(
            True,
            order=order,
            provisional_id=provisional_id,
            email_sent=email_sent,
            telegram_sent=telegram_sent,
        )

    async def submit_contact_message(
        self,
        name: str,
        phone: str,
        message: str,
        email: str = "",
        preferred_contact: str = "phone",
    ) -> ContactResult:
        """
        Store a message for the shop and notify staff. Succeeds if the message
        reached the store or at least one notification went out.
        """
        name = (name or "").strip()
        message = (message or "").strip()
        email = (email or "").strip()
        if not name:
            return ContactResult(False, error="Enter your name.")
        try:
            phone = normalize_phone(phone)
        except CheckoutValidationError as exc:
            return ContactResult(False, error=str(exc))
        if not is_valid_email(email):
            return ContactResult(False, error="Enter a valid e-mail address.")
        if preferred_contact not in PREFERRED_CONTACTS:
            preferred_contact = "phone"

        stored_id = None
        try:
            stored = await self.orders.insert_contact_message(
                name, phone, message, email or None, preferred_contact
            )
            stored_id = stored.id
        except BACKEND_ERRORS as exc:
            _logger.error(f"Contact message not stored: {exc!r}")

        notification = ContactNotification(
            id=stored_id,
            name=name,
            phone=phone,
            email=email or None,
            message=message,
            preferredContact=preferred_contact,
            timestamp=notification_timestamp(),
        )
        email_sent, telegram_sent = await self._notify("contact", notification.model_dump())
        stored_ok = stored_id is not None
        success = stored_ok or email_sent or telegram_sent
        return ContactResult(
            success,
            stored=stored_ok,
            error=None if success else "Could not send the message. Please call us.",
            email_sent=email_sent,
            telegram_sent=telegram_sent,
        )
