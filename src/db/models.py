# dataclass models shared by the backend tables and the services

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class Product:
    """A catalog entry as published by the product feed. Never mutated here."""

    id: str
    name: str
    price: float
    category: str
    description: str = ""
    klass: Optional[str] = None  # "class" facet
    manufacturer: Optional[str] = None
    sizes: Optional[str] = None
    image: str = ""
    in_stock: bool = True


@dataclass(frozen=True)
class CartLine:
    id: str
    product: Product
    quantity: int
    added_at: datetime

    @property
    def line_total(self) -> float:
        return self.product.price * self.quantity


@dataclass(frozen=True)
class OrderItem:
    name: str
    price: float  # unit price at time of order
    quantity: int


ORDER_STATUSES = ("new", "confirmed", "processing", "shipped", "delivered", "cancelled")
ORDER_FLOW = ("new", "confirmed", "processing", "shipped", "delivered")


def next_statuses(status: str) -> Tuple[str, ...]:
    """Statuses an order in `status` may move to. Terminal states return ()."""
    if status not in ORDER_FLOW or status == "delivered":
        return ()
    idx = ORDER_FLOW.index(status)
    return (ORDER_FLOW[idx + 1], "cancelled")


@dataclass(frozen=True)
class Order:
    id: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    customer_address: str
    items: Tuple[OrderItem, ...]
    total_amount: float
    status: str
    created_at: datetime
    user_id: Optional[str] = None
    delivery_km: Optional[float] = None
    delivery_cost: Optional[float] = None
    customer_lat: Optional[float] = None
    customer_lon: Optional[float] = None

    @property
    def subtotal(self) -> float:
        return sum(i.price * i.quantity for i in self.items)


@dataclass(frozen=True)
class Account:
    id: str
    email: str
    password_hash: str
    created_at: datetime


@dataclass(frozen=True)
class Profile:
    id: str
    email: str
    full_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    is_admin: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class CartRow:
    """One row of the remote cart_items table."""

    user_id: str
    product_id: str
    product_name: str
    product_price: float
    product_image: str
    product_category: str
    quantity: int
    created_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class ContactMessage:
    id: int
    name: str
    phone: str
    email: Optional[str]
    message: str
    preferred_contact: str  # "phone" | "whatsapp" | "telegram"
    status: str  # "new" | "processed"
    created_at: datetime


@dataclass(frozen=True)
class Partner:
    id: str
    name: str
    address: str
    contact: Optional[str] = None


@dataclass(frozen=True)
class FilterFacets:
    manufacturers: Tuple[str, ...] = field(default_factory=tuple)
    classes: Tuple[str, ...] = field(default_factory=tuple)
