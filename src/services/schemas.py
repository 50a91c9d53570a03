"""
Wire schemas for the storefront's remote collaborators

Each Pydantic model describes a request or response body exchanged with a
remote function or third-party API (delivery cost, address suggestions,
admin check, notifications).
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class DeliveryQuoteRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class DeliveryQuote(BaseModel):
    distance_km: float = Field(..., ge=0, description="Distance from the warehouse")
    cost_rub: int = Field(..., ge=0, description="Whole-kilometre rate times distance, rounded up")


class AddressSuggestion(BaseModel):
    value: str = Field(..., description="Display string of the address")
    lat: Optional[float] = None
    lon: Optional[float] = None

    @field_validator("lat", "lon", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        # the geocoder sends coordinates as strings, or null / "" when unknown
        if v in (None, ""):
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None

    @property
    def has_coords(self) -> bool:
        return self.lat is not None and self.lon is not None


class AdminCheckResponse(BaseModel):
    ok: bool = False


class OrderNotificationItem(BaseModel):
    name: str
    price: float
    quantity: int


class OrderNotification(BaseModel):
    orderId: str
    customerName: str
    customerPhone: str
    customerEmail: Optional[str] = None
    customerAddress: str
    items: List[OrderNotificationItem]
    totalAmount: float
    delivery: Optional[DeliveryQuote] = None
    timestamp: str


class ContactNotification(BaseModel):
    id: Optional[int] = None
    name: str
    phone: str
    email: Optional[str] = None
    message: str
    preferredContact: Literal["phone", "whatsapp", "telegram"] = "phone"
    timestamp: str


class NotificationPayload(BaseModel):
    type: Literal["contact", "order"]
    data: Dict[str, Any]


def notification_timestamp(when: Optional[datetime] = None) -> str:
    """Timestamp in the dd.mm.yyyy, HH:MM:SS form the shop staff read."""
    when = when or datetime.now()
    return when.strftime("%d.%m.%Y, %H:%M:%S")
