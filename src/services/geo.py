# address suggestions and delivery distance/cost
from __future__ import annotations

import math
from typing import List, Optional

import httpx
from pydantic import ValidationError

from services.schemas import AddressSuggestion, DeliveryQuote, DeliveryQuoteRequest
from utils.config import Settings
from utils.logger import get_logger
from utils.pure import delivery_cost_for_distance

_logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0
DADATA_SUGGEST_URL = "https://suggestions.dadata.ru/suggestions/api/4_1/rs/suggest/address"
MIN_QUERY_LENGTH = 3


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class DeliveryCalculator:
    """
    Prices delivery from the warehouse to a geocoded address.

    Distance is the straight-line (haversine) distance; the cost is the
    per-kilometre rate applied to the distance rounded up.
    """

    def __init__(
        self,
        warehouse_lat: Optional[float],
        warehouse_lon: Optional[float],
        rate_per_km: int = 7,
    ) -> None:
        self.warehouse_lat = warehouse_lat
        self.warehouse_lon = warehouse_lon
        self.rate_per_km = rate_per_km

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeliveryCalculator":
        return cls(settings.warehouse_lat, settings.warehouse_lon, settings.delivery_rate_per_km)

    @property
    def configured(self) -> bool:
        return self.warehouse_lat is not None and self.warehouse_lon is not None

    def quote(self, lat: float, lon: float) -> DeliveryQuote:
        """Raises ValueError for invalid coordinates or a missing warehouse location."""
        if not self.configured:
            raise ValueError("Warehouse location is not configured.")
        try:
            req = DeliveryQuoteRequest(lat=lat, lon=lon)
        except ValidationError as exc:
            raise ValueError("Invalid coordinates.") from exc
        distance_km = haversine_km(self.warehouse_lat, self.warehouse_lon, req.lat, req.lon)
        return DeliveryQuote(
            distance_km=distance_km,
            cost_rub=delivery_cost_for_distance(distance_km, self.rate_per_km),
        )


class AddressSuggester:
    """Address autocomplete backed by the DaData suggestions API."""

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "AddressSuggester":
        return cls(settings.dadata_key)

    async def suggest(self, query: str, count: int = 7) -> List[AddressSuggestion]:
        """
        Up to `count` suggestions for a partial address. Short queries, a
        missing API key and every failure return an empty list.
        """
        query = (query or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            return []
        if not self.api_key:
            _logger.debug("DADATA_KEY not set, address suggestions disabled")
            return []

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    DADATA_SUGGEST_URL,
                    json={"query": query, "count": count},
                    headers={
                        "Accept": "application/json",
                        "Authorization": f"Token {self.api_key}",
                    },
                )
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            _logger.warning(f"Address suggestions failed for '{query}': {exc}")
            return []

        if not isinstance(payload, dict):
            return []
        out: List[AddressSuggestion] = []
        for item in payload.get("suggestions") or []:
            if not isinstance(item, dict):
                continue
            data = item.get("data") or {}
            try:
                out.append(
                    AddressSuggestion(
                        value=item.get("value", ""),
                        lat=data.get("geo_lat"),
                        lon=data.get("geo_lon"),
                    )
                )
            except ValidationError:
                continue
        return [s for s in out if s.value]
