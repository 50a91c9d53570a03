# product catalog read from a spreadsheet (Google Sheets values API)
from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union
from urllib.parse import quote

import httpx

from db.models import FilterFacets, Partner, Product
from utils.config import Settings
from utils.logger import get_logger

_logger = get_logger(__name__)

SHEETS_URL = "https://sheets.googleapis.com/v4/spreadsheets/{sheet_id}/values/{range}"
PRODUCTS_RANGE = "A2:H1000"
PARTNERS_RANGE = "A2:D1000"
NO_SIZES = "Sizes not specified"


@dataclass(frozen=True)
class RowParseError:
    row_number: int  # 1-based sheet row
    reason: str


def _cell(row: Sequence, idx: int) -> str:
    """Cell text with surrounding whitespace removed; missing cells read as ''."""
    if idx >= len(row) or row[idx] is None:
        return ""
    return str(row[idx]).strip()


def parse_price(raw: str) -> float:
    """
    Parse a spreadsheet price such as '1 234,50' or '320'.
    Blank means 0; anything else unparseable raises ValueError.
    """
    text = "".join(str(raw or "").split())  # drops spaces, NBSP, tabs
    if not text:
        return 0.0
    value = float(text.replace(",", "."))
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"invalid price {raw!r}")
    return value


def parse_product_row(row: Sequence, index: int) -> Union[Product, RowParseError]:
    """
    Turn one sheet row into a Product.

    Columns: name, sizes, price, image, category, class, description, manufacturer.
    `index` is the 0-based position in the data range, the sheet row is index + 2.
    """
    row_number = index + 2
    name = _cell(row, 0)
    if not name:
        return RowParseError(row_number, "empty name")
    try:
        price = parse_price(_cell(row, 2))
    except ValueError:
        return RowParseError(row_number, f"unparseable price {_cell(row, 2)!r}")

    return Product(
        id=f"row-{row_number}",
        name=name,
        sizes=_cell(row, 1) or NO_SIZES,
        price=price,
        image=_cell(row, 3),
        category=_cell(row, 4),
        klass=_cell(row, 5) or None,
        description=_cell(row, 6),
        manufacturer=_cell(row, 7) or None,
    )


def _matches(
    product: Product,
    category: Optional[str],
    klass: Optional[str],
    manufacturer: Optional[str] = None,
) -> bool:
    category = (category or "").strip()
    klass = (klass or "").strip()
    manufacturer = (manufacturer or "").strip()
    if category and product.category != category:
        return False
    if klass and (product.klass or "") != klass:
        return False
    if manufacturer and (product.manufacturer or "") != manufacturer:
        return False
    return True


def filter_products(
    products: Iterable[Product],
    query: str = "",
    category: Optional[str] = None,
    klass: Optional[str] = None,
    manufacturer: Optional[str] = None,
) -> List[Product]:
    """Products matching every given facet whose name, description or category contains `query`."""
    needle = (query or "").strip().lower()
    out = []
    for p in products:
        if not _matches(p, category, klass, manufacturer):
            continue
        if needle and not any(
            needle in (text or "").lower() for text in (p.name, p.description, p.category)
        ):
            continue
        out.append(p)
    return out


def facets_for(products: Iterable[Product]) -> FilterFacets:
    products = list(products)
    return FilterFacets(
        manufacturers=tuple(sorted({p.manufacturer for p in products if p.manufacturer})),
        classes=tuple(sorted({p.klass for p in products if p.klass})),
    )


class ProductFeed:
    """
    Reads products and partners from the shop's spreadsheet.

    Every public call returns an empty result instead of raising, so views
    can fall back to PLACEHOLDER_PRODUCTS.
    """

    def __init__(
        self,
        api_key: Optional[str],
        spreadsheet_id: Optional[str],
        products_sheet: str = "Материалы",
        partners_sheet: str = "Производители",
        timeout: float = 10.0,
        retries: int = 3,
        backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.spreadsheet_id = spreadsheet_id
        self.products_sheet = products_sheet
        self.partners_sheet = partners_sheet
        self.timeout = timeout
        self.retries = max(retries, 1)
        self.backoff = backoff
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProductFeed":
        return cls(
            settings.sheets_api_key,
            settings.spreadsheet_id,
            products_sheet=settings.products_sheet,
            partners_sheet=settings.partners_sheet,
            timeout=settings.feed_timeout,
            retries=settings.feed_retries,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.spreadsheet_id)

    async def _fetch_values(self, sheet: str, cell_range: str) -> List[List[str]]:
        """GET a sheet range, retrying with exponential backoff. Raises on final failure."""
        url = SHEETS_URL.format(
            sheet_id=self.spreadsheet_id, range=quote(f"{sheet}!{cell_range}")
        )
        last_exc: Optional[Exception] = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.retries):
                try:
                    _logger.debug(f"Sheet fetch attempt {attempt + 1}/{self.retries}: {sheet}")
                    resp = await client.get(
                        url,
                        params={"key": self.api_key},
                        headers={"Accept": "application/json"},
                    )
                    resp.raise_for_status()
                    payload = resp.json()
                    values = payload.get("values", []) if isinstance(payload, dict) else []
                    return [list(r) for r in values if isinstance(r, list)]
                except (httpx.HTTPError, ValueError) as exc:
                    last_exc = exc
                    _logger.warning(f"Sheet fetch attempt {attempt + 1} failed: {exc}")
                    if attempt < self.retries - 1:
                        await asyncio.sleep(self.backoff * (2**attempt))
        raise last_exc  # type: ignore[misc]

    async def _all_products(self) -> List[Product]:
        if not self.configured:
            _logger.info("Product feed not configured")
            return []
        try:
            rows = await self._fetch_values(self.products_sheet, PRODUCTS_RANGE)
        except (httpx.HTTPError, ValueError) as exc:
            _logger.error(f"Product feed unavailable: {exc}")
            return []

        products: List[Product] = []
        for idx, row in enumerate(rows):
            parsed = parse_product_row(row, idx)
            if isinstance(parsed, RowParseError):
                if parsed.reason != "empty name":
                    _logger.warning(f"Skipping sheet row {parsed.row_number}: {parsed.reason}")
                continue
            products.append(parsed)
        return products

    async def list_products(
        self, category: Optional[str] = None, klass: Optional[str] = None
    ) -> List[Product]:
        products = await self._all_products()
        return [p for p in products if _matches(p, category, klass)]

    async def list_filter_facets(
        self, category: Optional[str] = None, klass: Optional[str] = None
    ) -> FilterFacets:
        """Distinct manufacturers and classes among the products matching the filters."""
        return facets_for(await self.list_products(category, klass))

    async def list_partners(self) -> List[Partner]:
        if not self.configured:
            return []
        try:
            rows = await self._fetch_values(self.partners_sheet, PARTNERS_RANGE)
        except (httpx.HTTPError, ValueError) as exc:
            _logger.error(f"Partner list unavailable: {exc}")
            return []
        partners = []
        for idx, row in enumerate(rows):
            name = _cell(row, 0)
            if not name:
                continue
            partners.append(
                Partner(
                    id=f"P{idx + 1}",
                    name=name,
                    address=_cell(row, 1),
                    contact=_cell(row, 2) or None,
                )
            )
        return partners


# shown by the catalog when the feed returns nothing
PLACEHOLDER_PRODUCTS = (
    Product("1", "Cement M400 50kg", 320, "Building materials",
            "High-grade portland cement for construction work"),
    Product("2", "Red brick", 15, "Building materials", "Ceramic brick for wall masonry"),
    Product("3", "Bosch hammer drill", 4500, "Tools", "Professional 750W hammer drill"),
    Product("4", "Kitchen faucet", 2800, "Plumbing",
            "Single-lever faucet with swivel spout", in_stock=False),
    Product("5", "VVG 3x2.5 cable", 45, "Electrical", "Power cable for indoor wiring"),
    Product("6", "Sliding wardrobe 2m", 18500, "Furniture",
            "Two-door sliding wardrobe with mirrored fronts"),
    Product("7", "Corner sofa", 25000, "Interior", "Comfortable corner sofa with soft upholstery"),
    Product("8", "Dining table", 12000, "Interior", "Wooden dining table for six"),
    Product("9", "M8x50 bolts", 5, "Fasteners", "Zinc-plated bolts with nuts and washers"),
    Product("10", "Ceiling chandelier", 8500, "Interior", "Modern LED chandelier for the living room"),
)
