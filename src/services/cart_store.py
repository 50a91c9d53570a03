# the single in-memory cart of the running session, mirrored locally and remotely
from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import db.crud as crud
from db.database import BACKEND_ERRORS
from db.models import CartLine, CartRow, Product
from services.local_cache import CART_KEY, LocalCache
from utils.logger import get_logger

_logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _line_to_json(line: CartLine) -> Dict[str, Any]:
    return {
        "id": line.id,
        "product": dataclasses.asdict(line.product),
        "quantity": line.quantity,
        "addedAt": line.added_at.isoformat(),
    }


def _line_from_json(raw: Dict[str, Any]) -> Optional[CartLine]:
    try:
        product = Product(**raw["product"])
        quantity = int(raw["quantity"])
        added_at = datetime.fromisoformat(raw["addedAt"])
    except (KeyError, TypeError, ValueError):
        return None
    if quantity < 1:
        return None
    return CartLine(
        id=str(raw.get("id") or product.id),
        product=product,
        quantity=quantity,
        added_at=added_at,
    )


def _line_from_row(row: CartRow) -> CartLine:
    product = Product(
        id=row.product_id,
        name=row.product_name,
        price=row.product_price,
        category=row.product_category,
        description=f"{row.product_name} - {row.product_category}",
        image=row.product_image,
    )
    added_at = row.created_at or _now()
    return CartLine(
        id=str(row.id) if row.id is not None else row.product_id,
        product=product,
        quantity=row.quantity,
        added_at=added_at,
    )


def _line_to_row(user_id: str, line: CartLine) -> CartRow:
    return CartRow(
        user_id=user_id,
        product_id=line.product.id,
        product_name=line.product.name,
        product_price=line.product.price,
        product_image=line.product.image,
        product_category=line.product.category,
        quantity=line.quantity,
        created_at=line.added_at,
    )


def _merge_duplicates(lines: List[CartLine]) -> List[CartLine]:
    """Collapse lines sharing a product id, keeping the first line's position."""
    merged: Dict[str, CartLine] = {}
    for line in lines:
        existing = merged.get(line.product.id)
        if existing is None:
            merged[line.product.id] = line
        else:
            merged[line.product.id] = dataclasses.replace(
                existing, quantity=existing.quantity + line.quantity
            )
    return list(merged.values())


class CartStore:
    """
    Holds the cart of the active session.

    Without a session the local cache is the only mirror. With a session the
    remote cart_items table is mirrored as well, by full replace. Remote
    failures are logged and never reach the caller; the in-memory cart stays
    usable during a backend outage.
    """

    def __init__(self, cache: LocalCache, remote=crud) -> None:
        self._cache = cache
        self._remote = remote
        self._lines: List[CartLine] = []
        self._user_id: Optional[str] = None
        self._listeners: List[Callable[[], None]] = []

    # ---------------------------
    # Queries
    # ---------------------------

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines)

    def snapshot(self) -> Tuple[CartLine, ...]:
        """Immutable view of the cart at this moment, used by checkout."""
        return tuple(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self._lines)

    @property
    def total_price(self) -> float:
        return sum(line.line_total for line in self._lines)

    def get_quantity(self, product_id: str) -> int:
        for line in self._lines:
            if line.product.id == product_id:
                return line.quantity
        return 0

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call `callback` after every change. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback()

    # ---------------------------
    # Loading & reconciliation
    # ---------------------------

    async def on_identity_changed(self, user_id: Optional[str]) -> None:
        """Switch persistence target and reload; wired to the identity provider."""
        self._user_id = user_id
        await self.load()

    def _read_local(self) -> List[CartLine]:
        raw = self._cache.get(CART_KEY, [])
        if not isinstance(raw, list):
            _logger.warning("Cached cart has unexpected shape, ignoring it")
            return []
        lines = [line for line in (_line_from_json(item) for item in raw) if line]
        if len(lines) != len(raw):
            _logger.warning(f"Dropped {len(raw) - len(lines)} malformed cached cart lines")
        return _merge_duplicates(lines)

    def _write_local(self, lines: List[CartLine]) -> None:
        try:
            self._cache.set(CART_KEY, [_line_to_json(line) for line in lines])
        except OSError as exc:
            _logger.error(f"Failed to write cart to local cache: {exc}")

    async def _write_remote(self, lines: List[CartLine]) -> bool:
        if self._user_id is None:
            return False
        rows = [_line_to_row(self._user_id, line) for line in lines]
        try:
            await self._remote.replace_cart_rows(self._user_id, rows)
        except BACKEND_ERRORS as exc:
            _logger.warning(f"Remote cart write failed, keeping local copy only: {exc}")
            return False
        return True

    async def load(self) -> None:
        """
        Repopulate the cart from the best available source.

        No session: local cache. Session: the remote table, except that an
        empty remote cart adopts a non-empty local (guest) cart. When both
        hold lines the remote wins. A failed remote read falls back to the
        local cache.
        """
        local = self._read_local()
        if self._user_id is None:
            self._lines = local
            _logger.debug(f"Cart loaded from local cache: {len(local)} lines")
            self._notify()
            return

        try:
            rows = await self._remote.list_cart_rows(self._user_id)
        except BACKEND_ERRORS as exc:
            _logger.warning(f"Remote cart unavailable, using local cache: {exc}")
            self._lines = local
            self._notify()
            return

        if not rows and local:
            _logger.info(f"Adopting guest cart ({len(local)} lines) for user {self._user_id}")
            self._lines = local
            await self._write_remote(local)
        else:
            self._lines = _merge_duplicates([_line_from_row(row) for row in rows])
            self._write_local(self._lines)
            _logger.debug(f"Cart loaded from remote: {len(self._lines)} lines")
        self._notify()

    # ---------------------------
    # Mutations
    # ---------------------------

    async def persist(self, lines: Optional[List[CartLine]] = None) -> bool:
        """
        Mirror `lines` (default: the current cart) to the local cache, and to
        the remote table when a session exists. Returns whether the remote
        mirror was updated.
        """
        lines = self._lines if lines is None else lines
        self._write_local(lines)
        return await self._write_remote(lines)

    async def _commit(self, lines: List[CartLine]) -> None:
        self._lines = lines
        self._notify()
        await self.persist(lines)

    async def add_line(self, product: Product, quantity: int = 1) -> None:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1.")
        lines = list(self._lines)
        for idx, line in enumerate(lines):
            if line.product.id == product.id:
                lines[idx] = dataclasses.replace(line, quantity=line.quantity + quantity)
                break
        else:
            now = _now()
            lines.append(
                CartLine(
                    id=f"{product.id}-{int(now.timestamp() * 1000)}",
                    product=product,
                    quantity=quantity,
                    added_at=now,
                )
            )
        _logger.debug(f"Added {product.name} x{quantity} to cart")
        await self._commit(lines)

    async def remove_line(self, product_id: str) -> None:
        lines = [line for line in self._lines if line.product.id != product_id]
        await self._commit(lines)

    async def set_quantity(self, product_id: str, quantity: int) -> None:
        """Set the quantity of a line; zero or less removes it."""
        if quantity <= 0:
            await self.remove_line(product_id)
            return
        lines = [
            dataclasses.replace(line, quantity=quantity)
            if line.product.id == product_id
            else line
            for line in self._lines
        ]
        await self._commit(lines)

    async def clear(self) -> None:
        await self._commit([])
