# src/db/crud.py
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from db import models
from db.database import connect


class OrderStatusError(ValueError):
    """Raised when an order is asked to move to a status it cannot reach."""


MESSAGE_STATUSES = ("new", "processed")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _to_dt(val) -> Optional[datetime]:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    try:
        return datetime.fromisoformat(str(val))
    except ValueError:
        return None


def _to_float(val) -> Optional[float]:
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def _like(term: str) -> str:
    return f"%{term.strip().lower()}%"


# ---------------------------
# Accounts (auth)
# ---------------------------


def _row_to_account(row) -> models.Account:
    return models.Account(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        created_at=_to_dt(row["created_at"]),
    )


async def email_registered(email: str) -> bool:
    """True if an account already uses the given email."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT 1 FROM accounts WHERE email = ? LIMIT 1;", (email,)
        )
        row = await cur.fetchone()
        await cur.close()
        return row is not None


async def create_account(email: str, password_hash: str) -> models.Account:
    """
    Create an auth account. The profile row is created separately, see upsert_profile.
    """
    account_id = str(uuid.uuid4())
    created_at = _now()
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT 1 FROM accounts WHERE email = ? LIMIT 1;", (email,)
        )
        exists = await cur.fetchone()
        await cur.close()
        if exists:
            raise ValueError("Email already registered")
        await conn.execute(
            "INSERT INTO accounts(id, email, password_hash, created_at) VALUES (?, ?, ?, ?);",
            (account_id, email, password_hash, created_at),
        )
        await conn.commit()
    return models.Account(
        id=account_id,
        email=email,
        password_hash=password_hash,
        created_at=_to_dt(created_at),
    )


async def get_account_by_email(email: str) -> Optional[models.Account]:
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT id, email, password_hash, created_at FROM accounts WHERE email = ?;",
            (email,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_account(row) if row else None


async def get_account(account_id: str) -> Optional[models.Account]:
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT id, email, password_hash, created_at FROM accounts WHERE id = ?;",
            (account_id,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_account(row) if row else None


# ---------------------------
# Profiles
# ---------------------------

_PROFILE_COLUMNS = "id, email, full_name, phone, address, is_admin, created_at, updated_at"


def _row_to_profile(row) -> models.Profile:
    return models.Profile(
        id=row["id"],
        email=row["email"],
        full_name=row["full_name"],
        phone=row["phone"],
        address=row["address"],
        is_admin=bool(row["is_admin"]),
        created_at=_to_dt(row["created_at"]),
        updated_at=_to_dt(row["updated_at"]),
    )


async def get_profile(user_id: str) -> Optional[models.Profile]:
    """Return the profile row for a user, or None if it does not exist (yet)."""
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = ?;", (user_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_profile(row) if row else None


async def upsert_profile(
    user_id: str,
    email: str,
    full_name: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
) -> models.Profile:
    """
    Create the profile for an account, or refresh its contact fields.
    The admin flag is never touched here.
    """
    now = _now()
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO profiles(id, email, full_name, phone, address, is_admin, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                email = excluded.email,
                full_name = excluded.full_name,
                phone = COALESCE(excluded.phone, profiles.phone),
                address = COALESCE(excluded.address, profiles.address),
                updated_at = excluded.updated_at;
            """,
            (user_id, email, full_name, phone, address, now, now),
        )
        await conn.commit()
        cur = await conn.execute(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = ?;", (user_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_profile(row)


async def update_profile(
    user_id: str,
    full_name: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
) -> Optional[models.Profile]:
    """
    Update only the provided, non-empty fields. Returns the fresh profile,
    or None if the user has no profile row.
    """
    fields: List[str] = []
    values: List[str] = []
    for column, value in (("full_name", full_name), ("phone", phone), ("address", address)):
        if value:
            fields.append(f"{column} = ?")
            values.append(value)

    async with connect() as conn:
        if fields:
            fields.append("updated_at = ?")
            values.append(_now())
            await conn.execute(
                f"UPDATE profiles SET {', '.join(fields)} WHERE id = ?;",
                (*values, user_id),
            )
            await conn.commit()
        cur = await conn.execute(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = ?;", (user_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_profile(row) if row else None


async def set_admin(user_id: str, is_admin: bool) -> bool:
    """Operator path for granting or revoking the admin flag."""
    async with connect() as conn:
        res = await conn.execute(
            "UPDATE profiles SET is_admin = ?, updated_at = ? WHERE id = ?;",
            (1 if is_admin else 0, _now(), user_id),
        )
        await conn.commit()
        return res.rowcount > 0


async def count_profiles() -> int:
    async with connect() as conn:
        cur = await conn.execute("SELECT COUNT(*) FROM profiles;")
        row = await cur.fetchone()
        await cur.close()
    return int(row[0])


# ---------------------------
# Cart rows
# ---------------------------


async def list_cart_rows(user_id: str) -> List[models.CartRow]:
    """Return the persisted cart for a user in insertion order."""
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT id, user_id, product_id, product_name, product_price,
                   product_image, product_category, quantity, created_at
            FROM cart_items
            WHERE user_id = ?
            ORDER BY created_at, id;
            """,
            (user_id,),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [
        models.CartRow(
            id=row["id"],
            user_id=row["user_id"],
            product_id=row["product_id"],
            product_name=row["product_name"],
            product_price=float(row["product_price"]),
            product_image=row["product_image"],
            product_category=row["product_category"],
            quantity=int(row["quantity"]),
            created_at=_to_dt(row["created_at"]),
        )
        for row in rows
    ]


async def replace_cart_rows(user_id: str, rows: Sequence[models.CartRow]) -> None:
    """
    Full replace: delete every cart row of the user, then insert `rows`.
    Both happen in one transaction, a failed insert leaves the old rows in place.
    """
    async with connect() as conn:
        await conn.execute("DELETE FROM cart_items WHERE user_id = ?;", (user_id,))
        if rows:
            await conn.executemany(
                """
                INSERT INTO cart_items(user_id, product_id, product_name, product_price,
                                       product_image, product_category, quantity, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        user_id,
                        r.product_id,
                        r.product_name,
                        r.product_price,
                        r.product_image,
                        r.product_category,
                        r.quantity,
                        (r.created_at.isoformat() if r.created_at else _now()),
                    )
                    for r in rows
                ],
            )
        await conn.commit()


# ---------------------------
# Orders
# ---------------------------

_ORDER_COLUMNS = """
    id, user_id, customer_name, customer_phone, customer_email, customer_address,
    customer_lat, customer_lon, items, delivery_km, delivery_cost, total_amount,
    status, created_at
"""


def _row_to_order(row) -> models.Order:
    items = tuple(
        models.OrderItem(
            name=str(i.get("name", "")),
            price=float(i.get("price", 0)),
            quantity=int(i.get("quantity", 0)),
        )
        for i in json.loads(row["items"] or "[]")
    )
    return models.Order(
        id=row["id"],
        user_id=row["user_id"],
        customer_name=row["customer_name"],
        customer_phone=row["customer_phone"],
        customer_email=row["customer_email"],
        customer_address=row["customer_address"],
        customer_lat=_to_float(row["customer_lat"]),
        customer_lon=_to_float(row["customer_lon"]),
        items=items,
        delivery_km=_to_float(row["delivery_km"]),
        delivery_cost=_to_float(row["delivery_cost"]),
        total_amount=float(row["total_amount"]),
        status=row["status"],
        created_at=_to_dt(row["created_at"]),
    )


async def insert_order(
    *,
    customer_name: str,
    customer_phone: str,
    customer_address: str,
    items: Sequence[models.OrderItem],
    total_amount: float,
    customer_email: Optional[str] = None,
    user_id: Optional[str] = None,
    customer_lat: Optional[float] = None,
    customer_lon: Optional[float] = None,
    delivery_km: Optional[float] = None,
    delivery_cost: Optional[float] = None,
) -> models.Order:
    """
    Store a new order with status 'new' and return it with the id assigned by the store.
    Item lines are copied values, never references to live products.
    """
    order_id = str(uuid.uuid4())
    created_at = _now()
    items_json = json.dumps(
        [{"name": i.name, "price": i.price, "quantity": i.quantity} for i in items],
        ensure_ascii=False,
    )
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO orders(id, user_id, customer_name, customer_phone, customer_email,
                               customer_address, customer_lat, customer_lon, items,
                               delivery_km, delivery_cost, total_amount, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'new', ?);
            """,
            (
                order_id,
                user_id,
                customer_name,
                customer_phone,
                customer_email or None,
                customer_address,
                customer_lat,
                customer_lon,
                items_json,
                delivery_km,
                delivery_cost,
                total_amount,
                created_at,
            ),
        )
        await conn.commit()
        cur = await conn.execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?;", (order_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_order(row)


async def get_order(order_id: str) -> Optional[models.Order]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?;", (order_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_order(row) if row else None


async def list_orders(
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    search: str = "",
    limit: int = 100,
) -> List[models.Order]:
    """
    Orders newest first. `user_id` scopes to one customer; `search` matches
    customer name, phone or order id (case-insensitive).
    """
    where: List[str] = []
    params: List[object] = []
    if user_id is not None:
        where.append("user_id = ?")
        params.append(user_id)
    if status:
        where.append("status = ?")
        params.append(status)
    if search and search.strip():
        like = _like(search)
        where.append(
            "(LOWER(customer_name) LIKE ? OR customer_phone LIKE ? OR LOWER(id) LIKE ?)"
        )
        params.extend([like, like, like])
    where_clause = ("WHERE " + " AND ".join(where)) if where else ""

    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            FROM orders
            {where_clause}
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?;
            """,
            (*params, limit),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_order(row) for row in rows]


async def update_order_status(order_id: str, status: str) -> bool:
    """
    Move an order to `status`. Returns False if the order does not exist;
    raises OrderStatusError if the transition is not allowed.
    """
    async with connect() as conn:
        cur = await conn.execute("SELECT status FROM orders WHERE id = ?;", (order_id,))
        row = await cur.fetchone()
        await cur.close()
        if not row:
            return False
        current = row["status"]
        if status not in models.next_statuses(current):
            raise OrderStatusError(f"Cannot move order from '{current}' to '{status}'.")
        res = await conn.execute(
            "UPDATE orders SET status = ? WHERE id = ? AND status = ?;",
            (status, order_id, current),
        )
        await conn.commit()
        return res.rowcount > 0


async def order_totals() -> Tuple[int, float]:
    """Return (number of orders, revenue) over all orders."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(total_amount), 0.0) FROM orders;"
        )
        row = await cur.fetchone()
        await cur.close()
    return int(row[0] or 0), float(row[1] or 0.0)


# ---------------------------
# Contact messages
# ---------------------------


def _row_to_message(row) -> models.ContactMessage:
    return models.ContactMessage(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        message=row["message"],
        preferred_contact=row["preferred_contact"],
        status=row["status"],
        created_at=_to_dt(row["created_at"]),
    )


async def insert_contact_message(
    name: str,
    phone: str,
    message: str,
    email: Optional[str] = None,
    preferred_contact: str = "phone",
) -> models.ContactMessage:
    async with connect() as conn:
        cur = await conn.execute(
            """
            INSERT INTO contact_messages(name, phone, email, message, preferred_contact, status, created_at)
            VALUES (?, ?, ?, ?, ?, 'new', ?);
            """,
            (name, phone, email or None, message, preferred_contact, _now()),
        )
        msg_id = cur.lastrowid
        await cur.close()
        await conn.commit()
        cur = await conn.execute(
            "SELECT * FROM contact_messages WHERE id = ?;", (msg_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_message(row)


async def list_contact_messages(
    status: Optional[str] = None, search: str = "", limit: int = 100
) -> List[models.ContactMessage]:
    where: List[str] = []
    params: List[object] = []
    if status:
        where.append("status = ?")
        params.append(status)
    if search and search.strip():
        like = _like(search)
        where.append("(LOWER(name) LIKE ? OR phone LIKE ? OR LOWER(message) LIKE ?)")
        params.extend([like, like, like])
    where_clause = ("WHERE " + " AND ".join(where)) if where else ""
    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT * FROM contact_messages
            {where_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ?;
            """,
            (*params, limit),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_message(row) for row in rows]


async def update_contact_message_status(message_id: int, status: str) -> bool:
    if status not in MESSAGE_STATUSES:
        raise ValueError(f"Unknown message status '{status}'.")
    async with connect() as conn:
        res = await conn.execute(
            "UPDATE contact_messages SET status = ? WHERE id = ?;",
            (status, message_id),
        )
        await conn.commit()
        return res.rowcount > 0


async def count_contact_messages(status: Optional[str] = None) -> int:
    async with connect() as conn:
        if status:
            cur = await conn.execute(
                "SELECT COUNT(*) FROM contact_messages WHERE status = ?;", (status,)
            )
        else:
            cur = await conn.execute("SELECT COUNT(*) FROM contact_messages;")
        row = await cur.fetchone()
        await cur.close()
    return int(row[0])
