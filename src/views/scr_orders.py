from typing import Dict, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, MarkdownViewer

import db.crud
from db.database import BACKEND_ERRORS
from db.models import Order
from utils.messages import ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_price, generate_markdown_table
from views.base_screen import BaseScreen

STATUS_LABELS = {
    "new": "New",
    "confirmed": "Confirmed",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
}


def render_order_markdown(order: Optional[Order]) -> str:
    """Markdown detail of one order, shared with the admin dashboard."""
    if not order:
        return "### Select an order to view its details."
    header = (
        f"### Order #{order.id}\n"
        f"Date: {order.created_at:%d.%m.%Y %H:%M}  \n"
        f"Status: {STATUS_LABELS.get(order.status, order.status)}  \n"
        f"Customer: {order.customer_name}, {order.customer_phone}  \n"
        f"Ship To: {order.customer_address}\n\n"
    )
    rows = [
        [i.name, i.quantity, format_price(i.price), format_price(i.price * i.quantity)]
        for i in order.items
    ]
    table = generate_markdown_table(
        ["Product", "Qty", "Unit Price", "Line Total"], rows, ["l", "r", "r", "r"]
    )
    footer = f"\n\n**Subtotal:** {format_price(order.subtotal)}"
    if order.delivery_cost is not None:
        footer += (
            f"  \n**Delivery:** {order.delivery_km or 0:.1f} km, "
            f"{format_price(order.delivery_cost)}"
        )
    footer += f"  \n**Grand Total:** {format_price(order.total_amount)}"
    return header + table + footer


class OrdersScreen(BaseScreen):
    """
    The signed-in customer's orders, newest first, with a detail view.
    """

    BINDINGS = [
        Binding("enter", "noop", "View Order Detail", show=True, key_display="⏎"),
    ]

    def __init__(self) -> None:
        super().__init__()
        self._orders: Dict[str, Order] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-order-detail", show_table_of_contents=False)
            yield DataTable(id="table-orders")
        with Horizontal(id="hort-table-control"):
            yield Button("Refresh", id="btn-refresh")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order", "Date", "Status", "Shipping Address", "Total")
        self.handle_refresh()

    @on(Button.Pressed, "#btn-refresh")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(NewOrderMessage)
    @work(exclusive=True, group="orders")
    async def handle_refresh(self):
        table = self.query_one(DataTable)
        table.clear()
        self._orders = {}

        user = self.app.state.identity.current_user
        if user is None:
            self._render_markdown("### Sign in to see your orders.")
            return

        try:
            orders = await db.crud.list_orders(user_id=user.id)
        except BACKEND_ERRORS as exc:
            self.notify(f"Could not load orders: {exc}", severity="error")
            return

        for o in orders:
            self._orders[o.id] = o
            table.add_row(
                o.id[:8],
                f"{o.created_at:%d.%m.%Y}",
                STATUS_LABELS.get(o.status, o.status),
                o.customer_address,
                format_price(o.total_amount),
                key=o.id,
            )
        if orders:
            table.move_cursor(row=0)
            self._render_markdown(render_order_markdown(orders[0]))
        else:
            self._render_markdown("### You have no orders yet.")

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        order = self._orders.get(event.row_key.value)
        if order:
            self._render_markdown(render_order_markdown(order))

    def _render_markdown(self, md: str) -> None:
        self.query_one("#md-order-detail", MarkdownViewer).document.update(md)
