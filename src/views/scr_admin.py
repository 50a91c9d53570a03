from typing import Dict, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import (
    Button,
    DataTable,
    Input,
    Label,
    MarkdownViewer,
    TabbedContent,
    TabPane,
)

from db.crud import OrderStatusError
from db.database import BACKEND_ERRORS
from db.models import ContactMessage, Order, next_statuses
from utils.messages import ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_price, format_phone
from views.base_screen import BaseScreen
from views.modal_dialog import DialogModal
from views.scr_orders import STATUS_LABELS, render_order_markdown


class AdminScreen(BaseScreen):
    """
    Admin dashboard: totals, all orders with status changes, and contact
    messages. Nothing is rendered until the server confirms admin rights.
    """

    def __init__(self) -> None:
        super().__init__()
        self._orders: Dict[str, Order] = {}
        self._messages: Dict[str, ContactMessage] = {}
        self._selected_order: Optional[str] = None
        self._selected_message: Optional[str] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield Label("Checking access...", id="label-admin-gate")
        with TabbedContent(id="tabs-admin"):
            with TabPane("Overview", id="tab-overview"):
                yield MarkdownViewer(id="md-stats", show_table_of_contents=False)
            with TabPane("Orders", id="tab-orders"):
                yield Input(placeholder="Search by name, phone or order id", id="input-order-search")
                with Vertical():
                    yield DataTable(id="table-admin-orders")
                    yield MarkdownViewer(id="md-admin-order", show_table_of_contents=False)
                yield Horizontal(id="hort-status-btns")
            with TabPane("Messages", id="tab-messages"):
                yield DataTable(id="table-admin-messages")
                yield Label("", id="label-message-body")
                with Horizontal():
                    yield Button("Mark processed", id="btn-msg-processed", variant="success")
                    yield Button("Mark new", id="btn-msg-new")

    def on_mount(self) -> None:
        orders = self.query_one("#table-admin-orders", DataTable)
        orders.cursor_type = "row"
        orders.zebra_stripes = True
        orders.add_columns("Order", "Date", "Customer", "Phone", "Status", "Total")

        messages = self.query_one("#table-admin-messages", DataTable)
        messages.cursor_type = "row"
        messages.zebra_stripes = True
        messages.add_columns("Date", "Name", "Phone", "Prefers", "Status")

        self.query_one("#tabs-admin").display = False
        self.handle_reload()

    @on(NewOrderMessage)
    @on(ScreenResume)
    @on(ModeSwitchedMessage)
    @work(exclusive=True, group="admin")
    async def handle_reload(self) -> None:
        gate = self.query_one("#label-admin-gate", Label)
        tabs = self.query_one("#tabs-admin")
        if not await self.app.state.admin.verify():
            tabs.display = False
            gate.update("Access denied. This section is for administrators only.")
            gate.display = True
            return
        gate.display = False
        tabs.display = True

        try:
            await self._load_stats()
            await self._load_orders()
            await self._load_messages()
        except PermissionError:
            tabs.display = False
            gate.update("Access denied. This section is for administrators only.")
            gate.display = True
        except BACKEND_ERRORS as exc:
            self.notify(f"Could not load admin data: {exc}", severity="error")

    async def _load_stats(self) -> None:
        stats = await self.app.state.admin.stats()
        md = (
            "### Overview\n\n"
            f"- Registered users: {stats.total_users}\n"
            f"- Orders: {stats.total_orders}\n"
            f"- Revenue: {format_price(stats.total_revenue)}\n"
            f"- New messages: {stats.pending_messages}\n"
        )
        await self.query_one("#md-stats", MarkdownViewer).document.update(md)

    async def _load_orders(self) -> None:
        search = self.query_one("#input-order-search", Input).value
        orders = await self.app.state.admin.list_orders(search=search)
        table = self.query_one("#table-admin-orders", DataTable)
        table.clear()
        self._orders = {}
        for o in orders:
            self._orders[o.id] = o
            table.add_row(
                o.id[:8],
                f"{o.created_at:%d.%m.%Y %H:%M}",
                o.customer_name,
                format_phone(o.customer_phone),
                STATUS_LABELS.get(o.status, o.status),
                format_price(o.total_amount),
                key=o.id,
            )
        if self._selected_order not in self._orders:
            self._selected_order = orders[0].id if orders else None
        await self._show_order(self._selected_order)

    async def _load_messages(self) -> None:
        messages = await self.app.state.admin.list_messages()
        table = self.query_one("#table-admin-messages", DataTable)
        table.clear()
        self._messages = {}
        for m in messages:
            key = str(m.id)
            self._messages[key] = m
            table.add_row(
                f"{m.created_at:%d.%m.%Y %H:%M}",
                m.name,
                format_phone(m.phone),
                m.preferred_contact,
                m.status,
                key=key,
            )
        if self._selected_message not in self._messages:
            self._selected_message = str(messages[0].id) if messages else None
        self._show_message(self._selected_message)

    async def _show_order(self, order_id: Optional[str]) -> None:
        order = self._orders.get(order_id) if order_id else None
        await self.query_one("#md-admin-order", MarkdownViewer).document.update(
            render_order_markdown(order)
        )
        buttons = self.query_one("#hort-status-btns", Horizontal)
        await buttons.remove_children()
        if order:
            await buttons.mount_all(
                [
                    Button(
                        f"Mark {STATUS_LABELS[s].lower()}",
                        id=f"btn-status-{s}",
                        classes="status-btn",
                        variant="error" if s == "cancelled" else "primary",
                    )
                    for s in next_statuses(order.status)
                ]
            )

    def _show_message(self, key: Optional[str]) -> None:
        msg = self._messages.get(key) if key else None
        text = ""
        if msg:
            text = f"{msg.name} ({msg.email or 'no email'}): {msg.message}"
        self.query_one("#label-message-body", Label).update(text)

    @on(Input.Submitted, "#input-order-search")
    @work(exclusive=True, group="admin")
    async def handle_search(self) -> None:
        try:
            await self._load_orders()
        except PermissionError:
            self.notify("Admin access required.", severity="error")

    @on(DataTable.RowHighlighted, "#table-admin-orders")
    @work(exclusive=True, group="admin-detail")
    async def handle_order_highlight(self, event: DataTable.RowHighlighted) -> None:
        self._selected_order = event.row_key.value
        await self._show_order(self._selected_order)

    @on(DataTable.RowHighlighted, "#table-admin-messages")
    def handle_message_highlight(self, event: DataTable.RowHighlighted) -> None:
        self._selected_message = event.row_key.value
        self._show_message(self._selected_message)

    @on(Button.Pressed, ".status-btn")
    @work(exclusive=True, group="admin-action")
    async def handle_status_change(self, event: Button.Pressed) -> None:
        if not self._selected_order:
            return
        status = event.button.id.removeprefix("btn-status-")
        if status == "cancelled" and not await self.app.push_screen_wait(
            DialogModal(
                "Cancel this order?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        ):
            return
        try:
            changed = await self.app.state.admin.set_order_status(self._selected_order, status)
        except PermissionError:
            self.notify("Admin access required.", severity="error")
            return
        except OrderStatusError as exc:
            self.notify(str(exc), severity="error")
            return
        if not changed:
            self.notify("Order not found or already changed.", severity="warning")
        await self._load_orders()
        await self._load_stats()

    @on(Button.Pressed, "#btn-msg-processed")
    @on(Button.Pressed, "#btn-msg-new")
    @work(exclusive=True, group="admin-action")
    async def handle_message_status(self, event: Button.Pressed) -> None:
        if not self._selected_message:
            return
        status = "processed" if event.button.id == "btn-msg-processed" else "new"
        try:
            await self.app.state.admin.set_message_status(int(self._selected_message), status)
        except PermissionError:
            self.notify("Admin access required.", severity="error")
            return
        await self._load_messages()
        await self._load_stats()
