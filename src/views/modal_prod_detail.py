from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.validation import Number
from textual.widgets import Button, Input, Label, MarkdownViewer

from db.models import Product
from utils.pure import format_price, generate_markdown_table

MAX_ORDER_QTY = 999


class ProdDetailModal(ModalScreen[bool]):
    """
    Product detail plus adding it to the cart.
    Returns True if the cart changed, False if not.
    """

    order_qty = reactive(1)

    def __init__(self, product: Product) -> None:
        super().__init__()
        self._prod = product
        self._in_cart = 0

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-prod-detail"):
            yield MarkdownViewer("", show_table_of_contents=False)
            with Vertical(id="vert-prod-order"):
                yield Label("Order Quantity")
                with Horizontal():
                    yield Button("-", id="btn-sub-qty")
                    yield Input(value="1", id="input-order-qty", type="integer")
                    yield Button("+", id="btn-add-qty")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Add to Cart", id="btn-addcart", variant="primary")

    async def on_mount(self):
        prod = self._prod
        table_rows = [
            ["Price", format_price(prod.price)],
            ["Category", prod.category or "-"],
            ["Class", prod.klass or "-"],
            ["Manufacturer", prod.manufacturer or "-"],
            ["Sizes", prod.sizes or "-"],
            ["Availability", "In stock" if prod.in_stock else "Out of stock"],
        ]
        md_table_str = generate_markdown_table(
            ["Attribute", "Value"], table_rows, ["l", "l"]
        )
        header_md = f"### {prod.name}\n\n{prod.description}\n\n"
        await self.query_one(MarkdownViewer).document.update(header_md + md_table_str)

        order_btn = self.query_one("#btn-addcart", Button)
        if not prod.in_stock:
            order_btn.label = "Out of Stock"
            order_btn.disabled = True
            order_btn.variant = "warning"

        self.query_one("#input-order-qty").validators = [
            Number(minimum=1, maximum=MAX_ORDER_QTY)
        ]

        self._in_cart = self.app.state.cart.get_quantity(prod.id)
        if self._in_cart:
            self.order_qty = self._in_cart
            order_btn.label = "Update Cart"

        self.query_one("#input-order-qty").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    async def on_input_changed(self, message: Input.Changed) -> None:
        if (
            message.input.id == "input-order-qty"
            and message.input.is_valid
            and self.focused == message.input
        ):
            self.order_qty = int(message.value)

    def watch_order_qty(self, qty: int):
        self.query_one("#btn-sub-qty").disabled = qty <= 1
        self.query_one("#btn-add-qty").disabled = qty >= MAX_ORDER_QTY
        input_order_qty = self.query_one("#input-order-qty", Input)
        if input_order_qty.value != str(qty):
            input_order_qty.value = str(qty)

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.order_qty += 1

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        self.order_qty -= 1

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    @on(Button.Pressed, "#btn-addcart")
    @work(exclusive=True)
    async def handle_addcart(self):
        cart = self.app.state.cart
        if not self._in_cart:
            await cart.add_line(self._prod, self.order_qty)
            self.app.notify(f"{self._prod.name} added to cart.")
        else:
            await cart.set_quantity(self._prod.id, self.order_qty)
            self.app.notify("Updated cart item quantity.")
        self.dismiss(True)
