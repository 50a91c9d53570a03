from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, HorizontalGroup, VerticalScroll
from textual.events import ScreenResume
from textual.message import Message
from textual.widgets import Button, Label, Rule

from db.models import CartLine
from utils.messages import CartChangedMessage, NewOrderMessage
from utils.pure import format_price, pluralize_items
from views.base_screen import BaseScreen
from views.modal_checkout import CheckoutModal
from views.modal_dialog import DialogModal
from views.modal_prod_detail import ProdDetailModal


class CartItemActionEditMessage(Message):
    bubble = True


class CartItemActionRemoveMessage(Message):
    bubble = True


class CartItemActionLabel(Label):
    def action_edit(self):
        self.post_message(CartItemActionEditMessage())

    def action_remove(self):
        self.post_message(CartItemActionRemoveMessage())


class CartItemWidget(HorizontalGroup):
    def __init__(self, line: CartLine):
        super().__init__()
        self.line = line

    def compose(self):
        with Container(id="div-cart-item-group"):
            with Container(id="div-item"):
                yield Label(self.line.product.name, id="label-item-name")
                yield Label(f"x{self.line.quantity}", id="label-item-qty")
                yield Label(format_price(self.line.line_total), id="label-item-price")
            with Container(id="div-actions"):
                yield CartItemActionLabel("[@click=edit()]Edit[/]", id="link-item-edit")
                yield CartItemActionLabel(
                    "[@click=remove()]Remove[/]", id="link-item-remove"
                )

    @on(CartItemActionEditMessage)
    @work()
    async def handle_edit_item(self):
        await self.app.push_screen_wait(ProdDetailModal(self.line.product))

    @on(CartItemActionRemoveMessage)
    @work()
    async def handle_remove_item(self):
        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                f"Remove {self.line.product.name} from the cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        )

        if remove_confirmed:
            await self.app.state.cart.remove_line(self.line.product.id)
            self.notify("Item removed from cart.", severity="information")


class CartScreen(BaseScreen):
    """
    Lines of the cart with edit / remove actions, the total and checkout.
    """

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield VerticalScroll(id="vertscroll-content")
        yield Label("Total: 0 ₽", id="label-cart-total")
        yield Rule(line_style="dashed")
        with Horizontal(id="hort-buttons"):
            yield Button("Clear Cart", id="btn-clear-cart")
            yield Button("Checkout", id="btn-checkout", variant="primary")

    async def on_mount(self):
        # cart mutations happen on other screens too, so listen to the store itself
        self._unsubscribe = self.app.state.cart.subscribe(
            lambda: self.post_message(CartChangedMessage())
        )
        self.handle_cart_change()

    def on_unmount(self):
        self._unsubscribe()

    @on(CartChangedMessage)
    @on(ScreenResume)
    @work(exclusive=True)  # must be exclusive, else racing rebuilds duplicate rows
    async def handle_cart_change(self):
        cart = self.app.state.cart
        lines = cart.lines

        content = self.query_one("#vertscroll-content")
        if [c.line for c in content.children] == lines:
            return

        await content.remove_children()
        await content.mount_all([CartItemWidget(line) for line in lines])

        if not lines:
            content.add_class("no-items")
        else:
            content.remove_class("no-items")

        self.query_one("#label-cart-total", Label).update(
            f"Total: {format_price(cart.total_price)} ({pluralize_items(cart.total_items)})"
        )
        self.query_one("#btn-checkout", Button).disabled = not lines

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        if self.app.state.cart.is_empty:
            self.app.notify("Cart is empty.", severity="warning")
            return

        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove all items from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        )
        if remove_confirmed:
            await self.app.state.cart.clear()

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        cart = self.app.state.cart
        if cart.is_empty:
            self.app.notify("Cart is empty.", severity="warning")
            return

        order_id = await self.app.push_screen_wait(CheckoutModal(cart.snapshot()))
        if order_id:
            self.post_message(NewOrderMessage(order_id))
