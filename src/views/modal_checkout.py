import asyncio
from typing import List, Optional, Sequence

from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer, OptionList
from textual.widgets.option_list import Option

from db.models import CartLine
from services.checkout import CustomerInfo, SubmitPhase, SubmitStateMachine
from services.schemas import AddressSuggestion, DeliveryQuote
from utils.pure import format_price, generate_markdown_table
from views.modal_dialog import DialogModal, InfoDialogModal

SUGGEST_DEBOUNCE = 0.3
RESET_AFTER = 3.0

SUBMIT_LABELS = {
    SubmitPhase.IDLE: "Place Order",
    SubmitPhase.SUBMITTING: "Placing order...",
    SubmitPhase.SUCCEEDED: "Order placed",
    SubmitPhase.FAILED: "Failed, try again",
}


class CheckoutModal(ModalScreen[Optional[str]]):
    """
    Order summary plus the customer form.
    Dismisses with the stored order id on success, None otherwise.
    """

    def __init__(self, lines: Sequence[CartLine]):
        super().__init__()
        self._lines = tuple(lines)
        self._suggestions: List[AddressSuggestion] = []
        self._coords: Optional[tuple] = None
        self._picked_address = ""
        self._quote: Optional[DeliveryQuote] = None
        self._submit = SubmitStateMachine()

    def compose(self) -> ComposeResult:
        with VerticalScroll(id="vert-checkout"):
            yield MarkdownViewer("", show_table_of_contents=False, id="md-summary")
            with Vertical(id="div-customer"):
                yield Label("Name")
                yield Input(placeholder="Ivan Petrov", id="input-name")
                yield Label("Phone")
                yield Input(placeholder="+7 (900) 000-00-00", id="input-phone")
                yield Label("Email (optional)")
                yield Input(placeholder="user@example.com", id="input-email")
                yield Label("Delivery address")
                yield Input(placeholder="Start typing an address...", id="input-address")
                yield OptionList(id="list-suggestions")
                yield Label("", id="label-delivery")
            with Horizontal(id="hort-checkout-btns"):
                yield Button("Go Back", id="btn-quit")
                yield Button(SUBMIT_LABELS[SubmitPhase.IDLE], id="btn-submit", variant="primary")

    async def on_mount(self):
        identity = self.app.state.identity
        profile = identity.profile
        if profile:
            self.query_one("#input-name", Input).value = profile.full_name or ""
            self.query_one("#input-phone", Input).value = profile.phone or ""
            self.query_one("#input-address", Input).value = profile.address or ""
        if identity.current_user:
            self.query_one("#input-email", Input).value = identity.current_user.email
        self.query_one("#list-suggestions").display = False
        await self._render_summary()
        self.query_one("#input-name").focus()

    async def _render_summary(self) -> None:
        headers = ["Product", "Unit Price", "Quantity", "Total"]
        rows = [
            [
                line.product.name,
                format_price(line.product.price),
                line.quantity,
                format_price(line.line_total),
            ]
            for line in self._lines
        ]
        subtotal = sum(line.line_total for line in self._lines)
        md = "### Order Summary\n\n" + generate_markdown_table(headers, rows, ["l", "r", "c", "r"])
        md += f"\n\n**Subtotal:** {format_price(subtotal)}"
        if self._quote:
            md += (
                f"  \n**Delivery:** {self._quote.distance_km:.1f} km, "
                f"{format_price(self._quote.cost_rub)}"
                f"  \n**Total:** {format_price(subtotal + self._quote.cost_rub)}"
            )
        await self.query_one(MarkdownViewer).document.update(md)

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape" and not self._submit.busy:
            self.dismiss(None)

    # ---------------------------
    # Address suggestions & delivery quote
    # ---------------------------

    @on(Input.Changed, "#input-address")
    def handle_address_changed(self, event: Input.Changed) -> None:
        if event.value != self._picked_address:
            # typed over the picked suggestion, its coordinates no longer apply
            self._coords = None
            self._set_quote(None)
        self.fetch_suggestions(event.value)

    @work(exclusive=True, group="suggest")
    async def fetch_suggestions(self, query: str) -> None:
        await asyncio.sleep(SUGGEST_DEBOUNCE)
        suggestions = await self.app.state.suggester.suggest(query)
        options = self.query_one("#list-suggestions", OptionList)
        options.clear_options()
        self._suggestions = suggestions
        if not suggestions or query == self._picked_address:
            options.display = False
            return
        options.add_options([Option(s.value) for s in suggestions])
        options.display = True

    @on(OptionList.OptionSelected, "#list-suggestions")
    def handle_suggestion_picked(self, event: OptionList.OptionSelected) -> None:
        picked = self._suggestions[event.option_index]
        self._picked_address = picked.value
        self.query_one("#input-address", Input).value = picked.value
        self.query_one("#list-suggestions").display = False
        if picked.has_coords:
            self._coords = (picked.lat, picked.lon)
            self._set_quote(self.app.state.checkout.quote_delivery(picked.lat, picked.lon))
        else:
            self._coords = None
            self._set_quote(None)

    @work(exclusive=True, group="summary")
    async def _refresh_summary(self) -> None:
        await self._render_summary()

    def _set_quote(self, quote: Optional[DeliveryQuote]) -> None:
        self._quote = quote
        label = self.query_one("#label-delivery", Label)
        if quote:
            label.update(
                f"Delivery: {quote.distance_km:.1f} km, {format_price(quote.cost_rub)}"
            )
        else:
            label.update("")
        self._refresh_summary()

    # ---------------------------
    # Submission
    # ---------------------------

    def _show_phase(self) -> None:
        btn = self.query_one("#btn-submit", Button)
        btn.label = SUBMIT_LABELS[self._submit.phase]
        btn.disabled = self._submit.phase is not SubmitPhase.IDLE
        self.query_one("#btn-quit", Button).disabled = self._submit.busy

    def _reset_phase(self) -> None:
        self._submit.reset()
        self._show_phase()

    @on(Button.Pressed, "#btn-submit")
    @work(exclusive=True, group="submit")
    async def handle_submit(self):
        if self._submit.phase is not SubmitPhase.IDLE:
            return
        if not await self.app.push_screen_wait(
            DialogModal(
                "Place order? This cannot be undone.",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            return

        lat, lon = self._coords if self._coords else (None, None)
        info = CustomerInfo(
            name=self.query_one("#input-name", Input).value,
            phone=self.query_one("#input-phone", Input).value,
            email=self.query_one("#input-email", Input).value,
            address=self.query_one("#input-address", Input).value,
            lat=lat,
            lon=lon,
        )

        self._submit.start()
        self._show_phase()
        result = await self.app.state.checkout.submit_order(self._lines, info, self._quote)
        self._submit.finish(result.success)
        self._show_phase()

        if not result.success:
            self.notify(result.error, severity="error")
            self.set_timer(RESET_AFTER, self._reset_phase)
            return

        await self.app.push_screen_wait(
            InfoDialogModal(
                f"Order placed. Your order number is {result.order.id}.\n"
                "We will call you to confirm the delivery."
            )
        )
        self.dismiss(result.order.id)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(None)
